"""Duplex streaming session management.

Owns one Live API session end to end: connect, send setup, stream audio,
signal end of stream, drain trailing responses, close. Outbound audio and the
inbound receive loop run concurrently on the same channel; the channel
serializes sends, and the only shared state is the lifecycle state and the
cancellation event.
"""

import asyncio
import contextlib
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from gemini_live.audio.capture import AudioSource
from gemini_live.audio.packetizer import AudioChunk
from gemini_live.config import SetupConfig
from gemini_live.errors import (
    ChannelClosedError,
    CredentialError,
    ProtocolError,
    SessionConnectionError,
    TransportError,
)
from gemini_live.transport.base import CLOSE_NORMAL, DuplexChannel
from gemini_live.transport.protocol import (
    AudioStreamEndMessage,
    BinaryPayload,
    CloseNotice,
    RealtimeAudioMessage,
    SetupMessage,
    TextPayload,
    decode_frame,
)
from gemini_live.transport.websocket_channel import WebSocketChannel, redact_url

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[str], Awaitable[DuplexChannel]]


class SessionState(Enum):
    """Session lifecycle states.

    State Transitions (forward only):
    - IDLE → CONNECTED (channel opened)
    - CONNECTED → SETUP_SENT (setup message sent)
    - SETUP_SENT → STREAMING (first audio chunk sent)
    - SETUP_SENT | STREAMING → STREAM_ENDED (end-of-stream sent)
    - any non-terminal state → CLOSING (close requested)
    - CLOSING → CLOSED (channel released)
    """

    IDLE = "idle"
    CONNECTED = "connected"
    SETUP_SENT = "setup_sent"
    STREAMING = "streaming"
    STREAM_ENDED = "stream_ended"
    CLOSING = "closing"
    CLOSED = "closed"


# Valid state transitions
VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {SessionState.CONNECTED, SessionState.CLOSING},
    SessionState.CONNECTED: {SessionState.SETUP_SENT, SessionState.CLOSING},
    SessionState.SETUP_SENT: {
        SessionState.STREAMING,
        SessionState.STREAM_ENDED,
        SessionState.CLOSING,
    },
    SessionState.STREAMING: {SessionState.STREAM_ENDED, SessionState.CLOSING},
    SessionState.STREAM_ENDED: {SessionState.CLOSING},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),  # Terminal state
}


class SessionObserver(Protocol):
    """Receives inbound messages and errors from a session."""

    def on_text(self, payload: TextPayload) -> None: ...

    def on_binary(self, payload: BinaryPayload) -> None: ...

    def on_close(self, notice: CloseNotice) -> None: ...

    def on_error(self, error: Exception) -> None: ...


class LoggingObserver:
    """Observer that only logs; used when no observer is supplied."""

    def on_text(self, payload: TextPayload) -> None:
        logger.info("Text message received", extra={"length": len(payload.content)})

    def on_binary(self, payload: BinaryPayload) -> None:
        logger.info("Binary message received", extra={"size": len(payload.data)})

    def on_close(self, notice: CloseNotice) -> None:
        logger.info("Server closed", extra={"code": notice.code, "reason": notice.reason})

    def on_error(self, error: Exception) -> None:
        logger.error("Session error", extra={"error": str(error)})


@dataclass
class SessionMetrics:
    """Session activity metrics."""

    chunks_sent: int = 0
    bytes_sent: int = 0
    send_errors: int = 0
    text_frames_received: int = 0
    binary_frames_received: int = 0

    session_start_ts: float = field(default_factory=time.monotonic)
    stream_end_ts: float | None = None
    first_response_ts: float | None = None
    session_end_ts: float | None = None

    # Stream end → first text frame after it
    response_latency_ms: float | None = None

    def record_chunk_sent(self, size: int) -> None:
        """Record that an audio chunk was sent."""
        self.chunks_sent += 1
        self.bytes_sent += size

    def record_send_error(self) -> None:
        """Record a failed audio frame send."""
        self.send_errors += 1

    def record_text_received(self) -> None:
        """Record that a text frame was received."""
        self.text_frames_received += 1
        now = time.monotonic()
        if self.first_response_ts is None:
            self.first_response_ts = now
        if self.stream_end_ts is not None and self.response_latency_ms is None:
            self.response_latency_ms = (now - self.stream_end_ts) * 1000.0

    def record_binary_received(self) -> None:
        """Record that a binary frame was received."""
        self.binary_frames_received += 1

    def record_stream_end(self) -> None:
        """Record when end-of-stream was signalled."""
        self.stream_end_ts = time.monotonic()

    def finalize(self) -> None:
        """Mark session as complete and record end time."""
        if self.session_end_ts is None:
            self.session_end_ts = time.monotonic()


def build_session_url(url: str, credential: str) -> str:
    """Attach the API key to the service URL.

    Args:
        url: ws:// or wss:// service endpoint
        credential: API key

    Returns:
        URL with a ``key`` query parameter

    Raises:
        SessionConnectionError: If the URL is not a WebSocket URL with a host
    """
    parts = urlsplit(url)
    if parts.scheme not in ("ws", "wss") or not parts.netloc:
        raise SessionConnectionError(f"Malformed service URL: {redact_url(url)}")

    query = [
        (name, value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
        if name != "key"
    ]
    query.append(("key", credential))
    return urlunsplit(parts._replace(query=urlencode(query)))


class SessionManager:
    """Manages a single duplex Live API session.

    Frames outbound setup, audio, and end-of-stream messages, runs the
    inbound receive loop as a concurrent task, and drives the session
    lifecycle through ``SessionState``.
    """

    def __init__(
        self,
        observer: SessionObserver | None = None,
        channel_factory: ChannelFactory | None = None,
        session_id: str | None = None,
    ) -> None:
        """Initialize session manager.

        Args:
            observer: Receives inbound messages (default: log only)
            channel_factory: Opens the duplex channel for a URL
                (default: WebSocketChannel.open)
            session_id: Identifier for logging (generated if omitted)
        """
        self.observer: SessionObserver = observer or LoggingObserver()
        self.session_id = session_id or f"live-{uuid.uuid4().hex[:12]}"
        self.state: SessionState = SessionState.IDLE
        self.metrics = SessionMetrics()
        self.close_notice: CloseNotice | None = None

        self._channel_factory: ChannelFactory = channel_factory or WebSocketChannel.open
        self._channel: DuplexChannel | None = None
        self._cancel = asyncio.Event()
        self._user_cancelled = False
        self._receive_task: asyncio.Task[None] | None = None

    @classmethod
    async def open(
        cls,
        url: str,
        credential: str,
        observer: SessionObserver | None = None,
        channel_factory: ChannelFactory | None = None,
    ) -> "SessionManager":
        """Create a session manager and connect it.

        Raises:
            CredentialError: If the credential is empty
            SessionConnectionError: If the channel cannot be opened
        """
        manager = cls(observer=observer, channel_factory=channel_factory)
        await manager.connect(url, credential)
        return manager

    @property
    def channel(self) -> DuplexChannel:
        """The open duplex channel.

        Raises:
            ProtocolError: If the session has not connected
        """
        if self._channel is None:
            raise ProtocolError("Session is not connected")
        return self._channel

    @property
    def is_active(self) -> bool:
        """Check if session is connected and not closing or cancelled."""
        return (
            self._channel is not None
            and self._channel.is_open
            and self.state not in (SessionState.CLOSING, SessionState.CLOSED)
            and not self._cancel.is_set()
        )

    @property
    def cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._cancel.is_set()

    @property
    def user_cancelled(self) -> bool:
        """Whether cancel() was requested, as opposed to a normal shutdown."""
        return self._user_cancelled

    @property
    def receive_task(self) -> asyncio.Task[None] | None:
        """The running receive loop task, if started."""
        return self._receive_task

    def transition_state(self, new_state: SessionState) -> None:
        """Transition session to a new state with validation.

        Args:
            new_state: Target state

        Raises:
            ProtocolError: If transition is invalid
        """
        if new_state not in VALID_TRANSITIONS.get(self.state, set()):
            raise ProtocolError(
                f"Invalid state transition: {self.state.value} → {new_state.value}"
            )

        old_state = self.state
        self.state = new_state

        logger.debug(
            "Session state transition",
            extra={
                "session_id": self.session_id,
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )

    async def connect(self, url: str, credential: str) -> None:
        """Open the duplex channel. No messages are sent.

        Args:
            url: ws:// or wss:// service endpoint
            credential: API key

        Raises:
            CredentialError: If the credential is empty
            SessionConnectionError: If the URL is malformed or the channel cannot be opened
            ProtocolError: If the session is not idle
        """
        if self.state is not SessionState.IDLE:
            raise ProtocolError(f"Cannot connect a session in state {self.state.value}")
        if not credential or not credential.strip():
            raise CredentialError("Credential must be non-empty")

        session_url = build_session_url(url, credential.strip())
        self._channel = await self._channel_factory(session_url)
        self.transition_state(SessionState.CONNECTED)

        logger.info(
            "Session connected",
            extra={"session_id": self.session_id, "url": redact_url(session_url)},
        )

    async def send_setup(self, config: SetupConfig) -> None:
        """Send the setup message. Must be the first message on the session.

        Args:
            config: Model, response modalities, and system instruction

        Raises:
            ProtocolError: If setup was already sent or the send fails
        """
        if self.state is not SessionState.CONNECTED:
            raise ProtocolError(
                f"Setup must be the first message sent on a session (state: {self.state.value})"
            )

        message = SetupMessage.from_config(config)
        try:
            await self.channel.send_text(message.to_json())
        except TransportError as e:
            logger.error(
                "Failed to send setup",
                extra={"session_id": self.session_id, "error": str(e)},
            )
            raise ProtocolError(f"Failed to send setup: {e}") from e

        self.transition_state(SessionState.SETUP_SENT)
        logger.info(
            "Setup sent",
            extra={
                "session_id": self.session_id,
                "model": config.model,
                "response_modalities": config.response_modalities,
            },
        )

    async def send_audio_chunk(self, chunk: AudioChunk) -> bool:
        """Send one audio chunk as a realtime input message.

        A failed send is logged and counted; audio capture tolerates loss.

        Args:
            chunk: Captured PCM chunk

        Returns:
            False if the channel is closed and streaming should stop, True otherwise

        Raises:
            ProtocolError: If setup has not been sent or the stream has ended
        """
        if self.state is SessionState.SETUP_SENT:
            self.transition_state(SessionState.STREAMING)
        elif self.state is not SessionState.STREAMING:
            raise ProtocolError(
                f"Audio must follow setup and precede end-of-stream (state: {self.state.value})"
            )

        try:
            message = RealtimeAudioMessage.from_chunk(chunk)
        except ValueError as e:
            self.metrics.record_send_error()
            logger.warning(
                "Skipping invalid audio chunk",
                extra={"session_id": self.session_id, "sequence": chunk.sequence, "error": str(e)},
            )
            return True

        try:
            await self.channel.send_text(message.to_json())
        except ChannelClosedError as e:
            logger.warning(
                "Channel closed, stopping audio stream",
                extra={"session_id": self.session_id, "sequence": chunk.sequence, "error": str(e)},
            )
            return False
        except TransportError as e:
            self.metrics.record_send_error()
            logger.error(
                "Audio frame send failed",
                extra={"session_id": self.session_id, "sequence": chunk.sequence, "error": str(e)},
            )
            return True

        self.metrics.record_chunk_sent(len(chunk.data))
        return True

    async def stream_audio(self, source: AudioSource) -> None:
        """Send every chunk the source produces, in production order.

        Stops when the source is exhausted, the channel is observed closed,
        or cancellation is requested.

        Args:
            source: Started audio source

        Raises:
            ProtocolError: If setup has not been sent or the stream has ended
        """
        if self.state not in (SessionState.SETUP_SENT, SessionState.STREAMING):
            raise ProtocolError(
                f"Audio must follow setup and precede end-of-stream (state: {self.state.value})"
            )

        async with contextlib.aclosing(source.chunks()) as chunks:
            async for chunk in chunks:
                if self._cancel.is_set():
                    logger.info("Audio stream cancelled", extra={"session_id": self.session_id})
                    break
                if not self.channel.is_open:
                    logger.warning(
                        "Channel closed, stopping audio stream",
                        extra={"session_id": self.session_id},
                    )
                    break
                if not await self.send_audio_chunk(chunk):
                    break

        logger.info(
            "Audio stream finished",
            extra={
                "session_id": self.session_id,
                "chunks_sent": self.metrics.chunks_sent,
                "send_errors": self.metrics.send_errors,
            },
        )

    async def signal_end(self) -> None:
        """Send the end-of-stream message. Valid exactly once, after setup.

        Raises:
            ProtocolError: If called out of order, twice, or the send fails
        """
        if self.state not in (SessionState.SETUP_SENT, SessionState.STREAMING):
            raise ProtocolError(
                f"End-of-stream must follow setup and be sent once (state: {self.state.value})"
            )

        try:
            await self.channel.send_text(AudioStreamEndMessage().to_json())
        except TransportError as e:
            logger.error(
                "Failed to send end-of-stream",
                extra={"session_id": self.session_id, "error": str(e)},
            )
            raise ProtocolError(f"Failed to send end-of-stream: {e}") from e

        self.transition_state(SessionState.STREAM_ENDED)
        self.metrics.record_stream_end()
        logger.info("End-of-stream sent", extra={"session_id": self.session_id})

    def start_receiving(self) -> asyncio.Task[None]:
        """Start the receive loop as a concurrent task (once).

        Raises:
            ProtocolError: If the session is not connected or already closed
        """
        if self._receive_task is not None:
            return self._receive_task
        if self.state in (SessionState.IDLE, SessionState.CLOSING, SessionState.CLOSED):
            raise ProtocolError(f"Cannot receive in state {self.state.value}")

        self._receive_task = asyncio.create_task(
            self.receive_loop(), name=f"receive-{self.session_id}"
        )
        return self._receive_task

    async def receive_loop(self, cancel: asyncio.Event | None = None) -> None:
        """Receive and dispatch inbound frames until the session ends.

        Terminates on a close frame, on cancellation, or on a transport error
        (logged). Never raises for these.

        Args:
            cancel: Cancellation signal (default: the session's own)
        """
        cancel = cancel or self._cancel
        channel = self.channel

        logger.debug("Receive loop started", extra={"session_id": self.session_id})
        try:
            while not cancel.is_set():
                try:
                    frame = await channel.receive()
                except TransportError as e:
                    if cancel.is_set() or self.state in (SessionState.CLOSING, SessionState.CLOSED):
                        logger.debug(
                            "Receive ended during shutdown",
                            extra={"session_id": self.session_id, "error": str(e)},
                        )
                    else:
                        logger.error(
                            "Error receiving messages",
                            extra={"session_id": self.session_id, "error": str(e)},
                        )
                        self._notify(self.observer.on_error, e)
                    break

                message = decode_frame(frame)

                if isinstance(message, CloseNotice):
                    if self.state in (SessionState.CLOSING, SessionState.CLOSED):
                        logger.debug(
                            "Close handshake completed",
                            extra={"session_id": self.session_id, "code": message.code},
                        )
                        break
                    self.close_notice = message
                    logger.info(
                        "Connection closed by server",
                        extra={
                            "session_id": self.session_id,
                            "code": message.code,
                            "reason": message.reason,
                        },
                    )
                    self._notify(self.observer.on_close, message)
                    break

                if isinstance(message, BinaryPayload):
                    self.metrics.record_binary_received()
                    logger.warning(
                        "Received unexpected binary message",
                        extra={"session_id": self.session_id, "size": len(message.data)},
                    )
                    self._notify(self.observer.on_binary, message)
                    continue

                self.metrics.record_text_received()
                self._notify(self.observer.on_text, message)
        finally:
            logger.debug("Receive loop stopped", extra={"session_id": self.session_id})

    def _notify(self, callback: Callable[[Any], None], message: Any) -> None:
        try:
            callback(message)
        except Exception as e:
            logger.error(
                "Observer callback failed",
                extra={"session_id": self.session_id, "error": str(e)},
                exc_info=True,
            )

    def cancel(self) -> None:
        """Request cancellation.

        Stops audio streaming before its next send and stops the receive
        loop once its current receive returns.
        """
        if not self._cancel.is_set():
            self._user_cancelled = True
            logger.info("Session cancellation requested", extra={"session_id": self.session_id})
        self._cancel.set()

    async def wait_cancelled(self) -> None:
        """Block until cancellation is requested."""
        await self._cancel.wait()

    async def wait_for_responses(self, grace_period_s: float) -> bool:
        """Give the receive loop a bounded window to finish on its own.

        After the window the loop is cancelled.

        Args:
            grace_period_s: Maximum wait in seconds

        Returns:
            True if the loop ended within the window (or was never started)
        """
        task = self._receive_task
        if task is None or task.done():
            return True

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace_period_s)
            return True
        except TimeoutError:
            logger.debug(
                "Grace period elapsed, stopping receive loop",
                extra={"session_id": self.session_id, "grace_period_s": grace_period_s},
            )
            self._cancel.set()
            await self._stop_receive_task()
            return False

    async def _stop_receive_task(self) -> None:
        task = self._receive_task
        if task is None or task.done() or task is asyncio.current_task():
            return

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def finish(self, grace_period_s: float = 3.0, reason: str = "done") -> None:
        """Signal end of stream, wait for trailing responses, and close.

        Args:
            grace_period_s: Wait for trailing responses in seconds
            reason: Close reason sent with the normal-closure frame
        """
        try:
            if self.state in (SessionState.SETUP_SENT, SessionState.STREAMING):
                await self.signal_end()
            await self.wait_for_responses(grace_period_s)
        finally:
            await self.close(reason=reason)

    async def close(self, reason: str = "done", code: int = CLOSE_NORMAL) -> None:
        """Close the session. Idempotent.

        Sends a close frame if the channel is still open, then releases it and
        stops the receive loop.

        Args:
            reason: Close reason string
            code: Close code (default: normal closure)
        """
        if self.state in (SessionState.CLOSING, SessionState.CLOSED):
            return

        self.transition_state(SessionState.CLOSING)
        self._cancel.set()

        try:
            if self._channel is not None and self._channel.is_open:
                await self._channel.close(code, reason)
        finally:
            await self._stop_receive_task()
            self.transition_state(SessionState.CLOSED)
            self.metrics.finalize()
            logger.info("Session closed", extra=self.get_metrics_summary())

    def get_metrics_summary(self) -> dict[str, str | float | int | None]:
        """Get session metrics summary for logging.

        Returns:
            Dictionary of metric names to values
        """
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "chunks_sent": self.metrics.chunks_sent,
            "bytes_sent": self.metrics.bytes_sent,
            "send_errors": self.metrics.send_errors,
            "text_frames": self.metrics.text_frames_received,
            "binary_frames": self.metrics.binary_frames_received,
            "response_latency_ms": self.metrics.response_latency_ms,
            "session_duration_s": (
                (self.metrics.session_end_ts or time.monotonic()) - self.metrics.session_start_ts
            ),
        }
