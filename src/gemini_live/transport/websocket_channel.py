"""WebSocket duplex channel implementation.

Provides the client-side WebSocket connection to the Live API, mapping
websockets messages and close events onto channel frames.
"""

import asyncio
import logging
import uuid
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import websockets
from websockets.asyncio.client import ClientConnection, connect
from websockets.protocol import State

from gemini_live.errors import ChannelClosedError, SessionConnectionError, TransportError
from gemini_live.transport.base import CLOSE_NORMAL, DuplexChannel, Frame

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGE_SIZE = 16 * 2**20
DEFAULT_OPEN_TIMEOUT_S = 10.0


def redact_url(url: str) -> str:
    """Mask the API key query parameter so URLs are safe to log."""
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [
        (name, "***" if name.lower() == "key" else value)
        for name, value in parse_qsl(parts.query, keep_blank_values=True)
    ]
    return urlunsplit(parts._replace(query=urlencode(query, safe="*")))


class WebSocketChannel(DuplexChannel):
    """WebSocket-based duplex channel.

    Sends are serialized with a lock; websockets allows a single concurrent
    receive, which the session's receive loop owns.
    """

    def __init__(self, websocket: ClientConnection, channel_id: str | None = None) -> None:
        """Initialize WebSocket channel.

        Args:
            websocket: Open WebSocket client connection
            channel_id: Identifier for logging (generated if omitted)
        """
        self._websocket = websocket
        self._channel_id = channel_id or f"ws-{uuid.uuid4().hex[:12]}"
        self._send_lock = asyncio.Lock()
        self._closed = False

        logger.debug("WebSocket channel initialized", extra={"channel_id": self._channel_id})

    @classmethod
    async def open(
        cls,
        url: str,
        max_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        open_timeout: float = DEFAULT_OPEN_TIMEOUT_S,
    ) -> "WebSocketChannel":
        """Open a WebSocket connection.

        Args:
            url: WebSocket URL (may carry the API key as a query parameter)
            max_size: Maximum inbound message size in bytes
            open_timeout: Opening handshake timeout in seconds

        Returns:
            Connected channel

        Raises:
            SessionConnectionError: If the connection cannot be opened
        """
        safe_url = redact_url(url)
        logger.info("Connecting", extra={"url": safe_url})

        try:
            websocket = await connect(url, max_size=max_size, open_timeout=open_timeout)
        except (OSError, TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.error("Connection failed", extra={"url": safe_url, "error": str(e)})
            raise SessionConnectionError(f"Failed to connect to {safe_url}: {e}") from e

        return cls(websocket)

    @property
    def channel_id(self) -> str:
        """Identifier used in log records."""
        return self._channel_id

    @property
    def is_open(self) -> bool:
        """Check if the channel is open for sending."""
        return not self._closed and self._websocket.state == State.OPEN

    async def send_text(self, data: str) -> None:
        """Send one text frame."""
        await self._send(data)

    async def send_binary(self, data: bytes) -> None:
        """Send one binary frame."""
        await self._send(data)

    async def _send(self, data: str | bytes) -> None:
        if not self.is_open:
            raise ChannelClosedError("WebSocket channel is closed")

        async with self._send_lock:
            try:
                await self._websocket.send(data)
            except websockets.exceptions.ConnectionClosed as e:
                raise ChannelClosedError(f"WebSocket connection closed: {e}") from e
            except Exception as e:
                raise TransportError(f"WebSocket send failed: {e}") from e

    async def receive(self) -> Frame:
        """Receive the next frame.

        A close handshake from the peer yields a CLOSE frame. A connection lost
        without a close frame is a transport error.

        Raises:
            TransportError: If the receive fails
        """
        try:
            message = await self._websocket.recv()
        except websockets.exceptions.ConnectionClosed as e:
            if e.rcvd is None:
                raise TransportError(f"WebSocket connection lost: {e}") from e
            return Frame.close(e.rcvd.code, e.rcvd.reason)
        except Exception as e:
            raise TransportError(f"WebSocket receive failed: {e}") from e

        if isinstance(message, bytes):
            return Frame.binary(message)
        return Frame.text(message)

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Close the channel with a close frame. Idempotent."""
        if self._closed:
            return

        self._closed = True
        logger.info(
            "Closing WebSocket channel",
            extra={"channel_id": self._channel_id, "code": code, "reason": reason},
        )

        try:
            await self._websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.warning(
                "Error during channel close",
                extra={"channel_id": self._channel_id, "error": str(e)},
            )
