"""Interactive CLI client for Gemini Live.

Connects to the Live API, sends the setup message, and streams microphone
audio between two ENTER presses. Model responses are printed as they arrive.
After recording stops, end-of-stream is signalled and trailing responses are
given a short grace period before the connection is closed.
"""

import argparse
import asyncio
import contextlib
import functools
import logging
import signal
import sys
import threading
from collections.abc import Callable
from pathlib import Path

from gemini_live.audio.capture import AudioSource, MicrophoneSource
from gemini_live.audio.packetizer import AudioFormat
from gemini_live.client.console import ConsolePresenter
from gemini_live.config import ClientConfig
from gemini_live.credentials import CredentialResolver
from gemini_live.errors import CredentialError, ProtocolError, SessionConnectionError
from gemini_live.session import ChannelFactory, SessionManager, SessionState
from gemini_live.transport.websocket_channel import WebSocketChannel
from gemini_live.utils.logging import session_context, setup_logging

logger = logging.getLogger(__name__)

SourceFactory = Callable[[], AudioSource]


class LiveCLIClient:
    """ENTER-gated microphone client for a single Live API session."""

    def __init__(
        self,
        config: ClientConfig,
        credential: str,
        presenter: ConsolePresenter | None = None,
        source_factory: SourceFactory | None = None,
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        """Initialize CLI client.

        Args:
            config: Client configuration
            credential: API key
            presenter: Console output (default: ConsolePresenter)
            source_factory: Creates the audio source for a recording
            channel_factory: Opens the duplex channel (default: WebSocketChannel.open)
        """
        self.config = config
        self.credential = credential
        self.presenter = presenter or ConsolePresenter()
        self.source_factory = source_factory or self._microphone
        self.channel_factory = channel_factory or functools.partial(
            WebSocketChannel.open, max_size=config.service.max_message_size
        )
        self.manager: SessionManager | None = None
        self._stdin_line: asyncio.Future[str] | None = None

    def _microphone(self) -> AudioSource:
        audio = self.config.audio
        return MicrophoneSource(
            audio_format=AudioFormat(
                sample_rate=audio.sample_rate,
                bit_depth=audio.bit_depth,
                channels=audio.channels,
            ),
            block_ms=audio.block_ms,
            queue_size=audio.queue_size,
            device=audio.device,
            level_observer=self.presenter.on_audio_level,
        )

    def read_line(self, text: str = "") -> "asyncio.Future[str]":
        """Start (or reuse) a pending stdin read on a daemon thread.

        A read abandoned by ``wait_for_enter`` stays pending and serves the
        next caller, so one ENTER press is never consumed twice.

        Returns:
            Future resolving to the line read ("" at end of input)
        """
        if self._stdin_line is not None and not self._stdin_line.done():
            if text:
                self.presenter.status(text)
            return self._stdin_line

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def _resolve(line: str) -> None:
            if not future.done():
                future.set_result(line)

        def _read() -> None:
            try:
                line = input(text)
            except EOFError:
                line = ""
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(_resolve, line)

        threading.Thread(target=_read, name="stdin-reader", daemon=True).start()
        self._stdin_line = future
        return future

    async def prompt(self, text: str = "") -> str:
        """Read a line from stdin without blocking the event loop."""
        return await asyncio.shield(self.read_line(text))

    async def wait_for_enter(self, manager: SessionManager, *others: asyncio.Task) -> bool:
        """Wait for ENTER, cancellation, or the receive loop ending.

        Args:
            manager: Active session
            *others: Extra tasks whose completion also ends the wait

        Returns:
            True if ENTER was pressed
        """
        enter = self.read_line()
        cancelled = asyncio.ensure_future(manager.wait_cancelled())
        waiters: set[asyncio.Future] = {enter, cancelled, *others}
        if manager.receive_task is not None:
            waiters.add(manager.receive_task)

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            cancelled.cancel()

        return enter.done()

    async def record(self, manager: SessionManager) -> None:
        """Stream microphone audio until ENTER is pressed or the session stops.

        Args:
            manager: Session with setup sent
        """
        source = self.source_factory()
        try:
            source.start()
        except (OSError, ImportError, RuntimeError) as e:
            logger.error("Audio capture unavailable", extra={"error": str(e)})
            self.presenter.status(f"ERROR: audio capture unavailable: {e}")
            return

        self.presenter.status("Recording... (press ENTER to stop)")
        stream_task = asyncio.create_task(manager.stream_audio(source))
        try:
            await self.wait_for_enter(manager, stream_task)
        finally:
            source.stop()
            # Sends whatever is still queued, then returns
            await stream_task

        self.presenter.status("Stopped recording.")

    async def run(self) -> int:
        """Run one session.

        Returns:
            Process exit code
        """
        manager = SessionManager(observer=self.presenter, channel_factory=self.channel_factory)
        self.manager = manager

        with session_context(manager.session_id):
            return await self._run_session(manager)

    async def _run_session(self, manager: SessionManager) -> int:
        self.presenter.status("Connecting to Gemini Live...")
        try:
            await manager.connect(self.config.service.url, self.credential)
        except (SessionConnectionError, CredentialError) as e:
            logger.error("Connection failed", extra={"error": str(e)})
            self.presenter.status(f"ERROR: {e}")
            await manager.close()
            return 1
        self.presenter.status("Connected.\n")

        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, manager.cancel)
                installed.append(sig)

        exit_code = 0
        try:
            await manager.send_setup(self.config.setup)
            self.presenter.status("Sent setup message.")
            manager.start_receiving()

            self.presenter.status("Press ENTER to start recording, ENTER again to stop.\n")
            if await self.wait_for_enter(manager):
                await self.record(manager)

            if manager.channel.is_open and manager.state in (
                SessionState.SETUP_SENT,
                SessionState.STREAMING,
            ):
                await manager.signal_end()
                self.presenter.status(
                    "\nSent audioStreamEnd. Waiting a bit for final responses..."
                )
                await manager.wait_for_responses(self.config.session.grace_period_s)

        except ProtocolError as e:
            logger.error("Session failed", extra={"error": str(e)})
            self.presenter.status(f"ERROR: {e}")
            exit_code = 1
        finally:
            for sig in installed:
                loop.remove_signal_handler(sig)
            await manager.close(reason=self.config.session.close_reason)

        self.presenter.status("Connection closed.")
        return exit_code


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        description="Stream microphone audio to Gemini Live and print its replies"
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to client config YAML file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging and raw JSON output",
    )
    return parser


async def run_client(config: ClientConfig, credential: str, verbose: bool = False) -> int:
    """Run the CLI client for one session and wait for ENTER before returning.

    Args:
        config: Client configuration
        credential: API key
        verbose: Echo raw inbound JSON

    Returns:
        Process exit code
    """
    client = LiveCLIClient(config, credential, presenter=ConsolePresenter(verbose=verbose))
    exit_code = await client.run()
    if client.manager is None or not client.manager.user_cancelled:
        await client.prompt("Press ENTER to exit.")
    return exit_code


def main() -> None:
    """Main entry point for the CLI client."""
    args = build_parser().parse_args()

    try:
        config = ClientConfig.from_yaml_with_defaults(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: invalid configuration: {e}")
        sys.exit(1)

    setup_logging(
        level="DEBUG" if args.verbose else config.log_level,
        json_format=config.json_logs,
    )

    try:
        credential = CredentialResolver().require()
    except CredentialError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    try:
        exit_code = asyncio.run(run_client(config, credential, verbose=args.verbose))
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
