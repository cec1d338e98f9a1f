"""Unit tests for the WebSocket duplex channel.

Tests frame mapping, close handling, send failures, and connection errors
against a mocked websockets client connection.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK, InvalidURI
from websockets.frames import Close
from websockets.protocol import State

from gemini_live.errors import ChannelClosedError, SessionConnectionError, TransportError
from gemini_live.transport.base import FrameKind
from gemini_live.transport.websocket_channel import WebSocketChannel, redact_url


@pytest.fixture
def mock_websocket() -> MagicMock:
    """Create mock websocket client connection."""
    ws = MagicMock()
    ws.state = State.OPEN
    ws.send = AsyncMock()
    ws.recv = AsyncMock()
    ws.close = AsyncMock()
    return ws


class TestRedactUrl:
    """Test API key masking for logs."""

    def test_masks_key(self) -> None:
        url = "wss://host.test/ws?key=super-secret&alt=json"

        redacted = redact_url(url)

        assert "super-secret" not in redacted
        assert "key=***" in redacted
        assert "alt=json" in redacted

    def test_url_without_query_unchanged(self) -> None:
        assert redact_url("wss://host.test/ws") == "wss://host.test/ws"


class TestWebSocketChannelSend:
    """Test outbound frames."""

    @pytest.mark.asyncio
    async def test_send_text(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket, channel_id="test-ws")

        await channel.send_text('{"setup": {}}')

        mock_websocket.send.assert_awaited_once_with('{"setup": {}}')
        assert channel.channel_id == "test-ws"

    @pytest.mark.asyncio
    async def test_send_binary(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket)

        await channel.send_binary(b"\x00\x01")

        mock_websocket.send.assert_awaited_once_with(b"\x00\x01")

    @pytest.mark.asyncio
    async def test_send_on_closed_socket(self, mock_websocket: MagicMock) -> None:
        """Test sending after the socket closed raises without sending."""
        mock_websocket.state = State.CLOSED
        channel = WebSocketChannel(mock_websocket)

        assert not channel.is_open
        with pytest.raises(ChannelClosedError):
            await channel.send_text("{}")

        mock_websocket.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_connection_closed(self, mock_websocket: MagicMock) -> None:
        """Test a connection closed mid-send maps to ChannelClosedError."""
        mock_websocket.send.side_effect = ConnectionClosedError(None, None)
        channel = WebSocketChannel(mock_websocket)

        with pytest.raises(ChannelClosedError):
            await channel.send_text("{}")

    @pytest.mark.asyncio
    async def test_send_other_failure(self, mock_websocket: MagicMock) -> None:
        """Test other send failures map to TransportError."""
        mock_websocket.send.side_effect = RuntimeError("buffer overflow")
        channel = WebSocketChannel(mock_websocket)

        with pytest.raises(TransportError, match="buffer overflow") as exc_info:
            await channel.send_text("{}")

        assert not isinstance(exc_info.value, ChannelClosedError)


class TestWebSocketChannelReceive:
    """Test inbound frame mapping."""

    @pytest.mark.asyncio
    async def test_receive_text(self, mock_websocket: MagicMock) -> None:
        mock_websocket.recv.return_value = '{"setupComplete": {}}'
        channel = WebSocketChannel(mock_websocket)

        frame = await channel.receive()

        assert frame.kind == FrameKind.TEXT
        assert frame.data == '{"setupComplete": {}}'

    @pytest.mark.asyncio
    async def test_receive_binary(self, mock_websocket: MagicMock) -> None:
        mock_websocket.recv.return_value = b"\x01\x02"
        channel = WebSocketChannel(mock_websocket)

        frame = await channel.receive()

        assert frame.kind == FrameKind.BINARY
        assert frame.data == b"\x01\x02"

    @pytest.mark.asyncio
    async def test_receive_close_frame(self, mock_websocket: MagicMock) -> None:
        """Test a peer close handshake becomes a CLOSE frame with code and reason."""
        mock_websocket.recv.side_effect = ConnectionClosedOK(
            Close(1000, "session over"), Close(1000, "session over"), rcvd_then_sent=True
        )
        channel = WebSocketChannel(mock_websocket)

        frame = await channel.receive()

        assert frame.kind == FrameKind.CLOSE
        assert frame.close_code == 1000
        assert frame.close_reason == "session over"

    @pytest.mark.asyncio
    async def test_receive_error_close_frame(self, mock_websocket: MagicMock) -> None:
        mock_websocket.recv.side_effect = ConnectionClosedError(
            Close(1007, "Request contains an invalid argument."), None
        )
        channel = WebSocketChannel(mock_websocket)

        frame = await channel.receive()

        assert frame.kind == FrameKind.CLOSE
        assert frame.close_code == 1007

    @pytest.mark.asyncio
    async def test_receive_connection_lost(self, mock_websocket: MagicMock) -> None:
        """Test a connection dropped without a close frame is a transport error."""
        mock_websocket.recv.side_effect = ConnectionClosedError(None, None)
        channel = WebSocketChannel(mock_websocket)

        with pytest.raises(TransportError, match="connection lost"):
            await channel.receive()

    @pytest.mark.asyncio
    async def test_receive_unexpected_error(self, mock_websocket: MagicMock) -> None:
        mock_websocket.recv.side_effect = RuntimeError("decoder failed")
        channel = WebSocketChannel(mock_websocket)

        with pytest.raises(TransportError, match="decoder failed"):
            await channel.receive()


class TestWebSocketChannelClose:
    """Test channel close."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket)

        await channel.close(1000, "done")
        await channel.close(1000, "done")

        mock_websocket.close.assert_awaited_once_with(code=1000, reason="done")
        assert not channel.is_open

    @pytest.mark.asyncio
    async def test_close_error_is_logged(
        self, mock_websocket: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        mock_websocket.close.side_effect = OSError("broken pipe")
        channel = WebSocketChannel(mock_websocket)

        await channel.close()

        assert "Error during channel close" in caplog.text

    @pytest.mark.asyncio
    async def test_send_after_close(self, mock_websocket: MagicMock) -> None:
        channel = WebSocketChannel(mock_websocket)
        await channel.close()

        with pytest.raises(ChannelClosedError):
            await channel.send_text("{}")


class TestWebSocketChannelOpen:
    """Test opening connections."""

    @pytest.mark.asyncio
    async def test_open_success(self, mock_websocket: MagicMock) -> None:
        with patch(
            "gemini_live.transport.websocket_channel.connect",
            new=AsyncMock(return_value=mock_websocket),
        ) as mock_connect:
            channel = await WebSocketChannel.open("wss://host.test/ws?key=k", max_size=2**20)

        assert channel.is_open
        mock_connect.assert_awaited_once_with(
            "wss://host.test/ws?key=k", max_size=2**20, open_timeout=10.0
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            OSError("connection refused"),
            TimeoutError("timed out during opening handshake"),
            InvalidURI("wss://", "bad uri"),
        ],
    )
    async def test_open_failure(self, error: Exception) -> None:
        """Test connection failures surface as SessionConnectionError without the key."""
        with patch(
            "gemini_live.transport.websocket_channel.connect",
            new=AsyncMock(side_effect=error),
        ):
            with pytest.raises(SessionConnectionError) as exc_info:
                await WebSocketChannel.open("wss://host.test/ws?key=super-secret")

        assert "super-secret" not in str(exc_info.value)
        assert isinstance(exc_info.value, ConnectionError)
