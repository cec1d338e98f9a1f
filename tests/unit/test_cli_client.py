"""Unit tests for the interactive CLI client.

Drives full sessions against a mock channel with scripted ENTER presses and
a fake audio source.
"""

import asyncio
import io
import json
from pathlib import Path

import pytest
from helpers.channel_test_utils import (
    FakeAudioSource,
    MockChannel,
    channel_factory_for,
    make_chunks,
)

from gemini_live.audio.capture import AudioSource
from gemini_live.client import cli_client
from gemini_live.client.cli_client import LiveCLIClient, build_parser
from gemini_live.client.console import ConsolePresenter
from gemini_live.config import ClientConfig, SessionConfig
from gemini_live.errors import CredentialError, SessionConnectionError


class ScriptedClient(LiveCLIClient):
    """CLI client whose ENTER presses arrive after scripted delays.

    A delay of None (or running out of delays) means ENTER is never pressed.
    """

    def __init__(self, *args: object, enter_delays: list[float | None], **kwargs: object) -> None:
        super().__init__(*args, **kwargs)  # type: ignore[arg-type]
        self.enter_delays = list(enter_delays)
        self.reads = 0
        self.prompts: list[str] = []

    def read_line(self, text: str = "") -> "asyncio.Future[str]":
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        self.reads += 1
        delay = self.enter_delays.pop(0) if self.enter_delays else None
        if delay is not None:
            loop.call_later(delay, lambda: future.done() or future.set_result(""))
        return future

    async def prompt(self, text: str = "") -> str:
        self.prompts.append(text)
        return await super().prompt(text)


class UnavailableSource(FakeAudioSource):
    """Audio source whose device cannot be opened."""

    def __init__(self) -> None:
        super().__init__([])

    def start(self) -> None:
        raise OSError("No default input device")


def make_client(
    channel: MockChannel,
    enter_delays: list[float | None],
    source: AudioSource | None = None,
) -> tuple[ScriptedClient, io.StringIO]:
    out = io.StringIO()
    config = ClientConfig(session=SessionConfig(grace_period_s=0.1))
    client = ScriptedClient(
        config,
        "test-key",
        presenter=ConsolePresenter(out=out),
        source_factory=lambda: source or FakeAudioSource(make_chunks(3), hold_open=True),
        channel_factory=channel_factory_for(channel),
        enter_delays=enter_delays,
    )
    return client, out


def sent_kinds(channel: MockChannel) -> list[str]:
    kinds = []
    for message in channel.sent_json():
        if "setup" in message:
            kinds.append("setup")
        elif message["realtimeInput"].get("audioStreamEnd"):
            kinds.append("end")
        else:
            kinds.append("audio")
    return kinds


class TestLiveCLIClientRun:
    """Test complete client sessions."""

    @pytest.mark.asyncio
    async def test_record_and_finish(self) -> None:
        """Test ENTER, record, ENTER, end-of-stream, grace period, close."""
        channel = MockChannel()
        channel.push_json({"setupComplete": {}})
        client, out = make_client(channel, [0.01, 0.05])

        exit_code = await asyncio.wait_for(client.run(), timeout=5.0)

        assert exit_code == 0
        assert sent_kinds(channel) == ["setup", "audio", "audio", "audio", "end"]
        assert channel.close_calls == [(1000, "done")]

        output = out.getvalue()
        assert "Setup complete." in output
        assert "Recording..." in output
        assert "Stopped recording." in output
        assert "Sent audioStreamEnd. Waiting a bit for final responses..." in output
        assert output.rstrip().endswith("Connection closed.")

    @pytest.mark.asyncio
    async def test_responses_printed(self) -> None:
        channel = MockChannel()
        client, out = make_client(channel, [0.01, 0.05])

        async def server() -> None:
            await asyncio.sleep(0.03)
            channel.push_json({"serverContent": {"modelTurn": {"parts": [{"text": "Hello!"}]}}})
            channel.push_json({"serverContent": {"turnComplete": True}})

        server_task = asyncio.create_task(server())
        assert await asyncio.wait_for(client.run(), timeout=5.0) == 0
        await server_task

        assert "Hello!\n" in out.getvalue()

    @pytest.mark.asyncio
    async def test_connection_failure(self) -> None:
        """Test a failed connection exits with status 1 before prompting."""

        async def refuse(url: str) -> MockChannel:
            raise SessionConnectionError("Failed to connect: connection refused")

        out = io.StringIO()
        client = ScriptedClient(
            ClientConfig(),
            "test-key",
            presenter=ConsolePresenter(out=out),
            channel_factory=refuse,
            enter_delays=[],
        )

        assert await client.run() == 1
        assert "ERROR: Failed to connect: connection refused" in out.getvalue()
        assert client.reads == 0

    @pytest.mark.asyncio
    async def test_blank_credential(self) -> None:
        channel = MockChannel()
        client, out = make_client(channel, [])
        client.credential = "  "

        assert await client.run() == 1
        assert channel.sent == []

    @pytest.mark.asyncio
    async def test_cancel_before_recording(self) -> None:
        """Test cancellation while waiting for ENTER still ends and closes once."""
        channel = MockChannel()
        client, _ = make_client(channel, [])
        asyncio.get_running_loop().call_later(0.05, lambda: client.manager.cancel())

        exit_code = await asyncio.wait_for(client.run(), timeout=5.0)

        assert exit_code == 0
        assert client.manager.cancelled
        assert client.manager.user_cancelled
        assert sent_kinds(channel) == ["setup", "end"]
        assert channel.close_calls == [(1000, "done")]

    @pytest.mark.asyncio
    async def test_server_close_ends_wait(self) -> None:
        """Test a server close while idle skips end-of-stream and the close frame."""
        channel = MockChannel()
        client, out = make_client(channel, [])
        asyncio.get_running_loop().call_later(
            0.02, lambda: channel.peer_close(1008, "policy violation")
        )

        exit_code = await asyncio.wait_for(client.run(), timeout=5.0)

        assert exit_code == 0
        assert sent_kinds(channel) == ["setup"]
        assert channel.close_calls == []
        assert "[Server closed] 1008 policy violation" in out.getvalue()

    @pytest.mark.asyncio
    async def test_audio_unavailable(self) -> None:
        """Test a missing input device is reported and the session still ends cleanly."""
        channel = MockChannel()
        client, out = make_client(channel, [0.01], source=UnavailableSource())

        exit_code = await asyncio.wait_for(client.run(), timeout=5.0)

        assert exit_code == 0
        assert "audio capture unavailable" in out.getvalue()
        assert sent_kinds(channel) == ["setup", "end"]


class TestRunClient:
    """Test the run-then-wait-for-exit wrapper."""

    @staticmethod
    def patch_client(
        monkeypatch: pytest.MonkeyPatch, enter_delays: list[float | None]
    ) -> list[ScriptedClient]:
        """Make run_client build scripted clients on a mock channel."""
        clients: list[ScriptedClient] = []

        def factory(
            config: ClientConfig, credential: str, presenter: ConsolePresenter | None = None
        ) -> ScriptedClient:
            client, _ = make_client(MockChannel(), enter_delays)
            clients.append(client)
            return client

        monkeypatch.setattr(cli_client, "LiveCLIClient", factory)
        return clients

    @pytest.mark.asyncio
    async def test_prompts_before_exit(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a session that ran to completion waits for ENTER before exiting."""
        clients = self.patch_client(monkeypatch, [0.01, 0.05, 0.01])

        exit_code = await asyncio.wait_for(
            cli_client.run_client(ClientConfig(), "test-key"), timeout=5.0
        )

        assert exit_code == 0
        assert clients[0].prompts == ["Press ENTER to exit."]

    @pytest.mark.asyncio
    async def test_user_cancel_skips_exit_prompt(self, monkeypatch: pytest.MonkeyPatch) -> None:
        clients = self.patch_client(monkeypatch, [])
        asyncio.get_running_loop().call_later(0.05, lambda: clients[0].manager.cancel())

        exit_code = await asyncio.wait_for(
            cli_client.run_client(ClientConfig(), "test-key"), timeout=5.0
        )

        assert exit_code == 0
        assert clients[0].prompts == []


class TestMain:
    """Test command-line entry point."""

    def test_build_parser(self) -> None:
        args = build_parser().parse_args(["--config", "client.yaml", "-v"])

        assert args.config == Path("client.yaml")
        assert args.verbose is True

    def test_missing_credential_exits(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        class NoCredential:
            def require(self) -> str:
                raise CredentialError("No API key found")

        monkeypatch.setattr("sys.argv", ["gemini-live"])
        monkeypatch.setattr(cli_client, "CredentialResolver", NoCredential)
        monkeypatch.setattr(cli_client, "setup_logging", lambda **kwargs: None)

        with pytest.raises(SystemExit) as exc_info:
            cli_client.main()

        assert exc_info.value.code == 1
        assert "No API key found" in capsys.readouterr().out

    def test_invalid_config_exits(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "client.yaml"
        path.write_text(json.dumps({"audio": {"sample_rate": 1}}))
        monkeypatch.setattr("sys.argv", ["gemini-live", "--config", str(path)])

        with pytest.raises(SystemExit) as exc_info:
            cli_client.main()

        assert exc_info.value.code == 1
        assert "invalid configuration" in capsys.readouterr().out

    def test_malformed_yaml_exits(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        path = tmp_path / "client.yaml"
        path.write_text("service: [unclosed\n")
        monkeypatch.setattr("sys.argv", ["gemini-live", "--config", str(path)])

        with pytest.raises(SystemExit) as exc_info:
            cli_client.main()

        assert exc_info.value.code == 1
        assert "invalid configuration" in capsys.readouterr().out

    def test_exit_code_from_session(self, monkeypatch: pytest.MonkeyPatch) -> None:
        async def fake_run_client(config: ClientConfig, credential: str, verbose: bool) -> int:
            assert credential == "abc"
            return 1

        class FixedCredential:
            def require(self) -> str:
                return "abc"

        monkeypatch.setattr("sys.argv", ["gemini-live"])
        monkeypatch.setattr(cli_client, "CredentialResolver", FixedCredential)
        monkeypatch.setattr(cli_client, "setup_logging", lambda **kwargs: None)
        monkeypatch.setattr(cli_client, "run_client", fake_run_client)

        with pytest.raises(SystemExit) as exc_info:
            cli_client.main()

        assert exc_info.value.code == 1
