"""Console presentation of session status and model responses.

Extracts response text from the Live API's inbound JSON and prints it
incrementally. Anything that cannot be interpreted is printed raw.
"""

import json
import logging
import sys
from typing import Any, TextIO

from gemini_live.transport.protocol import BinaryPayload, CloseNotice, TextPayload

logger = logging.getLogger(__name__)


def extract_response_text(data: dict[str, Any]) -> list[str]:
    """Collect model text parts from a ``serverContent`` message.

    Args:
        data: Parsed inbound message

    Returns:
        Text fragments in message order (empty if none)
    """
    server_content = data.get("serverContent")
    if not isinstance(server_content, dict):
        return []

    texts: list[str] = []
    model_turn = server_content.get("modelTurn")
    if isinstance(model_turn, dict):
        for part in model_turn.get("parts") or []:
            if isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])

    output_transcription = server_content.get("outputTranscription")
    if isinstance(output_transcription, dict) and isinstance(
        output_transcription.get("text"), str
    ):
        texts.append(output_transcription["text"])

    return texts


def extract_input_transcription(data: dict[str, Any]) -> str | None:
    """Get the transcription of the user's speech, if the message carries one."""
    server_content = data.get("serverContent")
    if not isinstance(server_content, dict):
        return None
    transcription = server_content.get("inputTranscription")
    if isinstance(transcription, dict) and isinstance(transcription.get("text"), str):
        return transcription["text"]
    return None


def is_turn_complete(data: dict[str, Any]) -> bool:
    """Check whether the message marks the end of a model turn."""
    server_content = data.get("serverContent")
    return isinstance(server_content, dict) and bool(server_content.get("turnComplete"))


class ConsolePresenter:
    """Prints session status and inbound messages to the console."""

    def __init__(self, verbose: bool = False, out: TextIO | None = None) -> None:
        """Initialize presenter.

        Args:
            verbose: Also echo the raw JSON of every inbound message
            out: Output stream (default: stdout)
        """
        self.verbose = verbose
        self.out = out or sys.stdout
        self.peak_level = 0.0
        self._mid_line = False

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    def status(self, message: str) -> None:
        """Print a status line."""
        if self._mid_line:
            self._write("\n")
            self._mid_line = False
        self._write(message + "\n")

    def on_text(self, payload: TextPayload) -> None:
        data = payload.parse_json()

        if data is None or self.verbose:
            self.status("")
            self.status("JSON from Gemini:")
            self.status(payload.content)
            self.status("")
            if data is None:
                return

        if "setupComplete" in data:
            self.status("Setup complete.")

        transcription = extract_input_transcription(data)
        if transcription:
            self.status(f"You: {transcription}")

        for text in extract_response_text(data):
            self._write(text)
            self._mid_line = not text.endswith("\n")

        if is_turn_complete(data):
            self.status("")

        if "goAway" in data:
            time_left = (data.get("goAway") or {}).get("timeLeft", "unknown")
            self.status(f"[Server going away] time left: {time_left}")

        if "error" in data:
            self.status(f"[Server error] {json.dumps(data['error'])}")

    def on_binary(self, payload: BinaryPayload) -> None:
        self.status("[Received unexpected binary data]")

    def on_close(self, notice: CloseNotice) -> None:
        self.status(f"[Server closed] {notice.code} {notice.reason}".rstrip())

    def on_error(self, error: Exception) -> None:
        self.status(f"[Receive error] {error}")

    def on_audio_level(self, level: float) -> None:
        """Track microphone level; called once per captured block."""
        self.peak_level = max(self.peak_level, level)
        logger.debug("Microphone level", extra={"level": round(level, 4)})
