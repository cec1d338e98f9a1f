"""Configuration schema for the live client.

Defines Pydantic models for loading and validating client configuration
from YAML files and environment variables.
"""

import os
from pathlib import Path
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

DEFAULT_SERVICE_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
DEFAULT_MODEL = "models/gemini-2.0-flash-exp"
DEFAULT_SYSTEM_INSTRUCTION = (
    "You are a helpful assistant. Listen to the user speaking and reply in text."
)


class ServiceConfig(BaseModel):
    """Remote service endpoint configuration."""

    url: str = Field(default=DEFAULT_SERVICE_URL, description="BidiGenerateContent endpoint")
    max_message_size: int = Field(
        default=16 * 2**20,
        ge=2**16,
        description="Maximum inbound message size in bytes",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate that the endpoint is a WebSocket URL with a host."""
        parts = urlsplit(v)
        if parts.scheme not in ("ws", "wss") or not parts.netloc:
            raise ValueError(f"Service url must be a ws:// or wss:// URL, got '{v}'")
        return v


class SetupConfig(BaseModel):
    """Session setup payload configuration.

    Sent once as the first message of every session.
    """

    model: str = Field(default=DEFAULT_MODEL, min_length=1, description="Model identifier")
    response_modalities: list[str] = Field(
        default_factory=lambda: ["TEXT"],
        min_length=1,
        description="Desired response modalities",
    )
    system_instruction: str = Field(
        default=DEFAULT_SYSTEM_INSTRUCTION,
        description="System instruction text",
    )

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str) -> str:
        """Prefix bare model names with 'models/'."""
        v = v.strip()
        if not v.startswith("models/"):
            v = f"models/{v}"
        return v

    @field_validator("response_modalities")
    @classmethod
    def validate_response_modalities(cls, v: list[str]) -> list[str]:
        """Validate that modalities are supported by the service."""
        valid_modalities = ["TEXT", "AUDIO"]
        normalized = [m.upper() for m in v]
        for modality in normalized:
            if modality not in valid_modalities:
                raise ValueError(
                    f"Response modality must be one of {valid_modalities}, got '{modality}'"
                )
        return normalized


class AudioConfig(BaseModel):
    """Microphone capture configuration."""

    sample_rate: int = Field(default=16000, description="Capture sample rate in Hz")
    bit_depth: int = Field(default=16, description="Bits per sample")
    channels: int = Field(default=1, ge=1, le=2, description="Channel count")
    block_ms: int = Field(
        default=100,
        ge=10,
        le=1000,
        description="Capture block duration in milliseconds",
    )
    queue_size: int = Field(
        default=50,
        ge=1,
        description="Maximum captured blocks buffered before dropping",
    )
    device: str | int | None = Field(default=None, description="Input device name or index")

    @field_validator("sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: int) -> int:
        """Validate that sample rate is a common PCM capture rate."""
        valid_rates = [8000, 16000, 24000, 32000, 44100, 48000]
        if v not in valid_rates:
            raise ValueError(f"Audio sample_rate must be one of {valid_rates}, got {v}")
        return v

    @field_validator("bit_depth")
    @classmethod
    def validate_bit_depth(cls, v: int) -> int:
        """Only 16-bit linear PCM is accepted by the service."""
        if v != 16:
            raise ValueError(f"Audio bit_depth must be 16, got {v}")
        return v


class SessionConfig(BaseModel):
    """Session teardown configuration."""

    grace_period_s: float = Field(
        default=3.0,
        ge=0.0,
        le=60.0,
        description="Wait for trailing responses after end-of-stream",
    )
    close_reason: str = Field(
        default="done",
        max_length=123,
        description="Reason string sent with the normal-closure frame",
    )


class ClientConfig(BaseModel):
    """Root client configuration."""

    service: ServiceConfig = Field(default_factory=ServiceConfig)
    setup: SetupConfig = Field(default_factory=SetupConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    json_logs: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "ClientConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "ClientConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration or defaults
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(apply_env_overrides({}))


def apply_env_overrides(data: dict) -> dict:
    """Apply environment variable overrides to raw configuration data.

    Args:
        data: Raw configuration mapping (modified in place)

    Returns:
        The same mapping with overrides applied
    """
    if url := os.getenv("GEMINI_LIVE_URL"):
        data["service"] = {**(data.get("service") or {}), "url": url}

    if model := os.getenv("GEMINI_MODEL"):
        data["setup"] = {**(data.get("setup") or {}), "model": model}

    if log_level := os.getenv("GEMINI_LIVE_LOG_LEVEL"):
        data["log_level"] = log_level

    if json_logs := os.getenv("GEMINI_LIVE_JSON_LOGS"):
        data["json_logs"] = json_logs.lower() in ("true", "1", "yes")

    return data
