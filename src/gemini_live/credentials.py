"""API credential resolution.

Resolution order:
1. ``GEMINI_API_KEY`` environment variable (a ``.env`` file in the working
   directory is loaded first, without overriding the real environment)
2. Local YAML secret store, ``GoogleGemini.ApiKey``

The secret store defaults to ``~/.config/gemini-live/secrets.yaml`` and can be
moved with ``GEMINI_LIVE_SECRETS_FILE``.
"""

import logging
import os
from pathlib import Path

import yaml  # type: ignore[import-untyped]
from dotenv import find_dotenv, load_dotenv

from gemini_live.errors import CredentialError

logger = logging.getLogger(__name__)

API_KEY_ENV_VAR = "GEMINI_API_KEY"
SECRETS_FILE_ENV_VAR = "GEMINI_LIVE_SECRETS_FILE"
DEFAULT_SECRETS_FILE = Path.home() / ".config" / "gemini-live" / "secrets.yaml"


def default_secrets_path() -> Path:
    """Get the secret store path, honouring the override variable."""
    override = os.getenv(SECRETS_FILE_ENV_VAR)
    return Path(override).expanduser() if override else DEFAULT_SECRETS_FILE


def _read_secret_store(path: Path) -> str | None:
    """Read ``GoogleGemini.ApiKey`` from a YAML secret store.

    A missing file yields None. A malformed file is logged and yields None so
    the caller reports a single missing-credential error.
    """
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(
            "Failed to read secret store",
            extra={"path": str(path), "error": str(e)},
        )
        return None

    section = data.get("GoogleGemini") if isinstance(data, dict) else None
    if not isinstance(section, dict):
        return None

    value = section.get("ApiKey")
    return str(value) if value is not None else None


class CredentialResolver:
    """Resolves the Gemini API key from the environment or a local secret store."""

    def __init__(
        self,
        secrets_path: Path | None = None,
        load_env_file: bool = True,
    ) -> None:
        """Initialize resolver.

        Args:
            secrets_path: YAML secret store path (default: see module docstring)
            load_env_file: Load a ``.env`` file before reading the environment
        """
        self.secrets_path = secrets_path or default_secrets_path()
        self.load_env_file = load_env_file

    def resolve(self) -> str | None:
        """Resolve the credential.

        Returns:
            The API key, or None if no source provides a non-blank value
        """
        if self.load_env_file:
            load_dotenv(find_dotenv(usecwd=True), override=False)

        env_value = os.getenv(API_KEY_ENV_VAR, "").strip()
        if env_value:
            logger.debug("Credential resolved from environment")
            return env_value

        stored = (_read_secret_store(self.secrets_path) or "").strip()
        if stored:
            logger.debug(
                "Credential resolved from secret store",
                extra={"path": str(self.secrets_path)},
            )
            return stored

        return None

    def require(self) -> str:
        """Resolve the credential or fail.

        Returns:
            The API key

        Raises:
            CredentialError: If no credential is available
        """
        credential = self.resolve()
        if credential is None:
            raise CredentialError(
                f"No API key found. Set the {API_KEY_ENV_VAR} environment variable "
                f"or add GoogleGemini.ApiKey to {self.secrets_path}"
            )
        return credential
