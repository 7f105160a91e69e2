"""Client settings loaded from the environment."""

import os
from typing import Optional

from pydantic import BaseModel

DEFAULT_API_URL = "https://studymate-backend-beta.vercel.app"
DEFAULT_DIAGRAM_URL = "https://mermaid.ink"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime configuration for the client."""

    api_url: str = DEFAULT_API_URL
    timeout: float = 60.0
    max_attachments: int = 10
    max_attachment_bytes: int = 25 * 1024 * 1024
    diagram_url: str = DEFAULT_DIAGRAM_URL
    state_file: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from STUDYMATE_* environment variables."""
        return cls(
            api_url=os.getenv("STUDYMATE_API_URL", DEFAULT_API_URL).rstrip("/"),
            timeout=float(os.getenv("STUDYMATE_TIMEOUT", "60")),
            max_attachments=int(os.getenv("STUDYMATE_MAX_ATTACHMENTS", "10")),
            max_attachment_bytes=int(
                os.getenv("STUDYMATE_MAX_ATTACHMENT_BYTES", str(25 * 1024 * 1024))
            ),
            diagram_url=os.getenv("STUDYMATE_DIAGRAM_URL", DEFAULT_DIAGRAM_URL).rstrip("/"),
            state_file=os.getenv("STUDYMATE_STATE_FILE") or None,
            log_level=os.getenv("STUDYMATE_LOG_LEVEL", "INFO"),
            log_json=_env_bool("STUDYMATE_LOG_JSON", False),
        )
