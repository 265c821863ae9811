"""Settings loaded from environment variables."""

import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from .models import AuthCredentials

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Runtime configuration."""

    supabase_url: str = Field(description="Project URL of the hosted backend")
    supabase_anon_key: str = Field(description="Public (anon) API key")
    session_file: str = Field(default_factory=lambda: str(Path.home() / ".clickcarry_session.json"))
    email: Optional[str] = Field(None, description="Email used for auto-login")
    password: Optional[str] = Field(None, description="Password used for auto-login")
    timeout: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the environment.

        Environment variables:
        - CLICKCARRY_SUPABASE_URL (required)
        - CLICKCARRY_SUPABASE_ANON_KEY (required)
        - CLICKCARRY_SESSION_FILE
        - CLICKCARRY_EMAIL / CLICKCARRY_PASSWORD
        - CLICKCARRY_TIMEOUT
        - CLICKCARRY_LOG_LEVEL

        Raises:
            ValueError: If the backend URL or key is missing
        """
        url = os.environ.get("CLICKCARRY_SUPABASE_URL")
        key = os.environ.get("CLICKCARRY_SUPABASE_ANON_KEY")
        if not url or not key:
            raise ValueError("CLICKCARRY_SUPABASE_URL and CLICKCARRY_SUPABASE_ANON_KEY must be set")

        values: dict = {"supabase_url": url, "supabase_anon_key": key}
        optional = {
            "session_file": "CLICKCARRY_SESSION_FILE",
            "email": "CLICKCARRY_EMAIL",
            "password": "CLICKCARRY_PASSWORD",
            "timeout": "CLICKCARRY_TIMEOUT",
            "log_level": "CLICKCARRY_LOG_LEVEL",
        }
        for field, env_name in optional.items():
            value = os.environ.get(env_name)
            if value:
                values[field] = value
        return cls(**values)

    def credentials(self) -> Optional[AuthCredentials]:
        """Auto-login credentials, if both are configured."""
        if not (self.email and self.password):
            return None
        try:
            return AuthCredentials(email=self.email, password=self.password)
        except PydanticValidationError as e:
            logger.warning(f"Ignoring configured credentials: {e}")
            return None


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))
