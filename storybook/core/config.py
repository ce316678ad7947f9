import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from storybook.core.errors import ConfigurationError

# Load variables from .env file
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Credentials that must be present before the server accepts traffic.
REQUIRED_CREDENTIALS = (
    "GROQ_API_KEY",
    "GEMINI_API_KEY",
    "ELEVENLABS_API_KEY",
    "STABLE_DIFFUSION_API_KEY",
)


@dataclass(frozen=True)
class Settings:
    PROJECT_NAME: str = "AI Storybook Creator"
    VERSION: str = "1.0.0"

    # AI Keys
    GROQ_API_KEY: str = ""
    GEMINI_API_KEY: str = ""
    ELEVENLABS_API_KEY: str = ""
    STABLE_DIFFUSION_API_KEY: str = ""

    # Models
    OUTLINE_MODEL: str = "llama-3.3-70b-versatile"
    ILLUSTRATION_MODEL: str = "gemini-2.5-flash-image-preview"
    PORTRAIT_MODEL: str = "nano-banana-t2i"

    # Gallery document store; sqlite locally, Postgres in production
    DATABASE_URL: str = "sqlite:///./storybook.db"
    GALLERY_LIMIT: int = 20

    # Object storage (served under /media)
    MEDIA_DIR: Path = BASE_DIR / "media"
    PUBLIC_BASE_URL: str = ""

    LOG_DIR: Path = BASE_DIR / "logs"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the environment, failing fast on missing credentials.

        Raises:
            ConfigurationError: naming the first credential that is not set,
                or GALLERY_LIMIT when it is not a positive integer.
        """
        env = os.environ if environ is None else environ

        for name in REQUIRED_CREDENTIALS:
            if not env.get(name, "").strip():
                raise ConfigurationError(f"FATAL ERROR: {name} environment variable not set.")

        defaults = cls()
        raw_limit = env.get("GALLERY_LIMIT", str(defaults.GALLERY_LIMIT))
        try:
            gallery_limit = int(raw_limit)
        except ValueError:
            gallery_limit = 0
        if gallery_limit < 1:
            raise ConfigurationError(f"FATAL ERROR: GALLERY_LIMIT must be a positive whole number, got {raw_limit!r}.")

        return cls(
            GROQ_API_KEY=env["GROQ_API_KEY"].strip(),
            GEMINI_API_KEY=env["GEMINI_API_KEY"].strip(),
            ELEVENLABS_API_KEY=env["ELEVENLABS_API_KEY"].strip(),
            STABLE_DIFFUSION_API_KEY=env["STABLE_DIFFUSION_API_KEY"].strip(),
            OUTLINE_MODEL=env.get("OUTLINE_MODEL", defaults.OUTLINE_MODEL),
            ILLUSTRATION_MODEL=env.get("ILLUSTRATION_MODEL", defaults.ILLUSTRATION_MODEL),
            PORTRAIT_MODEL=env.get("PORTRAIT_MODEL", defaults.PORTRAIT_MODEL),
            DATABASE_URL=env.get("DATABASE_URL", defaults.DATABASE_URL),
            GALLERY_LIMIT=gallery_limit,
            MEDIA_DIR=Path(env.get("MEDIA_DIR", str(defaults.MEDIA_DIR))),
            PUBLIC_BASE_URL=env.get("PUBLIC_BASE_URL", defaults.PUBLIC_BASE_URL).rstrip("/"),
            LOG_DIR=Path(env.get("LOG_DIR", str(defaults.LOG_DIR))),
        )
