"""Runtime configuration for AgriAid, read from the environment (and .env)."""

import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_VOICE_ID = "JBFqnCBsd6RMkjVDRZzb"
DEFAULT_LOCATION_PROVIDER_URL = "https://ipinfo.io/json"


@dataclass(frozen=True)
class Settings:
    gemini_api_key: str
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = DEFAULT_VOICE_ID
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    text_model: str = "gemini-2.5-flash"
    image_edit_model: str = "gemini-2.5-flash-image-preview"
    image_model: str = "imagen-4.0-generate-001"
    gemini_timeout: float = 120.0
    elevenlabs_timeout: float = 30.0
    location_timeout: float = 10.0
    location_provider_url: str = DEFAULT_LOCATION_PROVIDER_URL
    ipinfo_token: str = ""
    log_level: str = "INFO"


def _float_env(name, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def load_settings(env_file=None) -> Settings:
    """
    Build Settings from the process environment.

    A missing Gemini key is fatal: nothing in the wizard works without it.
    """
    load_dotenv(env_file)

    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
    if not api_key:
        raise ConfigError("GEMINI_API_KEY environment variable is not set")

    settings = Settings(
        gemini_api_key=api_key,
        elevenlabs_api_key=os.getenv("ELEVENLABS_API_KEY", ""),
        elevenlabs_voice_id=os.getenv("ELEVENLABS_VOICE_ID", DEFAULT_VOICE_ID),
        elevenlabs_model_id=os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2"),
        text_model=os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash"),
        image_edit_model=os.getenv("GEMINI_IMAGE_EDIT_MODEL", "gemini-2.5-flash-image-preview"),
        image_model=os.getenv("IMAGEN_MODEL", "imagen-4.0-generate-001"),
        gemini_timeout=_float_env("GEMINI_TIMEOUT_SECONDS", 120.0),
        elevenlabs_timeout=_float_env("ELEVENLABS_TIMEOUT_SECONDS", 30.0),
        location_timeout=_float_env("LOCATION_TIMEOUT_SECONDS", 10.0),
        location_provider_url=os.getenv("LOCATION_PROVIDER_URL", DEFAULT_LOCATION_PROVIDER_URL),
        ipinfo_token=os.getenv("IPINFO_TOKEN", ""),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
    if not settings.elevenlabs_api_key:
        logger.warning("⚠️ ELEVENLABS_API_KEY not set, read-aloud will use the local voice only")
    return settings


def configure_logging(level="INFO"):
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
