from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime config.

    - Loaded from environment variables
    - Also reads `.env` if present (via pydantic-settings + python-dotenv)
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="INKMATH_", extra="ignore")

    # Recognition timing / geometry knobs
    debounce_s: float = 1.5
    dedup_window_s: float = 2.0
    band_padding: float = 90.0
    # Deadline for local sympy evaluation of a recognized expression
    evaluation_timeout_s: float = 5.0

    # Stroke recognition service (HMAC-signed). Disabled unless both keys are set.
    stroke_app_key: str | None = None
    stroke_hmac_key: str | None = None
    stroke_url: str = "https://cloud.myscript.com/api/v4.0/iink/batch"
    stroke_timeout_s: float = 15.0
    stroke_dpi: int = 96

    # Vision recognition service (chat-completions endpoint).
    # The client calls `{vision_base_url}/chat/completions`.
    vision_base_url: str | None = "https://ai.hackclub.com"
    vision_api_key: str | None = None
    vision_model: str = "google/gemini-2.5-flash-preview-05-20"
    vision_timeout_s: float = 20.0
    vision_image_px: int = 512

    # Serving
    host: str = "127.0.0.1"
    port: int = 8000

    # Debugging
    debug_log_msgs: bool = False
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
