# config.py
from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

load_dotenv(override=True)


class Settings(BaseSettings):
    """
    Defines the gateway's configuration settings.
    Every field can be overridden through the environment or a .env file.
    """
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    # --- Server ---
    host: str = "0.0.0.0"
    port: int = Field(default=8080, description="Port the HTTP server listens on (PORT).")
    log_level: str = "INFO"

    # --- Upstream chat service ---
    duckchat_status_url: str = "https://duckduckgo.com/duckchat/v1/status"
    duckchat_chat_url: str = "https://duckduckgo.com/duckchat/v1/chat"
    user_agent: str = Field(
        default="Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0",
        description="User-Agent presented to the upstream service."
    )

    # --- Timeouts (seconds) ---
    http_connect_timeout: float = 10.0
    http_read_timeout: float = 60.0
    turn_timeout_seconds: float = Field(
        default=120.0,
        description="Upper bound on one full turn, including stream consumption."
    )

    # --- Sessions ---
    # Conversations idle for longer than this are evicted. 0 disables eviction.
    session_idle_ttl_seconds: int = 86400
    session_sweep_interval_seconds: int = 300
    reject_concurrent_turns: bool = Field(
        default=False,
        description="Reject (409) instead of queueing a second in-flight turn for the same client."
    )

    # --- CORS ---
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])


try:
    settings = Settings()
except Exception as e:
    print(f"FATAL: Failed to load application settings. Error: {e}")
    print("Please check the environment variables and the .env file.")
    raise
