"""
Configuration Settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""

    # App info
    app_name: str = "ChatSync"
    app_version: str = "1.0.0"
    debug: bool = True

    # Persistence gateway
    persistence_backend: str = "local"  # "local" or "http"
    local_storage_path: str = "./data"
    chat_api_base_url: str = "http://localhost:5000"
    chat_api_token: Optional[str] = None
    chat_api_timeout: float = 30.0

    # Completion gateway
    llm_provider: str = "openai"  # "openai" or "gemini_proxy"
    llm_api_key: Optional[str] = None
    llm_model: Optional[str] = None  # uses provider default if not set
    llm_base_url: Optional[str] = None  # uses provider default if not set
    llm_system_prompt: Optional[str] = None
    completion_fallback_message: str = (
        "Completion service not configured. Set LLM_API_KEY in .env to get real responses."
    )

    # Legacy local cache (snapshot of the chat list for offline display)
    legacy_cache_enabled: bool = True
    legacy_cache_path: str = "cache/chat_history_v1.json"

    # Navigation
    chat_query_param: str = "chatId"
    base_location: str = "http://localhost:8000/"

    # CORS
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ]

    # Logging configuration
    log_level: str = "INFO"  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    log_file_path: str = "./logs/chatsync.log"
    log_file_enabled: bool = True
    log_console_enabled: bool = True
    log_json_format: bool = True  # JSON format for files, human-readable for console
    log_llm_calls: bool = True  # Log all LLM calls with duration

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
