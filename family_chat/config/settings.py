from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Bypasses RLS; used for family create/join

    # Backend calls
    request_timeout_sec: float = 10.0  # Applied to every select/insert against Supabase

    # Realtime channels
    realtime_max_retries: int = 5
    realtime_backoff_base_sec: float = 0.5
    realtime_backoff_max_sec: float = 30.0

    # Chat list previews
    preview_scan_limit: int = 200  # Rows scanned by the batched last-message query
    preview_snippet_length: int = 100

    # Notifications kept per session for late listeners
    notification_history_size: int = 50

    # Auth
    auth_cache_ttl_sec: int = 60
    auth_cache_max_size: int = 500

    # App
    app_name: str = "family-chat-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
