from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    host: str = "0.0.0.0"
    port: int = 8000
    database_url: str = "sqlite:///data/dashboard.db"
    api_key: str = ""  # empty = webhook and REST auth disabled
    frontend_password: str = ""  # empty = WebSocket auth disabled
    ws_auth_timeout: float = 5.0
    ws_send_timeout: float = 2.0
    stale_threshold_ms: int = 60_000
    cors_origins: str = "*"
    log_level: str = "INFO"

    class Config:
        env_prefix = "DASHBOARD_"


settings = Settings()
