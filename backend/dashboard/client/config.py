from pydantic_settings import BaseSettings


class ClientSettings(BaseSettings):
    ws_url: str = "ws://localhost:8000/ws"
    api_url: str = "http://localhost:8000"
    password: str = ""
    api_key: str = ""
    heartbeat_interval: float = 30.0
    initial_reconnect_delay: float = 1.0
    max_reconnect_delay: float = 15.0
    max_retries: int = 5
    max_timeline_events: int = 1000

    class Config:
        env_prefix = "DASHBOARD_CLIENT_"
