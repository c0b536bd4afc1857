"""Network configuration constants for the quiz server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 3009
WEBSOCKET_PATH: str = "/ws"
UPLOADS_URL_PREFIX: str = "/uploads"
