"""Network configuration constants for the quiz server."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8080
DEFAULT_LOG_LEVEL: str = "info"
