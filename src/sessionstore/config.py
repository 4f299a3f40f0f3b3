from pydantic_settings import BaseSettings


class Config(BaseSettings):
    """Session store configuration loaded from environment variables."""

    database_url: str  # MongoDB URL, database name in the path, e.g. mongodb://localhost/auth
    debug: bool = False
    session_collection: str = "session"
    last_enter_collection: str = "last_enter"
    operation_timeout: float | None = None  # Deadline in seconds applied to every database call

    model_config = {
        "env_file": [".env"],
        "env_prefix": "SESSIONSTORE_",
        "extra": "ignore",
    }
