from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Session Broker"
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Web server config
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    # Security / operational
    REQUEST_TIMEOUT: int = 5  # seconds for outgoing requests

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "allow",
    }


settings = Settings()
