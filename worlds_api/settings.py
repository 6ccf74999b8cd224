from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    ENV: str = "dev"
    # Shared by every instance; attempt windows and locks live here
    REDIS_URL: str = "redis://localhost:6379/0"

    # Logging
    LOG_LEVEL: str = "INFO"

    # Failed shared-secret attempts allowed per subject per world within the window
    SHARED_SECRET_MAX_ATTEMPTS_PER_MINUTE: int = Field(default=3, ge=1)


settings = Settings()
