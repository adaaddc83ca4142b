from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator, model_validator


class Settings(BaseSettings):
    OPENAI_API_KEY: str = ""
    SORA_BASE_URL: str = "https://api.openai.com/v1"
    SORA_TIMEOUT_SECONDS: float = 30.0
    SORA_DEADLINE_SECONDS: float = 120.0
    SORA_MAX_RETRIES: int = 3
    SORA_RETRY_BASE_DELAY: float = 1.0
    SORA_USE_MOCK: bool = False
    BATCH_DEFAULT_CONCURRENCY: int = 3
    BATCH_MAX_CONCURRENCY: int = 5
    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    @field_validator("SORA_TIMEOUT_SECONDS", "SORA_DEADLINE_SECONDS")
    @classmethod
    def _positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("must be greater than 0")
        return value

    @field_validator("SORA_MAX_RETRIES")
    @classmethod
    def _non_negative_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must be 0 or greater")
        return value

    @field_validator("SORA_RETRY_BASE_DELAY")
    @classmethod
    def _non_negative_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be 0 or greater")
        return value

    @field_validator("BATCH_DEFAULT_CONCURRENCY", "BATCH_MAX_CONCURRENCY")
    @classmethod
    def _positive_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @field_validator("SORA_BASE_URL")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _default_within_cap(self) -> "Settings":
        if self.BATCH_DEFAULT_CONCURRENCY > self.BATCH_MAX_CONCURRENCY:
            raise ValueError("BATCH_DEFAULT_CONCURRENCY cannot exceed BATCH_MAX_CONCURRENCY")
        return self


settings = Settings()
