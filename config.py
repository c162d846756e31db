from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the HabitCoach intent router.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,   # env var names are case-sensitive
        extra="ignore",
    )

    # these will read from ENV and DEBUG in env/system
    env: str = Field(default="local", alias="ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # "rules" never leaves the process; "llm" adds the OpenAI extraction pass
    router_backend: Literal["rules", "llm"] = Field(
        default="rules",
        alias="ROUTER_BACKEND",
    )

    # only needed when ROUTER_BACKEND=llm
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key",
        alias="OPENAI_API_KEY",
    )
    openai_model_json: str = Field(default="gpt-4.1", alias="OPENAI_MODEL_JSON")
    llm_timeout_seconds: float = Field(default=15.0, alias="ROUTER_LLM_TIMEOUT")

    default_timezone: str = Field(default="Asia/Yerevan", alias="DEFAULT_TIMEZONE")


@lru_cache
def get_settings() -> Settings:
    return Settings()
