import logging
import os
from functools import lru_cache

from dotenv import load_dotenv
from langchain_anthropic import ChatAnthropic
from langchain_openai import ChatOpenAI

load_dotenv()

DEFAULT_CHINOOK_SQL_URL = "https://raw.githubusercontent.com/lerocha/chinook-database/master/ChinookDatabase/DataSources/Chinook_Sqlite.sql"

DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-sonnet-4-5",
}


class Settings:
    """Application settings loaded from environment variables."""

    MODEL_PROVIDER: str = os.getenv("MODEL_PROVIDER", "openai").lower()
    MODEL_NAME: str = os.getenv("MODEL_NAME", "")
    MODEL_TEMPERATURE: float = float(os.getenv("MODEL_TEMPERATURE", "0"))

    # Empty path means: download the Chinook script into an in-memory database
    CHINOOK_DB_PATH: str = os.getenv("CHINOOK_DB_PATH", "")
    CHINOOK_SQL_URL: str = os.getenv("CHINOOK_SQL_URL", DEFAULT_CHINOOK_SQL_URL)

    MAX_STEPS: int = int(os.getenv("MAX_STEPS", "25"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def model_name(self) -> str:
        return self.MODEL_NAME or DEFAULT_MODELS.get(self.MODEL_PROVIDER, DEFAULT_MODELS["openai"])

    def validate(self) -> list[str]:
        """Validate required settings. Returns list of problems."""
        problems = []
        if self.MODEL_PROVIDER not in DEFAULT_MODELS:
            problems.append(f"MODEL_PROVIDER must be one of {sorted(DEFAULT_MODELS)}")
        if self.MAX_STEPS < 1:
            problems.append("MAX_STEPS must be >= 1")
        return problems


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def configure_logging(level: str | None = None):
    logging.basicConfig(
        level=(level or get_settings().LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------------- Model ----------------
def build_chat_model(settings: Settings):
    """Construct the decision-step model handle from settings."""
    name = settings.model_name
    if settings.MODEL_PROVIDER == "anthropic":
        model = ChatAnthropic(temperature=settings.MODEL_TEMPERATURE, model=name)
    else:
        model = ChatOpenAI(temperature=settings.MODEL_TEMPERATURE, model=name)
    return model.with_config({
        "run_name": "llm",
        "tags": ["llm"],
        "metadata": {"provider": settings.MODEL_PROVIDER, "model": name},
    })
