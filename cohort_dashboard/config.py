from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_PATH = Path(__file__).resolve().parent.parent
ENV_PATH = ROOT_PATH / ".env.local"

DEFAULT_MODEL_CHAIN = ["gpt-4o-mini", "gpt-4o", "gpt-4.1-mini"]


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Primary cache store (Upstash native Redis, or any redis URL)
    UPSTASH_REDIS_REST_URL: str | None = None
    UPSTASH_REDIS_REST_TOKEN: str | None = None
    REDIS_URL: str | None = None

    # Hybrid cache settings
    CACHE_TTL_SECONDS: int = 28800  # 8 hours
    STATIC_CACHE_DIR: str = str(ROOT_PATH / "public" / "cache")

    # OpenAI settings
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str | None = None
    OPENAI_MODEL_FALLBACKS: str = ""
    OPENAI_TEMPERATURE: float = 0.1
    OPENAI_MAX_TOKENS: int = 4000
    AI_TIMEOUT_SECONDS: float = 60.0

    # Newsletter source
    NEWSLETTER_ARCHIVE_URL: str = (
        "https://us7.campaign-archive.com/home/?u=af08d0494e1eb953ae69deb12&id=82d127382b"
    )
    SCRAPE_TIMEOUT_SECONDS: float = 15.0

    # Calendar sources (comma-separated URLs or file paths)
    BLUE_ICS_SOURCES: str = ""
    GOLD_ICS_SOURCES: str = ""
    ORIGINAL_ICS_SOURCE: str | None = None
    LAUNCH_ICS_SOURCE: str | None = None
    CAL_BEARS_ICS_SOURCE: str | None = None
    CAMPUS_GROUPS_ICS_SOURCE: str | None = None
    CALENDAR_TIMEOUT_SECONDS: float = 15.0
    CALENDAR_DAYS_AHEAD: int = 150
    CALENDAR_EVENT_LIMIT: int = 150

    # Week window / scheduling
    DASHBOARD_TIMEZONE: str = "America/Los_Angeles"
    PIPELINE_TIMEOUT_SECONDS: float = 240.0
    CRON_SECRET: str | None = None
    NEWSLETTER_REFRESH_TIME: str = "08:10"
    CACHE_REFRESH_TIME: str = "00:00"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def model_chain(self) -> list[str]:
        """
        Ordered, de-duplicated model chain: OPENAI_MODEL first, then
        OPENAI_MODEL_FALLBACKS. Falls back to the public stable sequence.
        """
        candidates = [self.OPENAI_MODEL or ""] + self.OPENAI_MODEL_FALLBACKS.split(",")
        chain: list[str] = []
        for model in candidates:
            model = model.strip()
            if model and model not in chain:
                chain.append(model)
        return chain or list(DEFAULT_MODEL_CHAIN)

    def cohort_sources(self) -> dict[str, list[str]]:
        """ICS sources per cohort, split from the comma-separated settings."""
        return {
            "blue": _split_sources(self.BLUE_ICS_SOURCES),
            "gold": _split_sources(self.GOLD_ICS_SOURCES),
        }

    def auxiliary_sources(self) -> dict[str, str | None]:
        return {
            "original": self.ORIGINAL_ICS_SOURCE,
            "launch": self.LAUNCH_ICS_SOURCE,
            "calBears": self.CAL_BEARS_ICS_SOURCE,
            "campusGroups": self.CAMPUS_GROUPS_ICS_SOURCE,
        }


def _split_sources(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


settings = Settings()
