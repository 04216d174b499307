from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(ValueError):
    pass


class Settings(BaseSettings):
    datagolf_api_key: str = ""
    datagolf_base_url: str = "https://feeds.datagolf.com"
    http_timeout_seconds: float = 20.0
    snapshot_cache_dir: str = ".pga_rank_cache"
    snapshot_ttl_hours: float = 24.0
    default_optimizer_trials: int = 1_500
    default_seed: Optional[str] = None
    validation_seasons: int = 5
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


class CourseSetupWeights(BaseModel):
    under_100: float = Field(default=0.25, ge=0.0)
    from_100_to_150: float = Field(default=0.25, ge=0.0)
    from_150_to_200: float = Field(default=0.25, ge=0.0)
    over_200: float = Field(default=0.25, ge=0.0)

    def normalized(self) -> "CourseSetupWeights":
        total = self.under_100 + self.from_100_to_150 + self.from_150_to_200 + self.over_200
        if total <= 0:
            return CourseSetupWeights()
        return CourseSetupWeights(
            under_100=self.under_100 / total,
            from_100_to_150=self.from_100_to_150 / total,
            from_150_to_200=self.from_150_to_200 / total,
            over_200=self.over_200 / total,
        )


class CourseContext(BaseModel):
    event_id: str = ""
    season: Optional[int] = Field(default=None, ge=1990, le=2100)
    template_name: Optional[str] = None
    similar_course_ids: list[str] = Field(default_factory=list)
    putting_course_ids: list[str] = Field(default_factory=list)
    similar_courses_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    putting_courses_weight: float = Field(default=0.75, ge=0.0, le=1.0)
    course_setup_weights: CourseSetupWeights = Field(default_factory=CourseSetupWeights)
    past_performance_enabled: bool = False
    past_performance_weight: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("event_id", mode="before")
    @classmethod
    def _coerce_event_id(cls, value):
        return "" if value is None else str(value).strip()

    @field_validator("similar_course_ids", "putting_course_ids", mode="before")
    @classmethod
    def _coerce_course_ids(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = value.split(",")
        return [str(item).strip() for item in value if str(item).strip()]

    def require_event_id(self) -> str:
        event_id = (self.event_id or "").strip()
        if not event_id:
            raise ConfigurationError("Course context is missing the current event id.")
        return event_id
