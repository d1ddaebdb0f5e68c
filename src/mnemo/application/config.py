from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from mnemo.domain.constants import (
    DEFAULT_DAILY_NEW_CARDS,
    DEFAULT_DAILY_REVIEWS,
    DEFAULT_LEARNING_STEPS,
    DEFAULT_MAXIMUM_STABILITY,
    DEFAULT_REQUEST_RETENTION,
)
from mnemo.domain.models import DayBoundary, SchedulerParameters


def config_files() -> list[Path]:
    """Candidate config files, first existing one wins."""
    return [
        Path.home() / ".config/mnemo/config.toml",
        Path.home() / ".mnemo.toml",
    ]


class AppConfig(BaseSettings):
    """
    Configuration model for mnemo.
    Supports loading from:
    1. Environment variables (MNEMO_*)
    2. Config file (~/.config/mnemo/config.toml)
    3. Manual overrides (CLI)
    """

    model_config = SettingsConfigDict(
        env_prefix="MNEMO_",
        extra="ignore",
    )

    # Storage
    backend: Literal["memory", "sqlite"] = "sqlite"
    database_path: Path = Field(default_factory=lambda: Path.home() / ".local/share/mnemo/mnemo.db")

    # Study day
    timezone: str = "UTC"
    day_rollover_hour: int = Field(default=0, ge=0, le=23)

    # Deck defaults (used when a deck has no stored settings)
    request_retention: float = DEFAULT_REQUEST_RETENTION
    maximum_stability: float = DEFAULT_MAXIMUM_STABILITY
    daily_new_cards_limit: int = DEFAULT_DAILY_NEW_CARDS
    daily_review_limit: int = DEFAULT_DAILY_REVIEWS
    learning_steps: list[float] = Field(default_factory=lambda: list(DEFAULT_LEARNING_STEPS))
    enable_fuzz: bool = False
    easy_skips_learning: bool = True

    verbose: int = 1

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        from pydantic_settings import TomlConfigSettingsSource

        # Find the first existing file
        toml_file = None
        for f in config_files():
            if f.exists():
                toml_file = f
                break

        # Later sources lose: CLI overrides win over env, env over the file
        if toml_file:
            return (
                init_settings,
                env_settings,
                TomlConfigSettingsSource(settings_cls, toml_file=toml_file),
            )
        return (
            init_settings,
            env_settings,
        )

    @field_validator("database_path", mode="before")
    @classmethod
    def resolve_database_path(cls, v: Any) -> Path:
        return Path(v).expanduser()

    def default_parameters(self) -> SchedulerParameters:
        """Scheduler parameters for decks without stored settings."""
        return SchedulerParameters.parse(
            {
                "request_retention": self.request_retention,
                "maximum_stability": self.maximum_stability,
                "daily_new_cards_limit": self.daily_new_cards_limit,
                "daily_review_limit": self.daily_review_limit,
                "learning_steps": tuple(self.learning_steps),
                "enable_fuzz": self.enable_fuzz,
                "easy_skips_learning": self.easy_skips_learning,
            }
        )

    def day_boundary(self) -> DayBoundary:
        return DayBoundary(timezone=self.timezone, rollover_hour=self.day_rollover_hour)


def resolve_config(cli_overrides: dict[str, Any] | None = None) -> AppConfig:
    """
    Multi-layered configuration resolution.
    1. Defaults in AppConfig
    2. ~/.config/mnemo/config.toml (if exists)
    3. Environment variables (MNEMO_*)
    4. cli_overrides (passed from Typer)
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    return AppConfig(**overrides)
