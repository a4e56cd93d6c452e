"""
config/settings.py — Chime Runtime Settings

Merges config.yaml (defaults/structure) with .env / environment (secrets).
Pydantic-powered — all fields are validated and typed.

  - ProactiveConfig is the scheduler's configuration snapshot. It is frozen:
    an update builds a new snapshot (merged()) and the coordinator swaps it
    in wholesale.
  - Hard problems (bad log level, missing API key for a remote endpoint)
    are collected by validate_all() and raised together as ConfigError.
  - Soft scheduler problems (no prompts, fixed mode with no time points)
    are reported by ProactiveConfig.problems() and only logged. The
    scheduler degrades to idle instead of refusing to start.
"""

from __future__ import annotations

import os
import re
import threading
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chime.exceptions import ConfigError
from chime.types import TriggerMode


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1", "0.0.0.0"}
_HHMM = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")

_DEFAULT_PROMPTS: tuple[str, ...] = (
    "Carry on the conversation naturally, based on what was said before.",
    "Is there anything you'd like to talk about? I'm happy to keep going.",
    "Picking up where we left off, what do you think?",
)


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


# ─────────────────────────────────────────────────────────────────────────────
# Proactive scheduler models
# ─────────────────────────────────────────────────────────────────────────────

class FixedTimePoint(BaseModel):
    """A daily wall-clock point. Accepts {hour, minute} or "HH:MM"."""

    model_config = ConfigDict(frozen=True)

    hour: int = Field(ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)

    @model_validator(mode="before")
    @classmethod
    def _parse_hhmm(cls, v: Any) -> Any:
        if isinstance(v, str):
            m = _HHMM.match(v)
            if not m:
                raise ValueError(f"time point '{v}' is not in HH:MM form")
            return {"hour": int(m.group(1)), "minute": int(m.group(2))}
        return v

    @property
    def minutes_since_midnight(self) -> int:
        return self.hour * 60 + self.minute

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


class FixedModeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    times: tuple[FixedTimePoint, ...] = (
        FixedTimePoint(hour=8, minute=30),
        FixedTimePoint(hour=18, minute=0),
    )
    idle_threshold_seconds: int = Field(default=1800, ge=0)

    @field_validator("times")
    @classmethod
    def _ordered_set(cls, v: tuple[FixedTimePoint, ...]) -> tuple[FixedTimePoint, ...]:
        unique = {p.minutes_since_midnight: p for p in v}
        return tuple(unique[k] for k in sorted(unique))


class RandomModeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    min_interval_seconds: int = Field(default=10, ge=0)
    max_interval_seconds: int = Field(default=60, ge=0)
    # None = the interval's upper bound doubles as the idle window
    idle_threshold_seconds: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _max_not_below_min(self) -> "RandomModeConfig":
        if self.max_interval_seconds < self.min_interval_seconds:
            raise ValueError(
                f"random.max_interval_seconds ({self.max_interval_seconds}) must be "
                f">= random.min_interval_seconds ({self.min_interval_seconds})"
            )
        return self


class InactivityModeConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    timeout_seconds: int = Field(default=600, ge=1)
    recurring: bool = True
    # None = timeout_seconds doubles as the idle window
    idle_threshold_seconds: Optional[int] = Field(default=None, ge=0)


class ProactiveConfig(BaseModel):
    """Immutable configuration snapshot for one scheduling cycle."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    fixed: FixedModeConfig = Field(default_factory=FixedModeConfig)
    random: RandomModeConfig = Field(default_factory=RandomModeConfig)
    inactivity: InactivityModeConfig = Field(default_factory=InactivityModeConfig)

    min_message_gap_seconds: int = Field(default=5, ge=0)
    only_when_idle: bool = True
    max_uses: int = Field(default=0, ge=0)          # 0 = unlimited
    prompts: tuple[str, ...] = _DEFAULT_PROMPTS

    context_messages: int = Field(default=3, ge=0)
    context_chars: int = Field(default=50, ge=1)
    fixed_retry_seconds: int = Field(default=10, ge=1)

    @field_validator("prompts")
    @classmethod
    def _strip_blank_prompts(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(p for p in v if p and p.strip())

    def mode_enabled(self, mode: TriggerMode) -> bool:
        return {
            TriggerMode.FIXED: self.fixed.enabled,
            TriggerMode.RANDOM: self.random.enabled,
            TriggerMode.INACTIVITY: self.inactivity.enabled,
        }[TriggerMode(mode)]

    def idle_threshold_for(self, mode: TriggerMode | str) -> int:
        """Seconds of user silence required before `mode` may send."""
        mode = TriggerMode(mode)
        if mode == TriggerMode.FIXED:
            return self.fixed.idle_threshold_seconds
        if mode == TriggerMode.RANDOM:
            if self.random.idle_threshold_seconds is not None:
                return self.random.idle_threshold_seconds
            return self.random.max_interval_seconds
        if self.inactivity.idle_threshold_seconds is not None:
            return self.inactivity.idle_threshold_seconds
        return self.inactivity.timeout_seconds

    def problems(self) -> list[str]:
        """Soft problems worth a warning. Never raised."""
        found: list[str] = []
        if not self.prompts:
            found.append("prompts is empty; every send will be rejected")
        if self.fixed.enabled and not self.fixed.times:
            found.append("fixed mode is enabled but has no time points; it will stay idle")
        if self.enabled and not any(self.mode_enabled(m) for m in TriggerMode):
            found.append("scheduler is enabled but every trigger mode is disabled")
        if (
            self.only_when_idle
            and self.fixed.enabled
            and self.random.enabled
            and self.idle_threshold_for(TriggerMode.FIXED)
            != self.idle_threshold_for(TriggerMode.RANDOM)
        ):
            found.append(
                f"fixed and random modes use different idle windows "
                f"({self.idle_threshold_for(TriggerMode.FIXED)}s vs "
                f"{self.idle_threshold_for(TriggerMode.RANDOM)}s); set "
                f"idle_threshold_seconds explicitly if this is not intended"
            )
        return found

    def merged(self, overrides: dict[str, Any]) -> "ProactiveConfig":
        """Return a new snapshot with a (possibly partial, nested) dict applied."""
        data = _deep_merge(self.model_dump(mode="json"), overrides or {})
        return ProactiveConfig.model_validate(data)


# ─────────────────────────────────────────────────────────────────────────────
# Ambient sub-models
# ─────────────────────────────────────────────────────────────────────────────

class GenerationConfig(BaseModel):
    base_url: str = "http://localhost:11434/v1"     # Ollama's OpenAI-compatible API
    model: str = "llama3.2:3b"
    max_tokens: int = 150
    temperature: float = 0.8
    timeout_seconds: float = 60.0

    @field_validator("max_tokens")
    @classmethod
    def _positive_tokens(cls, v: int) -> int:
        if v < 1:
            raise ValueError("generation.max_tokens must be >= 1")
        return v

    @field_validator("temperature")
    @classmethod
    def _valid_temperature(cls, v: float) -> float:
        if not (0.0 <= v <= 2.0):
            raise ValueError("generation.temperature must be between 0.0 and 2.0")
        return v

    @property
    def is_local(self) -> bool:
        return (urlparse(self.base_url).hostname or "") in _LOCAL_HOSTS


class StorageConfig(BaseModel):
    overrides_path: str = "./data/proactive.yaml"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    log_dir: str = "./data/logs"
    max_file_size_mb: int = 10
    backup_count: int = 3
    console_output: bool = False
    json_format: bool = True

    @field_validator("level")
    @classmethod
    def _valid_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(
                f"logging.level '{v}' is not valid. "
                f"Must be one of: {sorted(_VALID_LOG_LEVELS)}"
            )
        return upper


# ─────────────────────────────────────────────────────────────────────────────
# Root Settings
# ─────────────────────────────────────────────────────────────────────────────

class Settings(BaseSettings):
    """
    Chime runtime settings.

    Priority (highest to lowest), merged key by key:
      1. config.yaml (passed in as init kwargs by load_settings)
      2. Environment variables (CHIME_PROACTIVE__MAX_USES=3, ...)
      3. .env file
      4. Field defaults
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CHIME_",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    # -- Secrets from .env ---------------------------------------------------
    openai_api_key: Optional[str] = Field(default=None, alias="OPENAI_API_KEY")

    # -- Structured config (from config.yaml) --------------------------------
    proactive: ProactiveConfig = Field(default_factory=ProactiveConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("proactive", mode="before")
    @classmethod
    def _coerce_proactive(cls, v: Any) -> Any:
        return ProactiveConfig(**v) if isinstance(v, dict) else v

    @field_validator("generation", mode="before")
    @classmethod
    def _coerce_generation(cls, v: Any) -> Any:
        return GenerationConfig(**v) if isinstance(v, dict) else v

    @field_validator("logging", mode="before")
    @classmethod
    def _coerce_logging(cls, v: Any) -> Any:
        return LoggingConfig(**v) if isinstance(v, dict) else v

    # -- Convenience properties ----------------------------------------------

    @property
    def log_level(self) -> str:
        return self.logging.level.upper()

    @property
    def log_dir(self) -> Path:
        return Path(self.logging.log_dir)

    @property
    def overrides_path(self) -> Path:
        return Path(self.storage.overrides_path).expanduser()

    def validate_all(self) -> None:
        """
        Full startup validation. Raises ConfigError listing every problem found.

        Pydantic field validators catch type/value errors at parse time; this
        method catches cross-field and runtime problems. Scheduler problems
        from ProactiveConfig.problems() are not included here; those are
        logged by the coordinator at start.
        """
        errors: list[str] = []

        # ── Remote generation endpoint needs a key ───────────────────────────
        if not self.generation.is_local and not self.openai_api_key:
            errors.append(
                f"generation.base_url '{self.generation.base_url}' is not local "
                f"and requires OPENAI_API_KEY to be set in your .env file."
            )

        # ── Overrides file must not be a directory ───────────────────────────
        if self.overrides_path.is_dir():
            errors.append(
                f"storage.overrides_path '{self.storage.overrides_path}' is a "
                f"directory. Point it at a .yaml file."
            )

        if errors:
            numbered = "\n".join(f"  {i+1}. {e}" for i, e in enumerate(errors))
            raise ConfigError(
                f"\n\nChime startup failed — {len(errors)} configuration "
                f"problem(s) found:\n\n{numbered}\n\n"
                f"Fix the issues above in config/config.yaml or your .env file "
                f"and restart.\n"
            )


# ─────────────────────────────────────────────────────────────────────────────
# Loader + singleton
# ─────────────────────────────────────────────────────────────────────────────

_singleton: Optional[Settings] = None
_singleton_lock = threading.Lock()

_KNOWN_SECTIONS = {"proactive", "generation", "storage", "logging"}


def _load_yaml(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _resolve_config_path(config_path: str | Path | None) -> Path:
    """
    Resolve the config file path with this priority:
      1. Explicit config_path argument (from --config CLI flag)
      2. CHIME_CONFIG environment variable
      3. Default: config/config.yaml
    """
    if config_path is not None:
        return Path(config_path)
    env_path = os.environ.get("CHIME_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config/config.yaml")


def load_settings(config_path: str | Path | None = None) -> Settings:
    """Load settings by merging config.yaml with environment variables."""
    global _singleton
    yaml_data = _load_yaml(_resolve_config_path(config_path))
    init_kwargs = {k: v for k, v in yaml_data.items() if k in _KNOWN_SECTIONS}

    instance = Settings(**init_kwargs)
    with _singleton_lock:
        _singleton = instance
    return instance


def get_settings() -> Settings:
    """Return the global Settings singleton, loading it on first use."""
    global _singleton
    if _singleton is not None:
        return _singleton
    with _singleton_lock:
        if _singleton is None:
            _singleton = Settings(
                **{
                    k: v
                    for k, v in _load_yaml(_resolve_config_path(None)).items()
                    if k in _KNOWN_SECTIONS
                }
            )
    return _singleton
