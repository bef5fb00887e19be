from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError
from .models import Account


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    tz: str = Field(default="Asia/Shanghai", validation_alias="TZ")
    base_url: str = Field(default="https://www.tsdm39.com", validation_alias="BASE_URL")
    http_timeout: float = Field(default=10.0, gt=0, validation_alias="HTTP_TIMEOUT")
    http_max_keepalive: int = Field(default=100, ge=1, validation_alias="HTTP_MAX_KEEPALIVE")

    # 签到
    checkin_reset_hour: int = Field(default=0, ge=0, le=23, validation_alias="CHECKIN_RESET_HOUR")
    checkin_reset_minute: int = Field(default=0, ge=0, le=59, validation_alias="CHECKIN_RESET_MINUTE")
    checkin_max_retries: int = Field(default=100, ge=1, validation_alias="CHECKIN_MAX_RETRIES")
    checkin_retry_interval: float = Field(default=900.0, ge=0, validation_alias="CHECKIN_RETRY_INTERVAL")
    checkin_burst_attempts: int = Field(default=3, ge=0, validation_alias="CHECKIN_BURST_ATTEMPTS")
    checkin_burst_stagger: float = Field(default=2.0, ge=0, validation_alias="CHECKIN_BURST_STAGGER")

    # 打工
    work_initial_delay: float = Field(default=60.0, ge=0, validation_alias="WORK_INITIAL_DELAY")
    work_min_interval: float = Field(default=60.0, gt=0, validation_alias="WORK_MIN_INTERVAL")
    work_success_cooldown: float = Field(default=6 * 3600.0, gt=0, validation_alias="WORK_SUCCESS_COOLDOWN")
    work_failure_interval: float = Field(default=60.0, ge=0, validation_alias="WORK_FAILURE_INTERVAL")
    work_click_count: int = Field(default=6, ge=1, validation_alias="WORK_CLICK_COUNT")
    work_click_interval: float = Field(default=3.0, ge=0, validation_alias="WORK_CLICK_INTERVAL")

    # 抢红包
    scan_interval: float = Field(default=300.0, gt=0, validation_alias="SCAN_INTERVAL")
    scan_freshness_days: float = Field(default=7.0, gt=0, validation_alias="SCAN_FRESHNESS_DAYS")
    scan_max_concurrency: int = Field(default=8, ge=1, validation_alias="SCAN_MAX_CONCURRENCY")
    scan_forum_id: int = Field(default=4, validation_alias="SCAN_FORUM_ID")

    shutdown_timeout: float = Field(default=30.0, gt=0, validation_alias="SHUTDOWN_TIMEOUT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", validation_alias="LOG_DIR")

    @field_validator("base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        return (value or "").strip().rstrip("/") or "https://www.tsdm39.com"

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        return (value or "INFO").strip().upper()

    @property
    def freshness_window(self) -> timedelta:
        return timedelta(days=self.scan_freshness_days)


class AccountConfig(BaseModel):
    name: str = Field(min_length=1)
    cookie: str = Field(min_length=1)

    def to_account(self) -> Account:
        return Account(name=self.name.strip(), cookie=self.cookie.strip())


class PushConfig(BaseModel):
    bot_token: str = ""
    chat_id: str = ""

    @field_validator("bot_token", "chat_id", mode="before")
    @classmethod
    def _as_text(cls, value):
        # chat_id 在 YAML 里通常写成数字
        return "" if value is None else str(value).strip()

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)


class AppConfig(BaseModel):
    account: list[AccountConfig]
    push: PushConfig = Field(default_factory=PushConfig)

    @field_validator("account")
    @classmethod
    def _require_accounts(cls, value: list[AccountConfig]) -> list[AccountConfig]:
        if not value:
            raise ValueError("at least one account is required")
        names = [a.name.strip() for a in value]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate account names: {', '.join(duplicates)}")
        return value

    @property
    def accounts(self) -> list[Account]:
        return [a.to_account() for a in self.account]


def load_config(path: str | Path) -> AppConfig:
    """Read the YAML account list. Any problem is a ConfigurationError."""
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    try:
        return AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid config {config_path}: {e}") from e


@lru_cache
def get_settings() -> Settings:
    return Settings()
