from __future__ import annotations

from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from klinewatch.domain.models import Interval


class Settings(BaseSettings):
    """Environment-backed runtime settings."""

    app_name: str = "KlineWatch"
    env: str = "dev"
    log_level: str = "INFO"
    default_symbol: str = "solusdt"
    default_interval: Interval = Interval.M1

    rest_base_url: str = "https://fapi.binance.com/fapi/v1/continuousKlines"
    ws_base_url: str = "wss://fstream.binance.com/ws/"
    contract_type: str = "perpetual"
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    window_capacity: int = Field(default=180, gt=0)
    fast_period: int = Field(default=7, gt=0)
    slow_period: int = Field(default=25, gt=0)
    ma_kind: Literal["sma", "ema"] = "sma"
    queue_maxsize: int = Field(default=1_000, gt=0)

    reconnect_enabled: bool = True
    reconnect_max_attempts: int = Field(default=5, gt=0)
    reconnect_initial_delay_seconds: float = Field(default=3.0, gt=0)
    reconnect_max_delay_seconds: float = Field(default=60.0, gt=0)

    @field_validator("default_symbol", "contract_type", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @model_validator(mode="after")
    def _check_periods(self) -> Settings:
        if self.fast_period >= self.slow_period:
            raise ValueError("fast_period must be < slow_period")
        return self

    model_config = SettingsConfigDict(
        env_prefix="KLINEW_",
        env_file=".env",
        env_file_encoding="utf-8-sig",
        extra="ignore",
    )
