"""Configuration for stepwise, read from YAML with environment overrides."""

from __future__ import annotations

import os
from datetime import timedelta
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

DAY = 24 * 3600


class RedisConfig(BaseModel):
    """Connection to the Redis server holding the delayed queue."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    poll_interval: float = Field(default=0.5, gt=0, description="Seconds between polls for due tasks")


class TransportConfig(BaseModel):
    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class SchedulerConfig(BaseModel):
    """Which scheduler hands wake-ups to the transport.

    ``cyclic`` needs ``stepwise scheduler cycle`` in a cron table running every
    ``cycle_duration_seconds``.
    """

    kind: Literal["forward", "cyclic"] = "forward"
    cycle_duration_seconds: float = Field(default=30 * 60, gt=0)

    @property
    def cycle_duration(self) -> timedelta:
        return timedelta(seconds=self.cycle_duration_seconds)


class HousekeepingConfig(BaseModel):
    """Retention of completed journeys and the stuck-journey threshold."""

    delete_completed_after_seconds: Optional[float] = 30 * DAY
    stuck_after_seconds: float = Field(default=2 * DAY, gt=0)

    @property
    def delete_completed_after(self) -> Optional[timedelta]:
        if self.delete_completed_after_seconds is None:
            return None
        return timedelta(seconds=self.delete_completed_after_seconds)

    @property
    def stuck_after(self) -> timedelta:
        return timedelta(seconds=self.stuck_after_seconds)


class StepwiseConfig(BaseModel):
    transport: TransportConfig = TransportConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    housekeeping: HousekeepingConfig = HousekeepingConfig()
    database_url: Optional[str] = None
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> StepwiseConfig:
    """Read the YAML configuration file.

    Args:
        path: File to read. Defaults to ``STEPWISE_CONFIG`` or ``config.yaml``
            in the working directory. A missing file yields the defaults.

    ``STEPWISE_DATABASE_URL`` (or ``DATABASE_URL``) and ``STEPWISE_LOG_LEVEL``
    override the values from the file.
    """
    config_path = path or os.getenv("STEPWISE_CONFIG", "config.yaml")
    data = {}
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    config = StepwiseConfig.model_validate(data)

    database_url = os.getenv("STEPWISE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if database_url:
        config.database_url = database_url
    log_level = os.getenv("STEPWISE_LOG_LEVEL")
    if log_level:
        config.log_level = log_level
    return config
