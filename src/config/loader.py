# src/config/loader.py
"""
Configuration loader for the dispatch coordinator.
Single source of truth is config/config.json.
Hosts and secrets are overridden from environment variables.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# PATHS
# =============================================================================

def get_project_root() -> Path:
    """Returns the project root directory."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Returns the path to config.json (CONFIG_PATH env var wins)."""
    override = os.getenv("CONFIG_PATH")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Loads config.json into a dict."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# SECTION MODELS
# =============================================================================

class SystemSettings(BaseModel):
    """System settings."""
    PROJECT_NAME: str = "ride_dispatch"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "all"


class DeploymentSettings(BaseModel):
    """Where this service listens and where its collaborators live."""
    DISPATCH_API_HOST: str = "0.0.0.0"
    DISPATCH_API_PORT: int = 8092
    DRIVER_SERVICE_URL: str = "http://driver_service:8093"
    BOOKING_QUERY_URL: str = "http://dispatch_api:8092"
    NOTIFICATION_SERVICE_URL: str = "http://notification_service:8094"


class LoggingSettings(BaseModel):
    """Logging settings."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = True
    LOG_FILE_PATH: str = "logs/dispatch.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """PostgreSQL settings."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ride_dispatch"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Reads the password from the environment when not set."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """PostgreSQL DSN."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Redis settings."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "dispatch"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Reads the password from the environment when not set."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Redis connection URL."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """Key lifetimes in seconds."""
    ELIGIBLE_TTL: int = 7200
    REJECTED_TTL: int = 7200
    DRIVERS_READY_TTL: int = 120
    SEARCH_CACHE_TTL: int = 600
    BLOCKED_DRIVERS_TTL: int = 3600
    PREFERENCES_TTL: int = 3600
    SAGA_STATE_TTL: int = 7200
    PROCESSED_EVENT_TTL: int = 86400
    SAGA_LOCK_TTL: int = 30


class RabbitMQSettings(BaseModel):
    """RabbitMQ settings."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "dispatch.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @field_validator("RABBITMQ_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Environment password wins over config."""
        env_pass = os.getenv("RABBITMQ_PASSWORD", "")
        if env_pass:
            return env_pass
        return v

    @property
    def url(self) -> str:
        """AMQP connection URL."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class SearchSettings(BaseModel):
    """Driver search and matching settings."""
    SEARCH_RADIUS_MIN_KM: float = 1.0
    SEARCH_RADIUS_MAX_KM: float = 5.0
    SEARCH_RADIUS_STEP_KM: float = 1.0
    MAX_SEARCH_RETRIES: int = 3
    BLOCK_CANCELLATION_THRESHOLD: int = 3
    BLOCK_WINDOW_DAYS: int = 30
    HISTORY_DAYS_BACK: int = 90
    HISTORY_LIMIT: int = 50
    PREFERRED_MIN_TRIPS: int = 2
    DEFAULT_VEHICLE_TYPES: list[str] = Field(default_factory=lambda: ["motorcycle", "car"])
    DEFAULT_MIN_RATING: float = 3.0
    DEFAULT_MAX_DISTANCE_KM: float = 5.0
    AUTO_CANCEL_ON_NO_DRIVERS: bool = True


class ResilienceSettings(BaseModel):
    """Retry and circuit breaker settings for collaborator calls."""
    MAX_ATTEMPTS: int = 3
    BASE_DELAY: float = 0.5
    CALL_TIMEOUT: float = 5.0
    ERROR_THRESHOLD_PERCENT: float = 50.0
    ROLLING_WINDOW: float = 60.0
    MIN_CALLS: int = 5
    RESET_TIMEOUT: float = 30.0


class TimeoutSettings(BaseModel):
    """Background loop intervals."""
    SWEEP_INTERVAL: int = 30
    SEARCH_STALL_TIMEOUT: int = 60


# =============================================================================
# ROOT SETTINGS
# =============================================================================

class Settings(BaseSettings):
    """
    Root application settings.
    Aggregates every configuration section.
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    timeouts: TimeoutSettings = Field(default_factory=TimeoutSettings)

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Builds Settings from config.json.
        Hosts and secrets are overridden from the environment.
        """
        data = {k: v for k, v in load_config_json().items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "ride_dispatch"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
                COMPONENT_MODE=os.getenv("COMPONENT_MODE", data.get("COMPONENT_MODE", "all")),
            ),
            deployment=DeploymentSettings(
                DISPATCH_API_HOST=data.get("DISPATCH_API_HOST", "0.0.0.0"),
                DISPATCH_API_PORT=int(os.getenv("DISPATCH_API_PORT", data.get("DISPATCH_API_PORT", 8092))),
                DRIVER_SERVICE_URL=os.getenv("DRIVER_SERVICE_URL", data.get("DRIVER_SERVICE_URL", "http://driver_service:8093")),
                BOOKING_QUERY_URL=os.getenv("BOOKING_QUERY_URL", data.get("BOOKING_QUERY_URL", "http://dispatch_api:8092")),
                NOTIFICATION_SERVICE_URL=os.getenv("NOTIFICATION_SERVICE_URL", data.get("NOTIFICATION_SERVICE_URL", "http://notification_service:8094")),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", True),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/dispatch.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "ride_dispatch")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 60),
                DB_RETRY_ATTEMPTS=data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=data.get("DB_RETRY_DELAY", 1.0),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "dispatch"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            redis_ttl=RedisTTLSettings(
                ELIGIBLE_TTL=data.get("ELIGIBLE_TTL", 7200),
                REJECTED_TTL=data.get("REJECTED_TTL", 7200),
                DRIVERS_READY_TTL=data.get("DRIVERS_READY_TTL", 120),
                SEARCH_CACHE_TTL=data.get("SEARCH_CACHE_TTL", 600),
                BLOCKED_DRIVERS_TTL=data.get("BLOCKED_DRIVERS_TTL", 3600),
                PREFERENCES_TTL=data.get("PREFERENCES_TTL", 3600),
                SAGA_STATE_TTL=data.get("SAGA_STATE_TTL", 7200),
                PROCESSED_EVENT_TTL=data.get("PROCESSED_EVENT_TTL", 86400),
                SAGA_LOCK_TTL=data.get("SAGA_LOCK_TTL", 30),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=data.get("RABBITMQ_EXCHANGE", "dispatch.events"),
                RABBITMQ_PREFETCH_COUNT=data.get("RABBITMQ_PREFETCH_COUNT", 10),
            ),
            search=SearchSettings(
                SEARCH_RADIUS_MIN_KM=data.get("SEARCH_RADIUS_MIN_KM", 1.0),
                SEARCH_RADIUS_MAX_KM=data.get("SEARCH_RADIUS_MAX_KM", 5.0),
                SEARCH_RADIUS_STEP_KM=data.get("SEARCH_RADIUS_STEP_KM", 1.0),
                MAX_SEARCH_RETRIES=data.get("MAX_SEARCH_RETRIES", 3),
                BLOCK_CANCELLATION_THRESHOLD=data.get("BLOCK_CANCELLATION_THRESHOLD", 3),
                BLOCK_WINDOW_DAYS=data.get("BLOCK_WINDOW_DAYS", 30),
                HISTORY_DAYS_BACK=data.get("HISTORY_DAYS_BACK", 90),
                HISTORY_LIMIT=data.get("HISTORY_LIMIT", 50),
                PREFERRED_MIN_TRIPS=data.get("PREFERRED_MIN_TRIPS", 2),
                DEFAULT_VEHICLE_TYPES=data.get("DEFAULT_VEHICLE_TYPES", ["motorcycle", "car"]),
                DEFAULT_MIN_RATING=data.get("DEFAULT_MIN_RATING", 3.0),
                DEFAULT_MAX_DISTANCE_KM=data.get("DEFAULT_MAX_DISTANCE_KM", 5.0),
                AUTO_CANCEL_ON_NO_DRIVERS=data.get("AUTO_CANCEL_ON_NO_DRIVERS", True),
            ),
            resilience=ResilienceSettings(
                MAX_ATTEMPTS=data.get("RESILIENCE_MAX_ATTEMPTS", 3),
                BASE_DELAY=data.get("RESILIENCE_BASE_DELAY", 0.5),
                CALL_TIMEOUT=data.get("RESILIENCE_CALL_TIMEOUT", 5.0),
                ERROR_THRESHOLD_PERCENT=data.get("RESILIENCE_ERROR_THRESHOLD_PERCENT", 50.0),
                ROLLING_WINDOW=data.get("RESILIENCE_ROLLING_WINDOW", 60.0),
                MIN_CALLS=data.get("RESILIENCE_MIN_CALLS", 5),
                RESET_TIMEOUT=data.get("RESILIENCE_RESET_TIMEOUT", 30.0),
            ),
            timeouts=TimeoutSettings(
                SWEEP_INTERVAL=data.get("SWEEP_INTERVAL", 30),
                SEARCH_STALL_TIMEOUT=data.get("SEARCH_STALL_TIMEOUT", 60),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Returns the cached settings singleton.
    Loads .env from the project root first.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()
