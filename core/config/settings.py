# Complete settings with ALL required sections
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from typing import List, Optional, Union
from pathlib import Path


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TESTING = "testing"


class Transport(str, Enum):
    REDPANDA = "redpanda"
    MEMORY = "memory"


class Role(str, Enum):
    REQUESTOR = "requestor"
    EXECUTOR = "executor"
    SINK = "sink"


class ExecutorVariant(str, Enum):
    # account travels as a header and is echoed in the confirmation
    HEADER_PROPAGATING = "header_propagating"
    # handler return value is piped to the confirmation stream, account dropped
    REPLY_BINDING = "reply_binding"


class ConfirmationOutput(str, Enum):
    STREAM = "stream"
    LOG = "log"


class RedpandaSettings(BaseModel):
    bootstrap_servers: str = "localhost:9092"
    client_id: str = "trade-partitioning-client"
    group_id_prefix: str = "trade-partitioning"  # Unique groups per role
    request_timeout_ms: int = 30000
    linger_ms: int = 5
    compression_type: Optional[str] = "gzip"


class PartitioningSettings(BaseModel):
    # Single source of truth for the trades stream layout: the requestor's
    # selector, topic bootstrap and executor assignment all read this value.
    partition_count: int = 2
    confirmation_partition_count: int = 1
    verify_topic_layout: bool = True


class RequestorSettings(BaseModel):
    interval_ms: int = 5000
    account_range: int = 10
    seed: Optional[int] = None


class ExecutorSettings(BaseModel):
    variant: ExecutorVariant = ExecutorVariant.HEADER_PROPAGATING
    confirmation_output: ConfirmationOutput = ConfirmationOutput.STREAM
    # Static partition ownership: instance i owns partitions p where p % count == i
    instance_index: int = 0
    instance_count: int = 1


class DeliverySettings(BaseModel):
    """Transport delivery policy for failed consumer callbacks"""
    max_attempts: int = 3
    backoff_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_backoff_ms: int = 10000
    dead_letter_enabled: bool = True


class LoggingSettings(BaseModel):
    level: str = "INFO"
    json_format: bool = False
    # Noisy third-party loggers pinned to this level
    library_level: str = "WARNING"


class MonitoringSettings(BaseModel):
    metrics_enabled: bool = True
    # 0 disables the Prometheus HTTP exposition endpoint
    metrics_port: int = 0


class Settings(BaseSettings):
    """Main application settings, loaded from environment variables"""
    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    roles: Union[str, List[Role]] = Field(
        default_factory=lambda: [Role.REQUESTOR, Role.EXECUTOR, Role.SINK],
        description="Roles hosted by this process (comma-separated in env)"
    )

    @field_validator('roles', mode='before')
    @classmethod
    def parse_roles(cls, v):
        """Parse comma-separated string or return list as-is"""
        if isinstance(v, str):
            return [role.strip().lower() for role in v.split(',') if role.strip()]
        return v

    @field_validator('roles')
    @classmethod
    def validate_roles(cls, v):
        """Validate that at least one role is hosted"""
        if not v:
            raise ValueError("At least one role is required")
        # Preserve declaration order, drop duplicates
        return list(dict.fromkeys(v))

    app_name: str = "Trade Partitioning"
    version: str = "1.0.0"
    environment: Environment = Environment.DEVELOPMENT
    transport: Transport = Transport.REDPANDA
    shutdown_timeout_seconds: float = 5.0

    redpanda: RedpandaSettings = RedpandaSettings()
    partitioning: PartitioningSettings = PartitioningSettings()
    requestor: RequestorSettings = RequestorSettings()
    executor: ExecutorSettings = ExecutorSettings()
    delivery: DeliverySettings = DeliverySettings()
    logging: LoggingSettings = LoggingSettings()
    monitoring: MonitoringSettings = MonitoringSettings()

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    def group_id(self, role: str) -> str:
        """Consumer group for a role, namespaced by the configured prefix"""
        return f"{self.redpanda.group_id_prefix}.{role}"

    @property
    def base_dir(self) -> str:
        """Get base application directory dynamically"""
        # Go up 2 levels from core/config/settings.py to reach project root
        return str(Path(__file__).resolve().parents[2])


# No global settings instance - use dependency injection instead
