"""
Configuration management for pulse-bridge service.
Loads and validates configuration from YAML files using Pydantic.
"""

import os
import logging
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, validator, ConfigDict


logger = logging.getLogger(__name__)


class AppInfoConfig(BaseModel):
    """Application identity, exposed on /info and sent to Pulse."""
    model_config = ConfigDict(extra='forbid')

    name: str = Field(
        default="springbootsampleapp",
        description="Application name, sent as X-sample-AppName"
    )
    description: str = Field(
        default="Ship confirm and ship status bridge between SNS/SQS and Pulse",
        description="Application description"
    )
    version: str = Field(default="1.0.0", description="Application version")
    profile: str = Field(
        default="cloud",
        description="Runtime profile: local or cloud"
    )

    @validator('profile')
    def validate_profile(cls, v):
        if v.lower() not in ('local', 'cloud'):
            raise ValueError("Invalid profile. Must be one of: ['local', 'cloud']")
        return v.lower()


class AwsConfig(BaseModel):
    """AWS client configuration."""
    model_config = ConfigDict(extra='forbid')

    region: str = Field(default="us-east-1", description="AWS region")
    local: bool = Field(default=False, description="Use local endpoints instead of the region")
    localstack: bool = Field(default=False, description="Local endpoints are served by localstack")
    localstack_endpoint: Optional[str] = Field(
        default=None,
        description="Single localstack endpoint overriding the per-service local endpoints"
    )
    sqs_local_endpoint: str = Field(default="http://localhost:4576")
    sns_local_endpoint: str = Field(default="http://localhost:4575")
    provision_resources: bool = Field(
        default=True,
        description="Create and configure queues, topics and subscriptions at startup"
    )


class PulseConfig(BaseModel):
    """Pulse event bus endpoints."""
    model_config = ConfigDict(extra='forbid')

    vip_name: str = Field(default="ship-internal_events-v1", description="Pulse service vip name")
    url_suffix: str = Field(default="/ship/internal_events/v1/", description="Pulse events base path")
    services: Dict[str, str] = Field(
        default_factory=lambda: {"ship-internal_events-v1": "http://localhost:8081"},
        description="Service discovery table: vip name -> base URL"
    )


class RestConfig(BaseModel):
    """Outgoing REST call guard configuration."""
    model_config = ConfigDict(extra='forbid')

    timeout_ms: int = Field(default=3000, ge=1, description="Command execution timeout")
    max_queue_size: int = Field(default=-1, ge=-1, description="-1 disables the waiting queue")
    queue_rejection_threshold: int = Field(default=5, ge=0)
    core_pool_size: int = Field(default=10, ge=1)
    maximum_size: int = Field(default=10, ge=1)
    allow_maximum_size_to_diverge: bool = Field(default=False)
    socket_timeout_ms: int = Field(default=10000, ge=1)
    connect_timeout_ms: int = Field(default=2000, ge=1)
    circuit_failure_threshold: int = Field(default=20, ge=1)
    circuit_success_threshold: int = Field(default=1, ge=1)
    circuit_open_seconds: float = Field(default=5.0, gt=0)


class RedeliveryConfig(BaseModel):
    """Route redelivery settings."""
    model_config = ConfigDict(extra='forbid')

    max_redelivery_count: int = Field(default=5, description="Maximum redeliveries after an exception")
    redelivery_delay_ms: int = Field(default=2000, description="Base delay between redeliveries")
    back_off_multiplier: int = Field(default=2, description="Multiplier applied to each next delay")
    maximum_redelivery_delay_ms: int = Field(default=60000, ge=0)

    # Deprecated; used instead of the values above when > 0
    sqs_max_redelivery_count: int = Field(default=0)
    sqs_redelivery_delay_ms: int = Field(default=0)
    sqs_back_off_multiplier: int = Field(default=0)


class SqsConfig(BaseModel):
    """SQS consumer options and queue names."""
    model_config = ConfigDict(extra='forbid')

    concurrent_consumers: int = Field(default=1, ge=1, le=50)
    max_messages_per_poll: int = Field(default=10, ge=1, le=10)
    attribute_names: str = Field(default="")
    message_attribute_names: str = Field(default="All")
    initial_delay_ms: int = Field(default=1000, ge=0)
    receive_message_wait_time_seconds: int = Field(default=0, ge=0, le=20)
    visibility_timeout: int = Field(default=30, ge=0)
    delete_after_read: bool = Field(default=True)
    delay_ms: int = Field(default=500, ge=0)
    message_retention_period_seconds: int = Field(default=1209600)
    max_receive_count: int = Field(default=1, ge=1)

    ship_confirm_queue: str = Field(default="ship-afssap_shipconfirm")
    ship_confirm_dlq: str = Field(default="ship-afssap_shipconfirm-dlq")
    cancel_queue: str = Field(default="ship-afssap_shipstatus")
    cancel_dlq: str = Field(default="ship-afssap_shipstatus-dlq")
    nsp_queue: str = Field(default="ship-afssap_nsp")
    nsp_dlq: str = Field(default="ship-afssap_nsp-dlq")
    filter_policy: str = Field(default="{}", description="SNS subscription filter policy JSON")


class SnsConfig(BaseModel):
    """SNS topic names."""
    model_config = ConfigDict(extra='forbid')

    ship_confirm_topic: str = Field(default="ce_fmg_shipconfirm")
    ship_status_topic: str = Field(default="ce_fmg_shipstatusupdates")


class JwtConfig(BaseModel):
    """JWT signing of outgoing Pulse requests."""
    model_config = ConfigDict(extra='forbid')

    enabled: bool = Field(default=False)
    domain: str = Field(default="ship", description="JWT audience domain")
    secret: Optional[str] = Field(default=None, description="HMAC signing secret")
    secret_file: Optional[str] = Field(default=None, description="File holding the signing secret")
    algorithm: str = Field(default="HS256")
    app_id: str = Field(default="springbootsampleapp")
    instance_id: str = Field(default="springbootsampleapp-0")
    ttl_seconds: int = Field(default=300, ge=30, le=3600)
    use_alternate_header: bool = Field(default=False)


class S3Config(BaseModel):
    """S3 client configuration."""
    model_config = ConfigDict(extra='forbid')

    local_path: str = Field(default="./local-s3")
    write_to_disk: bool = Field(default=False)
    rescan: bool = Field(default=False)
    rescan_interval_seconds: int = Field(default=30, ge=1)


class RedisConfig(BaseModel):
    """Product enrichment cache configuration."""
    model_config = ConfigDict(extra='forbid')

    enabled: bool = Field(default=False)
    url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    cache_name: str = Field(default="productEnrichmentCache")
    ttl_seconds: int = Field(default=86400, ge=60)
    max_connections: int = Field(default=10, ge=1, le=50)
    socket_timeout: float = Field(default=5.0, ge=1.0, le=30.0)
    socket_connect_timeout: float = Field(default=5.0, ge=1.0, le=30.0)
    health_check_interval: int = Field(default=30, ge=10, le=300)


class RoutesConfig(BaseModel):
    """Route behaviour switches."""
    model_config = ConfigDict(extra='forbid')

    stash_encoded_data: bool = Field(default=False)
    url_parameters_suffix: str = Field(default="")
    nsp_publish_to_pulse: bool = Field(default=False)
    nsp_event_context_name: str = Field(default="ce_fmg_sc_canonical")
    nsp_event_context_type: str = Field(default="EP_SHIP_CONFIRM")
    nsp_dlq_name: Optional[str] = Field(default=None)


class ServerConfig(BaseModel):
    """HTTP server configuration."""
    model_config = ConfigDict(extra='forbid')

    host: str = Field(default="0.0.0.0", description="Host to bind to")
    port: int = Field(default=8080, ge=1024, le=65535, description="Port to bind to")
    log_level: str = Field(default="info", description="Uvicorn log level")
    health_interval_seconds: float = Field(default=10.0, gt=0)

    @validator('log_level')
    def validate_log_level(cls, v):
        valid_levels = ['critical', 'error', 'warning', 'info', 'debug', 'trace']
        if v.lower() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.lower()


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(extra='forbid')

    level: str = Field(default="INFO", description="Logging level")
    json_format: bool = Field(default=True, description="Enable JSON log formatting")
    enable_trace_ids: bool = Field(default=True, description="Add X-B3 trace ids to log records")

    @validator('level')
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()


class AppConfig(BaseModel):
    """Main application configuration."""
    model_config = ConfigDict(extra='forbid')

    app: AppInfoConfig = Field(default_factory=AppInfoConfig)
    aws: AwsConfig = Field(default_factory=AwsConfig)
    pulse: PulseConfig = Field(default_factory=PulseConfig)
    rest: RestConfig = Field(default_factory=RestConfig)
    redelivery: RedeliveryConfig = Field(default_factory=RedeliveryConfig)
    sqs: SqsConfig = Field(default_factory=SqsConfig)
    sns: SnsConfig = Field(default_factory=SnsConfig)
    jwt: JwtConfig = Field(default_factory=JwtConfig)
    s3: S3Config = Field(default_factory=S3Config)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    routes: RoutesConfig = Field(default_factory=RoutesConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def is_local(self) -> bool:
        return self.app.profile == "local"


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to config file, defaults to CONFIG_PATH env var or ./config.yml

    Returns:
        Loaded and validated configuration

    Raises:
        ValueError: If config validation or YAML parsing fails
    """
    if config_path is None:
        config_path = os.getenv('CONFIG_PATH', './config.yml')

    config_file = Path(config_path)

    if not config_file.exists():
        logger.warning(f"Config file not found: {config_file}, using defaults")
        return AppConfig(**_apply_env_overrides({}))

    try:
        with open(config_file, 'r', encoding='utf-8') as f:
            yaml_data = yaml.safe_load(f) or {}

        logger.info(f"Loaded config from: {config_file}")

        yaml_data = _apply_env_overrides(yaml_data)
        config = AppConfig(**yaml_data)

        logger.info(
            "Configuration loaded successfully",
            extra={
                "component": "config",
                "config_file": str(config_file),
                "profile": config.app.profile,
                "pulse_vip": config.pulse.vip_name,
                "server_port": config.server.port
            }
        )

        return config

    except yaml.YAMLError as e:
        logger.error(f"Failed to parse YAML config: {e}")
        raise ValueError(f"Invalid YAML config: {e}") from e

    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        raise


def _apply_env_overrides(config_data: dict) -> dict:
    """
    Apply environment variable overrides to config data.

    Supports dot notation for nested keys:
    - AWS_REGION -> aws.region
    - SERVER_PORT -> server.port
    - LOG_LEVEL -> logging.level

    Args:
        config_data: Base configuration data

    Returns:
        Configuration data with environment overrides applied
    """
    env_mappings = {
        'APP_NAME': 'app.name',
        'APP_PROFILE': 'app.profile',
        'AWS_REGION': 'aws.region',
        'AWS_LOCAL': 'aws.local',
        'AWS_LOCALSTACK': 'aws.localstack',
        'LOCALSTACK_ENDPOINT': 'aws.localstack_endpoint',
        'PULSE_VIP_NAME': 'pulse.vip_name',
        'PULSE_URL_SUFFIX': 'pulse.url_suffix',
        'CAMEL_MAX_REDELIVERY_COUNT': 'redelivery.max_redelivery_count',
        'CAMEL_REDELIVERY_DELAY_MS': 'redelivery.redelivery_delay_ms',
        'CAMEL_BACK_OFF_MULTIPLIER': 'redelivery.back_off_multiplier',
        'SQS_NO_CONSUMERS': 'sqs.concurrent_consumers',
        'SQS_MAX_NO_MESSAGES': 'sqs.max_messages_per_poll',
        'JWT_ENABLED': 'jwt.enabled',
        'JWT_SECRET_FILE': 'jwt.secret_file',
        'S3_LOCAL_PATH': 's3.local_path',
        'REDIS_ENABLED': 'redis.enabled',
        'REDIS_URL': 'redis.url',
        'SERVER_HOST': 'server.host',
        'SERVER_PORT': 'server.port',
        'LOG_LEVEL': 'logging.level',
        'LOG_JSON': 'logging.json_format'
    }

    for env_var, config_path in env_mappings.items():
        env_value = os.getenv(env_var)
        if env_value is not None:
            _set_nested_value(config_data, config_path, env_value)
            logger.debug(f"Applied env override: {env_var} -> {config_path}")

    return config_data


def _set_nested_value(data: dict, path: str, value: str) -> None:
    """
    Set a nested dictionary value using dot notation.

    Args:
        data: Dictionary to modify
        path: Dot-separated path (e.g., 'aws.region')
        value: Value to set (string, will be converted to appropriate type)
    """
    keys = path.split('.')
    current = data

    for key in keys[:-1]:
        if key not in current or current[key] is None:
            current[key] = {}
        current = current[key]

    current[keys[-1]] = _convert_env_value(value)


def _convert_env_value(value: str):
    """
    Convert environment variable string to appropriate Python type.

    Args:
        value: String value from environment

    Returns:
        Converted value (bool, int, float, or str)
    """
    if value.lower() in ('true', 'yes', 'on'):
        return True
    elif value.lower() in ('false', 'no', 'off'):
        return False

    try:
        if '.' in value:
            return float(value)
        else:
            return int(value)
    except ValueError:
        pass

    return value
