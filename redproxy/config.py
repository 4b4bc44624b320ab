"""Configuration handling for the redproxy upstream access layer."""

import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

# Official Android client identity used for the device-login handshake.
ANDROID_CLIENT_ID = "ohXpoqrZYub1kg"
ANDROID_USER_AGENT = "Reddit/Version 2024.22.1/Build 1652272/Android 13"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ClientIdentityConfig:
    """Native client identity presented to upstream."""

    client_id: str = ANDROID_CLIENT_ID
    client_secret: str = ""
    user_agent: str = ANDROID_USER_AGENT
    # Fixed device id; a random one is generated per process when empty
    device_id: str = ""


@dataclass
class RetryConfig:
    """Backoff policy for transient upstream failures."""

    max_retries: int = 3
    initial_backoff: float = 0.2
    max_backoff: float = 5.0
    backoff_factor: float = 2.0
    jitter: float = 0.5


@dataclass
class RateLimitConfig:
    """Rate limiting configuration."""

    # Rotate to a fresh token once fewer calls than this remain
    min_remaining_calls: int = 10


@dataclass
class TokenConfig:
    """Bearer credential lifecycle settings."""

    refresh_interval_sec: int = 86400  # 24 hours
    expiry_margin_sec: int = 60


@dataclass
class MonitoringConfig:
    """Monitoring configuration."""

    enable_prometheus: bool = False
    prometheus_port: int = 8000


@dataclass
class Config:
    """Application configuration combining environment variables and YAML config."""

    identity: ClientIdentityConfig = field(default_factory=ClientIdentityConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    token: TokenConfig = field(default_factory=TokenConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    api_host: str = "https://oauth.reddit.com"
    auth_host: str = "https://www.reddit.com"
    request_timeout_sec: float = 30.0
    media_timeout_sec: float = 120.0
    max_connections: int = 100
    collections: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_files(cls, config_path: str, env_path: Optional[str] = None) -> "Config":
        """
        Load configuration from YAML file and environment variables.

        Environment variables win over YAML values.

        Args:
            config_path: Path to YAML configuration file
            env_path: Optional path to .env file (defaults to .env in current directory)

        Returns:
            Config instance with merged configuration
        """
        if env_path:
            load_dotenv(env_path)
        else:
            load_dotenv()

        config = cls()

        if os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as file:
                yaml_config = yaml.safe_load(file)

            if yaml_config:
                config._merge(yaml_config)

        config.identity.client_id = os.getenv("REDPROXY_CLIENT_ID", config.identity.client_id)
        config.identity.client_secret = os.getenv("REDPROXY_CLIENT_SECRET", config.identity.client_secret)
        config.identity.user_agent = os.getenv("REDPROXY_USER_AGENT", config.identity.user_agent)
        config.identity.device_id = os.getenv("REDPROXY_DEVICE_ID", config.identity.device_id)
        config.collections = os.getenv("REDPROXY_COLLECTIONS", config.collections)
        config.log_level = os.getenv("REDPROXY_LOG_LEVEL", config.log_level)

        return config

    def _merge(self, yaml_config: Dict[str, Any]) -> None:
        """Apply a parsed YAML mapping onto this config, section by section."""
        sections = {
            "identity": ClientIdentityConfig,
            "retry": RetryConfig,
            "rate_limit": RateLimitConfig,
            "token": TokenConfig,
            "monitoring": MonitoringConfig,
        }

        for key, value in yaml_config.items():
            if key in sections:
                if not isinstance(value, dict):
                    continue
                section = getattr(self, key)
                known = {f.name for f in fields(section)}
                for sub_key, sub_value in value.items():
                    if sub_key in known:
                        setattr(section, sub_key, sub_value)
            elif hasattr(self, key):
                setattr(self, key, value)

    def validate(self) -> List[str]:
        """
        Validate configuration and return a list of validation errors.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not self.identity.client_id:
            errors.append("Missing client_id for the native client identity")
        if not self.identity.user_agent:
            errors.append("Missing user_agent for the native client identity")

        if self.retry.max_retries < 0:
            errors.append("retry.max_retries must not be negative")
        if self.retry.initial_backoff <= 0:
            errors.append("retry.initial_backoff must be greater than 0")
        if self.retry.max_backoff < self.retry.initial_backoff:
            errors.append("retry.max_backoff must be at least retry.initial_backoff")
        if not 0 <= self.retry.jitter < 1:
            errors.append("retry.jitter must be between 0 and 1")

        if self.token.refresh_interval_sec <= self.token.expiry_margin_sec:
            errors.append("token.refresh_interval_sec must exceed token.expiry_margin_sec")

        if self.request_timeout_sec <= 0:
            errors.append("request_timeout_sec must be greater than 0")
        if self.media_timeout_sec <= 0:
            errors.append("media_timeout_sec must be greater than 0")

        if not self.api_host.startswith("https://"):
            errors.append("api_host must be an https:// URL")

        if str(self.log_level).upper() not in LOG_LEVELS:
            errors.append(f"log_level must be one of {', '.join(LOG_LEVELS)}")

        return errors
