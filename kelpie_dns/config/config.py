"""
Configuration module for Kelpie-DNS.
"""

import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from kelpie_dns.controller.plan import POLICIES
from kelpie_dns.exceptions import ConfigError
from kelpie_dns.models.models import DEFAULT_MANAGED_RECORD_TYPES

KNOWN_REGISTRIES = ("txt", "noop")


class StaticEndpointConfig(BaseModel):
    """An endpoint declared in the configuration file."""

    dnsname: str
    targets: List[str]
    record_type: str = "A"
    ttl: Optional[int] = None
    set_identifier: str = ""
    provider_specific: Dict[str, str] = Field(default_factory=dict)


class SourceConfig(BaseModel):
    """A single source entry."""

    name: str
    type: str = "docker"

    # Docker source
    label_prefix: str = "kelpie.dns"
    label_filter: str = ""

    # Static source
    endpoints: List[StaticEndpointConfig] = Field(default_factory=list)


class Config(BaseModel):
    """Configuration for Kelpie-DNS."""

    # Source configuration
    sources: List[SourceConfig] = Field(
        default_factory=lambda: [SourceConfig(name="docker", type="docker")]
    )

    # Provider configuration
    provider: str = "cloudflare"
    cloudflare_api_token: str = ""
    cloudflare_proxied_by_default: bool = False
    webhook_url: str = "http://localhost:8888"
    webhook_timeout: str = "30s"
    webhook_read_retries: int = 5
    inmemory_zones: List[str] = Field(default_factory=list)

    # Registry configuration
    registry: str = "txt"
    txt_owner_id: str = "default"
    txt_prefix: str = ""
    txt_suffix: str = ""
    txt_wildcard_replacement: str = ""
    txt_new_format_only: bool = False
    txt_cache_interval: str = "0s"
    encrypt_txt: bool = False
    encryption_key: Optional[str] = None

    # Controller configuration
    interval: str = "1m"
    min_event_sync_interval: str = "5s"
    once: bool = False
    dry_run: bool = False
    policy: str = "sync"
    cycle_timeout: Optional[str] = None
    fail_on_source_error: bool = False

    # Domain filtering
    domain_filter: List[str] = Field(default_factory=list)
    exclude_domains: List[str] = Field(default_factory=list)
    regex_domain_filter: Optional[str] = None
    regex_domain_exclusion: Optional[str] = None
    zone_id_filter: List[str] = Field(default_factory=list)
    managed_record_types: List[str] = Field(
        default_factory=lambda: list(DEFAULT_MANAGED_RECORD_TYPES)
    )

    # Logging configuration
    log_level: str = "info"

    # Health check configuration
    health_enabled: bool = True
    health_host: str = "0.0.0.0"
    health_port: int = 8080

    # Webhook server configuration
    webhook_server_enabled: bool = False
    webhook_server_host: str = "127.0.0.1"
    webhook_server_port: int = 8888

    @field_validator("policy")
    @classmethod
    def _known_policy(cls, value: str) -> str:
        if value not in POLICIES:
            raise ValueError(f"unknown policy '{value}', expected one of {sorted(POLICIES)}")
        return value

    @field_validator("registry")
    @classmethod
    def _known_registry(cls, value: str) -> str:
        if value not in KNOWN_REGISTRIES:
            raise ValueError(f"unknown registry '{value}', expected one of {list(KNOWN_REGISTRIES)}")
        return value

    @field_validator("managed_record_types")
    @classmethod
    def _upper_record_types(cls, value: List[str]) -> List[str]:
        return [record_type.upper() for record_type in value]

    @model_validator(mode="after")
    def _check_registry_options(self) -> "Config":
        if self.txt_prefix and self.txt_suffix:
            raise ValueError("registry txt_prefix and txt_suffix are mutually exclusive")
        if self.encrypt_txt and not self.encryption_key:
            raise ValueError("registry encryption requires an encryption_key")
        return self

    @classmethod
    def from_yaml(cls, config_path: Optional[Union[str, Path]] = None) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            config_path: Path to the YAML configuration file

        Returns:
            Config: Config instance populated with values from the YAML file

        Raises:
            ConfigError: If the file cannot be read or the configuration is invalid
        """
        # Default configuration paths to check
        default_paths = [
            Path("./kelpie-dns.yaml"),
            Path("./kelpie-dns.yml"),
            Path("/etc/kelpie-dns/kelpie-dns.yaml"),
            Path("/etc/kelpie-dns/config.yaml"),
        ]

        if config_path:
            paths = [Path(config_path)]
            if not paths[0].exists():
                raise ConfigError(f"Configuration file {config_path} does not exist")
        else:
            paths = default_paths

        # Try to load configuration from the first existing path
        config_data = {}
        for path in paths:
            if path.exists():
                with open(path, "r") as f:
                    yaml_content = cls._substitute_env_vars(f.read())
                try:
                    config_data = yaml.safe_load(yaml_content) or {}
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {path}: {e}") from e
                break

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, config_data: dict) -> "Config":
        """
        Build a Config from nested configuration data.

        Raises:
            ConfigError: If the configuration is invalid
        """
        if not isinstance(config_data, dict):
            raise ConfigError("Configuration must be a mapping")
        try:
            return cls(**cls._flatten_config(config_data))
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    @staticmethod
    def _substitute_env_vars(content: str) -> str:
        """
        Substitute environment variables in the configuration content.

        Args:
            content: Configuration content

        Returns:
            str: Configuration content with environment variables substituted
        """
        # Pattern for ${ENV_VAR} or ${ENV_VAR:-default}
        pattern = r"\${([^}]+)}"

        def replace_env_var(match):
            env_var = match.group(1)
            if ":-" in env_var:
                env_var, default = env_var.split(":-", 1)
                return os.environ.get(env_var, default)
            return os.environ.get(env_var, "")

        return re.sub(pattern, replace_env_var, content)

    @staticmethod
    def _flatten_config(config_data: dict) -> dict:
        """
        Flatten nested configuration. Only keys present in the file are set,
        everything else keeps the model defaults.

        Args:
            config_data: Nested configuration data

        Returns:
            dict: Flattened configuration data
        """
        flat_config = {}

        def copy(section: dict, key: str, target: str):
            if key in section and section[key] is not None:
                flat_config[target] = section[key]

        if "sources" in config_data:
            flat_config["sources"] = config_data["sources"] or []

        # Provider configuration
        provider = config_data.get("provider") or {}
        copy(provider, "name", "provider")
        cloudflare = provider.get("cloudflare") or {}
        copy(cloudflare, "api_token", "cloudflare_api_token")
        copy(cloudflare, "proxied_by_default", "cloudflare_proxied_by_default")
        webhook = provider.get("webhook") or {}
        copy(webhook, "url", "webhook_url")
        copy(webhook, "timeout", "webhook_timeout")
        copy(webhook, "read_retries", "webhook_read_retries")
        inmemory = provider.get("inmemory") or {}
        copy(inmemory, "zones", "inmemory_zones")

        # Registry configuration
        registry = config_data.get("registry") or {}
        copy(registry, "type", "registry")
        copy(registry, "txt_owner_id", "txt_owner_id")
        copy(registry, "txt_prefix", "txt_prefix")
        copy(registry, "txt_suffix", "txt_suffix")
        copy(registry, "txt_wildcard_replacement", "txt_wildcard_replacement")
        copy(registry, "txt_new_format_only", "txt_new_format_only")
        copy(registry, "cache_interval", "txt_cache_interval")
        copy(registry, "encrypt", "encrypt_txt")
        copy(registry, "encryption_key", "encryption_key")

        # Controller configuration
        controller = config_data.get("controller") or {}
        copy(controller, "interval", "interval")
        copy(controller, "min_event_sync_interval", "min_event_sync_interval")
        copy(controller, "once", "once")
        copy(controller, "dry_run", "dry_run")
        copy(controller, "policy", "policy")
        copy(controller, "cycle_timeout", "cycle_timeout")
        copy(controller, "fail_on_source_error", "fail_on_source_error")

        # Domain filtering
        domains = config_data.get("domains") or {}
        copy(domains, "include", "domain_filter")
        copy(domains, "exclude", "exclude_domains")
        copy(domains, "regex", "regex_domain_filter")
        copy(domains, "regex_exclusion", "regex_domain_exclusion")
        copy(domains, "zone_ids", "zone_id_filter")
        copy(config_data, "managed_record_types", "managed_record_types")

        # Logging configuration
        logging = config_data.get("logging") or {}
        copy(logging, "level", "log_level")

        # Health check configuration
        health = config_data.get("health") or {}
        copy(health, "enabled", "health_enabled")
        copy(health, "host", "health_host")
        copy(health, "port", "health_port")

        # Webhook server configuration
        webhook_server = config_data.get("webhook_server") or {}
        copy(webhook_server, "enabled", "webhook_server_enabled")
        copy(webhook_server, "host", "webhook_server_host")
        copy(webhook_server, "port", "webhook_server_port")

        return flat_config
