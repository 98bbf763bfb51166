"""
facetcut Configuration System

Configuration management with YAML files, environment variables and
validation.

Configuration Sources (in order of precedence):
    1. Environment variables (FACETCUT_*, plus PRODUCTION and ETHERSCAN_API_KEY)
    2. Runtime overrides
    3. User config file (~/.facetcut/config.yaml)
    4. Project config file (./facetcut.yaml or ./config/facetcut.yaml)
    5. Default values
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    secret: bool = False  # masked in to_dict(redact=True)
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value}")
        self._value = value

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.strip().lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == list:
            return [v.strip() for v in value.split(",") if v.strip()]  # type: ignore
        else:
            return value  # type: ignore


@dataclass
class NetworkConfig:
    """Target network settings."""
    name: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="hardhat",
        env_var="FACETCUT_NETWORK",
        description="Network name used to partition ledger files",
        validator=lambda x: bool(x) and "/" not in x and "\\" not in x,
    ))
    live: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="FACETCUT_NETWORK_LIVE",
        description="Whether the network is a live (non-ephemeral) network",
    ))
    confirmations_live: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=4,
        env_var="FACETCUT_CONFIRMATIONS",
        description="Block confirmations to wait for on live networks",
        validator=lambda x: x > 0,
    ))
    confirmations_local: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="FACETCUT_CONFIRMATIONS_LOCAL",
        description="Block confirmations to wait for on local networks",
        validator=lambda x: x > 0,
    ))


@dataclass
class LedgerConfig:
    """Deployment ledger settings."""
    directory: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="deployments/_deployment_logs",
        env_var="FACETCUT_LEDGER_DIR",
        description="Directory holding the ledger files",
    ))
    production: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="PRODUCTION",
        description="Write to production ledgers instead of staging",
    ))
    strict_address_map: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="FACETCUT_STRICT_ADDRESS_MAP",
        description="Fail on an unreadable address map instead of starting empty",
    ))
    optimizer_runs: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="600",
        env_var="FACETCUT_OPTIMIZER_RUNS",
        description="Optimizer runs recorded with each deployment",
        validator=lambda x: str(x).isdigit(),
    ))
    version_marker: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="@custom:version",
        env_var="FACETCUT_VERSION_MARKER",
        description="Source marker preceding the module version tag",
        validator=lambda x: bool(x.strip()),
    ))


@dataclass
class CutConfig:
    """Diamond cut settings."""
    initializer_signature: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="init(bytes)",
        env_var="FACETCUT_INITIALIZER",
        description="Operation excluded from selector catalogs",
        validator=lambda x: "(" in x and x.endswith(")"),
    ))
    lock_directory: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="deployments/.locks",
        env_var="FACETCUT_LOCK_DIR",
        description="Directory for per-target run lock files",
    ))


@dataclass
class VerificationConfig:
    """Source verification settings."""
    enabled: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=True,
        env_var="FACETCUT_VERIFY",
        description="Attempt source verification on live networks",
    ))
    api_key: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="ETHERSCAN_API_KEY",
        description="Block explorer API key",
        secret=True,
    ))


@dataclass
class ObservabilityConfig:
    """Logging settings."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="FACETCUT_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="FACETCUT_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class FacetCutConfig:
    """
    Root configuration.

    Aggregates all section configurations and provides export helpers.
    """
    network: NetworkConfig = field(default_factory=NetworkConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    cut: CutConfig = field(default_factory=CutConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def confirmations(self, live: Optional[bool] = None) -> int:
        """Confirmation depth for the configured (or given) network class."""
        is_live = self.network.live.get() if live is None else live
        if is_live:
            return self.network.confirmations_live.get()
        return self.network.confirmations_local.get()

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                value = obj.get()
                if redact and obj.secret and value:
                    return "***"
                return value
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = FacetCutConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> FacetCutConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration file must be a mapping: {path}")
        self._apply_dict(data)
        self._config_paths.append(path)

    def load_defaults(self) -> None:
        """Load the first project config file found, then the user config file.

        The user file is applied last so its values win over the project's.
        """
        project_paths = [Path("facetcut.yaml"), Path("config") / "facetcut.yaml"]
        for path in project_paths:
            if path.exists():
                self.load_from_file(path)
                break
        user_path = Path.home() / ".facetcut" / "config.yaml"
        if user_path.exists():
            self.load_from_file(user_path)

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                dotted = f"{prefix}{key}"
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {dotted}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{dotted}.")
                else:
                    raise ConfigError(f"Config section {dotted} must be a mapping")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("network.name", "sepolia")
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("ledger.directory")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except (TypeError, ValueError) as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    @classmethod
    def reset(cls) -> None:
        """Drop the singleton so the next access starts from defaults."""
        with cls._lock:
            cls._instance = None


def get_config() -> FacetCutConfig:
    """Get the current configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
