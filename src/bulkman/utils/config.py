"""Configuration utilities for bulkman."""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

console = Console()

CONFIG_DIR = Path.home() / ".bulkman"
CONFIG_FILE_YAML = CONFIG_DIR / "config.yaml"
ENV_PREFIX = "BULKMAN_"

# Default orchestration configuration
DEFAULT_ORCHESTRATION_CONFIG = {
    "max_concurrent_processes": 3,
    "batch_size": 10,
    "max_concurrency_per_batch": 5,
    "continue_on_error": True,
    "retry_max_attempts": 3,
    "retry_initial_delay": 1.0,  # seconds
    "retry_max_delay": 30.0,  # seconds
    "circuit_breaker_failure_threshold": 5,
    "circuit_breaker_open_duration": 60.0,  # seconds
    "circuit_breaker_sampling_window": 60.0,  # seconds
    "call_timeout": 30.0,  # seconds, per remote call
    "process_retention_seconds": 30.0,
    "default_scopes": ["identitystore", "sso-admin"],
}

# Names used by the configuration surface, mapped to snake_case keys
OPTION_ALIASES = {
    "MaxConcurrentProcesses": "max_concurrent_processes",
    "BatchSize": "batch_size",
    "MaxConcurrencyPerBatch": "max_concurrency_per_batch",
    "ContinueOnError": "continue_on_error",
    "RetryMaxAttempts": "retry_max_attempts",
    "RetryInitialDelay": "retry_initial_delay",
    "RetryMaxDelay": "retry_max_delay",
    "CircuitBreakerFailureThreshold": "circuit_breaker_failure_threshold",
    "CircuitBreakerOpenDuration": "circuit_breaker_open_duration",
    "CircuitBreakerSamplingWindow": "circuit_breaker_sampling_window",
    "CallTimeout": "call_timeout",
    "ProcessRetentionSeconds": "process_retention_seconds",
    "DefaultScopes": "default_scopes",
}


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes", "on", "false", "0", "no", "off"):
        return value.lower() in ("true", "1", "yes", "on")
    raise ValueError(f"{name} must be a boolean value")


@dataclass
class OrchestrationSettings:
    """Validated orchestration settings."""

    max_concurrent_processes: int = 3
    batch_size: int = 10
    max_concurrency_per_batch: int = 5
    continue_on_error: bool = True
    retry_max_attempts: int = 3
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_open_duration: float = 60.0
    circuit_breaker_sampling_window: float = 60.0
    call_timeout: float = 30.0
    process_retention_seconds: float = 30.0
    default_scopes: List[str] = field(default_factory=lambda: ["identitystore", "sso-admin"])

    def __post_init__(self):
        errors = self.validate()
        if errors:
            raise ValueError("; ".join(errors))

    def validate(self) -> List[str]:
        """
        Validate the settings.

        Returns:
            List of validation errors
        """
        errors = []
        positive_ints = [
            "max_concurrent_processes",
            "batch_size",
            "max_concurrency_per_batch",
            "retry_max_attempts",
            "circuit_breaker_failure_threshold",
        ]
        for name in positive_ints:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                errors.append(f"{name} must be a positive integer")

        non_negative = ["retry_initial_delay", "retry_max_delay", "process_retention_seconds"]
        for name in non_negative:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                errors.append(f"{name} must be a non-negative number")

        positive = ["circuit_breaker_open_duration", "circuit_breaker_sampling_window", "call_timeout"]
        for name in positive:
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
                errors.append(f"{name} must be a positive number")

        if not errors and self.retry_max_delay < self.retry_initial_delay:
            errors.append("retry_max_delay cannot be less than retry_initial_delay")

        if not isinstance(self.continue_on_error, bool):
            errors.append("continue_on_error must be a boolean value")

        if not isinstance(self.default_scopes, list) or not all(
            isinstance(scope, str) and scope for scope in self.default_scopes
        ):
            errors.append("default_scopes must be a list of non-empty strings")

        return errors

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OrchestrationSettings":
        """
        Build settings from a mapping.

        Accepts the PascalCase option names (``BatchSize``) and snake_case keys
        (``batch_size``). Unknown keys are ignored.

        Raises:
            ValueError: If a value is invalid
        """
        values: Dict[str, Any] = {}
        known = {f.name: f for f in fields(cls)}

        for key, value in (data or {}).items():
            name = OPTION_ALIASES.get(key, key)
            if name not in known or value is None:
                continue

            default = DEFAULT_ORCHESTRATION_CONFIG[name]
            try:
                if isinstance(default, bool):
                    value = _parse_bool(value, name)
                elif isinstance(default, int) and not isinstance(value, bool):
                    value = int(value)
                elif isinstance(default, float) and not isinstance(value, bool):
                    value = float(value)
                elif isinstance(default, list) and isinstance(value, str):
                    value = [scope.strip() for scope in value.split(",") if scope.strip()]
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid value for {name}: {value!r}") from e
            values[name] = value

        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def retry_policy(self):
        """Build the RetryPolicy for these settings."""
        from ..session.retry import RetryPolicy

        return RetryPolicy(
            max_attempts=self.retry_max_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
        )

    def circuit_breaker_config(self):
        """Build the CircuitBreakerConfig for these settings."""
        from ..session.circuit_breaker import CircuitBreakerConfig

        return CircuitBreakerConfig(
            failure_threshold=self.circuit_breaker_failure_threshold,
            open_duration=self.circuit_breaker_open_duration,
            sampling_window=self.circuit_breaker_sampling_window,
        )

    def batch_policy(self):
        """Build the default BatchPolicy for these settings."""
        from ..bulk.models import BatchPolicy

        return BatchPolicy(
            batch_size=self.batch_size,
            continue_on_error=self.continue_on_error,
            max_concurrency=self.max_concurrency_per_batch,
        )


class Config:
    """Manages bulkman configuration stored as YAML."""

    def __init__(self, config_file: Optional[Path] = None):
        """
        Initialize the configuration manager.

        Args:
            config_file: YAML file to read; defaults to ~/.bulkman/config.yaml
        """
        self.config_file = Path(config_file) if config_file else CONFIG_FILE_YAML
        self.config_data: Dict[str, Any] = {}
        self._config_loaded = False

    def _ensure_config_loaded(self):
        """Ensure configuration is loaded from file."""
        if not self._config_loaded:
            self._load_config()
            self._config_loaded = True

    def reload_config(self):
        """Force reload configuration from file."""
        self._config_loaded = False
        self._ensure_config_loaded()

    def _load_config(self):
        """Load configuration from the YAML file."""
        if not self.config_file.exists():
            self.config_data = {}
            return

        try:
            with open(self.config_file, "r", encoding="utf-8") as f:
                self.config_data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            console.print(
                f"[red]Error: Configuration file {self.config_file} is not valid YAML: {e}[/red]"
            )
            self.config_data = {}
        except OSError as e:
            console.print(f"[red]Error reading configuration file {self.config_file}: {e}[/red]")
            self.config_data = {}

        if not isinstance(self.config_data, dict):
            console.print(f"[red]Error: Configuration file {self.config_file} must contain a mapping[/red]")
            self.config_data = {}

    def save_config(self):
        """Save the configuration to the YAML file."""
        try:
            self.config_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file, "w", encoding="utf-8") as f:
                yaml.dump(self.config_data, f, default_flow_style=False, indent=2, sort_keys=False)
        except OSError as e:
            console.print(f"[red]Error saving configuration: {e}[/red]")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a configuration value with dot notation support.

        Args:
            key: Configuration key (supports dot notation like "orchestration.batch_size")
            default: Default value if key doesn't exist

        Returns:
            Configuration value
        """
        self._ensure_config_loaded()

        value: Any = self.config_data
        for part in key.split("."):
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return value

    def set_section(self, section: str, value: Dict[str, Any]):
        """
        Set a configuration section, merging with existing values, and save.

        Args:
            section: Configuration section name
            value: Configuration section value
        """
        self._ensure_config_loaded()
        existing_section = self.config_data.get(section, {})
        if isinstance(existing_section, dict):
            merged = existing_section.copy()
            merged.update(value)
            self.config_data[section] = merged
        else:
            self.config_data[section] = value
        self.save_config()

    def get_orchestration_config(self) -> Dict[str, Any]:
        """
        Get orchestration configuration with defaults and environment variable overrides.

        Returns:
            Orchestration configuration dictionary with snake_case keys
        """
        self._ensure_config_loaded()
        orchestration_config = DEFAULT_ORCHESTRATION_CONFIG.copy()
        orchestration_config["default_scopes"] = list(orchestration_config["default_scopes"])

        # Override with config file values if they exist
        file_config = self.config_data.get("orchestration") or {}
        if isinstance(file_config, dict):
            for key, value in file_config.items():
                orchestration_config[OPTION_ALIASES.get(key, key)] = value

        # Override with environment variables
        for name, default in DEFAULT_ORCHESTRATION_CONFIG.items():
            env_var = f"{ENV_PREFIX}{name.upper()}"
            current = orchestration_config.get(name, default)
            if isinstance(default, bool):
                orchestration_config[name] = self._get_env_bool(env_var, current)
            elif isinstance(default, int):
                orchestration_config[name] = self._get_env_int(env_var, current)
            elif isinstance(default, float):
                orchestration_config[name] = self._get_env_float(env_var, current)
            elif isinstance(default, list):
                orchestration_config[name] = self._get_env_list(env_var, current)

        return orchestration_config

    def get_orchestration_settings(self) -> OrchestrationSettings:
        """
        Get validated orchestration settings.

        Raises:
            ValueError: If the configured values are invalid
        """
        return OrchestrationSettings.from_dict(self.get_orchestration_config())

    def _get_env_bool(self, env_var: str, default: bool) -> bool:
        """
        Get boolean value from environment variable.

        Args:
            env_var: Environment variable name
            default: Default value if env var is not set

        Returns:
            Boolean value
        """
        value = os.environ.get(env_var)
        if value is None:
            return default
        return value.lower() in ("true", "1", "yes", "on")

    def _get_env_int(self, env_var: str, default: int) -> int:
        """
        Get integer value from environment variable.

        Args:
            env_var: Environment variable name
            default: Default value if env var is not set

        Returns:
            Integer value
        """
        value = os.environ.get(env_var)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            console.print(
                f"Warning: Invalid integer value for {env_var}: {value}. Using default: {default}"
            )
            return default

    def _get_env_float(self, env_var: str, default: float) -> float:
        value = os.environ.get(env_var)
        if value is None:
            return default
        try:
            return float(value)
        except ValueError:
            console.print(
                f"Warning: Invalid number for {env_var}: {value}. Using default: {default}"
            )
            return default

    def _get_env_list(self, env_var: str, default: List[str]) -> List[str]:
        """Get a comma-separated list from an environment variable."""
        value = os.environ.get(env_var)
        if value is None:
            return default
        return [item.strip() for item in value.split(",") if item.strip()]
