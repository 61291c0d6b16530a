"""YAML configuration parser for the drift scanner."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from driftscan.config.models import EnvironmentConfig, ScannerConfig
from driftscan.utils.errors import ConfigurationError, ConfigValidationError

DEFAULT_CONFIG_FILE = "driftscan.yaml"


class Config:
    """Configuration manager for the drift scanner."""

    def __init__(self, config_path: str = DEFAULT_CONFIG_FILE):
        """Initialize configuration manager.

        Args:
            config_path: Path to driftscan.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.base_dir = self.config_path.parent
        self.data: Dict = {}
        self.scanner: ScannerConfig = ScannerConfig()
        self.environments: Dict[str, EnvironmentConfig] = {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[str] = None) -> "Config":
        """Build a configuration from an already parsed mapping.

        Args:
            data: Configuration mapping (same layout as the YAML file)
            base_dir: Directory relative paths are resolved against

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        config = cls(str(Path(base_dir or ".") / DEFAULT_CONFIG_FILE))
        config.data = data
        config._apply()
        return config

    def load(self) -> "Config":
        """Load and validate configuration from YAML file.

        Returns:
            Self for method chaining

        Raises:
            ConfigurationError: If the configuration file doesn't exist
            ConfigValidationError: If configuration is invalid
        """
        if not self.config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self.config_path}",
                suggestions=[f"Create {DEFAULT_CONFIG_FILE} or pass --config"]
            )

        try:
            with open(self.config_path, "r") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}", cause=e)

        if not isinstance(self.data, dict):
            raise ConfigValidationError("Configuration root must be a mapping")

        self._apply()
        return self

    def _apply(self) -> None:
        validation_errors = self.validate()
        if validation_errors:
            raise ConfigValidationError(
                f"Configuration validation failed with {len(validation_errors)} error(s)",
                validation_errors,
            )

        self.scanner = ScannerConfig(**(self.data.get("scanner") or {}))
        self.environments = {}
        for name, raw in self.data["environments"].items():
            self.environments[name] = self._resolve_paths(
                EnvironmentConfig(**self._normalize_environment(name, raw))
            )

    def validate(self) -> List[Dict]:
        """Validate configuration against schema.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        environments = self.data.get("environments")
        if environments is None:
            errors.append({"loc": ["environments"], "msg": "Required field 'environments' is missing"})
        elif not isinstance(environments, dict) or len(environments) == 0:
            errors.append({"loc": ["environments"], "msg": "At least one environment must be defined"})
        else:
            for name, raw in environments.items():
                try:
                    EnvironmentConfig(**self._normalize_environment(name, raw))
                except (ValidationError, TypeError) as e:
                    errors.extend(self._collect(["environments", name], e))

        if "scanner" in self.data:
            try:
                ScannerConfig(**(self.data["scanner"] or {}))
            except (ValidationError, TypeError) as e:
                errors.extend(self._collect(["scanner"], e))

        return errors

    def get_environment(self, name: str) -> EnvironmentConfig:
        """Get configuration for a named environment.

        Raises:
            ConfigurationError: If the environment is not configured
        """
        if name not in self.environments:
            available = ", ".join(self.environments) or "none"
            raise ConfigurationError(
                f"Environment '{name}' not found in configuration (available: {available})"
            )
        return self.environments[name]

    def list_environments(self) -> List[str]:
        """Environment names in configuration order."""
        return list(self.environments)

    def resolve_path(self, value: Optional[str]) -> Optional[str]:
        """Resolve a path relative to the configuration file directory."""
        if value is None:
            return None
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        return str(path)

    def _resolve_paths(self, env: EnvironmentConfig) -> EnvironmentConfig:
        provider = env.provider
        if provider.path:
            provider = provider.model_copy(update={"path": self.resolve_path(provider.path)})
        return env.model_copy(update={
            "declared": self.resolve_path(env.declared),
            "state": self.resolve_path(env.state),
            "provider": provider,
        })

    @staticmethod
    def _normalize_environment(name: str, raw: Any) -> Dict[str, Any]:
        # "prod: infra/prod.json" is shorthand for the declared location
        if isinstance(raw, str):
            return {"name": name, "declared": raw}
        if not isinstance(raw, dict):
            raise TypeError(f"environment '{name}' must be a mapping or a path")
        return {"name": name, **raw}

    @staticmethod
    def _collect(prefix: List[Any], error: Exception) -> List[Dict]:
        if isinstance(error, ValidationError):
            return [
                {"loc": prefix + list(item["loc"]), "msg": item["msg"]}
                for item in error.errors()
            ]
        return [{"loc": prefix, "msg": str(error)}]
