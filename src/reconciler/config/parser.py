"""YAML configuration parser."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from reconciler.utils.errors import ConfigurationError
from .models import ReconcilerConfig


class ConfigValidationError(ConfigurationError):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, errors: Optional[List[Dict]] = None):
        super().__init__(message)
        self.errors = errors or []

    def __str__(self) -> str:
        """Format validation errors for display."""
        if not self.errors:
            return self.message

        error_lines = [self.message, ""]
        for error in self.errors:
            location = " -> ".join(str(loc) for loc in error.get("loc", []))
            msg = error.get("msg", "Unknown error")
            error_lines.append(f"  - {location}: {msg}")

        return "\n".join(error_lines)


class Config:
    """Configuration manager for the reconciler."""

    def __init__(self, config_path: str):
        """Initialize configuration manager.

        Args:
            config_path: Path to reconciler.yaml configuration file
        """
        self.config_path = Path(config_path)
        self.data: Dict[str, Any] = {}
        self.settings: Optional[ReconcilerConfig] = None

    def load(self) -> ReconcilerConfig:
        """Load and validate configuration from YAML file.

        Returns:
            Validated ReconcilerConfig

        Raises:
            ConfigValidationError: If configuration is invalid
            FileNotFoundError: If configuration file doesn't exist
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            with open(self.config_path, "r") as f:
                self.data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}")

        self.settings = self.from_dict(self.data)
        return self.settings

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> ReconcilerConfig:
        """Validate a configuration mapping.

        Args:
            data: Parsed configuration

        Returns:
            Validated ReconcilerConfig

        Raises:
            ConfigValidationError: Listing every validation error
        """
        if not isinstance(data, dict):
            raise ConfigValidationError("Configuration must be a mapping")

        try:
            return ReconcilerConfig(**data)
        except ValidationError as e:
            errors = [{"loc": list(error["loc"]), "msg": error["msg"]} for error in e.errors()]
            raise ConfigValidationError(
                f"Configuration validation failed with {len(errors)} error(s)",
                errors,
            )
