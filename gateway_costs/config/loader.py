"""
Configuration management and loading.

Handles dashboard settings read from a YAML file.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


@dataclass(frozen=True)
class CacheConfig:
    """Location of the cost cache databases."""
    path: str = "gateway_costs.db"
    demo_path: str = "gateway_costs_demo.db"


@dataclass(frozen=True)
class DirectoryConfig:
    """Gateway database holding the users and models tables."""
    path: Optional[str] = None


@dataclass(frozen=True)
class BillingConfig:
    """Cost Explorer access and retry settings."""
    region: str = "us-east-1"
    profile: Optional[str] = None
    metric: str = "BlendedCost"
    user_tag: str = "GatewayUserId"
    model_tag: str = "GatewayModelId"
    fetch_timeout_seconds: float = 60.0
    max_attempts: int = 3
    retry_wait_seconds: float = 1.0

    def __post_init__(self):
        """Validate numeric settings."""
        if self.fetch_timeout_seconds <= 0:
            raise ValueError("fetch_timeout_seconds must be > 0")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.retry_wait_seconds < 0:
            raise ValueError("retry_wait_seconds cannot be negative")


@dataclass(frozen=True)
class DashboardConfig:
    """Complete dashboard configuration."""
    cache: CacheConfig = field(default_factory=CacheConfig)
    directory: DirectoryConfig = field(default_factory=DirectoryConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)


_SECTIONS = {
    "cache": CacheConfig,
    "directory": DirectoryConfig,
    "billing": BillingConfig,
}


def load_dashboard_config(path: str) -> DashboardConfig:
    """Load and validate dashboard configuration from a YAML file.

    Every section and key is optional; unknown keys are rejected so that a
    typo cannot silently fall back to a default database or region.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated DashboardConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Dashboard config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return DashboardConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name, section_cls in _SECTIONS.items():
        data = raw_config.get(name)
        sections[name] = _parse_section({} if data is None else data, name, section_cls)
    return DashboardConfig(**sections)


def _parse_section(data: Any, name: str, section_cls: type) -> Any:
    """Parse and validate one configuration section.

    Args:
        data: Raw section data
        name: Section name for error messages
        section_cls: Dataclass describing the section

    Returns:
        Instance of section_cls

    Raises:
        ValueError: If the section is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    field_types: Dict[str, Any] = {f.name: f.type for f in fields(section_cls)}
    unknown_keys = set(data.keys()) - set(field_types)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        values[key] = _coerce(value, field_types[key], f"{name}.{key}")
    return section_cls(**values)


def _coerce(value: Any, annotation: Any, path: str) -> Any:
    """Check a scalar against its field annotation."""
    optional = annotation == Optional[str]
    if value is None:
        if optional:
            return None
        raise ValueError(f"'{path}' cannot be null")

    if annotation is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"'{path}' must be an integer")
        return value
    if annotation is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{path}' must be a number")
        return float(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{path}' must be a non-empty string")
    return value
