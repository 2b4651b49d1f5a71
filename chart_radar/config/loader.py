"""
Configuration management and loading.

Handles provider, capture, quota, storage and logging settings.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from chart_radar.core.capture import DEFAULT_BACKGROUND
from chart_radar.core.tiers import DEFAULT_LIMITS, AnalysisKind, LimitsTable, Tier, TierLimits
from chart_radar.storage.db import DEFAULT_DB_PATH

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class ProviderConfig:
    """Remote analysis provider settings."""
    model: str = "gpt-4o"
    base_url: Optional[str] = None
    api_key_env: str = "OPENAI_API_KEY"
    timeout_seconds: float = 60.0
    max_tokens: int = 2000
    temperature: float = 0.1

    def __post_init__(self):
        """Validate provider values."""
        if not self.model or not self.model.strip():
            raise ValueError("provider.model cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("provider.timeout_seconds must be > 0")
        if self.max_tokens <= 0:
            raise ValueError("provider.max_tokens must be > 0")
        if not 0 <= self.temperature <= 2:
            raise ValueError("provider.temperature must be between 0 and 2")

    @property
    def api_key(self) -> Optional[str]:
        return os.environ.get(self.api_key_env)


@dataclass(frozen=True)
class CaptureConfig:
    """Capture validation thresholds."""
    background: Tuple[int, int, int] = DEFAULT_BACKGROUND
    channel_threshold: int = 20
    min_content_percentage: float = 3.0
    min_color_diversity: int = 8
    target_samples: int = 5000

    def __post_init__(self):
        """Validate thresholds."""
        if len(self.background) != 3 or any(not 0 <= c <= 255 for c in self.background):
            raise ValueError("capture.background must be three channel values in 0-255")
        if not 0 <= self.channel_threshold <= 255:
            raise ValueError("capture.channel_threshold must be between 0 and 255")
        if not 0 <= self.min_content_percentage <= 100:
            raise ValueError("capture.min_content_percentage must be between 0 and 100")
        if self.min_color_diversity < 0:
            raise ValueError("capture.min_color_diversity must be >= 0")
        if self.target_samples <= 0:
            raise ValueError("capture.target_samples must be > 0")


@dataclass(frozen=True)
class StorageConfig:
    """SQLite location."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate the database path."""
        if not self.db_path or not self.db_path.strip():
            raise ValueError("storage.db_path cannot be empty")


@dataclass(frozen=True)
class LoggingConfig:
    """Log output settings."""
    level: str = "INFO"

    def __post_init__(self):
        """Validate the log level name."""
        if self.level.upper() not in LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {list(LOG_LEVELS)}")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    limits: LimitsTable = DEFAULT_LIMITS
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def default_config() -> AppConfig:
    """Return the built-in configuration."""
    return AppConfig()


def load_config(path: str) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Every section is optional; anything omitted keeps its built-in value.
    Unknown keys are rejected rather than ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {'provider', 'capture', 'tiers', 'storage', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    provider = _parse_section(raw_config, 'provider', {
        'model': str,
        'base_url': str,
        'api_key_env': str,
        'timeout_seconds': (int, float),
        'max_tokens': int,
        'temperature': (int, float),
    })
    capture = _parse_section(raw_config, 'capture', {
        'background': str,
        'channel_threshold': int,
        'min_content_percentage': (int, float),
        'min_color_diversity': int,
        'target_samples': int,
    })
    if 'background' in capture:
        capture['background'] = _parse_hex_color(capture['background'])
    storage = _parse_section(raw_config, 'storage', {'db_path': str})
    logging_section = _parse_section(raw_config, 'logging', {'level': str})

    tiers_data = raw_config.get('tiers') or {}
    if not isinstance(tiers_data, dict):
        raise ValueError("'tiers' must be a dictionary")

    return AppConfig(
        provider=ProviderConfig(**provider),
        capture=CaptureConfig(**capture),
        limits=DEFAULT_LIMITS.with_overrides(_parse_tier_overrides(tiers_data)),
        storage=StorageConfig(**storage),
        logging=LoggingConfig(**logging_section),
    )


def _parse_section(raw_config: Dict, name: str, schema: Dict[str, Any]) -> Dict[str, Any]:
    """Validate one flat section against a key -> type schema.

    Args:
        raw_config: Whole configuration mapping
        name: Section name
        schema: Allowed keys and their accepted types

    Returns:
        The section's values, ready to pass as keyword arguments

    Raises:
        ValueError: If the section has unknown keys or wrongly typed values
    """
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - set(schema.keys())
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")

    for key, value in data.items():
        expected = schema[key]
        # bool is an int subclass but never a valid number here
        if isinstance(value, bool) or not isinstance(value, expected):
            raise ValueError(f"'{key}' in {name} has an invalid type: {type(value).__name__}")
    return dict(data)


def _parse_hex_color(value: str) -> Tuple[int, int, int]:
    """Parse '#rrggbb' into an RGB tuple."""
    text = value.strip().lstrip('#')
    if len(text) != 6:
        raise ValueError(f"capture.background must be a '#rrggbb' color, got {value!r}")
    try:
        return (int(text[0:2], 16), int(text[2:4], 16), int(text[4:6], 16))
    except ValueError:
        raise ValueError(f"capture.background must be a '#rrggbb' color, got {value!r}")


def _parse_tier_overrides(tiers_data: Dict) -> Dict[AnalysisKind, Dict[Tier, TierLimits]]:
    """Parse the ``tiers`` section.

    Layout is ``tiers.<kind>.<tier>.{daily, monthly}``, for example
    ``tiers.basic.free.daily: 5``.

    Raises:
        ValueError: If a kind, tier or limit is unknown or invalid
    """
    overrides: Dict[AnalysisKind, Dict[Tier, TierLimits]] = {}
    valid_kinds = [kind.value for kind in AnalysisKind]
    valid_tiers = [tier.value for tier in Tier]

    for kind_name, per_tier in tiers_data.items():
        if kind_name not in valid_kinds:
            raise ValueError(f"Unknown analysis kind in tiers: {kind_name!r} (expected one of {valid_kinds})")
        if not isinstance(per_tier, dict):
            raise ValueError(f"'tiers.{kind_name}' must be a dictionary")

        kind = AnalysisKind(kind_name)
        for tier_name, limits in per_tier.items():
            path = f"tiers.{kind_name}.{tier_name}"
            if tier_name not in valid_tiers:
                raise ValueError(f"Unknown tier in {path} (expected one of {valid_tiers})")
            if not isinstance(limits, dict):
                raise ValueError(f"'{path}' must be a dictionary")

            unknown_keys = set(limits.keys()) - {'daily', 'monthly'}
            if unknown_keys:
                raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

            tier = Tier(tier_name)
            base = DEFAULT_LIMITS.get_limits(tier, kind)
            daily = limits.get('daily', base.daily_limit)
            monthly = limits.get('monthly', base.monthly_limit)
            for key, value in (('daily', daily), ('monthly', monthly)):
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    raise ValueError(f"'{key}' in {path} must be a positive integer")

            overrides.setdefault(kind, {})[tier] = TierLimits(daily_limit=daily, monthly_limit=monthly)

    return overrides
