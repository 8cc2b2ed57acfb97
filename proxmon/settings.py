"""
Settings Module

Application settings come from a YAML file merged over defaults, then from
environment variable overrides.
"""

from typing import Any, Dict, Mapping, Optional
import copy
import logging
import os
import yaml

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    'app': {'name': 'ProxMon', 'debug': False},
    'storage': {
        'backend': 'json',
        'metrics_dir': 'data/metrics',
        'retention_days': 90,
        'sweep_interval_minutes': 60
    },
    'collection': {
        'enabled': False,
        'interval_minutes': 5,
        'max_concurrency': 4,
        'request_timeout_seconds': 30
    },
    'web': {'host': '0.0.0.0', 'port': 3000},
    'cluster_provider': {
        'type': 'file',
        'config': {'file_path': 'config/clusters.yaml'}
    }
}

# env var -> (section, key, parser)
ENV_OVERRIDES = {
    'METRICS_RETENTION_DAYS': ('storage', 'retention_days', int),
    'METRICS_COLLECTION_INTERVAL': ('collection', 'interval_minutes', int),
    'METRICS_COLLECTION_ENABLED': ('collection', 'enabled', lambda v: v.strip().lower() == 'true'),
    'METRICS_MAX_CONCURRENCY': ('collection', 'max_concurrency', int),
    'PORT': ('web', 'port', int),
}


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(settings: Dict[str, Any],
                        environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Override settings from environment variables; malformed values are ignored."""
    environ = os.environ if environ is None else environ
    for name, (section, key, parse) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw == '':
            continue
        try:
            settings.setdefault(section, {})[key] = parse(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {name}: {raw!r}")
    return settings


def load_settings(config_path: str = 'config/settings.yaml',
                  environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Load application settings from YAML file."""
    settings = copy.deepcopy(DEFAULT_SETTINGS)

    if not os.path.exists(config_path):
        logger.warning(f"Settings file not found: {config_path}, using defaults")
    else:
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if data:
                settings = _merge(DEFAULT_SETTINGS, data)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load settings: {e}")

    return apply_env_overrides(settings, environ)
