"""
Runtime settings for the report pipeline.
Defaults, overridden by config/settings.yaml, overridden by CONTRIB_* environment variables.
"""
import os
from typing import Any, Dict, Mapping, Optional

import yaml

from errors import Misconfiguration

SETTINGS_FILENAME = 'settings.yaml'

DEFAULT_SETTINGS = {
    'cache_ttl_seconds': 3600,
    'cache_max_entries': 500,
    'request_delay': 0.5,
    'request_timeout': 30.0,
    'per_page': 50,
    'top_n': 25,
    'detail_max_pages': 5,
}

ENV_KEYS = {
    'CONTRIB_CACHE_TTL': 'cache_ttl_seconds',
    'CONTRIB_CACHE_MAX_ENTRIES': 'cache_max_entries',
    'CONTRIB_REQUEST_DELAY': 'request_delay',
    'CONTRIB_REQUEST_TIMEOUT': 'request_timeout',
    'CONTRIB_PER_PAGE': 'per_page',
    'CONTRIB_TOP_N': 'top_n',
    'CONTRIB_DETAIL_MAX_PAGES': 'detail_max_pages',
}

_FLOAT_KEYS = {'request_delay', 'request_timeout'}


class Settings:
    def __init__(self, cache_ttl_seconds: int = 3600, cache_max_entries: int = 500, request_delay: float = 0.5,
                 request_timeout: float = 30.0, per_page: int = 50, top_n: int = 25, detail_max_pages: int = 5):
        self.cache_ttl_seconds = cache_ttl_seconds
        self.cache_max_entries = cache_max_entries
        self.request_delay = request_delay
        self.request_timeout = request_timeout
        self.per_page = per_page
        self.top_n = top_n
        self.detail_max_pages = detail_max_pages

    def to_dict(self) -> Dict[str, Any]:
        return {k: getattr(self, k) for k in DEFAULT_SETTINGS}

    def __repr__(self):
        return f"Settings({self.to_dict()!r})"


def default_settings_path() -> str:
    return os.path.join(os.path.dirname(__file__), 'config', SETTINGS_FILENAME)


def _coerce(key: str, value: Any):
    try:
        converted = float(value) if key in _FLOAT_KEYS else int(value)
    except (TypeError, ValueError):
        raise Misconfiguration(f"Invalid value for {key}: {value!r}")
    if converted <= 0:
        raise Misconfiguration(f"{key} must be positive, got {value!r}")
    return converted


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from defaults, the YAML file and the environment.
    A missing file is fine; an unreadable one or a bad value raises Misconfiguration.
    """
    values: Dict[str, Any] = dict(DEFAULT_SETTINGS)
    explicit = path is not None
    path = path or default_settings_path()
    if os.path.exists(path):
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise Misconfiguration(f"Could not read settings from {path}: {exc}")
        if not isinstance(data, dict):
            raise Misconfiguration(f"Settings file {path} must contain a mapping")
        # unknown keys are ignored
        for k in DEFAULT_SETTINGS:
            if data.get(k) is not None:
                values[k] = data[k]
    elif explicit:
        raise Misconfiguration(f"Settings file not found: {path}")

    env = os.environ if env is None else env
    for var, key in ENV_KEYS.items():
        if env.get(var):
            values[key] = env[var]

    return Settings(**{k: _coerce(k, v) for k, v in values.items()})


__all__ = ["Settings", "load_settings", "DEFAULT_SETTINGS"]
