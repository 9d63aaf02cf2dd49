"""Configuration management with persistent config.json + env var overrides."""

import json
import logging
import os

from .models import Credentials

log = logging.getLogger("selfcare.config")

PASSWORD_MASK = "••••••••"

DEFAULTS = {
    "portal_url": "https://selfcare.bijoy.net",
    "portal_user": "",
    "portal_password": "",
    "request_timeout": 20,
    "speed_interval_ms": 1500,
    "speed_backoff_ms": 3000,
    "speed_poll_wait_ms": 1500,
    "speed_history": 50,
    "web_port": 8766,
}

ENV_MAP = {
    "portal_url": "PORTAL_URL",
    "portal_user": "PORTAL_USER",
    "portal_password": "PORTAL_PASSWORD",
    "request_timeout": "REQUEST_TIMEOUT",
    "speed_interval_ms": "SPEED_INTERVAL_MS",
    "speed_backoff_ms": "SPEED_BACKOFF_MS",
    "speed_poll_wait_ms": "SPEED_POLL_WAIT_MS",
    "speed_history": "SPEED_HISTORY",
    "web_port": "WEB_PORT",
    "data_dir": "DATA_DIR",
}

INT_KEYS = {
    "request_timeout",
    "speed_interval_ms",
    "speed_backoff_ms",
    "speed_poll_wait_ms",
    "speed_history",
    "web_port",
}

SECRET_KEYS = {"portal_password"}

_UNUSABLE = object()


def _coerce(key, raw, source):
    """Return ``raw`` typed for ``key``, or _UNUSABLE if a numeric key does not parse."""
    if key not in INT_KEYS:
        return raw
    try:
        return int(raw)
    except (ValueError, TypeError):
        log.warning("Ignoring non-numeric %s from %s: %r", key, source, raw)
        return _UNUSABLE


class ConfigManager:
    """Loads config from config.json, env vars override file values."""

    def __init__(self, data_dir="/data"):
        self.data_dir = data_dir
        self.config_path = os.path.join(data_dir, "config.json")
        self._file_config = {}
        self._load()

    def _load(self):
        """Load config.json if it exists."""
        if not os.path.exists(self.config_path):
            log.info("No config.json found, using defaults/env")
            return
        try:
            with open(self.config_path, "r") as f:
                loaded = json.load(f)
        except (OSError, ValueError) as e:
            log.warning("Failed to load config.json: %s", e)
            return
        if not isinstance(loaded, dict):
            log.warning("Ignoring config.json: top level is not an object")
            return
        self._file_config = loaded
        log.info("Loaded config from %s", self.config_path)

    def _sources(self, key):
        """Yield ``(source, raw value)`` for ``key``, highest priority first."""
        env_name = ENV_MAP.get(key)
        if env_name and os.environ.get(env_name):
            yield env_name, os.environ[env_name]
        if key in self._file_config:
            yield "config.json", self._file_config[key]

    def get(self, key, default=None):
        """Get config value: env var > config.json > default.

        A numeric key whose value does not parse is logged and skipped, so
        the next source applies.
        """
        for source, raw in self._sources(key):
            value = _coerce(key, raw, source)
            if value is not _UNUSABLE:
                return value
        if default is not None:
            return default
        return DEFAULTS.get(key)

    def save(self, data):
        """Merge ``data`` into config.json.

        The masked password echoed back by the settings form is not a change.
        Numeric keys are stored as ints when they parse.
        """
        for key, value in data.items():
            if key in SECRET_KEYS and value == PASSWORD_MASK:
                continue
            coerced = _coerce(key, value, "settings")
            self._file_config[key] = value if coerced is _UNUSABLE else coerced
        self._write()

    def _write(self):
        os.makedirs(self.data_dir, exist_ok=True)
        with open(self.config_path, "w") as f:
            json.dump(self._file_config, f, indent=2)
        log.info("Config saved to %s", self.config_path)

    def clear_credentials(self):
        """Forget the stored customer id and password."""
        removed = [
            key for key in ("portal_user", "portal_password")
            if self._file_config.pop(key, None) is not None
        ]
        if removed:
            self._write()
            log.info("Stored credentials cleared")

    def is_configured(self):
        """True if customer id and password are set (from env or config.json)."""
        return self.credentials() is not None

    def credentials(self):
        """Stored Credentials, or None if either part is missing."""
        user = self.get("portal_user")
        password = self.get("portal_password")
        if not user or not password:
            return None
        return Credentials(customer_id=str(user), password=str(password))

    def get_all(self):
        """Effective value of every setting, plus the data directory."""
        result = {key: self.get(key) for key in DEFAULTS}
        result["data_dir"] = os.environ.get("DATA_DIR", self.data_dir)
        return result

    def get_public(self):
        """Like get_all, with secrets masked."""
        result = self.get_all()
        for key in SECRET_KEYS:
            if result.get(key):
                result[key] = PASSWORD_MASK
        return result

    def client_kwargs(self):
        """Constructor arguments for PortalSessionClient."""
        return {
            "base_url": self.get("portal_url"),
            "timeout": self.get("request_timeout"),
            "speed_interval": self.get("speed_interval_ms") / 1000,
            "speed_backoff": self.get("speed_backoff_ms") / 1000,
            "speed_poll_wait": self.get("speed_poll_wait_ms") / 1000,
        }
