"""
NodeGate - Configuration Manager
==================================
Handles loading of application configuration from three sources:

1. config.yaml  - Non-sensitive settings (ports, TTLs, storage path, etc.)
2. .env         - Secrets (JWT_SECRET) and the wallet allow-list
3. data/auth.json - A generated JWT secret, used when JWT_SECRET is unset

The .env file is loaded into the process environment by app.py at startup,
so everything secret is read through os.environ here.

Usage:
    config = ConfigManager(project_dir="/path/to/nodegate")
    settings = config.load()              # Returns merged config dict
    secret = config.get_jwt_secret()      # JWT_SECRET or generated secret
    wallets = config.get_allowed_wallets()
"""

import os
import json
import secrets
from datetime import datetime, timezone

import yaml
from dotenv import dotenv_values


# Default configuration values used when config.yaml is missing or incomplete.
DEFAULTS = {
    "web": {
        "host": "0.0.0.0",
        "port": 3000,
    },
    "auth": {
        "jwt_expiration_hours": 24,
        "cache_ttl_seconds": 60,
        "cache_max_entries": 10000,
        "login_rate_limit": 10,
        "login_rate_window_seconds": 60,
    },
    "proxy": {
        "timeout_seconds": 10,
    },
    "storage": {
        "backend": "sqlite",
        "path": "data/nodegate.db",
    },
    "debug": False,
}

ALLOWED_WALLETS_ENV = "ALLOWED_WALLETS"
JWT_SECRET_ENV = "JWT_SECRET"
DEBUG_ENV = "NODEGATE_DEBUG"


class ConfigManager:
    """
    Unified configuration manager for NodeGate.

    Attributes:
        project_dir: Root directory of the NodeGate project.
        config_path: Full path to config.yaml.
        env_path:    Full path to .env file.
        data_dir:    Directory holding auth.json and the SQLite database.
    """

    def __init__(self, project_dir: str, environ: dict | None = None):
        """
        Args:
            project_dir: Absolute path to the project root directory.
            environ:     Environment mapping to read secrets from.
                         Defaults to os.environ.
        """
        self.project_dir = project_dir
        self.config_path = os.path.join(project_dir, "config.yaml")
        self.env_path = os.path.join(project_dir, ".env")
        self.data_dir = os.path.join(project_dir, "data")
        self.environ = os.environ if environ is None else environ

    def load(self) -> dict:
        """
        Load and merge configuration from config.yaml with defaults.

        Missing values are filled from DEFAULTS. A corrupted file falls back
        to the defaults and the parse error is kept under "_config_error".

        Returns:
            A dictionary containing the full configuration.
        """
        config = _deep_copy(DEFAULTS)

        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    user_config = yaml.safe_load(f) or {}
                _deep_merge(config, user_config)
            except (yaml.YAMLError, OSError) as e:
                config["_config_error"] = str(e)

        if _truthy(self.environ.get(DEBUG_ENV)):
            config["debug"] = True

        return config

    def storage_path(self, config: dict | None = None) -> str:
        """Absolute path of the SQLite database file."""
        config = config or self.load()
        path = config["storage"]["path"]
        if not os.path.isabs(path):
            path = os.path.join(self.project_dir, path)
        return path

    # -- Secrets ---------------------------------------------------------------

    def get_allowed_wallets(self) -> str:
        """
        Raw comma-separated allow-list.

        The process environment wins; the .env file is consulted when the
        variable was never exported (e.g. running without app.py).
        """
        value = self.environ.get(ALLOWED_WALLETS_ENV)
        if value is None and os.path.exists(self.env_path):
            value = dotenv_values(self.env_path).get(ALLOWED_WALLETS_ENV)
        return value or ""

    def get_jwt_secret(self) -> str:
        """
        Return the JWT signing secret.

        Uses JWT_SECRET when set. Otherwise a random secret is generated on
        first call and kept in data/auth.json so tokens survive restarts.
        """
        secret = self.environ.get(JWT_SECRET_ENV)
        if secret:
            return secret

        auth_file = os.path.join(self.data_dir, "auth.json")
        if os.path.exists(auth_file):
            try:
                with open(auth_file, "r", encoding="utf-8") as f:
                    stored = json.load(f).get("jwt_secret")
                if stored:
                    return stored
            except (json.JSONDecodeError, OSError):
                pass

        secret = secrets.token_hex(32)
        os.makedirs(self.data_dir, exist_ok=True)
        with open(auth_file, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "jwt_secret": secret,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
                f,
                indent=2,
            )
        return secret


# -- Helper Functions ---------------------------------------------------------

def _deep_copy(d: dict) -> dict:
    """Create a deep copy of a nested dictionary."""
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = _deep_copy(value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _deep_merge(base: dict, override: dict) -> None:
    """
    Recursively merge 'override' into 'base' (in-place).

    For nested dicts, values are merged recursively.
    For all other types, override replaces base.
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")
