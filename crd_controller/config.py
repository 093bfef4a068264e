"""Controller settings from an optional yaml file and environment variables."""

import os
from dataclasses import dataclass, fields
from typing import Optional

import yaml

CONFIG_ENV = "CONTROLLER_CONFIG_PATH"

ENV_VARS = {
    "namespace": "CONTROLLER_NAMESPACE",
    "in_cluster": "IN_CLUSTER",
    "kubeconfig": "KUBECONFIG",
    "watch_timeout": "WATCH_TIMEOUT",
    "workers": "DISPATCH_WORKERS",
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
}


@dataclass
class Settings:
    namespace: str = "default"
    in_cluster: Optional[bool] = None
    kubeconfig: Optional[str] = None
    watch_timeout: int = 300
    workers: int = 0
    log_level: str = "INFO"
    log_file: Optional[str] = None


def _parse_bool(value) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("", "auto"):
        return None
    if text in ("true", "1", "yes"):
        return True
    if text in ("false", "0", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _parse_int(name: str, value) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an integer, got {value!r}") from None
    if number < 0:
        raise ValueError(f"{name} must not be negative, got {number}")
    return number


def _apply(settings: Settings, name: str, value) -> None:
    if name == "in_cluster":
        value = _parse_bool(value)
    elif name in ("watch_timeout", "workers"):
        value = _parse_int(name, value)
    elif name == "log_level":
        value = str(value).upper()
    setattr(settings, name, value)


def load_settings(path: Optional[str] = None, environ=None) -> Settings:
    """Build settings from defaults, then the yaml file, then the environment."""
    environ = os.environ if environ is None else environ
    settings = Settings()

    config_path = path or environ.get(CONFIG_ENV)
    if config_path and os.path.exists(config_path):
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
        known = {f.name for f in fields(Settings)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown settings in {config_path}: {', '.join(sorted(unknown))}")
        for name, value in data.items():
            _apply(settings, name, value)

    for name, env_var in ENV_VARS.items():
        if env_var in environ:
            _apply(settings, name, environ[env_var])
    return settings
