import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .models import AppConfig

DEFAULT_CONFIG_PATH = Path("config/default.yaml")
LOCAL_CONFIG_PATH = Path("config/local.yaml")

# Environment variable -> override key understood by AppConfig.merge_overrides
ENV_OVERRIDES = {
    "PODSTUDIO_S3_ENDPOINT_URL": "endpoint_url",
    "PODSTUDIO_S3_BUCKET": "bucket",
    "PODSTUDIO_S3_ACCESS_KEY_ID": "access_key_id",
    "PODSTUDIO_S3_SECRET_ACCESS_KEY": "secret_access_key",
    "PODSTUDIO_RUNPOD_API_KEY": "runpod_api_key",
    "PODSTUDIO_LOG_LEVEL": "log_level",
    "PODSTUDIO_RESULTS_DIR": "results_dir",
}


def get_database_url() -> str:
    return os.getenv("DATABASE_URL", "sqlite:///./podstudio.db")


def get_config_value(config: Union[AppConfig, Dict], path: str, default=None):
    """
    Safely get a config value from either Pydantic model or dict.

    Args:
        config: AppConfig model or dict
        path: Dot-separated path like "polling.interval_s"
        default: Default value if not found

    Returns:
        The config value or default
    """
    if isinstance(config, AppConfig):
        config = config.model_dump()

    keys = path.split(".")
    value = config
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file, returning empty dict if not found."""
    if not path.exists():
        return {}
    with open(path, "r") as f:
        return yaml.safe_load(f) or {}


def merge_dicts(base: Dict, override: Dict) -> Dict:
    """Recursive merge of two dictionaries."""
    result = base.copy()
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def env_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    return {key: environ[var] for var, key in ENV_OVERRIDES.items() if environ.get(var)}


def resolve_config(
    cli_args: Dict[str, Any] = None,
    default_path: Path = DEFAULT_CONFIG_PATH,
    local_path: Path = LOCAL_CONFIG_PATH,
    environ: Optional[Dict[str, str]] = None,
) -> AppConfig:
    """
    Resolve config: Default < Local < Environment < CLI
    Returns validated Pydantic AppConfig model.
    """
    cli_args = {k: v for k, v in (cli_args or {}).items() if v is not None}

    # 1. Load default YAML
    config_data = load_yaml(default_path)

    # 2. Merge local overrides
    config_data = merge_dicts(config_data, load_yaml(local_path))

    # 3. Validate
    config = AppConfig.from_dict(config_data)

    # 4. Secrets from the environment, then CLI flags
    overrides = env_overrides(environ)
    overrides.update(cli_args)
    if overrides:
        config = config.merge_overrides(overrides)
    return config
