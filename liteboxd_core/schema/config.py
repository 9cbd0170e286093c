import os
import yaml
from pydantic import BaseModel
from typing import Literal, Optional, Any, Type


class CoreConfig(BaseModel):
    # Core Configuration
    logging_format: Literal["text", "json"] = "text"
    logging_level: str = "INFO"

    # Kubernetes connection
    kubeconfig_path: Optional[str] = (
        None  # Falls back to in-cluster config, then $KUBECONFIG or ~/.kube/config
    )

    # sandbox
    sandbox_namespace: str = "liteboxd"
    sandbox_default_cpu: str = "500m"
    sandbox_default_memory: str = "512Mi"
    sandbox_request_cpu: str = "100m"
    sandbox_request_memory: str = "128Mi"
    sandbox_default_ttl_seconds: int = 60 * 60
    sandbox_default_exec_timeout_seconds: int = 30
    sandbox_run_as_user: int = 1000
    sandbox_workspace_path: str = "/workspace"
    sandbox_id_max_attempts: int = 3
    sandbox_exec_poll_seconds: float = (
        1.0  # upper bound on how long a cancelled exec keeps its stream open
    )
    sandbox_exec_max_workers: int = 16  # concurrent exec sessions; more wait in queue

    # reaper
    sandbox_reaper_enabled: bool = True
    sandbox_reaper_interval_seconds: float = 30

    # http
    cors_allow_origins: str = "*"  # comma separated


def filter_value_from_env(CLS: Type[BaseModel]) -> dict[str, Any]:
    config_keys = CLS.model_fields.keys()
    env_already_keys = {}
    for key in config_keys:
        value = os.getenv(key, os.getenv(key.upper(), None))
        if value is None:
            continue
        env_already_keys[key] = value
    return env_already_keys


def filter_value_from_yaml(yaml_string, CLS: Type[BaseModel]) -> dict[str, Any]:
    yaml_config_data: dict | None = yaml.safe_load(yaml_string)
    if yaml_config_data is None:
        return {}

    yaml_already_keys = {}
    config_keys = CLS.model_fields.keys()
    for key in config_keys:
        value = yaml_config_data.get(key, None)
        if value is None:
            continue
        yaml_already_keys[key] = value
    return yaml_already_keys


def post_validate_core_config_sanity(config: CoreConfig) -> None:
    """Raises an assertion error if the config is invalid."""
    assert (
        config.sandbox_default_ttl_seconds > 0
    ), "sandbox_default_ttl_seconds must be positive"
    assert (
        config.sandbox_default_exec_timeout_seconds > 0
    ), "sandbox_default_exec_timeout_seconds must be positive"
    assert (
        config.sandbox_reaper_interval_seconds > 0
    ), "sandbox_reaper_interval_seconds must be positive"
    assert (
        config.sandbox_exec_poll_seconds > 0
    ), "sandbox_exec_poll_seconds must be positive"
    assert (
        config.sandbox_id_max_attempts >= 1
    ), "sandbox_id_max_attempts must be at least 1"
    assert (
        config.sandbox_exec_max_workers >= 1
    ), "sandbox_exec_max_workers must be at least 1"
