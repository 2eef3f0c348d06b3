from __future__ import annotations

import logging
import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_FLY_API_URL = "https://api.machines.dev/v1"


class FlyConfig(BaseModel):
    """Credentials and endpoint for the Fly.io Machines API."""

    api_url: str = DEFAULT_FLY_API_URL
    api_token: Optional[str] = None
    app_name: Optional[str] = None


class LocalConfig(BaseModel):
    """Settings for the local subprocess provider."""

    workdir: Optional[str] = None
    shell: str = "/bin/sh"


class ProviderConfig(BaseModel):
    """Compute provider selection."""

    backend: Literal["inmemory", "local", "fly"] = "inmemory"
    fly: FlyConfig = FlyConfig()
    local: LocalConfig = LocalConfig()


class LifecycleConfig(BaseModel):
    """Readiness polling bounds."""

    max_attempts: int = Field(default=30, ge=1)
    interval_ms: int = Field(default=2000, ge=0)


class CommandConfig(BaseModel):
    """Command runner defaults."""

    default_timeout_ms: int = Field(default=30000, gt=0)
    allowed_commands: Optional[List[str]] = None
    max_history: int = Field(default=1000, ge=1)


class ComputeFlowConfig(BaseModel):
    """Top-level configuration model."""

    provider: ProviderConfig = ProviderConfig()
    lifecycle: LifecycleConfig = LifecycleConfig()
    commands: CommandConfig = CommandConfig()
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> ComputeFlowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to COMPUTEFLOW_CONFIG env
            variable or 'computeflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("COMPUTEFLOW_CONFIG", "computeflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ComputeFlowConfig(**data)
    else:
        config = ComputeFlowConfig()

    env_backend = os.getenv("COMPUTEFLOW_PROVIDER")
    if env_backend:
        config.provider.backend = env_backend.lower()
    env_token = os.getenv("FLY_API_TOKEN")
    if env_token:
        config.provider.fly.api_token = env_token
    env_app = os.getenv("FLY_APP_NAME")
    if env_app:
        config.provider.fly.app_name = env_app
    env_level = os.getenv("COMPUTEFLOW_LOG_LEVEL")
    if env_level:
        config.log_level = env_level.upper()
    return config


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
