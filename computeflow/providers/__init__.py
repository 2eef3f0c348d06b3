"""Compute provider factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import ComputeFlowConfig, load_config
from .base import FAILED_STATES, READY_STATE, ComputeProvider
from .inmemory import InMemoryProvider, ScriptedCommand
from .local import LocalProvider


def get_provider(
    backend: Optional[str] = None, config: Optional[ComputeFlowConfig] = None
) -> ComputeProvider:
    """Factory function to get the configured compute provider."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("COMPUTEFLOW_PROVIDER")
        or config.provider.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryProvider()
    elif backend == "local":
        local_conf = config.provider.local
        return LocalProvider(workdir=local_conf.workdir, shell=local_conf.shell)
    elif backend == "fly":
        from .fly import FlyProvider

        fly_conf = config.provider.fly
        return FlyProvider(
            api_token=fly_conf.api_token or "",
            app_name=fly_conf.app_name or "",
            api_url=fly_conf.api_url,
        )
    else:
        raise ValueError(f"Unsupported provider backend: {backend}")


__all__ = [
    "ComputeProvider",
    "InMemoryProvider",
    "LocalProvider",
    "ScriptedCommand",
    "READY_STATE",
    "FAILED_STATES",
    "get_provider",
]
