"""Fly.io Machines provider over HTTP."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from ..config import DEFAULT_FLY_API_URL
from ..contracts import CommandOptions, CommandResult, CreateMachineOptions, Machine
from ..errors import InfrastructureError, InstanceOperationError, NotFoundError
from .base import ComputeProvider

logger = logging.getLogger(__name__)

MACHINE_SIZES: Dict[str, Tuple[str, int]] = {
    "shared-cpu-1x": ("shared", 1),
    "shared-cpu-2x": ("shared", 2),
    "shared-cpu-4x": ("shared", 4),
    "shared-cpu-8x": ("shared", 8),
    "performance-1x": ("performance", 1),
    "performance-2x": ("performance", 2),
    "performance-4x": ("performance", 4),
    "performance-8x": ("performance", 8),
    "performance-16x": ("performance", 16),
}

# The exec endpoint takes whole seconds and rejects anything above a minute.
MAX_EXEC_TIMEOUT_SECONDS = 60
DEFAULT_EXEC_TIMEOUT_MS = 30000


def parse_machine_size(size: Optional[str]) -> Tuple[str, int]:
    """Map a size preset to ``(cpu_kind, cpus)``; unknown sizes get one shared CPU."""
    return MACHINE_SIZES.get(size or "", ("shared", 1))


class FlyProvider(ComputeProvider):
    """Talks to the Fly.io Machines REST API for one app."""

    def __init__(
        self,
        api_token: str,
        app_name: str,
        api_url: str = DEFAULT_FLY_API_URL,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        if not api_token:
            raise ValueError("Fly API token is required")
        if not app_name:
            raise ValueError("Fly app name is required")
        self.app_name = app_name
        self.api_url = api_url.rstrip("/")
        self._token = api_token.split(",")[0].strip()
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True

    async def disconnect(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }

    def _url(self, path: str = "") -> str:
        return f"{self.api_url}/apps/{self.app_name}/machines{path}"

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        machine_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        if self._client is None:
            await self.connect()
        url = self._url(path)
        try:
            response = await self._client.request(
                method, url, headers=self._headers, **kwargs
            )
        except httpx.HTTPError as exc:
            logger.error(f"Fly request {method} {url} failed: {exc}")
            raise InfrastructureError(
                "compute platform",
                {"error": str(exc), "operation": operation, "machine_id": machine_id},
            ) from exc

        if response.is_success:
            return response

        details = {
            "status": response.status_code,
            "error": response.text,
            "operation": operation,
            "machine_id": machine_id,
            "app_name": self.app_name,
        }
        logger.error(
            f"Fly API {operation} failed with {response.status_code}: {response.text}"
        )
        if response.status_code >= 500:
            raise InfrastructureError("compute platform", details)
        if response.status_code == 404:
            raise NotFoundError("Machine", machine_id or self.app_name)
        if response.status_code == 422:
            raise InstanceOperationError(operation, "invalid configuration", details)
        if response.status_code == 429:
            raise InstanceOperationError(operation, "rate limit exceeded", details)
        if response.status_code in (401, 403):
            raise InstanceOperationError(operation, "authentication failed", details)
        raise InstanceOperationError(operation, None, details)

    @staticmethod
    def _to_machine(data: Dict[str, Any]) -> Machine:
        config = data.get("config") or {}
        machine: Dict[str, Any] = {
            "id": data["id"],
            "name": data.get("name") or data["id"],
            "state": data.get("state", "unknown"),
            "region": data.get("region", ""),
            "image": config.get("image") or data.get("image"),
            "private_ip": data.get("private_ip"),
        }
        if data.get("created_at"):
            machine["created_at"] = data["created_at"]
        if data.get("updated_at"):
            machine["updated_at"] = data["updated_at"]
        guest = config.get("guest") or {}
        if guest.get("cpu_kind") and guest.get("cpus"):
            kind = "shared-cpu" if guest["cpu_kind"] == "shared" else "performance"
            machine["size"] = f"{kind}-{guest['cpus']}x"
        return Machine(**machine)

    def _machine_config(self, options: CreateMachineOptions) -> Dict[str, Any]:
        cpu_kind, cpus = parse_machine_size(options.size)
        return {
            "name": options.name,
            "region": options.region,
            "config": {
                "image": options.image or "docker.io/library/ubuntu:22.04",
                "guest": {
                    "cpu_kind": cpu_kind,
                    "cpus": cpus,
                    "memory_mb": options.memory_mb,
                },
                "services": [],
                "env": {
                    **options.metadata,
                    "DEBIAN_FRONTEND": "noninteractive",
                    "TZ": "UTC",
                },
                "init": {"exec": ["/bin/bash", "-c", "tail -f /dev/null"]},
            },
        }

    # ------------------------------------------------------------------
    async def create_machine(self, options: CreateMachineOptions) -> Machine:
        response = await self._request(
            "POST", "", "create", json=self._machine_config(options)
        )
        machine = self._to_machine(response.json())
        logger.info(f"Created Fly machine: {machine.id}")
        return machine

    async def get_machine(self, machine_id: str) -> Machine:
        response = await self._request("GET", f"/{machine_id}", "retrieve", machine_id)
        return self._to_machine(response.json())

    async def list_machines(self) -> List[Machine]:
        response = await self._request("GET", "", "list")
        return [self._to_machine(item) for item in response.json()]

    async def start_machine(self, machine_id: str) -> Machine:
        await self._request("POST", f"/{machine_id}/start", "start", machine_id)
        logger.info(f"Started Fly machine: {machine_id}")
        return await self.get_machine(machine_id)

    async def stop_machine(self, machine_id: str) -> Machine:
        await self._request("POST", f"/{machine_id}/stop", "stop", machine_id)
        logger.info(f"Stopped Fly machine: {machine_id}")
        return await self.get_machine(machine_id)

    async def destroy_machine(self, machine_id: str) -> None:
        await self._request("DELETE", f"/{machine_id}", "destroy", machine_id)
        logger.info(f"Destroyed Fly machine: {machine_id}")

    async def execute_command(
        self, machine_id: str, options: CommandOptions
    ) -> CommandResult:
        timeout_ms = options.timeout_ms or DEFAULT_EXEC_TIMEOUT_MS
        timeout_seconds = min(max(1, timeout_ms // 1000), MAX_EXEC_TIMEOUT_SECONDS)
        response = await self._request(
            "POST",
            f"/{machine_id}/exec",
            "execute",
            machine_id,
            json={"cmd": options.command, "timeout": timeout_seconds},
        )
        data = response.json()
        exit_code = data.get("exit_code", data.get("exitCode"))
        return CommandResult(
            stdout=data.get("stdout") or data.get("output") or "",
            stderr=data.get("stderr") or data.get("error") or "",
            exit_code=exit_code,
        )
