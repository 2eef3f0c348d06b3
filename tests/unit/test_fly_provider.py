"""Tests for the Fly.io Machines provider using a mocked HTTP transport."""

import json

import httpx
import pytest

from computeflow.contracts import CommandOptions, CreateMachineOptions
from computeflow.errors import InfrastructureError, InstanceOperationError, NotFoundError
from computeflow.providers.fly import FlyProvider, parse_machine_size

API = "https://api.machines.dev/v1/apps/test-app/machines"


def _machine_json(machine_id="m-1", state="created"):
    return {
        "id": machine_id,
        "name": "box",
        "state": state,
        "region": "iad",
        "private_ip": "fdaa::1",
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-01T00:00:01Z",
        "config": {
            "image": "docker.io/library/ubuntu:22.04",
            "guest": {"cpu_kind": "performance", "cpus": 2, "memory_mb": 4096},
        },
    }


def _provider(handler, requests):
    def _record(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    return FlyProvider(api_token="fly-token, other", app_name="test-app", client=client)


def test_parse_machine_size():
    assert parse_machine_size("shared-cpu-4x") == ("shared", 4)
    assert parse_machine_size("performance-8x") == ("performance", 8)
    assert parse_machine_size("huge") == ("shared", 1)
    assert parse_machine_size(None) == ("shared", 1)


def test_provider_requires_credentials():
    with pytest.raises(ValueError):
        FlyProvider(api_token="", app_name="app")
    with pytest.raises(ValueError):
        FlyProvider(api_token="token", app_name="")


@pytest.mark.asyncio
async def test_create_machine_sends_guest_config():
    requests = []
    provider = _provider(lambda r: httpx.Response(200, json=_machine_json()), requests)

    machine = await provider.create_machine(
        CreateMachineOptions(
            name="box",
            region="iad",
            size="performance-2x",
            memory_mb=4096,
            metadata={"owner": "ci"},
        )
    )

    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == API
    assert request.headers["Authorization"] == "Bearer fly-token"
    body = json.loads(request.content)
    assert body["name"] == "box"
    assert body["config"]["guest"] == {"cpu_kind": "performance", "cpus": 2, "memory_mb": 4096}
    assert body["config"]["env"]["owner"] == "ci"
    assert body["config"]["env"]["DEBIAN_FRONTEND"] == "noninteractive"
    assert machine.id == "m-1"
    assert machine.state == "created"
    assert machine.size == "performance-2x"
    assert machine.private_ip == "fdaa::1"


@pytest.mark.asyncio
async def test_get_list_start_stop_destroy_paths():
    requests = []

    def handler(request):
        if request.method == "GET" and request.url.path.endswith("/machines"):
            return httpx.Response(200, json=[_machine_json("m-1"), _machine_json("m-2")])
        if request.method == "GET":
            return httpx.Response(200, json=_machine_json("m-1", "started"))
        return httpx.Response(200, json={"ok": True})

    provider = _provider(handler, requests)

    assert (await provider.get_machine("m-1")).state == "started"
    assert [m.id for m in await provider.list_machines()] == ["m-1", "m-2"]
    assert (await provider.start_machine("m-1")).state == "started"
    await provider.stop_machine("m-1")
    await provider.destroy_machine("m-1")

    calls = [(r.method, str(r.url)) for r in requests]
    assert ("POST", f"{API}/m-1/start") in calls
    assert ("POST", f"{API}/m-1/stop") in calls
    assert calls[-1] == ("DELETE", f"{API}/m-1")


@pytest.mark.asyncio
async def test_execute_command_caps_timeout_and_normalises_response():
    requests = []
    provider = _provider(
        lambda r: httpx.Response(200, json={"output": "hi\n", "error": "", "exitCode": 3}),
        requests,
    )

    result = await provider.execute_command(
        "m-1", CommandOptions(command="echo hi", timeout_ms=300000)
    )

    body = json.loads(requests[0].content)
    assert str(requests[0].url) == f"{API}/m-1/exec"
    assert body == {"cmd": "echo hi", "timeout": 60}
    assert result.stdout == "hi\n"
    assert result.exit_code == 3


@pytest.mark.asyncio
async def test_stream_command_replays_exec_result():
    provider = _provider(
        lambda r: httpx.Response(200, json={"stdout": "a", "stderr": "b", "exit_code": 0}),
        [],
    )
    chunks = [
        (c.stream, c.data, c.exit_code)
        async for c in provider.stream_command("m-1", CommandOptions(command="x"))
    ]
    assert chunks == [("stdout", "a", None), ("stderr", "b", None), ("exit", "", 0)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,error,reason",
    [
        (500, InfrastructureError, None),
        (503, InfrastructureError, None),
        (404, NotFoundError, None),
        (422, InstanceOperationError, "invalid configuration"),
        (429, InstanceOperationError, "rate limit exceeded"),
        (401, InstanceOperationError, "authentication failed"),
        (400, InstanceOperationError, "operation failed"),
    ],
)
async def test_status_codes_are_translated(status, error, reason):
    provider = _provider(lambda r: httpx.Response(status, text="nope"), [])
    with pytest.raises(error) as exc_info:
        await provider.get_machine("m-1")
    if reason:
        assert reason in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_errors_become_infrastructure_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    provider = _provider(handler, [])
    with pytest.raises(InfrastructureError) as exc_info:
        await provider.list_machines()
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_disconnect_keeps_injected_client_open():
    provider = _provider(lambda r: httpx.Response(200, json=[]), [])
    await provider.disconnect()
    assert await provider.list_machines() == []
