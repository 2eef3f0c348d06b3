"""Workflows against the local subprocess provider."""

import pytest

from computeflow import WorkflowEngine
from computeflow.config import ComputeFlowConfig
from computeflow.contracts import ExecutionStatus
from computeflow.providers import LocalProvider


@pytest.mark.asyncio
async def test_local_workflow_with_conditional_branch(tmp_path):
    provider = LocalProvider(workdir=str(tmp_path))
    config = ComputeFlowConfig()
    config.lifecycle.interval_ms = 10

    async with WorkflowEngine(provider=provider, config=config) as engine:
        workflow = await engine.create_workflow(
            {
                "name": "local",
                "steps": [
                    {"id": "create", "type": "create_instance", "config": {"name": "scratch"}},
                    {
                        "id": "write",
                        "type": "execute_command",
                        "dependsOn": ["create"],
                        "config": {
                            "command": "echo {{greeting}} > greeting.txt && cat greeting.txt",
                            "resultKey": "write",
                            "failOnError": True,
                        },
                    },
                    {
                        "id": "check",
                        "type": "conditional",
                        "dependsOn": ["write"],
                        "config": {
                            "condition": {
                                "contextKey": "write.exitCode",
                                "operator": "equals",
                                "value": 0,
                            },
                            "thenStep": {
                                "id": "count",
                                "type": "execute_command",
                                "config": {"command": "wc -c < greeting.txt", "resultKey": "size"},
                            },
                            "elseStep": {"id": "pause", "type": "wait"},
                        },
                    },
                    {"id": "cleanup", "type": "destroy_instance", "dependsOn": ["check"]},
                ],
            }
        )
        execution = await engine.run_workflow(workflow.id, {"greeting": "hello"})

    assert execution.status == ExecutionStatus.COMPLETED, execution.error
    assert execution.context["write"]["output"] == "hello\n"
    assert execution.context["size"]["output"].strip() == "6"
    assert list(tmp_path.iterdir()) == []


@pytest.mark.asyncio
async def test_local_command_failure_fails_workflow(tmp_path):
    provider = LocalProvider(workdir=str(tmp_path))
    async with WorkflowEngine(provider=provider, config=ComputeFlowConfig()) as engine:
        workflow = await engine.create_workflow(
            {
                "name": "failing",
                "steps": [
                    {"id": "create", "type": "create_instance"},
                    {
                        "id": "broken",
                        "type": "execute_command",
                        "dependsOn": ["create"],
                        "config": {"command": "echo oops >&2; exit 7", "failOnError": True},
                    },
                ],
            }
        )
        execution = await engine.run_workflow(workflow.id)

    assert execution.status == ExecutionStatus.FAILED
    assert execution.failed_step == "broken"
    assert "oops" in execution.error
