"""Run a small create/execute/destroy workflow on the local provider."""

import asyncio

from computeflow import WorkflowEngine, load_config
from computeflow.config import configure_logging
from computeflow.providers import LocalProvider


async def main():
    config = load_config()
    configure_logging(config.log_level)

    async with WorkflowEngine(provider=LocalProvider(), config=config) as engine:
        workflow = await engine.create_workflow(
            {
                "name": "hello-instance",
                "steps": [
                    {"id": "create", "type": "create_instance"},
                    {
                        "id": "greet",
                        "type": "execute_command",
                        "dependsOn": ["create"],
                        "config": {"command": "echo hello {{name}}", "resultKey": "greeting"},
                    },
                    {"id": "cleanup", "type": "destroy_instance", "dependsOn": ["greet"]},
                ],
            }
        )

        handle = await engine.execute_workflow(workflow.id, {"name": "world"})
        execution = await handle

        print(f"Execution {execution.id}: {execution.status.value}")
        print(execution.context["greeting"]["output"])


if __name__ == "__main__":
    asyncio.run(main())
