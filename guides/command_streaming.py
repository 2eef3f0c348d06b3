"""Stream command output from an instance as it is produced."""

import asyncio

from computeflow import WorkflowEngine
from computeflow.config import ComputeFlowConfig
from computeflow.contracts import CreateInstanceOptions
from computeflow.providers import LocalProvider


async def main():
    async with WorkflowEngine(provider=LocalProvider(), config=ComputeFlowConfig()) as engine:
        instance = await engine.lifecycle.create_instance(CreateInstanceOptions(name="stream"))

        result = await engine.commands.run(
            instance.id,
            "for i in 1 2 3; do echo line $i; sleep 0.5; done",
            on_data=lambda data: print(f"[stdout] {data}", end=""),
            on_error=lambda data: print(f"[stderr] {data}", end=""),
        )
        print(f"exit code {result.exit_code} ({result.status.value})")

        # A deadline shorter than the command terminates it
        result = await engine.commands.run(instance.id, "sleep 10", timeout_ms=500)
        print(result.error.strip())

        await engine.lifecycle.destroy_instance(instance.id)


if __name__ == "__main__":
    asyncio.run(main())
