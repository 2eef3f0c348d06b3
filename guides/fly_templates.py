"""Run the built-in "Git Clone and Push" template on Fly.io Machines.

Requires FLY_API_TOKEN and FLY_APP_NAME in the environment.
"""

import asyncio
import os

from computeflow import WorkflowEngine, load_config
from computeflow.config import configure_logging


async def main():
    config = load_config()
    config.provider.backend = "fly"
    configure_logging(config.log_level)

    async with WorkflowEngine(config=config) as engine:
        git_workflow, _ = await engine.install_default_workflows()
        execution = await engine.run_workflow(
            git_workflow.id,
            {
                "repoUrl": os.environ.get("REPO_URL", "https://github.com/octocat/Hello-World.git"),
                "content": "Updated by computeflow",
                "commitMessage": "Update README",
            },
        )
        for record in execution.steps:
            print(f"- {record.step_id}: {record.status.value}")
        if execution.error:
            print(f"Error: {execution.error}")


if __name__ == "__main__":
    asyncio.run(main())
