"""Built-in workflow templates."""

from __future__ import annotations

from typing import Any, Dict, List

from .contracts import Workflow

GIT_CLONE_AND_PUSH: Dict[str, Any] = {
    "name": "Git Clone and Push",
    "description": "Clone a git repository, make changes, and push back",
    "steps": [
        {
            "id": "create-instance",
            "name": "Create Ubuntu instance",
            "type": "create_instance",
            "config": {"size": "shared-cpu-1x", "memoryMb": 1024},
        },
        {
            "id": "install-git",
            "name": "Install git",
            "type": "execute_command",
            "config": {"command": "apt-get update && apt-get install -y git"},
            "dependsOn": ["create-instance"],
        },
        {
            "id": "configure-git",
            "name": "Configure git",
            "type": "execute_command",
            "config": {
                "command": 'git config --global user.email "bot@example.com" '
                '&& git config --global user.name "Bot"'
            },
            "dependsOn": ["install-git"],
        },
        {
            "id": "clone-repo",
            "name": "Clone repository",
            "type": "execute_command",
            "config": {"command": "git clone {{repoUrl}} /tmp/repo"},
            "dependsOn": ["configure-git"],
        },
        {
            "id": "make-changes",
            "name": "Make changes",
            "type": "execute_command",
            "config": {"command": 'cd /tmp/repo && echo "{{content}}" >> README.md'},
            "dependsOn": ["clone-repo"],
        },
        {
            "id": "commit-changes",
            "name": "Commit changes",
            "type": "execute_command",
            "config": {
                "command": 'cd /tmp/repo && git add . && git commit -m "{{commitMessage}}"'
            },
            "dependsOn": ["make-changes"],
        },
        {
            "id": "push-changes",
            "name": "Push changes",
            "type": "execute_command",
            "config": {"command": "cd /tmp/repo && git push origin main"},
            "dependsOn": ["commit-changes"],
        },
        {
            "id": "cleanup",
            "name": "Destroy instance",
            "type": "destroy_instance",
            "config": {},
            "dependsOn": ["push-changes"],
        },
    ],
}

DEV_ENVIRONMENT_SETUP: Dict[str, Any] = {
    "name": "Development Environment Setup",
    "description": "Set up a development environment with common tools",
    "steps": [
        {
            "id": "create-instance",
            "name": "Create Ubuntu instance",
            "type": "create_instance",
            "config": {"size": "shared-cpu-2x", "memoryMb": 2048},
        },
        {
            "id": "update-system",
            "name": "Update system packages",
            "type": "execute_command",
            "config": {"command": "apt-get update && apt-get upgrade -y", "timeoutMs": 300000},
            "dependsOn": ["create-instance"],
        },
        {
            "id": "install-basics",
            "name": "Install basic tools",
            "type": "execute_command",
            "config": {"command": "apt-get install -y curl wget git vim build-essential"},
            "dependsOn": ["update-system"],
        },
        {
            "id": "install-nodejs",
            "name": "Install Node.js",
            "type": "execute_command",
            "config": {
                "command": "curl -fsSL https://deb.nodesource.com/setup_lts.x | bash - "
                "&& apt-get install -y nodejs"
            },
            "dependsOn": ["install-basics"],
        },
        {
            "id": "install-docker",
            "name": "Install Docker",
            "type": "execute_command",
            "config": {"command": "curl -fsSL https://get.docker.com | sh"},
            "dependsOn": ["install-basics"],
        },
        {
            "id": "verify-setup",
            "name": "Verify installation",
            "type": "execute_command",
            "config": {"command": "node --version && npm --version && docker --version"},
            "dependsOn": ["install-nodejs", "install-docker"],
        },
    ],
}

DEFAULT_TEMPLATES: List[Dict[str, Any]] = [GIT_CLONE_AND_PUSH, DEV_ENVIRONMENT_SETUP]


def default_workflows() -> List[Workflow]:
    """Build fresh workflow instances (new ids) from the built-in templates."""
    return [Workflow.model_validate(template) for template in DEFAULT_TEMPLATES]
