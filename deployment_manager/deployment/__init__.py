"""
Deployment lifecycle module.

Provides per-plan deployment management and per-instance lifecycle
handling:
- Network segment allocation and deployment naming
- Manifest rendering, submission and diffing
- Operation polling through the state machine
- Ingress finalization and auto-update scheduling

Usage:
    from deployment_manager.deployment import DeploymentManager, DeploymentInstance

    manager = registry.for_plan(plan_id)
    instance = registry.create_instance(plan_id, instance_guid)
"""

from deployment_manager.deployment.instance import DeploymentInstance
from deployment_manager.deployment.manager import DeploymentManager
from deployment_manager.deployment.state import (
    describe_agent_state,
    describe_task_state,
    transition,
)

__all__ = [
    "DeploymentInstance",
    "DeploymentManager",
    "describe_agent_state",
    "describe_task_state",
    "transition",
]
