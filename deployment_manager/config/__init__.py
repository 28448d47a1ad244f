"""
Configuration for the deployment manager.
"""

from deployment_manager.config.settings import (
    BackupSettings,
    DeploymentManagerConfig,
    FeatureFlags,
    InfrastructureSettings,
    PlanSettings,
    generate_default_config,
)

__all__ = [
    "BackupSettings",
    "DeploymentManagerConfig",
    "FeatureFlags",
    "InfrastructureSettings",
    "PlanSettings",
    "generate_default_config",
]
