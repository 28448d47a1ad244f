"""
Registry of deployment managers.

Built once at start-up from the configuration and the collaborator
clients, then handed to request handlers. Holds one DeploymentManager per
configured plan.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from deployment_manager.backup.orchestrator import BackupRestoreOrchestrator
from deployment_manager.config.settings import DeploymentManagerConfig
from deployment_manager.deployment.instance import DeploymentInstance
from deployment_manager.deployment.manager import DeploymentManager
from deployment_manager.deployment_lock import DeploymentLock
from deployment_manager.errors import NotFound
from deployment_manager.ingress import IngressRuleProvisioner
from deployment_manager.inventory import DeploymentInventory
from deployment_manager.manifest_generator import ManifestGenerator
from deployment_manager.naming import DeploymentNamer
from deployment_manager.operation_tokens import OperationTokenCodec
from deployment_manager.protocols import (
    Agent,
    ApplyService,
    BackupStore,
    IngressRuleManager,
    Scheduler,
)

logger = logging.getLogger(__name__)


@dataclass
class Collaborators:
    """Clients of the external systems the managers talk to."""

    apply_service: ApplyService
    agent: Agent
    backup_store: BackupStore
    scheduler: Scheduler
    ingress_rules: IngressRuleManager


class ManagerRegistry:
    """Plan id to DeploymentManager lookup."""

    def __init__(
        self,
        config: DeploymentManagerConfig,
        collaborators: Collaborators,
        managers: Dict[str, DeploymentManager],
    ):
        self.config = config
        self.collaborators = collaborators
        self.managers = managers
        self.ingress = IngressRuleProvisioner(
            collaborators.ingress_rules, config.ingress, config.manager.prefix
        )
        self.tokens = OperationTokenCodec(config.manager.operation_token_secret)

    @classmethod
    def build(
        cls,
        config: DeploymentManagerConfig,
        collaborators: Collaborators,
        conditional_lock: bool = False,
    ) -> "ManagerRegistry":
        """Create one manager per configured plan."""
        namer = DeploymentNamer(
            prefix=config.manager.prefix,
            subnet=config.manager.subnet,
            index_width=config.manager.index_width,
            capacity=config.manager.index_capacity,
        )
        lock = DeploymentLock(collaborators.apply_service, conditional=conditional_lock)
        inventory = DeploymentInventory(
            collaborators.apply_service, namer, config.backup.provider_name
        )

        managers: Dict[str, DeploymentManager] = {}
        for plan in config.plans:
            backups = BackupRestoreOrchestrator(
                inventory,
                collaborators.agent,
                collaborators.backup_store,
                lock,
                config.backup,
                plan,
                admin_users=config.manager.admin_users,
            )
            managers[plan.id] = DeploymentManager(
                plan=plan,
                namer=namer,
                generator=ManifestGenerator(config.infrastructure, plan, config.network_name),
                inventory=inventory,
                apply_service=collaborators.apply_service,
                agent=collaborators.agent,
                lock=lock,
                backups=backups,
            )

        logger.info(f"Built manager registry for plans {sorted(managers)}")
        return cls(config, collaborators, managers)

    @property
    def plan_ids(self) -> List[str]:
        return sorted(self.managers)

    def for_plan(self, plan_id: str) -> DeploymentManager:
        manager: Optional[DeploymentManager] = self.managers.get(plan_id)
        if manager is None:
            raise NotFound(f"Plan '{plan_id}' is not configured")
        return manager

    def create_instance(self, plan_id: str, instance_guid: str) -> DeploymentInstance:
        return DeploymentInstance(
            instance_guid,
            self.for_plan(plan_id),
            self.ingress,
            self.collaborators.scheduler,
            self.tokens,
            auto_update=self.config.auto_update,
            features=self.config.features,
        )
