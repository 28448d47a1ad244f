"""
Deployment inventory lookups.

Resolves the static IPs and the VM list of a deployment from the apply
service. Nothing here is cached: every call reflects the current state.
"""

import logging
from typing import Any, Dict, List

import yaml

from deployment_manager.errors import DeploymentNotOperational
from deployment_manager.models import VM
from deployment_manager.naming import DeploymentNamer
from deployment_manager.protocols import ApplyService

logger = logging.getLogger(__name__)

# Providers whose VM identity is the apply-service agent id rather than the cid.
AGENT_ID_PROVIDERS = frozenset(["azure"])


class DeploymentInventory:
    """Reads IPs and VMs of deployments."""

    def __init__(self, apply_service: ApplyService, namer: DeploymentNamer, provider_name: str):
        self.apply_service = apply_service
        self.namer = namer
        self.provider_name = provider_name

    async def get_deployment_manifest(self, deployment_name: str) -> Any:
        logger.info(f"Fetching deployment manifest '{deployment_name}'...")
        try:
            manifest = await self.apply_service.get_deployment_manifest(deployment_name)
        except Exception as e:
            logger.error(f"+-> Failed to fetch deployment manifest: {e}")
            raise
        logger.info("+-> Fetched deployment manifest")
        return manifest

    async def get_deployment_ips(self, deployment_name: str) -> List[str]:
        """
        Static IPs of all jobs of a deployment.

        Raises:
            DeploymentNotOperational: If the deployment has no manifest
        """
        manifest_text = await self.get_deployment_manifest(deployment_name)
        if manifest_text is None:
            raise DeploymentNotOperational(self.namer.get_instance_id(deployment_name))

        manifest = yaml.safe_load(manifest_text) or {}
        ips: List[str] = []
        jobs = manifest.get("jobs") or manifest.get("instance_groups") or []
        for job in jobs:
            for net in job.get("networks") or []:
                ips.extend(net.get("static_ips") or [])
        return ips

    def normalize_vm(self, vm: Dict[str, Any]) -> Dict[str, Any]:
        normalized = VM(
            cid=vm.get("cid"),
            agent_id=vm.get("agent_id"),
            job=vm.get("job"),
            index=vm.get("index"),
        )
        vm_id = normalized.agent_id if self.provider_name in AGENT_ID_PROVIDERS else normalized.cid
        normalized.iaas_vm_metadata = {"vm_id": vm_id}
        return normalized.model_dump()

    async def get_deployment_vms(self, deployment_name: str) -> List[Dict[str, Any]]:
        vms = await self.apply_service.get_deployment_vms(deployment_name)
        return [self.normalize_vm(vm) for vm in vms]
