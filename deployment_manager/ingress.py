"""
Ingress rule provisioning for deployments.

Every deployment gets a rule set opening its static address block to the
tenant's space. Creation is retried a bounded number of times; failures
surface as IngressRulesNotCreated so that callers can degrade the
operation outcome instead of failing it.
"""

import logging
from typing import Any, Dict, List, Optional

from deployment_manager.config.settings import IngressSettings
from deployment_manager.errors import IngressRulesNotCreated, NotFound
from deployment_manager.manifest_generator import Network
from deployment_manager.protocols import IngressRuleManager
from deployment_manager.utils.retry import retry_fixed

logger = logging.getLogger(__name__)


class IngressRuleProvisioner:
    """Creates, verifies and removes per-deployment ingress rule sets."""

    def __init__(self, platform: IngressRuleManager, settings: IngressSettings, prefix: str):
        self.platform = platform
        self.settings = settings
        self.prefix = prefix

    def rule_set_name(self, instance_guid: str) -> str:
        return f"{self.prefix}-{instance_guid}"

    def build_rules(self, networks: Optional[List[Network]]) -> List[Dict[str, Any]]:
        """One rule per network, spanning its static address block."""
        rules = []
        for net in networks or []:
            if not net.static_ips:
                continue
            first, last = net.static_ips[0], net.static_ips[-1]
            rules.append(
                {
                    "protocol": self.settings.protocol,
                    "destination": first if first == last else f"{first}-{last}",
                    "ports": self.settings.ports,
                }
            )
        return rules

    async def create(
        self, instance_guid: str, rules: List[Dict[str, Any]], space_guid: Optional[str]
    ) -> str:
        """
        Create the rule set of an instance.

        Raises:
            IngressRulesNotCreated: If every attempt failed
        """
        name = self.rule_set_name(instance_guid)
        logger.info(f"Creating ingress rule set '{name}' with rules {rules}")
        spaces = [space_guid] if space_guid else []

        async def attempt(_: int) -> str:
            return await self.platform.create_rule_set(name, rules, spaces)

        try:
            rule_set_id = await retry_fixed(
                attempt,
                max_attempts=self.settings.max_attempts,
                delay=self.settings.retry_delay,
                description=f"create ingress rule set '{name}'",
            )
        except Exception as e:
            logger.error(f"+-> Failed to create ingress rule set {name}: {e}")
            raise IngressRulesNotCreated(name) from e

        logger.info(f"+-> Created ingress rule set with id '{rule_set_id}'")
        return rule_set_id

    async def ensure_exists(
        self, instance_guid: str, rules: List[Dict[str, Any]], space_guid: Optional[str]
    ) -> None:
        """Create the rule set of an instance if it is missing."""
        name = self.rule_set_name(instance_guid)
        logger.info(f"Ensuring existence of ingress rule set '{name}'...")
        try:
            await self.platform.find_rule_set(name)
            logger.info("+-> Ingress rule set exists")
        except NotFound:
            logger.warning("+-> Ingress rule set does not exist. Trying to create it again.")
            await self.create(instance_guid, rules, space_guid)

    async def delete(self, instance_guid: str) -> None:
        """Delete the rule set of an instance; a missing rule set is fine."""
        name = self.rule_set_name(instance_guid)
        logger.info(f"Deleting ingress rule set '{name}'...")
        try:
            rule_set = await self.platform.find_rule_set(name)
        except NotFound:
            logger.warning(f"+-> Could not find ingress rule set '{name}'")
            return
        try:
            await self.platform.delete_rule_set(rule_set["id"])
        except Exception as e:
            logger.error(f"+-> Failed to delete ingress rule set '{name}': {e}")
            raise
        logger.info("+-> Deleted ingress rule set")
