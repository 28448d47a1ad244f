"""
Deployment manifest generator.

Renders the full manifest of a deployment from the plan's template and an
evaluation context. Rendering is a pure function of its inputs: identical
inputs always produce identical text, which update relies on when it diffs
a regenerated manifest against the deployed one.
"""

import ipaddress
import logging
from typing import Any, Dict, List, Optional

import yaml
from jinja2 import StrictUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from deployment_manager.config.settings import (
    InfrastructureSettings,
    NetworkDefinition,
    PlanSettings,
    SegmentationSettings,
)
from deployment_manager.errors import UnprocessableInput

logger = logging.getLogger(__name__)


def to_yaml(value: Any) -> str:
    """Template filter emitting block YAML with sorted keys."""
    return yaml.safe_dump(value, default_flow_style=False, sort_keys=True, width=120).rstrip("\n")


class Network:
    """A network as seen by one deployment."""

    def __init__(
        self,
        name: str,
        base_name: str,
        type: str,
        subnets: List[Dict[str, Any]],
        static_ips: Optional[List[str]] = None,
        cloud_properties: Optional[Dict[str, Any]] = None,
    ):
        self.name = name
        self.base_name = base_name
        self.type = type
        self.subnets = subnets
        self.static_ips = static_ips or []
        self.cloud_properties = cloud_properties or {}

    @property
    def is_dynamic(self) -> bool:
        return self.type == "dynamic"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "type": self.type, "subnets": self.subnets}
        if self.cloud_properties:
            data["cloud_properties"] = self.cloud_properties
        return data


class Networks:
    """Networks of one network segment, expanded per availability zone."""

    def __init__(self, networks: List[Network]):
        self.all = networks

    @property
    def dynamic(self) -> List[Network]:
        return [net for net in self.all if net.is_dynamic]

    def get(self, base_name: str) -> Optional[List[Network]]:
        """Manual networks derived from one definition, or None."""
        found = [net for net in self.all if not net.is_dynamic and net.base_name == base_name]
        return found or None

    @classmethod
    def for_segment(
        cls,
        definitions: List[NetworkDefinition],
        index: int,
        segmentation: SegmentationSettings,
    ) -> "Networks":
        """
        Expand network definitions for a network segment index.

        Manual networks get one entry per subnet/AZ named ``<network>_<az>``
        whose static block is the ``index``-th run of ``segmentation.size``
        addresses after ``segmentation.offset``.
        """
        networks: List[Network] = []
        for definition in definitions:
            if definition.type == "dynamic":
                networks.append(
                    Network(
                        name=definition.name,
                        base_name=definition.name,
                        type="dynamic",
                        subnets=[
                            {"az": subnet.az, "cloud_properties": subnet.cloud_properties}
                            for subnet in definition.subnets
                        ],
                        cloud_properties=definition.cloud_properties,
                    )
                )
                continue

            for subnet in definition.subnets:
                static_ips = cls._segment_ips(subnet.range, index, segmentation)
                entry: Dict[str, Any] = {
                    "az": subnet.az,
                    "range": subnet.range,
                    "static": [f"{static_ips[0]} - {static_ips[-1]}"],
                    "cloud_properties": subnet.cloud_properties,
                }
                if subnet.gateway:
                    entry["gateway"] = subnet.gateway
                if subnet.dns:
                    entry["dns"] = subnet.dns
                networks.append(
                    Network(
                        name=f"{definition.name}_{subnet.az}",
                        base_name=definition.name,
                        type="manual",
                        subnets=[entry],
                        static_ips=static_ips,
                        cloud_properties=definition.cloud_properties,
                    )
                )
        return cls(networks)

    @staticmethod
    def _segment_ips(cidr: str, index: int, segmentation: SegmentationSettings) -> List[str]:
        network = ipaddress.ip_network(cidr, strict=False)
        first = segmentation.offset + index * segmentation.size
        last = first + segmentation.size - 1
        if last >= network.num_addresses:
            raise UnprocessableInput(
                f"Network segment {index} does not fit into subnet {cidr}"
            )
        return [str(network.network_address + n) for n in range(first, last + 1)]


class ManifestGenerator:
    """Generates deployment manifests for one plan."""

    def __init__(
        self,
        infrastructure: InfrastructureSettings,
        plan: PlanSettings,
        network_name: str,
    ):
        """
        Initialize manifest generator.

        Args:
            infrastructure: IaaS layout shared by all plans
            plan: Plan whose template is rendered
            network_name: Name of the network deployments are placed in
        """
        self.infrastructure = infrastructure
        self.plan = plan
        self.network_name = network_name
        self._env = SandboxedEnvironment(
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._env.filters["to_yaml"] = to_yaml
        self._template = None

    @property
    def template(self):
        if self._template is None:
            try:
                self._template = self._env.from_string(self.plan.template_body)
            except TemplateError as e:
                raise UnprocessableInput(f"Invalid manifest template of plan {self.plan.id}: {e}")
        return self._template

    @property
    def releases(self) -> List[Dict[str, str]]:
        releases = [{"name": r.name, "version": r.version} for r in self.plan.releases]
        return sorted(releases, key=lambda r: f"{r['name']}/{r['version']}")

    @property
    def stemcell(self) -> Dict[str, Any]:
        stemcell = self.infrastructure.stemcell.model_dump(exclude_none=True)
        stemcell.update(self.plan.stemcell)
        stemcell["version"] = str(stemcell.get("version", "latest"))
        return stemcell

    @property
    def resource_pools(self) -> List[Dict[str, Any]]:
        pools = []
        for az in self.infrastructure.azs:
            for vm_type in self.infrastructure.vm_types:
                cloud_properties = dict(az.cloud_properties)
                cloud_properties.update(vm_type.cloud_properties)
                pools.append(
                    {
                        "name": f"{vm_type.name}_{az.name}",
                        "network": f"{self.network_name}_{az.name}",
                        "stemcell": self.stemcell,
                        "cloud_properties": cloud_properties,
                    }
                )
        return pools

    def get_networks(self, index: int) -> Networks:
        return Networks.for_segment(
            self.infrastructure.networks, index, self.infrastructure.segmentation
        )

    def build_header(self, deployment_name: str, networks: Networks) -> Dict[str, Any]:
        """Build the manifest header shared by every template."""
        required = networks.dynamic + (networks.get(self.network_name) or [])
        return {
            "name": deployment_name,
            "releases": self.releases,
            "compilation": self.infrastructure.compilation,
            "disk_pools": self.infrastructure.disk_types,
            "resource_pools": self.resource_pools,
            "networks": [net.to_dict() for net in required],
        }

    def generate(
        self,
        deployment_name: str,
        index: int,
        parameters: Optional[Dict[str, Any]] = None,
        previous_manifest: Optional[str] = None,
        organization_guid: Optional[str] = None,
        space_guid: Optional[str] = None,
    ) -> str:
        """
        Render the manifest of a deployment.

        Args:
            deployment_name: Name of the deployment
            index: Network segment index of the deployment
            parameters: Instance parameters supplied by the user
            previous_manifest: Currently deployed manifest text (update only)
            organization_guid: Organization owning the instance
            space_guid: Space owning the instance

        Returns:
            Rendered manifest text

        Raises:
            UnprocessableInput: If the manifest cannot be rendered
        """
        networks = self.get_networks(index)
        segment_networks = networks.get(self.network_name)
        if segment_networks is None:
            logger.error(
                f"subnet {self.network_name} definition not found among the applicable "
                f"networks: {[net.name for net in networks.all]}"
            )
            raise UnprocessableInput(f"subnet {self.network_name} definition not found")

        context = {
            "name": deployment_name,
            "index": index,
            "header": self.build_header(deployment_name, networks),
            "networks": [
                dict(net.to_dict(), static_ips=net.static_ips) for net in segment_networks
            ],
            "parameters": parameters or {},
            "properties": self.plan.context,
            "previous_manifest": self._parse_previous_manifest(deployment_name, previous_manifest),
            "organization_guid": organization_guid,
            "space_guid": space_guid,
        }

        try:
            rendered = self.template.render(**context)
        except TemplateError as e:
            logger.error(f"Failed to render manifest of {deployment_name}: {e}")
            raise UnprocessableInput(f"Failed to render manifest of {deployment_name}: {e}")

        try:
            yaml.safe_load(rendered)
        except yaml.YAMLError as e:
            raise UnprocessableInput(f"Rendered manifest of {deployment_name} is not valid YAML: {e}")

        return rendered

    @staticmethod
    def _parse_previous_manifest(
        deployment_name: str, previous_manifest: Optional[str]
    ) -> Optional[Dict[str, Any]]:
        if previous_manifest is None:
            return None
        try:
            manifest = yaml.safe_load(previous_manifest)
        except yaml.YAMLError as e:
            raise UnprocessableInput(f"Previous manifest of {deployment_name} is invalid: {e}")
        if not isinstance(manifest, dict):
            raise UnprocessableInput(f"Previous manifest of {deployment_name} is not a mapping")
        if manifest.get("name", deployment_name) != deployment_name:
            raise UnprocessableInput(
                f"Previous manifest belongs to '{manifest.get('name')}', not {deployment_name}"
            )
        return manifest
