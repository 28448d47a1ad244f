"""
Deployment naming and network segment allocation.

A deployment name encodes the optional subnet, the network segment index
and the owning instance id: ``prefix[_subnet]-<index>-<instance_id>``.
The index is zero padded so that names sort lexically by index.
"""

import logging
import re
from typing import Iterable, NamedTuple, Optional, Set

from deployment_manager.errors import InstanceAlreadyExists, NetworkSegmentsExhausted

logger = logging.getLogger(__name__)


class ParsedDeploymentName(NamedTuple):
    subnet: Optional[str]
    index: int
    instance_id: str


def deployment_name_pattern(prefix: str, subnet: Optional[str], width: int) -> "re.Pattern[str]":
    """Build the grammar for deployment names of one subnet."""
    subnet_part = f"_{re.escape(subnet)}" if subnet else ""
    return re.compile(
        rf"^(?P<prefix>{re.escape(prefix)}{subnet_part})"
        rf"-(?P<index>[0-9]{{{width}}})"
        rf"-(?P<instance_id>[0-9a-z-]+)$"
    )


class DeploymentNamer:
    """Encodes and decodes deployment names and allocates free indices."""

    def __init__(
        self,
        prefix: str,
        subnet: Optional[str] = None,
        index_width: int = 4,
        capacity: Optional[int] = None,
    ):
        """
        Initialize the namer.

        Args:
            prefix: Prefix shared by all deployments of this manager
            subnet: Subnet the deployments are placed in, if any
            index_width: Zero-padded width of the index in the name
            capacity: Number of network segments available, unbounded if None
        """
        self.prefix = prefix
        self.subnet = subnet
        self.index_width = index_width
        self.capacity = capacity
        self._pattern = deployment_name_pattern(prefix, subnet, index_width)

    def format(self, instance_id: str, index: int) -> str:
        """Build the deployment name for an instance and index."""
        if index < 0:
            raise ValueError(f"Network segment index '{index}' must not be negative")
        subnet = f"_{self.subnet}" if self.subnet else ""
        return f"{self.prefix}{subnet}-{index:0{self.index_width}d}-{instance_id}"

    def matches(self, deployment_name: str) -> bool:
        return self._pattern.match(deployment_name) is not None

    def parse(self, deployment_name: str) -> ParsedDeploymentName:
        """
        Split a deployment name into subnet, index and instance id.

        Raises:
            ValueError: If the name does not follow the naming grammar
        """
        match = self._pattern.match(deployment_name)
        if match is None:
            raise ValueError(
                f"Deployment name '{deployment_name}' does not match "
                f"'{self._pattern.pattern}'"
            )
        return ParsedDeploymentName(
            subnet=self.subnet,
            index=int(match.group("index")),
            instance_id=match.group("instance_id"),
        )

    def get_network_segment_index(self, deployment_name: str) -> int:
        return self.parse(deployment_name).index

    def get_instance_id(self, deployment_name: str) -> str:
        return self.parse(deployment_name).instance_id

    def find_name_for_instance(self, names: Iterable[str], instance_id: str) -> Optional[str]:
        """Return the first name owned by the instance id, in any subnet."""
        owned = re.compile(rf"-[0-9]{{{self.index_width}}}-{re.escape(instance_id)}$")
        for name in names:
            if owned.search(name):
                return name
        return None

    def used_indices(self, names: Iterable[str]) -> Set[int]:
        """Indices taken by deployments of this namer's subnet."""
        used = set()
        for name in names:
            match = self._pattern.match(name)
            if match:
                used.add(int(match.group("index")))
        return used

    def allocate(self, existing_names: Iterable[str], instance_id: str) -> int:
        """
        Pick the network segment index for a new deployment.

        Args:
            existing_names: Names of all deployments, including queued ones
            instance_id: Instance the new deployment belongs to

        Returns:
            Smallest non-negative index not used in this subnet

        Raises:
            InstanceAlreadyExists: If a deployment already belongs to the instance
            NetworkSegmentsExhausted: If every index below the capacity is taken
        """
        names = list(existing_names)
        if self.find_name_for_instance(names, instance_id):
            logger.warning(f"+-> Deployment with instance id '{instance_id}' already exists")
            raise InstanceAlreadyExists(instance_id)

        used = self.used_indices(names)
        index = 0
        while index in used:
            index += 1

        if self.capacity is not None and index >= self.capacity:
            raise NetworkSegmentsExhausted(self.subnet, self.capacity)

        logger.info(f"+-> Allocated network segment index '{index}' to instance {instance_id}")
        return index
