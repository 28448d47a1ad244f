"""
Configuration models for the deployment manager.

Configuration is loaded from a YAML file into pydantic models. Sections
mirror the collaborators they configure: naming and tokens (manager),
IaaS layout (infrastructure), service plans, backups, the retention
reaper, ingress rule provisioning and auto-update scheduling.
"""

import base64
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

OPERATION_SECRET_ENV = "DEPLOYMENT_MANAGER_OPERATION_SECRET"


class ManagerSettings(BaseModel):
    """Deployment naming and request token settings."""

    prefix: str = Field(default="service-fabrik", description="Deployment name prefix")
    subnet: Optional[str] = Field(default=None, description="Subnet deployments are placed in")
    index_width: int = Field(default=4, ge=1, description="Zero-padded width of the index")
    index_capacity: Optional[int] = Field(
        default=None, ge=1, description="Number of network segments available per subnet"
    )
    operation_token_secret: str = Field(
        default="change-me", description="Secret used to verify signed operation tokens"
    )
    admin_users: List[str] = Field(
        default_factory=lambda: ["admin"],
        description="Users allowed to trigger scheduled backups",
    )


class AvailabilityZone(BaseModel):
    name: str
    cloud_properties: Dict[str, Any] = Field(default_factory=dict)


class VmType(BaseModel):
    name: str
    cloud_properties: Dict[str, Any] = Field(default_factory=dict)


class SubnetDefinition(BaseModel):
    az: str
    range: str = Field(description="CIDR of the subnet")
    gateway: Optional[str] = None
    dns: List[str] = Field(default_factory=list)
    cloud_properties: Dict[str, Any] = Field(default_factory=dict)


class NetworkDefinition(BaseModel):
    name: str
    type: str = Field(default="manual", description="'manual' or 'dynamic'")
    subnets: List[SubnetDefinition] = Field(default_factory=list)
    cloud_properties: Dict[str, Any] = Field(default_factory=dict)


class SegmentationSettings(BaseModel):
    network_name: Optional[str] = Field(default=None, description="Default network name")
    offset: int = Field(default=0, ge=0, description="Addresses skipped at subnet start")
    size: int = Field(default=8, ge=1, description="Static addresses per segment")


class Stemcell(BaseModel):
    name: Optional[str] = None
    os: Optional[str] = None
    version: str = "latest"


class InfrastructureSettings(BaseModel):
    """IaaS layout shared by all plans."""

    azs: List[AvailabilityZone] = Field(default_factory=list)
    vm_types: List[VmType] = Field(default_factory=list)
    networks: List[NetworkDefinition] = Field(default_factory=list)
    segmentation: SegmentationSettings = Field(default_factory=SegmentationSettings)
    stemcell: Stemcell = Field(default_factory=Stemcell)
    compilation: Dict[str, Any] = Field(default_factory=dict)
    disk_types: List[Dict[str, Any]] = Field(default_factory=list)


class Release(BaseModel):
    name: str
    version: str

    @model_validator(mode="before")
    @classmethod
    def coerce_version(cls, data: Any) -> Any:
        if isinstance(data, dict) and "version" in data:
            data = dict(data, version=str(data["version"]))
        return data


class PlanSettings(BaseModel):
    """Service plan backed by deployments."""

    id: str
    name: str = ""
    service_id: str
    template: str = Field(description="Manifest template body")
    template_encoding: str = Field(default="plain", description="'plain' or 'base64'")
    releases: List[Release] = Field(default_factory=list)
    stemcell: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict, description="Template properties")
    agent_features: List[str] = Field(default_factory=list)
    backup_interval: Optional[str] = None

    @property
    def template_body(self) -> str:
        if self.template_encoding == "base64":
            return base64.b64decode(self.template).decode("utf-8")
        return self.template


class BackupSettings(BaseModel):
    retention_period_in_days: int = Field(default=14, ge=0)
    max_num_on_demand_backup: int = Field(default=2, ge=0)
    provider_name: str = Field(default="openstack", description="IaaS provider of the backups")


class ReaperSettings(BaseModel):
    delete_delay: float = Field(default=1.0, ge=0, description="Seconds between deletions")
    touch_interval: int = Field(default=30, ge=1, description="Items between lease renewals")


class IngressSettings(BaseModel):
    max_attempts: int = Field(default=4, ge=1)
    retry_delay: float = Field(default=1.0, ge=0)
    protocol: str = "tcp"
    ports: str = "1024-65535"


class AutoUpdateSettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=1.0, ge=0)
    time_zone: str = "UTC"
    repeat_interval: str = "random"


class FeatureFlags(BaseModel):
    scheduled_backup: bool = False
    scheduled_update: bool = False


class DeploymentManagerConfig(BaseModel):
    """Top-level configuration."""

    manager: ManagerSettings = Field(default_factory=ManagerSettings)
    infrastructure: InfrastructureSettings = Field(default_factory=InfrastructureSettings)
    plans: List[PlanSettings] = Field(default_factory=list)
    backup: BackupSettings = Field(default_factory=BackupSettings)
    reaper: ReaperSettings = Field(default_factory=ReaperSettings)
    ingress: IngressSettings = Field(default_factory=IngressSettings)
    auto_update: AutoUpdateSettings = Field(default_factory=AutoUpdateSettings)
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    @property
    def network_name(self) -> str:
        return (
            self.manager.subnet or self.infrastructure.segmentation.network_name or "default"
        )

    def get_plan(self, plan_id: str) -> Optional[PlanSettings]:
        for plan in self.plans:
            if plan.id == plan_id:
                return plan
        return None

    @classmethod
    def from_file(cls, path: str) -> "DeploymentManagerConfig":
        """Load configuration from a YAML file."""
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        secret = os.getenv(OPERATION_SECRET_ENV)
        if secret:
            data.setdefault("manager", {})["operation_token_secret"] = secret

        config = cls(**data)
        logger.info(f"Loaded configuration from {path} with {len(config.plans)} plans")
        return config


def generate_default_config(config_path: str) -> None:
    """Write a default configuration file."""
    default_config = {
        "manager": {"prefix": "service-fabrik", "index_width": 4},
        "infrastructure": {
            "azs": [{"name": "z1", "cloud_properties": {}}],
            "vm_types": [{"name": "small", "cloud_properties": {}}],
            "networks": [
                {
                    "name": "default",
                    "type": "manual",
                    "subnets": [{"az": "z1", "range": "10.11.0.0/20", "gateway": "10.11.0.1"}],
                }
            ],
            "segmentation": {"network_name": "default", "offset": 16, "size": 8},
        },
        "plans": [],
        "backup": {"retention_period_in_days": 14, "max_num_on_demand_backup": 2},
        "reaper": {"delete_delay": 1.0},
    }

    Path(config_path).parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False)

    logger.info(f"Generated default configuration at: {config_path}")
