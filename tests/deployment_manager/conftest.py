"""
Shared fixtures for deployment manager tests.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import yaml

from deployment_manager.backup.orchestrator import BackupRestoreOrchestrator
from deployment_manager.config.settings import (
    AutoUpdateSettings,
    BackupSettings,
    DeploymentManagerConfig,
    IngressSettings,
    InfrastructureSettings,
    ManagerSettings,
    PlanSettings,
    ReaperSettings,
)
from deployment_manager.deployment.manager import DeploymentManager
from deployment_manager.deployment_lock import DeploymentLock
from deployment_manager.errors import AlreadyExists, NotFound
from deployment_manager.inventory import DeploymentInventory
from deployment_manager.manifest_generator import ManifestGenerator
from deployment_manager.naming import DeploymentNamer

INSTANCE_ID = "b4719e7c-e8d3-4f7f-c515-769ad1c3ebfa"
SPACE_GUID = "e7c0a437-7585-4d75-addf-aa4d45b49f3a"
ORG_GUID = "c84c8e58-eedc-4706-91fb-e8d97b333481"
SERVICE_ID = "24731fb8-7b84-4f57-914f-c3d55d793dd4"
PLAN_ID = "bc158c9a-7934-401e-94ab-057082a5073f"
INDEX = 21
DEPLOYMENT_NAME = f"service-fabrik-0021-{INSTANCE_ID}"

IDS = SimpleNamespace(
    instance_id=INSTANCE_ID,
    space_guid=SPACE_GUID,
    org_guid=ORG_GUID,
    service_id=SERVICE_ID,
    plan_id=PLAN_ID,
    index=INDEX,
    deployment_name=DEPLOYMENT_NAME,
)

MANIFEST_TEMPLATE = """\
name: {{ name }}
releases:
{%- for release in header.releases %}
- name: {{ release.name }}
  version: "{{ release.version }}"
{%- endfor %}
jobs:
- name: blueprint
  instances: 1
  networks:
{%- for net in networks %}
  - name: {{ net.name }}
    static_ips: [{{ net.static_ips[0] }}]
{%- endfor %}
properties:
  size: {{ parameters.get("size", "small") }}
  admin: {{ properties.admin }}
{%- if previous_manifest %}
  previous_size: {{ previous_manifest.properties.size }}
{%- endif %}
"""


@pytest.fixture
def ids():
    """Identifiers shared by the fixtures below."""
    return IDS


@pytest.fixture
def infrastructure():
    """Two AZs, one manual network and one dynamic network."""
    return InfrastructureSettings(
        azs=[{"name": "z1"}, {"name": "z2"}],
        vm_types=[{"name": "small", "cloud_properties": {"instance_type": "m1.small"}}],
        networks=[
            {
                "name": "default",
                "type": "manual",
                "subnets": [
                    {"az": "z1", "range": "10.11.0.0/24", "gateway": "10.11.0.1"},
                    {"az": "z2", "range": "10.11.1.0/24", "gateway": "10.11.1.1"},
                ],
            },
            {"name": "compilation", "type": "dynamic", "subnets": [{"az": "z1", "range": "10.12.0.0/24"}]},
        ],
        segmentation={"network_name": "default", "offset": 16, "size": 8},
        stemcell={"name": "bosh-openstack-kvm-ubuntu-trusty-go_agent", "os": "ubuntu-trusty"},
    )


@pytest.fixture
def plan():
    return PlanSettings(
        id=PLAN_ID,
        name="v1.0-xsmall",
        service_id=SERVICE_ID,
        template=MANIFEST_TEMPLATE,
        releases=[
            {"name": "blueprint", "version": "0.0.11"},
            {"name": "agent", "version": 2},
        ],
        context={"admin": "blueprint-admin"},
        agent_features=["lifecycle", "credentials", "backup", "restore"],
    )


@pytest.fixture
def config(infrastructure, plan):
    return DeploymentManagerConfig(
        manager=ManagerSettings(operation_token_secret="test-secret", admin_users=["admin"]),
        infrastructure=infrastructure,
        plans=[plan],
        backup=BackupSettings(retention_period_in_days=14, max_num_on_demand_backup=2),
        reaper=ReaperSettings(delete_delay=0),
        ingress=IngressSettings(max_attempts=3, retry_delay=0),
        auto_update=AutoUpdateSettings(max_attempts=3, retry_delay=0),
    )


@pytest.fixture
def namer():
    return DeploymentNamer(prefix="service-fabrik")


@pytest.fixture
def generator(infrastructure, plan):
    return ManifestGenerator(infrastructure, plan, "default")


@pytest.fixture
def deployed_manifest():
    """Manifest text as returned by the apply service."""
    return yaml.safe_dump(
        {
            "name": DEPLOYMENT_NAME,
            "jobs": [
                {
                    "name": "blueprint_z1",
                    "networks": [{"name": "default_z1", "static_ips": ["10.11.0.184"]}],
                },
                {
                    "name": "blueprint_z2",
                    "networks": [{"name": "default_z2", "static_ips": ["10.11.1.184"]}],
                },
            ],
            "properties": {"size": "small"},
        }
    )


@pytest.fixture
def apply_service(deployed_manifest):
    """Apply service with one deployment, two VMs and in-memory properties."""
    service = AsyncMock()
    properties = {}

    async def get_property(deployment_name, key):
        if (deployment_name, key) not in properties:
            raise NotFound(f"Property {key} of {deployment_name}")
        return properties[(deployment_name, key)]

    async def create_property(deployment_name, key, value):
        if (deployment_name, key) in properties:
            raise AlreadyExists(f"Property {key} of {deployment_name}")
        properties[(deployment_name, key)] = value

    async def update_property(deployment_name, key, value):
        properties[(deployment_name, key)] = value

    async def delete_property(deployment_name, key):
        if (deployment_name, key) not in properties:
            raise NotFound(f"Property {key} of {deployment_name}")
        del properties[(deployment_name, key)]

    service.properties = properties
    service.get_deployment_property.side_effect = get_property
    service.create_deployment_property.side_effect = create_property
    service.update_deployment_property.side_effect = update_property
    service.delete_deployment_property.side_effect = delete_property
    service.get_deployment_manifest.return_value = deployed_manifest
    service.get_deployment_vms.return_value = [
        {"cid": "vm-1", "agent_id": "agent-1", "job": "blueprint_z1", "index": 0},
        {"cid": "vm-2", "agent_id": "agent-2", "job": "blueprint_z2", "index": 0},
    ]
    service.get_deployment_name_for_instance_id.return_value = DEPLOYMENT_NAME
    service.create_or_update_deployment.return_value = "task-1"
    service.delete_deployment.return_value = "task-2"
    return service


@pytest.fixture
def agent():
    agent = AsyncMock()
    agent.features = ["lifecycle", "credentials", "backup", "restore"]
    agent.start_backup.return_value = "10.11.0.184"
    agent.start_restore.return_value = "10.11.0.184"
    return agent


@pytest.fixture
def backup_store():
    store = AsyncMock()
    store.list_backup_files.return_value = []
    return store


@pytest.fixture
def lock(apply_service):
    return DeploymentLock(apply_service)


@pytest.fixture
def inventory(apply_service, namer):
    return DeploymentInventory(apply_service, namer, "openstack")


@pytest.fixture
def orchestrator(inventory, agent, backup_store, lock, config, plan):
    return BackupRestoreOrchestrator(
        inventory, agent, backup_store, lock, config.backup, plan, admin_users=["admin"]
    )


@pytest.fixture
def manager(plan, namer, generator, inventory, apply_service, agent, lock, orchestrator):
    return DeploymentManager(
        plan=plan,
        namer=namer,
        generator=generator,
        inventory=inventory,
        apply_service=apply_service,
        agent=agent,
        lock=lock,
        backups=orchestrator,
    )
