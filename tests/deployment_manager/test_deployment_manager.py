"""
Unit tests for DeploymentManager.
"""

import json

import pytest
import yaml

from deployment_manager.deployment.manager import binding_property_name
from deployment_manager.errors import (
    BindingAlreadyExists,
    BindingNotFound,
    DeploymentNotFound,
    DeploymentNotOperational,
    FeatureNotSupported,
    InstanceAlreadyExists,
    NotFound,
)
from deployment_manager.models import (
    BackupOperation,
    CreateOperation,
    OperationState,
    OperationSubtype,
    RestoreOperation,
    ServiceOperationOptions,
    Task,
    UnlockOperation,
)


class TestIdentity:
    """Test cases for deployment identity lookups."""

    @pytest.mark.asyncio
    async def test_acquire_network_segment_index(self, manager, apply_service, namer):
        apply_service.get_deployment_names.return_value = [
            namer.format("a", 0),
            namer.format("b", 1),
            namer.format("c", 3),
        ]

        assert await manager.acquire_network_segment_index("new") == 2
        apply_service.get_deployment_names.assert_awaited_once_with(queued=True)

    @pytest.mark.asyncio
    async def test_acquire_for_existing_instance(self, manager, apply_service, ids):
        apply_service.get_deployment_names.return_value = [ids.deployment_name]
        with pytest.raises(InstanceAlreadyExists):
            await manager.acquire_network_segment_index(ids.instance_id)

    @pytest.mark.asyncio
    async def test_find_network_segment_index(self, manager, ids):
        assert await manager.find_network_segment_index(ids.instance_id) == ids.index

    @pytest.mark.asyncio
    async def test_find_unknown_instance(self, manager, apply_service):
        apply_service.get_deployment_name_for_instance_id.side_effect = NotFound("none")
        with pytest.raises(DeploymentNotFound):
            await manager.find_deployment_name_by_instance_id("missing")

    def test_get_deployment_name(self, manager, ids):
        assert manager.get_deployment_name(ids.instance_id, ids.index) == ids.deployment_name


class TestManifests:
    """Test cases for manifest submission and diffs."""

    @pytest.mark.asyncio
    async def test_create_submits_rendered_manifest(self, manager, apply_service, ids):
        task_id = await manager.create_or_update_deployment(
            ids.deployment_name, {"parameters": {"size": "large"}}
        )

        assert task_id == "task-1"
        manifest_text, args = apply_service.create_or_update_deployment.await_args.args
        manifest = yaml.safe_load(manifest_text)
        assert manifest["name"] == ids.deployment_name
        assert manifest["properties"]["size"] == "large"
        assert "previous_size" not in manifest["properties"]
        apply_service.get_deployment_manifest.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_uses_deployed_manifest(self, manager, apply_service, ids):
        await manager.create_or_update_deployment(
            ids.deployment_name,
            {"parameters": {"size": "large"}, "previous_values": {"plan_id": ids.plan_id}},
        )

        manifest = yaml.safe_load(apply_service.create_or_update_deployment.await_args.args[0])
        assert manifest["properties"]["previous_size"] == "small"

    @pytest.mark.asyncio
    async def test_update_deployment_defaults_previous_values(self, manager, apply_service, ids):
        await manager.update_deployment(ids.deployment_name)
        apply_service.get_deployment_manifest.assert_awaited_once_with(ids.deployment_name)

    @pytest.mark.asyncio
    async def test_regenerate_requires_deployed_manifest(self, manager, apply_service, ids):
        apply_service.get_deployment_manifest.return_value = None
        with pytest.raises(DeploymentNotOperational):
            await manager.regenerate_manifest(ids.deployment_name)

    @pytest.mark.asyncio
    async def test_submit_failure_propagates(self, manager, apply_service, ids):
        apply_service.create_or_update_deployment.side_effect = RuntimeError("director down")
        with pytest.raises(RuntimeError):
            await manager.create_or_update_deployment(ids.deployment_name)

    @pytest.mark.asyncio
    async def test_diff_manifest(self, manager, ids):
        diff = await manager.diff_manifest(ids.deployment_name, {"parameters": {"size": "large"}})
        assert f"--- {ids.deployment_name} (deployed)" in diff
        assert "+  size: large" in diff


class TestDeleteAndInfo:
    """Test cases for deletion, tasks and deployment info."""

    @pytest.mark.asyncio
    async def test_delete_deprovisions_first(self, manager, agent, apply_service, ids):
        task_id = await manager.delete_deployment(ids.deployment_name)

        assert task_id == "task-2"
        agent.deprovision.assert_awaited_once_with(["10.11.0.184", "10.11.1.184"])
        apply_service.delete_deployment.assert_awaited_once_with(ids.deployment_name)

    @pytest.mark.asyncio
    async def test_delete_without_lifecycle_feature(self, manager, agent, apply_service, ids):
        agent.features = ["backup"]

        await manager.delete_deployment(ids.deployment_name)

        agent.deprovision.assert_not_called()
        apply_service.delete_deployment.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_not_operational_deployment(self, manager, agent, apply_service, ids):
        apply_service.get_deployment_manifest.return_value = None

        assert await manager.delete_deployment(ids.deployment_name) == "task-2"
        agent.deprovision.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_task(self, manager, apply_service, ids):
        apply_service.get_task.return_value = {
            "id": "task-1",
            "deployment": ids.deployment_name,
            "state": "processing",
            "timestamp": 1700000000,
        }
        task = await manager.get_task("task-1")
        assert isinstance(task, Task)
        assert task.state == "processing"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reverse", [False, True])
    async def test_deployment_info(self, manager, apply_service, ids, reverse):
        tasks = [
            {"id": 7, "description": "create deployment"},
            {"id": 12, "description": "run errand smoke_tests"},
            {"id": 31, "description": "create deployment"},
        ]
        if reverse:
            tasks.reverse()
        apply_service.get_deployment.return_value = {"name": ids.deployment_name}
        apply_service.get_tasks.return_value = tasks
        apply_service.get_task_events.side_effect = lambda task_id: [{"task": task_id}]

        info = await manager.get_deployment_info(ids.deployment_name)

        assert info["create_task"] == {"id": 7, "description": "create deployment"}
        assert sorted(e["task"] for e in info["events"]) == [7, 12, 31]

    @pytest.mark.asyncio
    async def test_deployment_info_without_create_task(self, manager, apply_service, ids):
        apply_service.get_deployment.return_value = {"name": ids.deployment_name}
        apply_service.get_tasks.return_value = [{"id": 2, "description": "run errand smoke"}]
        apply_service.get_task_events.return_value = []

        info = await manager.get_deployment_info(ids.deployment_name)

        assert info["create_task"] is None

    @pytest.mark.asyncio
    async def test_deployment_info_absent(self, manager, apply_service, ids):
        apply_service.get_deployment.side_effect = NotFound("gone")
        assert await manager.get_deployment_info(ids.deployment_name) is None

    @pytest.mark.asyncio
    async def test_instance_state(self, manager, agent, ids):
        agent.get_state.return_value = {"operational": True}
        assert await manager.get_instance_state(ids.deployment_name) == {"operational": True}


class TestBindings:
    """Test cases for binding credentials."""

    @pytest.mark.asyncio
    async def test_create_and_read_binding(self, manager, agent, apply_service, ids):
        agent.create_credentials.return_value = {"username": "u", "password": "p"}

        credentials = await manager.create_binding(ids.deployment_name, "bind-1", {"role": "rw"})

        assert credentials == {"username": "u", "password": "p"}
        raw = apply_service.properties[(ids.deployment_name, binding_property_name("bind-1"))]
        assert json.loads(raw) == {"id": "bind-1", "credentials": credentials}
        info = await manager.get_binding_info(ids.deployment_name, "bind-1")
        assert info["credentials"]["password"] == "p"

    @pytest.mark.asyncio
    async def test_duplicate_binding(self, manager, agent, ids):
        agent.create_credentials.return_value = {"username": "u"}
        await manager.create_binding(ids.deployment_name, "bind-1")

        with pytest.raises(BindingAlreadyExists):
            await manager.create_binding(ids.deployment_name, "bind-1")

    @pytest.mark.asyncio
    async def test_delete_binding(self, manager, agent, apply_service, ids):
        agent.create_credentials.return_value = {"username": "u"}
        await manager.create_binding(ids.deployment_name, "bind-1")

        await manager.delete_binding(ids.deployment_name, "bind-1")

        agent.delete_credentials.assert_awaited_once_with(
            ["10.11.0.184", "10.11.1.184"], {"username": "u"}
        )
        assert apply_service.properties == {}

    @pytest.mark.asyncio
    async def test_delete_unknown_binding(self, manager, agent, ids):
        with pytest.raises(BindingNotFound):
            await manager.delete_binding(ids.deployment_name, "missing")
        agent.delete_credentials.assert_not_called()


class TestOperations:
    """Test cases for operation dispatch and polling."""

    @pytest.fixture
    def opts(self, ids):
        return ServiceOperationOptions(
            deployment=ids.deployment_name,
            instance_guid=ids.instance_id,
            space_guid=ids.space_guid,
            username="hugo",
            arguments={"trigger": "on_demand"},
        )

    @pytest.mark.asyncio
    async def test_invoke_backup(self, manager, opts):
        op = await manager.invoke_operation(OperationSubtype.BACKUP, opts)
        assert isinstance(op, BackupOperation)
        assert op.agent_ip == "10.11.0.184"

    @pytest.mark.asyncio
    async def test_invoke_backup_without_feature(self, manager, agent, opts):
        agent.features = ["lifecycle"]
        with pytest.raises(FeatureNotSupported):
            await manager.invoke_operation(OperationSubtype.BACKUP, opts)
        agent.start_backup.assert_not_called()

    @pytest.mark.asyncio
    async def test_invoke_unlock_needs_no_feature(self, manager, agent, opts):
        agent.features = []
        op = await manager.invoke_operation(OperationSubtype.UNLOCK, opts)
        assert isinstance(op, UnlockOperation)

    @pytest.mark.asyncio
    async def test_poll_task_operation(self, manager, apply_service, ids):
        apply_service.get_task.return_value = {
            "id": "task-1",
            "deployment": ids.deployment_name,
            "state": "done",
            "timestamp": 0,
        }
        op = await manager.get_operation_state(CreateOperation(task_id="task-1"))
        assert op.state == OperationState.SUCCEEDED

    @pytest.mark.asyncio
    async def test_poll_terminal_operation_does_not_call_upstream(self, manager, apply_service):
        op = CreateOperation(task_id="task-1", state=OperationState.FAILED)
        assert await manager.get_operation_state(op) is op
        apply_service.get_task.assert_not_called()

    @pytest.mark.asyncio
    async def test_poll_backup_operation(self, manager, agent, backup_store, ids):
        agent.get_backup_last_operation.return_value = {"state": "succeeded", "updated_at": "now"}
        agent.get_backup_logs.return_value = []
        op = BackupOperation(
            state=OperationState.IN_PROGRESS,
            deployment=ids.deployment_name,
            agent_ip="10.11.0.184",
            backup_guid="backup-1",
            space_guid=ids.space_guid,
        )

        result = await manager.get_operation_state(op)

        assert result.state == OperationState.SUCCEEDED
        key = backup_store.patch_backup_file.await_args.args[0]
        assert key["instance_guid"] == ids.instance_id
        assert key["backup_guid"] == "backup-1"

    @pytest.mark.asyncio
    async def test_poll_restore_operation(self, manager, agent, ids):
        agent.get_restore_last_operation.return_value = {"state": "processing", "stage": "Copy"}
        op = RestoreOperation(
            state=OperationState.IN_PROGRESS,
            deployment=ids.deployment_name,
            agent_ip="10.11.0.184",
            backup_guid="backup-1",
        )

        result = await manager.get_operation_state(op, ids.instance_id)

        assert result.state == OperationState.IN_PROGRESS
        assert result.description.endswith('"Copy"')
