import pytest

from hubdeploy.errors import RejectedError, TransientError
from hubdeploy.models.units import resolve_units
from hubdeploy.services.step_executor import StepExecutor


async def _started(ledger, config, api_key_hash):
    deployment = await ledger.create("Acme", None, config, api_key_hash)
    await ledger.start(deployment.id)
    return deployment, resolve_units(deployment.config)


@pytest.mark.asyncio
async def test_apply_logs_started_then_completed(ledger, deployment_repo, crm, config, api_key_hash):
    deployment, units = await _started(ledger, config, api_key_hash)
    executor = StepExecutor(ledger)

    outcome = await executor.apply(deployment.id, units[0], crm, next_step=units[1].unit_id)

    assert outcome.status == "completed"
    assert outcome.remote_id == "plan_tier"
    assert [(log.step, log.status) for log in deployment_repo.logs] == [
        ("property:contacts:plan_tier", "started"),
        ("property:contacts:plan_tier", "completed"),
    ]
    current = await ledger.get(deployment.id)
    assert len(current.created_entities) == 1


@pytest.mark.asyncio
async def test_apply_failure_leaves_created_entities(ledger, deployment_repo, crm, config, api_key_hash):
    deployment, units = await _started(ledger, config, api_key_hash)
    crm.apply_failures[units[0].unit_id] = TransientError("HubSpot unavailable", status_code=503)
    executor = StepExecutor(ledger)

    outcome = await executor.apply(deployment.id, units[0], crm)

    assert not outcome.succeeded
    assert outcome.error_code == "hubspot_unavailable"
    assert [log.status for log in deployment_repo.logs] == ["started", "failed"]
    current = await ledger.get(deployment.id)
    assert current.created_entities == []
    assert current.deployment_progress.completed_steps == 0


@pytest.mark.asyncio
async def test_conflict_is_skipped_when_enabled(ledger, deployment_repo, crm, config, api_key_hash):
    deployment, units = await _started(ledger, config, api_key_hash)
    crm.apply_failures[units[0].unit_id] = RejectedError("exists", code="conflict", status_code=409)

    outcome = await StepExecutor(ledger, skip_existing_entities=True).apply(deployment.id, units[0], crm)

    assert outcome.status == "skipped"
    assert deployment_repo.logs[-1].status == "skipped"
    current = await ledger.get(deployment.id)
    assert current.deployment_progress.completed_steps == 1
    assert current.created_entities == []


@pytest.mark.asyncio
async def test_conflict_fails_by_default(ledger, crm, config, api_key_hash):
    deployment, units = await _started(ledger, config, api_key_hash)
    crm.apply_failures[units[0].unit_id] = RejectedError("exists", code="conflict", status_code=409)

    outcome = await StepExecutor(ledger).apply(deployment.id, units[0], crm)

    assert outcome.status == "failed"
    assert outcome.error_code == "conflict"


@pytest.mark.asyncio
async def test_undo_removes_entity_and_logs(ledger, deployment_repo, crm, config, api_key_hash):
    deployment, units = await _started(ledger, config, api_key_hash)
    executor = StepExecutor(ledger)
    await executor.apply(deployment.id, units[0], crm)
    await ledger.finish(deployment.id, "failed", {"code": "test"})
    entity = (await ledger.get(deployment.id)).created_entities[0]

    assert await executor.undo(deployment.id, entity, crm) is True

    assert crm.deleted == [("property", "plan_tier", "contacts")]
    assert (await ledger.get(deployment.id)).created_entities == []
    undo_log = deployment_repo.logs[-1]
    assert undo_log.status == "completed"
    assert undo_log.details["action"] == "undo"
    assert undo_log.step == "property:contacts:plan_tier"


@pytest.mark.asyncio
async def test_failed_undo_retains_entity(ledger, deployment_repo, crm, config, api_key_hash):
    deployment, units = await _started(ledger, config, api_key_hash)
    executor = StepExecutor(ledger)
    await executor.apply(deployment.id, units[0], crm)
    await ledger.finish(deployment.id, "failed", {"code": "test"})
    entity = (await ledger.get(deployment.id)).created_entities[0]
    crm.delete_failures["plan_tier"] = RejectedError("property in use", status_code=400)

    assert await executor.undo(deployment.id, entity, crm) is False

    assert len((await ledger.get(deployment.id)).created_entities) == 1
    assert deployment_repo.logs[-1].status == "failed"
    assert deployment_repo.logs[-1].error_message == "property in use"


@pytest.mark.asyncio
async def test_unexpected_error_still_writes_terminal_row(ledger, deployment_repo, crm, config, api_key_hash):
    deployment, units = await _started(ledger, config, api_key_hash)
    crm.apply_failures[units[0].unit_id] = KeyError("name")

    with pytest.raises(KeyError):
        await StepExecutor(ledger).apply(deployment.id, units[0], crm)

    assert [log.status for log in deployment_repo.logs] == ["started", "failed"]
    assert deployment_repo.logs[-1].details["code"] == "internal_error"
    current = await ledger.get(deployment.id)
    assert current.deployment_progress.completed_steps == 0


@pytest.mark.asyncio
async def test_unexpected_undo_error_is_logged(ledger, deployment_repo, crm, config, api_key_hash):
    deployment, units = await _started(ledger, config, api_key_hash)
    executor = StepExecutor(ledger)
    await executor.apply(deployment.id, units[0], crm)
    await ledger.finish(deployment.id, "failed", {"code": "test"})
    entity = (await ledger.get(deployment.id)).created_entities[0]
    crm.delete_failures["plan_tier"] = RuntimeError("socket closed")

    with pytest.raises(RuntimeError):
        await executor.undo(deployment.id, entity, crm)

    assert deployment_repo.logs[-1].status == "failed"
    assert deployment_repo.logs[-1].details["action"] == "undo"
    assert len((await ledger.get(deployment.id)).created_entities) == 1
