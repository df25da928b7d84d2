"""Deployment ledger: the durable record of one deployment attempt.

Status moves pending -> in_progress -> completed | failed, and failed ->
rolled_back through an explicit rollback. Every transition is a guarded
conditional update in the repository; a refused guard surfaces here as
InvalidStateError, or NotFoundError when the row is missing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from hubdeploy.errors import InvalidStateError, NotFoundError, ValidationError
from hubdeploy.models.deployments import Deployment, DeploymentLog, DeploymentStats
from hubdeploy.models.units import CreatedEntity, Unit, duplicate_unit_ids, resolve_units
from hubdeploy.repositories.deployments import DeploymentRepository, LogEntry
from hubdeploy.services.config_validators import normalize_template_config

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    status: str
    unit_id: str
    remote_id: str | None = None
    response: Any = None
    error_code: str | None = None
    error_message: str | None = None
    execution_time: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status in ("completed", "skipped")


def validate_config(config: Any) -> tuple[dict[str, Any], list[Unit]]:
    """Normalize a config document and resolve it into its ordered units.

    Raises ValidationError before anything is persisted or sent to HubSpot.
    """
    normalized, errors = normalize_template_config(config)
    if errors:
        raise ValidationError("Invalid deployment config", errors)

    try:
        units = resolve_units(normalized)
    except PydanticValidationError as exc:
        raise ValidationError(
            "Invalid deployment config",
            [
                {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ],
        ) from exc

    duplicates = duplicate_unit_ids(units)
    if duplicates:
        raise ValidationError(
            "Config declares the same unit more than once",
            [{"field": unit_id, "message": "Duplicate unit"} for unit_id in duplicates],
        )
    return normalized, units


def _now() -> datetime:
    return datetime.now(timezone.utc)


def success_rate(status_counts: dict[str, int]) -> float:
    """Completed deployments as a percentage of all counted, to two places."""
    total = sum(status_counts.values())
    if total == 0:
        return 0.0
    return round(status_counts.get("completed", 0) / total * 100, 2)


class DeploymentLedger:
    def __init__(self, repository: DeploymentRepository) -> None:
        self._repository = repository

    async def _refuse(self, deployment_id: str, expected: list[str]) -> None:
        deployment = await self._repository.get(deployment_id)
        if deployment is None:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        raise InvalidStateError(deployment_id, deployment.status, expected)

    async def create(
        self,
        client_name: str,
        template_id: str | None,
        config: Any,
        api_key_hash: str,
    ) -> Deployment:
        normalized, units = validate_config(config)
        deployment = await self._repository.create(
            client_name=client_name,
            template_id=template_id,
            config=normalized,
            api_key_hash=api_key_hash,
            total_steps=len(units),
        )
        logger.info(
            "Created deployment",
            extra={"deployment_id": deployment.id, "client_name": client_name, "total_steps": len(units)},
        )
        return deployment

    async def get(self, deployment_id: str) -> Deployment:
        deployment = await self._repository.get(deployment_id)
        if deployment is None:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        return deployment

    async def list_deployments(self, **filters: Any) -> list[Deployment]:
        return await self._repository.list_deployments(**filters)

    async def stats(self, recent: int = 10) -> DeploymentStats:
        status_counts = await self._repository.count_by_status()
        return DeploymentStats(
            total_deployments=sum(status_counts.values()),
            status_counts=status_counts,
            success_rate=success_rate(status_counts),
            recent=await self._repository.list_deployments(limit=recent),
        )

    async def logs(self, deployment_id: str) -> list[DeploymentLog]:
        await self.get(deployment_id)
        return await self._repository.list_logs(deployment_id)

    async def start(self, deployment_id: str) -> Deployment:
        deployment = await self.get(deployment_id)
        units = resolve_units(deployment.config)
        updated = await self._repository.mark_started(
            deployment_id,
            started_at=_now(),
            current_step=units[0].unit_id if units else None,
        )
        if updated is None:
            await self._refuse(deployment_id, ["pending"])
        return updated

    async def log_started(self, deployment_id: str, unit: Unit) -> DeploymentLog:
        return await self._repository.insert_log(
            deployment_id,
            LogEntry(
                step=unit.unit_id,
                status="started",
                details={"kind": unit.kind, "object_type": unit.object_type},
            ),
        )

    async def record_unit_outcome(
        self,
        deployment_id: str,
        unit: Unit,
        outcome: StepOutcome,
        *,
        next_step: str | None,
    ) -> Deployment:
        """Write the terminal log row for a unit and advance progress in one transaction.

        A failed outcome only writes its log row: progress and the created
        entities stay where they were.
        """
        details = {"kind": unit.kind, "object_type": unit.object_type}
        if outcome.error_code:
            details["code"] = outcome.error_code
        entry = LogEntry(
            step=unit.unit_id,
            status=outcome.status,
            details=details,
            error_message=outcome.error_message,
            execution_time=outcome.execution_time,
            hubspot_response=outcome.response,
        )

        if not outcome.succeeded:
            await self._repository.insert_log(deployment_id, entry)
            return await self.get(deployment_id)

        entity = None
        if outcome.status == "completed" and outcome.remote_id is not None:
            entity = {
                "remote_type": unit.kind,
                "remote_id": outcome.remote_id,
                "object_type": unit.object_type,
                "unit_id": unit.unit_id,
            }
        updated = await self._repository.record_unit_outcome(
            deployment_id,
            entry=entry,
            entity=entity,
            next_step=next_step,
        )
        if updated is None:
            await self._refuse(deployment_id, ["in_progress"])
        return updated

    async def record_undo(
        self,
        deployment_id: str,
        entity: CreatedEntity,
        *,
        succeeded: bool,
        execution_time: int | None = None,
        error_message: str | None = None,
        response: Any = None,
    ) -> Deployment:
        entry = LogEntry(
            step=entity.unit_id,
            status="completed" if succeeded else "failed",
            details={
                "action": "undo",
                "remote_type": entity.remote_type,
                "remote_id": entity.remote_id,
                "index": entity.index,
            },
            error_message=error_message,
            execution_time=execution_time,
            hubspot_response=response,
        )
        if not succeeded:
            await self._repository.insert_log(deployment_id, entry)
            return await self.get(deployment_id)

        updated = await self._repository.remove_created_entity(deployment_id, index=entity.index, entry=entry)
        if updated is None:
            await self._refuse(deployment_id, ["failed"])
        return updated

    async def finish(
        self,
        deployment_id: str,
        outcome: str,
        error_details: dict[str, Any] | None = None,
    ) -> Deployment:
        if outcome not in ("completed", "failed"):
            raise ValueError(f"Unsupported deployment outcome: {outcome}")

        updated = await self._repository.mark_finished(
            deployment_id,
            status=outcome,
            completed_at=_now(),
            error_details=error_details if outcome == "failed" else None,
        )
        if updated is None:
            await self._refuse(deployment_id, ["in_progress"])
        logger.info(
            "Finished deployment",
            extra={
                "deployment_id": deployment_id,
                "status": outcome,
                "execution_time": updated.execution_time,
            },
        )
        return updated

    async def mark_rolled_back(self, deployment_id: str, error_details: dict[str, Any] | None = None) -> Deployment:
        updated = await self._repository.mark_rolled_back(deployment_id, error_details=error_details)
        if updated is None:
            await self._refuse(deployment_id, ["failed"])
        return updated

    async def set_error_details(self, deployment_id: str, error_details: dict[str, Any]) -> Deployment:
        updated = await self._repository.set_error_details(deployment_id, error_details)
        if updated is None:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        return updated

    async def request_cancel(self, deployment_id: str) -> Deployment:
        updated = await self._repository.request_cancel(deployment_id)
        if updated is None:
            await self._refuse(deployment_id, ["pending", "in_progress"])
        logger.info("Cancellation requested", extra={"deployment_id": deployment_id})
        return updated
