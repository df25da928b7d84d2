import logging
from datetime import datetime, timezone
from typing import Any

from hubdeploy.errors import InvalidStateError, PartialRollbackError
from hubdeploy.models.deployments import Deployment
from hubdeploy.models.units import Unit, resolve_units
from hubdeploy.repositories.templates import TemplateRepository
from hubdeploy.services.ledger import DeploymentLedger, StepOutcome
from hubdeploy.services.step_executor import CRMClient, StepExecutor

logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _failure_details(unit: Unit, index: int, code: str, message: str) -> dict[str, Any]:
    return {
        "code": code,
        "message": message,
        "unit": unit.unit_id,
        "kind": unit.kind,
        "step": index,
        "timestamp": _timestamp(),
    }


class Orchestrator:
    """Drives a deployment from pending to a terminal state.

    Units run one at a time in their resolved order and the first failure
    stops the run. A failed run is rolled back straight away unless
    auto_rollback is off, in which case rollback waits for an explicit call.
    """

    def __init__(
        self,
        ledger: DeploymentLedger,
        templates: TemplateRepository,
        *,
        auto_rollback: bool = True,
        skip_existing_entities: bool = False,
    ) -> None:
        self._ledger = ledger
        self._templates = templates
        self._auto_rollback = auto_rollback
        self._executor = StepExecutor(ledger, skip_existing_entities=skip_existing_entities)

    async def run(self, deployment_id: str, crm: CRMClient) -> Deployment:
        deployment = await self._ledger.get(deployment_id)
        if deployment.status != "pending":
            return deployment

        try:
            deployment = await self._ledger.start(deployment_id)
        except InvalidStateError:
            # another caller started it first
            return await self._ledger.get(deployment_id)

        if deployment.template_id:
            await self._templates.record_usage(deployment.template_id)

        logger.info(
            "Running deployment",
            extra={
                "deployment_id": deployment_id,
                "total_steps": deployment.deployment_progress.total_steps,
            },
        )

        try:
            failure = await self._apply_units(deployment, crm)
        except Exception as exc:
            logger.exception("Deployment run aborted", extra={"deployment_id": deployment_id})
            current = await self._ledger.get(deployment_id)
            if current.status == "in_progress":
                await self._ledger.finish(
                    deployment_id,
                    "failed",
                    {"code": "internal_error", "message": str(exc), "timestamp": _timestamp()},
                )
                if self._auto_rollback:
                    await self._rollback_after_failure(deployment_id, crm)
            raise

        if failure is None:
            return await self._ledger.finish(deployment_id, "completed")

        deployment = await self._ledger.finish(deployment_id, "failed", failure)
        if not self._auto_rollback:
            return deployment
        return await self._rollback_after_failure(deployment_id, crm)

    async def _rollback_after_failure(self, deployment_id: str, crm: CRMClient) -> Deployment:
        try:
            return await self.rollback(deployment_id, crm)
        except PartialRollbackError as exc:
            logger.warning(
                "Automatic rollback left entities in place",
                extra={"deployment_id": deployment_id, "remaining": len(exc.remaining)},
            )
            return await self._ledger.get(deployment_id)

    async def _apply_units(self, deployment: Deployment, crm: CRMClient) -> dict[str, Any] | None:
        units = resolve_units(deployment.config)
        for index, unit in enumerate(units):
            current = await self._ledger.get(deployment.id)
            if current.cancel_requested:
                logger.info(
                    "Deployment cancelled",
                    extra={"deployment_id": deployment.id, "unit_id": unit.unit_id},
                )
                return _failure_details(unit, index, "cancelled", "Deployment cancelled before this step")

            next_step = units[index + 1].unit_id if index + 1 < len(units) else None
            outcome: StepOutcome = await self._executor.apply(deployment.id, unit, crm, next_step=next_step)
            if not outcome.succeeded:
                return _failure_details(
                    unit,
                    index,
                    outcome.error_code or "hubspot_request_failed",
                    outcome.error_message or "HubSpot request failed",
                )
        return None

    async def rollback(self, deployment_id: str, crm: CRMClient) -> Deployment:
        deployment = await self._ledger.get(deployment_id)
        if deployment.status == "rolled_back":
            return deployment
        if deployment.status != "failed":
            raise InvalidStateError(deployment_id, deployment.status, ["failed"])

        entities = sorted(deployment.created_entities, key=lambda entity: entity.index, reverse=True)
        succeeded = 0
        for entity in entities:
            if await self._executor.undo(deployment_id, entity, crm):
                succeeded += 1

        deployment = await self._ledger.get(deployment_id)
        remaining = [entity.model_dump() for entity in deployment.created_entities]
        error_details = dict(deployment.error_details or {})
        error_details["rollback"] = {
            "attempted": len(entities),
            "succeeded": succeeded,
            "remaining": remaining,
            "timestamp": _timestamp(),
        }

        if not remaining:
            logger.info(
                "Rolled back deployment",
                extra={"deployment_id": deployment_id, "undone": succeeded},
            )
            return await self._ledger.mark_rolled_back(deployment_id, error_details)

        await self._ledger.set_error_details(deployment_id, error_details)
        raise PartialRollbackError(deployment_id, remaining)
