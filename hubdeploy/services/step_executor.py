import logging
import time
from typing import Protocol

from hubdeploy.errors import RejectedError, RemoteError
from hubdeploy.models.units import CreatedEntity, Unit
from hubdeploy.services.hubspot import RemoteResult
from hubdeploy.services.ledger import DeploymentLedger, StepOutcome

logger = logging.getLogger(__name__)


class CRMClient(Protocol):
    async def create_or_update(self, unit: Unit) -> RemoteResult: ...

    async def exists(self, unit: Unit) -> bool: ...

    async def delete(self, remote_type: str, remote_id: str, object_type: str | None) -> None: ...


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class StepExecutor:
    """Applies and undoes single units, logging every attempt through the ledger."""

    def __init__(self, ledger: DeploymentLedger, *, skip_existing_entities: bool = False) -> None:
        self._ledger = ledger
        self._skip_existing_entities = skip_existing_entities

    async def apply(
        self,
        deployment_id: str,
        unit: Unit,
        crm: CRMClient,
        *,
        next_step: str | None = None,
    ) -> StepOutcome:
        await self._ledger.log_started(deployment_id, unit)
        started = time.monotonic()

        try:
            result = await crm.create_or_update(unit)
        except RejectedError as exc:
            if exc.code == "conflict" and self._skip_existing_entities:
                outcome = StepOutcome(
                    status="skipped",
                    unit_id=unit.unit_id,
                    response=exc.response,
                    error_code=exc.code,
                    error_message=exc.message,
                    execution_time=_elapsed_ms(started),
                )
                logger.info(
                    "Skipped existing HubSpot entity",
                    extra={"deployment_id": deployment_id, "unit_id": unit.unit_id},
                )
            else:
                outcome = self._failure(unit, exc, started)
        except RemoteError as exc:
            outcome = self._failure(unit, exc, started)
        except Exception as exc:
            logger.exception(
                "Deployment step raised",
                extra={"deployment_id": deployment_id, "unit_id": unit.unit_id},
            )
            outcome = StepOutcome(
                status="failed",
                unit_id=unit.unit_id,
                error_code="internal_error",
                error_message=str(exc) or type(exc).__name__,
                execution_time=_elapsed_ms(started),
            )
            await self._ledger.record_unit_outcome(deployment_id, unit, outcome, next_step=next_step)
            raise
        else:
            outcome = StepOutcome(
                status="completed",
                unit_id=unit.unit_id,
                remote_id=result.remote_id,
                response=result.raw,
                execution_time=_elapsed_ms(started),
            )

        if not outcome.succeeded:
            logger.warning(
                "Deployment step failed",
                extra={
                    "deployment_id": deployment_id,
                    "unit_id": unit.unit_id,
                    "code": outcome.error_code,
                    "error_message": outcome.error_message,
                },
            )
        await self._ledger.record_unit_outcome(deployment_id, unit, outcome, next_step=next_step)
        return outcome

    @staticmethod
    def _failure(unit: Unit, exc: RemoteError, started: float) -> StepOutcome:
        return StepOutcome(
            status="failed",
            unit_id=unit.unit_id,
            response=exc.response,
            error_code=exc.code,
            error_message=exc.message,
            execution_time=_elapsed_ms(started),
        )

    async def undo(self, deployment_id: str, entity: CreatedEntity, crm: CRMClient) -> bool:
        """Delete one created entity. Returns False when the entity was retained."""
        started = time.monotonic()
        try:
            await crm.delete(entity.remote_type, entity.remote_id, entity.object_type)
        except RemoteError as exc:
            logger.warning(
                "Undo failed; entity retained",
                extra={
                    "deployment_id": deployment_id,
                    "unit_id": entity.unit_id,
                    "remote_id": entity.remote_id,
                    "code": exc.code,
                },
            )
            await self._ledger.record_undo(
                deployment_id,
                entity,
                succeeded=False,
                execution_time=_elapsed_ms(started),
                error_message=exc.message,
                response=exc.response,
            )
            return False
        except Exception as exc:
            await self._ledger.record_undo(
                deployment_id,
                entity,
                succeeded=False,
                execution_time=_elapsed_ms(started),
                error_message=str(exc) or type(exc).__name__,
            )
            raise

        await self._ledger.record_undo(
            deployment_id,
            entity,
            succeeded=True,
            execution_time=_elapsed_ms(started),
        )
        return True
