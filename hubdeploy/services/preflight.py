"""Pre-flight check of a config against a live HubSpot portal.

Nothing is written to HubSpot or the ledger. Each unit is looked up by the
name or label it would be created under, and any match is a conflict that
would fail the deployment at that step.
"""

import logging
from typing import Any, Protocol

from hubdeploy.models.deployments import PreflightCheck, PreflightReport
from hubdeploy.models.units import PropertyUnit, Unit
from hubdeploy.services.ledger import validate_config

logger = logging.getLogger(__name__)

MAX_ENUMERATION_OPTIONS = 100


class ExistenceChecker(Protocol):
    async def exists(self, unit: Unit) -> bool: ...


def _warnings(units: list[Unit]) -> list[dict[str, str]]:
    warnings: list[dict[str, str]] = []
    for unit in units:
        if isinstance(unit, PropertyUnit) and len(unit.spec.options or []) > MAX_ENUMERATION_OPTIONS:
            warnings.append(
                {
                    "unit": unit.unit_id,
                    "code": "too_many_options",
                    "message": f"Property has {len(unit.spec.options)} options",
                }
            )
    return warnings


async def preflight(
    config: Any,
    crm: ExistenceChecker,
    *,
    skip_existing_entities: bool = False,
) -> PreflightReport:
    _, units = validate_config(config)

    checks: list[PreflightCheck] = []
    for unit in units:
        checks.append(
            PreflightCheck(
                unit=unit.unit_id,
                kind=unit.kind,
                object_type=unit.object_type,
                exists=await crm.exists(unit),
            )
        )

    conflicts = [check.unit for check in checks if check.exists]
    warnings = _warnings(units)
    if skip_existing_entities:
        warnings.extend(
            {"unit": unit_id, "code": "will_skip", "message": "Already exists in HubSpot and will be skipped"}
            for unit_id in conflicts
        )

    logger.info(
        "Pre-flight check finished",
        extra={"total_steps": len(units), "conflicts": len(conflicts)},
    )
    return PreflightReport(
        valid=not conflicts or skip_existing_entities,
        total_steps=len(units),
        checks=checks,
        conflicts=conflicts,
        warnings=warnings,
    )
