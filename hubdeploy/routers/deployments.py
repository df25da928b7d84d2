import hmac
import logging
from collections.abc import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from hubdeploy.auth.dependencies import get_current_auth
from hubdeploy.config import settings
from hubdeploy.deps import get_crm_factory, get_ledger, get_orchestrator, get_template_catalogue
from hubdeploy.errors import ValidationError
from hubdeploy.models.deployments import (
    CancelRequest,
    Deployment,
    DeploymentCreateRequest,
    DeploymentDetailResponse,
    DeploymentExecuteRequest,
    DeploymentHistoryItem,
    DeploymentHistoryRequest,
    DeploymentHistoryResponse,
    DeploymentLogsRequest,
    DeploymentLogsResponse,
    DeploymentResponse,
    DeploymentStatsRequest,
    DeploymentStatsResponse,
    DeploymentStatusRequest,
    DeploymentValidateRequest,
    PreflightReport,
    RollbackRequest,
)
from hubdeploy.services.hubspot import hash_api_key
from hubdeploy.services.ledger import DeploymentLedger
from hubdeploy.services.orchestrator import Orchestrator
from hubdeploy.services.preflight import preflight
from hubdeploy.services.step_executor import CRMClient
from hubdeploy.services.templates import TemplateCatalogue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/deployments", tags=["deployments"])


def _to_deployment_response(deployment: Deployment) -> DeploymentResponse:
    return DeploymentResponse(
        id=deployment.id,
        client_name=deployment.client_name,
        template_id=deployment.template_id,
        status=deployment.status,
        deployment_progress=deployment.deployment_progress,
        created_entities=deployment.created_entities,
        error_details=deployment.error_details,
        cancel_requested=deployment.cancel_requested,
        started_at=deployment.started_at.isoformat() if deployment.started_at else None,
        completed_at=deployment.completed_at.isoformat() if deployment.completed_at else None,
        execution_time=deployment.execution_time,
        created_at=deployment.created_at.isoformat() if deployment.created_at else None,
    )


def _assert_api_key(deployment: Deployment, api_key: str) -> None:
    if not hmac.compare_digest(hash_api_key(api_key), deployment.api_key_hash):
        raise HTTPException(
            status_code=403,
            detail={
                "code": "api_key_mismatch",
                "message": "API key does not match the key this deployment was created with",
            },
        )


async def _resolve_config(
    catalogue: TemplateCatalogue,
    template_id: str | None,
    config: dict | None,
) -> dict:
    if template_id is not None:
        template = await catalogue.get(template_id)
        if not template.is_active:
            raise ValidationError(
                "Template is inactive",
                [{"field": "template_id", "message": "Inactive templates cannot be deployed"}],
            )
        if config is None:
            config = template.config
    if config is None:
        raise ValidationError(
            "Either template_id or config is required",
            [{"field": "config", "message": "Provide a template_id or a raw config"}],
        )
    return config


def _to_history_item(deployment: Deployment) -> DeploymentHistoryItem:
    return DeploymentHistoryItem(
        id=deployment.id,
        client_name=deployment.client_name,
        template_id=deployment.template_id,
        status=deployment.status,
        completed_steps=deployment.deployment_progress.completed_steps,
        total_steps=deployment.deployment_progress.total_steps,
        created_at=deployment.created_at.isoformat() if deployment.created_at else None,
        completed_at=deployment.completed_at.isoformat() if deployment.completed_at else None,
    )


async def _run_in_background(orchestrator: Orchestrator, deployment_id: str, crm: CRMClient) -> None:
    try:
        await orchestrator.run(deployment_id, crm)
    except Exception:
        logger.exception("Background deployment run failed", extra={"deployment_id": deployment_id})


@router.post("/create", response_model=DeploymentResponse)
async def create_deployment(
    body: DeploymentCreateRequest,
    auth=Depends(get_current_auth),
    ledger: DeploymentLedger = Depends(get_ledger),
    catalogue: TemplateCatalogue = Depends(get_template_catalogue),
) -> DeploymentResponse:
    auth.assert_permission("deployments.write")

    template_id = str(body.template_id) if body.template_id else None
    config = await _resolve_config(catalogue, template_id, body.config)

    deployment = await ledger.create(
        client_name=body.client_name,
        template_id=template_id,
        config=config,
        api_key_hash=hash_api_key(body.api_key),
    )
    return _to_deployment_response(deployment)


@router.post("/execute", response_model=DeploymentResponse)
async def execute_deployment(
    body: DeploymentExecuteRequest,
    background_tasks: BackgroundTasks,
    auth=Depends(get_current_auth),
    ledger: DeploymentLedger = Depends(get_ledger),
    orchestrator: Orchestrator = Depends(get_orchestrator),
    crm_factory: Callable[[str], CRMClient] = Depends(get_crm_factory),
) -> DeploymentResponse:
    auth.assert_permission("deployments.write")

    deployment = await ledger.get(str(body.id))
    _assert_api_key(deployment, body.api_key)

    if deployment.status != "pending":
        return _to_deployment_response(deployment)

    crm = crm_factory(body.api_key)
    if not body.wait:
        background_tasks.add_task(_run_in_background, orchestrator, deployment.id, crm)
        return _to_deployment_response(deployment)

    deployment = await orchestrator.run(deployment.id, crm)
    return _to_deployment_response(deployment)


@router.post("/status", response_model=DeploymentDetailResponse)
async def deployment_status(
    body: DeploymentStatusRequest,
    auth=Depends(get_current_auth),
    ledger: DeploymentLedger = Depends(get_ledger),
) -> DeploymentDetailResponse:
    auth.assert_permission("deployments.read")

    deployment = await ledger.get(str(body.id))
    return DeploymentDetailResponse(
        **_to_deployment_response(deployment).model_dump(),
        config=deployment.config,
    )


@router.post("/logs", response_model=DeploymentLogsResponse)
async def deployment_logs(
    body: DeploymentLogsRequest,
    auth=Depends(get_current_auth),
    ledger: DeploymentLedger = Depends(get_ledger),
) -> DeploymentLogsResponse:
    auth.assert_permission("deployments.read")

    return DeploymentLogsResponse(data=await ledger.logs(str(body.id)))


@router.post("/history", response_model=DeploymentHistoryResponse)
async def deployment_history(
    body: DeploymentHistoryRequest,
    auth=Depends(get_current_auth),
    ledger: DeploymentLedger = Depends(get_ledger),
) -> DeploymentHistoryResponse:
    auth.assert_permission("deployments.read")

    deployments = await ledger.list_deployments(
        status=body.status,
        client_name=body.client_name,
        template_id=str(body.template_id) if body.template_id else None,
        limit=body.limit,
        offset=body.offset,
    )
    return DeploymentHistoryResponse(data=[_to_history_item(deployment) for deployment in deployments])


@router.post("/stats", response_model=DeploymentStatsResponse)
async def deployment_stats(
    body: DeploymentStatsRequest,
    auth=Depends(get_current_auth),
    ledger: DeploymentLedger = Depends(get_ledger),
) -> DeploymentStatsResponse:
    auth.assert_permission("deployments.read")

    stats = await ledger.stats(recent=body.recent)
    return DeploymentStatsResponse(
        total_deployments=stats.total_deployments,
        status_counts=stats.status_counts,
        success_rate=stats.success_rate,
        recent=[_to_history_item(deployment) for deployment in stats.recent],
    )


@router.post("/validate", response_model=PreflightReport)
async def validate_deployment(
    body: DeploymentValidateRequest,
    auth=Depends(get_current_auth),
    catalogue: TemplateCatalogue = Depends(get_template_catalogue),
    crm_factory: Callable[[str], CRMClient] = Depends(get_crm_factory),
) -> PreflightReport:
    auth.assert_permission("deployments.read")

    template_id = str(body.template_id) if body.template_id else None
    config = await _resolve_config(catalogue, template_id, body.config)
    return await preflight(
        config,
        crm_factory(body.api_key),
        skip_existing_entities=settings.skip_existing_entities,
    )


@router.post("/rollback", response_model=DeploymentResponse)
async def rollback_deployment(
    body: RollbackRequest,
    auth=Depends(get_current_auth),
    ledger: DeploymentLedger = Depends(get_ledger),
    orchestrator: Orchestrator = Depends(get_orchestrator),
    crm_factory: Callable[[str], CRMClient] = Depends(get_crm_factory),
) -> DeploymentResponse:
    auth.assert_permission("deployments.write")

    deployment = await ledger.get(str(body.id))
    _assert_api_key(deployment, body.api_key)

    deployment = await orchestrator.rollback(deployment.id, crm_factory(body.api_key))
    return _to_deployment_response(deployment)


@router.post("/cancel", response_model=DeploymentResponse)
async def cancel_deployment(
    body: CancelRequest,
    auth=Depends(get_current_auth),
    ledger: DeploymentLedger = Depends(get_ledger),
) -> DeploymentResponse:
    auth.assert_permission("deployments.write")

    deployment = await ledger.request_cancel(str(body.id))
    return _to_deployment_response(deployment)
