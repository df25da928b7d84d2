"""FastAPI dependency providers for repositories and services.

Routers depend on these rather than on the pool directly, so tests can swap
in other implementations through app.dependency_overrides.
"""

from collections.abc import Callable

from fastapi import Depends

from hubdeploy.config import settings
from hubdeploy.db import get_pool
from hubdeploy.repositories.deployments import DeploymentRepository
from hubdeploy.repositories.mappings import MappingRepository
from hubdeploy.repositories.templates import TemplateRepository
from hubdeploy.services.hubspot import build_client
from hubdeploy.services.ledger import DeploymentLedger
from hubdeploy.services.mapping_store import MappingStore
from hubdeploy.services.orchestrator import Orchestrator
from hubdeploy.services.step_executor import CRMClient
from hubdeploy.services.templates import TemplateCatalogue


def get_deployment_repository() -> DeploymentRepository:
    return DeploymentRepository(get_pool())


def get_template_repository() -> TemplateRepository:
    return TemplateRepository(get_pool())


def get_mapping_repository() -> MappingRepository:
    return MappingRepository(get_pool())


def get_ledger(
    repository: DeploymentRepository = Depends(get_deployment_repository),
) -> DeploymentLedger:
    return DeploymentLedger(repository)


def get_template_catalogue(
    templates: TemplateRepository = Depends(get_template_repository),
    deployments: DeploymentRepository = Depends(get_deployment_repository),
) -> TemplateCatalogue:
    return TemplateCatalogue(templates, deployments)


def get_mapping_store(
    repository: MappingRepository = Depends(get_mapping_repository),
) -> MappingStore:
    return MappingStore(repository)


def get_orchestrator(
    ledger: DeploymentLedger = Depends(get_ledger),
    templates: TemplateRepository = Depends(get_template_repository),
) -> Orchestrator:
    return Orchestrator(
        ledger,
        templates,
        auto_rollback=settings.auto_rollback,
        skip_existing_entities=settings.skip_existing_entities,
    )


def get_crm_factory() -> Callable[[str], CRMClient]:
    return build_client
