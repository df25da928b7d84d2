import logging
from typing import Any

from hubdeploy.errors import NotFoundError
from hubdeploy.models.templates import Template, TemplateStats
from hubdeploy.repositories.deployments import DeploymentRepository
from hubdeploy.repositories.templates import TemplateRepository
from hubdeploy.services.ledger import success_rate, validate_config

logger = logging.getLogger(__name__)

_NULLABLE_FIELDS = ("description", "industry")


class TemplateCatalogue:
    def __init__(self, templates: TemplateRepository, deployments: DeploymentRepository) -> None:
        self._templates = templates
        self._deployments = deployments

    async def create(
        self,
        name: str,
        config: Any,
        description: str | None = None,
        industry: str | None = None,
        created_by: str | None = None,
    ) -> Template:
        normalized, _ = validate_config(config)
        template = await self._templates.create(
            name=name,
            description=description,
            industry=industry,
            config=normalized,
            created_by=created_by,
        )
        logger.info("Created template", extra={"template_id": template.id, "template_name": name})
        return template

    async def get(self, template_id: str) -> Template:
        template = await self._templates.get(template_id)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    async def stats(self, template_id: str) -> TemplateStats:
        status_counts = await self._deployments.count_by_status(template_id)
        return TemplateStats(
            total_deployments=sum(status_counts.values()),
            status_counts=status_counts,
            success_rate=success_rate(status_counts),
        )

    async def list_templates(
        self,
        *,
        industry: str | None = None,
        is_active: bool | None = True,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Template]:
        return await self._templates.list_templates(industry=industry, is_active=is_active, limit=limit, offset=offset)

    async def update(self, template_id: str, changes: dict[str, Any]) -> Template:
        # an explicit None clears a nullable column; elsewhere it means "leave as is"
        changes = {
            key: value
            for key, value in changes.items()
            if value is not None or key in _NULLABLE_FIELDS
        }
        if "config" in changes:
            changes["config"], _ = validate_config(changes["config"])

        template = await self._templates.update(template_id, changes)
        if template is None:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    async def duplicate(self, template_id: str, new_name: str, created_by: str | None = None) -> Template:
        source = await self.get(template_id)
        return await self._templates.create(
            name=new_name,
            description=f"Copy of {source.name}",
            industry=source.industry,
            config=source.config,
            created_by=created_by,
        )

    async def delete(self, template_id: str) -> bool:
        """Remove a template. Returns True when it was deleted, False when only deactivated."""
        await self.get(template_id)
        status_counts = await self._deployments.count_by_status(template_id)
        if sum(status_counts.values()) > 0:
            await self._templates.update(template_id, {"is_active": False})
            logger.info("Deactivated template with deployments", extra={"template_id": template_id})
            return False

        if not await self._templates.delete(template_id):
            raise NotFoundError(f"Template {template_id} not found")
        return True
