from fastapi import APIRouter, Depends

from hubdeploy.auth.dependencies import get_current_auth
from hubdeploy.deps import get_template_catalogue
from hubdeploy.models.templates import (
    Template,
    TemplateCreateRequest,
    TemplateDeleteRequest,
    TemplateDeleteResponse,
    TemplateDetailResponse,
    TemplateDuplicateRequest,
    TemplateGetRequest,
    TemplateListItem,
    TemplateListRequest,
    TemplateListResponse,
    TemplateResponse,
    TemplateUpdateRequest,
)
from hubdeploy.services.templates import TemplateCatalogue

router = APIRouter(prefix="/api/templates", tags=["templates"])


def _to_template_response(template: Template) -> TemplateResponse:
    return TemplateResponse(
        id=template.id,
        name=template.name,
        description=template.description,
        industry=template.industry,
        config=template.config,
        is_active=template.is_active,
        usage_count=template.usage_count,
        created_by=template.created_by,
        last_used=template.last_used.isoformat() if template.last_used else None,
        created_at=template.created_at.isoformat() if template.created_at else None,
        updated_at=template.updated_at.isoformat() if template.updated_at else None,
    )


@router.post("/create", response_model=TemplateResponse)
async def create_template(
    body: TemplateCreateRequest,
    auth=Depends(get_current_auth),
    catalogue: TemplateCatalogue = Depends(get_template_catalogue),
) -> TemplateResponse:
    auth.assert_permission("templates.write")

    template = await catalogue.create(
        name=body.name,
        config=body.config,
        description=body.description,
        industry=body.industry,
        created_by=auth.user_id,
    )
    return _to_template_response(template)


@router.post("/get", response_model=TemplateDetailResponse)
async def get_template(
    body: TemplateGetRequest,
    auth=Depends(get_current_auth),
    catalogue: TemplateCatalogue = Depends(get_template_catalogue),
) -> TemplateDetailResponse:
    auth.assert_permission("templates.read")

    template = await catalogue.get(str(body.id))
    stats = await catalogue.stats(template.id)
    return TemplateDetailResponse(**_to_template_response(template).model_dump(), stats=stats)


@router.post("/list", response_model=TemplateListResponse)
async def list_templates(
    body: TemplateListRequest,
    auth=Depends(get_current_auth),
    catalogue: TemplateCatalogue = Depends(get_template_catalogue),
) -> TemplateListResponse:
    auth.assert_permission("templates.read")

    templates = await catalogue.list_templates(
        industry=body.industry,
        is_active=body.is_active,
        limit=body.limit,
        offset=body.offset,
    )
    return TemplateListResponse(
        data=[
            TemplateListItem(
                id=template.id,
                name=template.name,
                description=template.description,
                industry=template.industry,
                is_active=template.is_active,
                usage_count=template.usage_count,
                last_used=template.last_used.isoformat() if template.last_used else None,
            )
            for template in templates
        ]
    )


@router.post("/update", response_model=TemplateResponse)
async def update_template(
    body: TemplateUpdateRequest,
    auth=Depends(get_current_auth),
    catalogue: TemplateCatalogue = Depends(get_template_catalogue),
) -> TemplateResponse:
    auth.assert_permission("templates.write")

    template = await catalogue.update(str(body.id), body.model_dump(exclude={"id"}, exclude_unset=True))
    return _to_template_response(template)


@router.post("/duplicate", response_model=TemplateResponse)
async def duplicate_template(
    body: TemplateDuplicateRequest,
    auth=Depends(get_current_auth),
    catalogue: TemplateCatalogue = Depends(get_template_catalogue),
) -> TemplateResponse:
    auth.assert_permission("templates.write")

    template = await catalogue.duplicate(str(body.id), body.name, created_by=auth.user_id)
    return _to_template_response(template)


@router.post("/delete", response_model=TemplateDeleteResponse)
async def delete_template(
    body: TemplateDeleteRequest,
    auth=Depends(get_current_auth),
    catalogue: TemplateCatalogue = Depends(get_template_catalogue),
) -> TemplateDeleteResponse:
    auth.assert_permission("templates.write")

    deleted = await catalogue.delete(str(body.id))
    return TemplateDeleteResponse(id=str(body.id), deleted=deleted, deactivated=not deleted)
