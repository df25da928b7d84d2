from fastapi import APIRouter, Depends

from hubdeploy.auth.dependencies import get_current_auth
from hubdeploy.deps import get_mapping_store
from hubdeploy.models.mappings import (
    MappingHistoryEntry,
    MappingRecommendRequest,
    MappingRecommendResponse,
    MappingRecordRequest,
    MappingResponse,
)
from hubdeploy.services import recommendations
from hubdeploy.services.mapping_store import MappingStore, normalize_source_field

router = APIRouter(prefix="/api/mappings", tags=["mappings"])


def _to_mapping_response(entry: MappingHistoryEntry) -> MappingResponse:
    return MappingResponse(
        id=entry.id,
        source_field=entry.source_field,
        hubspot_name=entry.hubspot_name,
        hubspot_type=entry.hubspot_type,
        field_type=entry.field_type,
        object_type=entry.object_type,
        group_name=entry.group_name,
        options=entry.options,
        usage_count=entry.usage_count,
        last_used=entry.last_used.isoformat(),
        confidence=entry.confidence,
    )


@router.post("/record", response_model=MappingResponse)
async def record_mapping(
    body: MappingRecordRequest,
    auth=Depends(get_current_auth),
    store: MappingStore = Depends(get_mapping_store),
) -> MappingResponse:
    auth.assert_permission("mappings.write")

    entry = await store.record_mapping(
        source_field=body.source_field,
        hubspot_name=body.hubspot_name,
        hubspot_type=body.hubspot_type,
        field_type=body.field_type,
        object_type=body.object_type,
        group_name=body.group_name,
        options=body.options,
        confidence=body.confidence,
    )
    return _to_mapping_response(entry)


@router.post("/recommend", response_model=MappingRecommendResponse)
async def recommend_mappings(
    body: MappingRecommendRequest,
    auth=Depends(get_current_auth),
    store: MappingStore = Depends(get_mapping_store),
) -> MappingRecommendResponse:
    auth.assert_permission("mappings.read")

    entries = await recommendations.recommend(store, body.source_field, body.object_type, body.top_n)
    return MappingRecommendResponse(
        source_field=body.source_field,
        normalized_field=normalize_source_field(body.source_field),
        object_type=body.object_type,
        data=[_to_mapping_response(entry) for entry in entries],
    )
