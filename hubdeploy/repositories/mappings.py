from collections.abc import AsyncIterator

import asyncpg

from hubdeploy.models.mappings import MappingHistoryEntry

_MAPPING_COLUMNS = """
    id, source_field, hubspot_name, hubspot_type, field_type, object_type::text AS object_type,
    group_name, options, usage_count, last_used, confidence
"""


def _to_entry(row) -> MappingHistoryEntry:
    return MappingHistoryEntry(
        id=str(row["id"]),
        source_field=row["source_field"],
        hubspot_name=row["hubspot_name"],
        hubspot_type=row["hubspot_type"],
        field_type=row["field_type"],
        object_type=row["object_type"],
        group_name=row["group_name"],
        options=row["options"],
        usage_count=row["usage_count"],
        last_used=row["last_used"],
        confidence=row["confidence"],
    )


class MappingRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def upsert(
        self,
        *,
        source_field: str,
        hubspot_name: str,
        hubspot_type: str,
        field_type: str,
        object_type: str,
        group_name: str | None,
        options: list | None,
        confidence: float | None,
    ) -> MappingHistoryEntry:
        # confidence on reuse: (stored * usage_count + supplied) / (usage_count + 1)
        row = await self.pool.fetchrow(
            f"""
            INSERT INTO mapping_history (
                source_field,
                hubspot_name,
                hubspot_type,
                field_type,
                object_type,
                group_name,
                options,
                confidence
            )
            VALUES ($1, $2, $3, $4, $5::mapping_object_type, $6, $7, $8)
            ON CONFLICT (source_field, hubspot_name, object_type)
            DO UPDATE SET
                usage_count = mapping_history.usage_count + 1,
                last_used = NOW(),
                hubspot_type = EXCLUDED.hubspot_type,
                field_type = EXCLUDED.field_type,
                group_name = COALESCE(EXCLUDED.group_name, mapping_history.group_name),
                options = COALESCE(EXCLUDED.options, mapping_history.options),
                confidence = CASE
                    WHEN EXCLUDED.confidence IS NULL THEN mapping_history.confidence
                    WHEN mapping_history.confidence IS NULL THEN EXCLUDED.confidence
                    ELSE (mapping_history.confidence * mapping_history.usage_count + EXCLUDED.confidence)
                        / (mapping_history.usage_count + 1)
                END,
                updated_at = NOW()
            RETURNING {_MAPPING_COLUMNS}
            """,
            source_field,
            hubspot_name,
            hubspot_type,
            field_type,
            object_type,
            group_name,
            options,
            confidence,
        )
        return _to_entry(row)

    async def iter_candidates(
        self, source_field: str, object_type: str
    ) -> AsyncIterator[MappingHistoryEntry]:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                async for row in conn.cursor(
                    f"""
                    SELECT {_MAPPING_COLUMNS}
                    FROM mapping_history
                    WHERE source_field = $1
                      AND object_type = $2::mapping_object_type
                    ORDER BY confidence DESC NULLS LAST, usage_count DESC, last_used DESC
                    """,
                    source_field,
                    object_type,
                ):
                    yield _to_entry(row)
