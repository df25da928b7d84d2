from typing import Any

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from hubdeploy.errors import ConflictError
from hubdeploy.models.templates import Template

_TEMPLATE_COLUMNS = """
    id, name, description, industry, config, is_active, usage_count,
    created_by, last_used, created_at, updated_at
"""

_UPDATABLE_COLUMNS = ("name", "description", "industry", "config", "is_active")


def _to_template(row) -> Template:
    return Template(
        id=str(row["id"]),
        name=row["name"],
        description=row["description"],
        industry=row["industry"],
        config=dict(row["config"]),
        is_active=row["is_active"],
        usage_count=row["usage_count"],
        created_by=row["created_by"],
        last_used=row["last_used"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class TemplateRepository:
    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create(
        self,
        *,
        name: str,
        description: str | None,
        industry: str | None,
        config: dict,
        created_by: str | None,
    ) -> Template:
        try:
            row = await self.pool.fetchrow(
                f"""
                INSERT INTO templates (name, description, industry, config, created_by)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING {_TEMPLATE_COLUMNS}
                """,
                name,
                description,
                industry,
                config,
                created_by,
            )
        except UniqueViolationError as exc:
            raise ConflictError(f"Template named '{name}' already exists") from exc
        return _to_template(row)

    async def get(self, template_id: str) -> Template | None:
        row = await self.pool.fetchrow(
            f"SELECT {_TEMPLATE_COLUMNS} FROM templates WHERE id = $1",
            template_id,
        )
        return _to_template(row) if row else None

    async def list_templates(
        self,
        *,
        industry: str | None = None,
        is_active: bool | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Template]:
        rows = await self.pool.fetch(
            f"""
            SELECT {_TEMPLATE_COLUMNS}
            FROM templates
            WHERE ($1::text IS NULL OR industry = $1)
              AND ($2::boolean IS NULL OR is_active = $2)
            ORDER BY usage_count DESC, name ASC
            LIMIT $3 OFFSET $4
            """,
            industry,
            is_active,
            limit,
            offset,
        )
        return [_to_template(row) for row in rows]

    async def update(self, template_id: str, changes: dict[str, Any]) -> Template | None:
        columns = [column for column in _UPDATABLE_COLUMNS if column in changes]
        if not columns:
            return await self.get(template_id)

        assignments = ", ".join(f"{column} = ${index + 2}" for index, column in enumerate(columns))
        try:
            row = await self.pool.fetchrow(
                f"""
                UPDATE templates
                SET {assignments},
                    updated_at = NOW()
                WHERE id = $1
                RETURNING {_TEMPLATE_COLUMNS}
                """,
                template_id,
                *(changes[column] for column in columns),
            )
        except UniqueViolationError as exc:
            raise ConflictError(f"Template named '{changes.get('name')}' already exists") from exc
        return _to_template(row) if row else None

    async def record_usage(self, template_id: str) -> None:
        await self.pool.execute(
            """
            UPDATE templates
            SET usage_count = usage_count + 1,
                last_used = NOW()
            WHERE id = $1
            """,
            template_id,
        )

    async def delete(self, template_id: str) -> bool:
        result = await self.pool.execute("DELETE FROM templates WHERE id = $1", template_id)
        return result.endswith(" 1")
