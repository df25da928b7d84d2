from dataclasses import dataclass
from datetime import datetime
from typing import Any

import asyncpg

from hubdeploy.models.deployments import Deployment, DeploymentLog

_DEPLOYMENT_COLUMNS = """
    id, client_name, template_id, config, status::text AS status, api_key_hash,
    created_entities, error_details, deployment_progress, started_at, completed_at,
    execution_time, cancel_requested, created_at, updated_at
"""

_LOG_COLUMNS = """
    id, deployment_id, step, status::text AS status, details, error_message,
    execution_time, hubspot_response, created_at
"""


@dataclass
class LogEntry:
    step: str
    status: str
    details: dict[str, Any] | None = None
    error_message: str | None = None
    execution_time: int | None = None
    hubspot_response: Any = None


def _to_deployment(row) -> Deployment:
    return Deployment(
        id=str(row["id"]),
        client_name=row["client_name"],
        template_id=str(row["template_id"]) if row["template_id"] else None,
        config=dict(row["config"]),
        status=row["status"],
        api_key_hash=row["api_key_hash"],
        created_entities=list(row["created_entities"] or []),
        error_details=row["error_details"],
        deployment_progress=dict(row["deployment_progress"]),
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        execution_time=row["execution_time"],
        cancel_requested=row["cancel_requested"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _to_log(row) -> DeploymentLog:
    return DeploymentLog(
        id=str(row["id"]),
        deployment_id=str(row["deployment_id"]),
        step=row["step"],
        status=row["status"],
        details=row["details"],
        error_message=row["error_message"],
        execution_time=row["execution_time"],
        hubspot_response=row["hubspot_response"],
        created_at=row["created_at"],
    )


async def _insert_log(conn, deployment_id: str, entry: LogEntry) -> DeploymentLog:
    row = await conn.fetchrow(
        f"""
        INSERT INTO deployment_logs (
            deployment_id,
            step,
            status,
            details,
            error_message,
            execution_time,
            hubspot_response
        )
        VALUES ($1, $2, $3::deployment_log_status, $4, $5, $6, $7)
        RETURNING {_LOG_COLUMNS}
        """,
        deployment_id,
        entry.step,
        entry.status,
        entry.details,
        entry.error_message,
        entry.execution_time,
        entry.hubspot_response,
    )
    return _to_log(row)


class DeploymentRepository:
    """asyncpg access to the deployments and deployment_logs tables.

    Status changes are conditional updates guarded on the current status,
    so concurrent callers cannot both win the same transition. Methods that
    guard return None when the guard did not match; callers decide whether
    that means "not found" or "wrong state".
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def create(
        self,
        *,
        client_name: str,
        template_id: str | None,
        config: dict,
        api_key_hash: str,
        total_steps: int,
    ) -> Deployment:
        row = await self.pool.fetchrow(
            f"""
            INSERT INTO deployments (
                client_name,
                template_id,
                config,
                status,
                api_key_hash,
                deployment_progress
            )
            VALUES ($1, $2, $3, 'pending'::deployment_status, $4, $5)
            RETURNING {_DEPLOYMENT_COLUMNS}
            """,
            client_name,
            template_id,
            config,
            api_key_hash,
            {"total_steps": total_steps, "completed_steps": 0, "current_step": None},
        )
        return _to_deployment(row)

    async def get(self, deployment_id: str) -> Deployment | None:
        row = await self.pool.fetchrow(
            f"SELECT {_DEPLOYMENT_COLUMNS} FROM deployments WHERE id = $1",
            deployment_id,
        )
        return _to_deployment(row) if row else None

    async def list_deployments(
        self,
        *,
        status: str | None = None,
        client_name: str | None = None,
        template_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Deployment]:
        rows = await self.pool.fetch(
            f"""
            SELECT {_DEPLOYMENT_COLUMNS}
            FROM deployments
            WHERE ($1::text IS NULL OR status::text = $1)
              AND ($2::text IS NULL OR client_name ILIKE '%' || $2 || '%')
              AND ($3::uuid IS NULL OR template_id = $3)
            ORDER BY created_at DESC
            LIMIT $4 OFFSET $5
            """,
            status,
            client_name,
            template_id,
            limit,
            offset,
        )
        return [_to_deployment(row) for row in rows]

    async def count_by_status(self, template_id: str | None = None) -> dict[str, int]:
        rows = await self.pool.fetch(
            """
            SELECT status::text AS status, COUNT(*) AS count
            FROM deployments
            WHERE ($1::uuid IS NULL OR template_id = $1)
            GROUP BY status
            """,
            template_id,
        )
        return {row["status"]: int(row["count"]) for row in rows}

    async def mark_started(
        self, deployment_id: str, *, started_at: datetime, current_step: str | None
    ) -> Deployment | None:
        row = await self.pool.fetchrow(
            f"""
            UPDATE deployments
            SET status = 'in_progress'::deployment_status,
                started_at = $2,
                deployment_progress = jsonb_set(
                    deployment_progress,
                    '{{current_step}}',
                    COALESCE(to_jsonb($3::text), 'null'::jsonb)
                ),
                updated_at = NOW()
            WHERE id = $1
              AND status = 'pending'
            RETURNING {_DEPLOYMENT_COLUMNS}
            """,
            deployment_id,
            started_at,
            current_step,
        )
        return _to_deployment(row) if row else None

    async def mark_finished(
        self,
        deployment_id: str,
        *,
        status: str,
        completed_at: datetime,
        error_details: dict | None,
    ) -> Deployment | None:
        row = await self.pool.fetchrow(
            f"""
            UPDATE deployments
            SET status = $2::deployment_status,
                completed_at = $3,
                execution_time = (EXTRACT(EPOCH FROM ($3 - started_at)) * 1000)::int,
                error_details = $4,
                updated_at = NOW()
            WHERE id = $1
              AND status = 'in_progress'
            RETURNING {_DEPLOYMENT_COLUMNS}
            """,
            deployment_id,
            status,
            completed_at,
            error_details,
        )
        return _to_deployment(row) if row else None

    async def mark_rolled_back(self, deployment_id: str, *, error_details: dict | None) -> Deployment | None:
        row = await self.pool.fetchrow(
            f"""
            UPDATE deployments
            SET status = 'rolled_back'::deployment_status,
                error_details = $2,
                updated_at = NOW()
            WHERE id = $1
              AND status = 'failed'
            RETURNING {_DEPLOYMENT_COLUMNS}
            """,
            deployment_id,
            error_details,
        )
        return _to_deployment(row) if row else None

    async def set_error_details(self, deployment_id: str, error_details: dict) -> Deployment | None:
        row = await self.pool.fetchrow(
            f"""
            UPDATE deployments
            SET error_details = $2,
                updated_at = NOW()
            WHERE id = $1
            RETURNING {_DEPLOYMENT_COLUMNS}
            """,
            deployment_id,
            error_details,
        )
        return _to_deployment(row) if row else None

    async def request_cancel(self, deployment_id: str) -> Deployment | None:
        row = await self.pool.fetchrow(
            f"""
            UPDATE deployments
            SET cancel_requested = TRUE,
                updated_at = NOW()
            WHERE id = $1
              AND status IN ('pending', 'in_progress')
            RETURNING {_DEPLOYMENT_COLUMNS}
            """,
            deployment_id,
        )
        return _to_deployment(row) if row else None

    async def insert_log(self, deployment_id: str, entry: LogEntry) -> DeploymentLog:
        return await _insert_log(self.pool, deployment_id, entry)

    async def list_logs(self, deployment_id: str) -> list[DeploymentLog]:
        rows = await self.pool.fetch(
            f"""
            SELECT {_LOG_COLUMNS}
            FROM deployment_logs
            WHERE deployment_id = $1
            ORDER BY created_at ASC
            """,
            deployment_id,
        )
        return [_to_log(row) for row in rows]

    async def record_unit_outcome(
        self,
        deployment_id: str,
        *,
        entry: LogEntry,
        entity: dict | None,
        next_step: str | None,
    ) -> Deployment | None:
        """Advance progress, append the created entity and write the terminal log row atomically."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE deployments
                    SET created_entities = CASE
                            WHEN $2::jsonb IS NULL THEN created_entities
                            ELSE created_entities || jsonb_build_array(
                                $2::jsonb || jsonb_build_object(
                                    'index',
                                    COALESCE(
                                        (SELECT MAX((e->>'index')::int)
                                         FROM jsonb_array_elements(created_entities) e),
                                        -1
                                    ) + 1
                                )
                            )
                        END,
                        deployment_progress = jsonb_build_object(
                            'total_steps', (deployment_progress->>'total_steps')::int,
                            'completed_steps', LEAST(
                                (deployment_progress->>'completed_steps')::int + 1,
                                (deployment_progress->>'total_steps')::int
                            ),
                            'current_step', $3::text
                        ),
                        updated_at = NOW()
                    WHERE id = $1
                      AND status = 'in_progress'
                    RETURNING {_DEPLOYMENT_COLUMNS}
                    """,
                    deployment_id,
                    entity,
                    next_step,
                )
                if row is None:
                    return None
                await _insert_log(conn, deployment_id, entry)
        return _to_deployment(row)

    async def remove_created_entity(
        self,
        deployment_id: str,
        *,
        index: int,
        entry: LogEntry,
    ) -> Deployment | None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE deployments
                    SET created_entities = COALESCE(
                            (SELECT jsonb_agg(e ORDER BY (e->>'index')::int)
                             FROM jsonb_array_elements(created_entities) e
                             WHERE (e->>'index')::int <> $2),
                            '[]'::jsonb
                        ),
                        updated_at = NOW()
                    WHERE id = $1
                      AND status = 'failed'
                    RETURNING {_DEPLOYMENT_COLUMNS}
                    """,
                    deployment_id,
                    index,
                )
                if row is None:
                    return None
                await _insert_log(conn, deployment_id, entry)
        return _to_deployment(row)
