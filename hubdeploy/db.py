import json
from dataclasses import dataclass

import asyncpg

_pool: asyncpg.Pool | None = None


@dataclass(frozen=True)
class PoolConfig:
    min_size: int = 2
    max_size: int = 10
    command_timeout: float = 30.0


async def _configure_connection(connection: asyncpg.Connection) -> None:
    await connection.set_type_codec(
        "json",
        schema="pg_catalog",
        encoder=json.dumps,
        decoder=json.loads,
        format="text",
    )
    await connection.set_type_codec(
        "jsonb",
        schema="pg_catalog",
        encoder=json.dumps,
        decoder=json.loads,
        format="text",
    )


async def init_pool(dsn: str, config: PoolConfig | None = None) -> asyncpg.Pool:
    global _pool
    config = config or PoolConfig()
    _pool = await asyncpg.create_pool(
        dsn,
        min_size=config.min_size,
        max_size=config.max_size,
        command_timeout=config.command_timeout,
        init=_configure_connection,
    )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized. Is the app lifespan running?")
    return _pool
