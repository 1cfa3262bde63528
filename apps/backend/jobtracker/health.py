"""Health checks for the configured backend."""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Literal

import httpx
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

HEALTH_TIMEOUT = 2.0


@dataclass
class ServiceHealth:
    """Reachability of one backend dependency."""

    status: Literal["connected", "unreachable", "error"]
    latency_ms: float | None = None
    error: str | None = None


async def _probe(check: Callable[[], Awaitable[str | None]]) -> ServiceHealth:
    """Run ``check`` under the health timeout and time it.

    ``check`` returns None when the dependency answered, otherwise a short
    description of what went wrong.
    """
    start = time.perf_counter()
    try:
        async with asyncio.timeout(HEALTH_TIMEOUT):
            problem = await check()
    except TimeoutError:
        return ServiceHealth(status="unreachable", error="timeout")
    except (httpx.HTTPError, SQLAlchemyError, OSError) as e:
        return ServiceHealth(status="error", error=str(e))

    if problem:
        return ServiceHealth(status="error", error=problem)
    latency = (time.perf_counter() - start) * 1000
    return ServiceHealth(status="connected", latency_ms=round(latency, 2))


async def check_database(engine: AsyncEngine | None) -> ServiceHealth:
    """Check local database connectivity with SELECT 1 query.

    Args:
        engine: Engine of the local backend

    Returns:
        ServiceHealth with connection status and latency
    """
    if engine is None:
        return ServiceHealth(status="error", error="no database engine")

    async def select_one() -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    return await _probe(select_one)


async def check_supabase(url: str, key: str) -> ServiceHealth:
    """Check the Supabase auth health endpoint.

    Args:
        url: Supabase project URL (e.g., https://xyz.supabase.co)
        key: Public (anon) API key

    Returns:
        ServiceHealth with connection status and latency
    """

    async def auth_health() -> str | None:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{url.rstrip('/')}/auth/v1/health", headers={"apikey": key})
        if response.status_code != 200:
            return f"HTTP {response.status_code}"
        return None

    return await _probe(auth_health)
