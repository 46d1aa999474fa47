import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from agent_directory.config import (
    CONTRACT_ADDRESS, DEFAULT_LIST_LIMIT, MAX_LIST_LIMIT, NETWORK_NAME,
)
from agent_directory.deps import get_directory
from agent_directory.directory_client import DirectoryClient, RegistrationRecord
from agent_directory.errors import DirectoryError
from agent_directory.schemas import (
    AgentListResponse, AgentRecordResponse, PlatformAgentsResponse,
    PlatformsResponse, StatsResponse,
)

logger = logging.getLogger("agent_directory.api")
router = APIRouter()

LOOKUP_CONCURRENCY = 16


def _clamp_limit(limit: int) -> int:
    if limit <= 0:
        return DEFAULT_LIST_LIMIT
    return min(limit, MAX_LIST_LIMIT)


async def _lookup_many(
    directory: DirectoryClient, names: List[str],
) -> List[Optional[RegistrationRecord]]:
    """Look up names concurrently. Failed or empty lookups come back as None."""
    semaphore = asyncio.Semaphore(LOOKUP_CONCURRENCY)

    async def fetch(name: str) -> Optional[RegistrationRecord]:
        async with semaphore:
            try:
                return await directory.lookup(name)
            except DirectoryError as e:
                logger.warning(f"Lookup of {name} failed: {e.message}")
                return None

    return await asyncio.gather(*[fetch(name) for name in names])


async def _all_names(directory: DirectoryClient) -> List[str]:
    total = await directory.count()
    if total == 0:
        return []
    return await directory.get_agent_names(0, total)


@router.get("/stats", response_model=StatsResponse)
async def get_stats(directory: DirectoryClient = Depends(get_directory)):
    try:
        count = await directory.count()
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "registeredAgents": count,
        "contractAddress": CONTRACT_ADDRESS,
        "network": NETWORK_NAME,
        "sponsoredRegistration": True,
    }


@router.get("/lookup/{name}", response_model=AgentRecordResponse)
async def lookup_agent(name: str, directory: DirectoryClient = Depends(get_directory)):
    try:
        record = await directory.lookup(name)
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if record is None:
        raise HTTPException(status_code=404, detail="Agent not found")
    return record.to_dict()


@router.get("/agents", response_model=AgentListResponse)
async def list_agents(
    limit: int = Query(DEFAULT_LIST_LIMIT),
    offset: int = Query(0),
    directory: DirectoryClient = Depends(get_directory),
):
    limit = _clamp_limit(limit)
    offset = max(offset, 0)
    try:
        total = await directory.count()
        names = await directory.get_agent_names(offset, limit)
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    names = names[:limit]
    records = await _lookup_many(directory, names)
    agents = [
        record.to_dict(include_last_active=False) if record else {"name": name, "error": "Failed to fetch"}
        for name, record in zip(names, records)
    ]
    return {
        "success": True,
        "total": total,
        "offset": offset,
        "limit": limit,
        "count": len(agents),
        "agents": agents,
    }


@router.get("/agents/by-platform/{platform}", response_model=PlatformAgentsResponse)
async def agents_by_platform(
    platform: str,
    limit: int = Query(DEFAULT_LIST_LIMIT),
    directory: DirectoryClient = Depends(get_directory),
):
    wanted = platform.lower()
    limit = _clamp_limit(limit)
    try:
        names = await _all_names(directory)
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    matches = []
    for record in await _lookup_many(directory, names):
        if len(matches) >= limit:
            break
        if record and wanted in [p.lower() for p in record.platforms]:
            matches.append(record.to_dict(include_last_active=False))
    return {"success": True, "platform": wanted, "count": len(matches), "agents": matches}


@router.get("/platforms", response_model=PlatformsResponse)
async def platform_histogram(directory: DirectoryClient = Depends(get_directory)):
    try:
        names = await _all_names(directory)
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)

    counts: Dict[str, int] = {}
    for record in await _lookup_many(directory, names):
        if not record:
            continue
        for p in record.platforms:
            counts[p.lower()] = counts.get(p.lower(), 0) + 1

    platforms = sorted(
        ({"platform": name, "agentCount": count} for name, count in counts.items()),
        key=lambda item: item["agentCount"],
        reverse=True,
    )
    return {"success": True, "totalPlatforms": len(platforms), "platforms": platforms}
