from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from agent_directory.capabilities import CapabilityIndex
from agent_directory.deps import get_capability_index
from agent_directory.errors import DirectoryError
from agent_directory.schemas import (
    CapabilitiesResponse, CapabilitiesUpdate, CapabilitiesWriteResponse,
    CapabilityEntryResponse, FindResponse,
)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


@router.post("/agents/{name}/capabilities", response_model=CapabilitiesWriteResponse)
@limiter.limit("10/minute")
async def set_capabilities(
    request: Request,
    name: str,
    payload: CapabilitiesUpdate,
    index: CapabilityIndex = Depends(get_capability_index),
):
    """Replace the capability tags of a registered agent."""
    try:
        agent, entry = await index.set_capabilities(name, payload.capabilities, payload.description)
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {
        "success": True,
        "agent": agent,
        "capabilities": entry.capabilities,
        "description": entry.description,
    }


@router.get("/agents/{name}/capabilities", response_model=CapabilityEntryResponse)
def get_capabilities(name: str, index: CapabilityIndex = Depends(get_capability_index)):
    try:
        agent, entry = index.get(name)
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True, "agent": agent, **entry.to_dict()}


@router.get("/find", response_model=FindResponse)
def find_by_capability(
    capability: Optional[str] = Query(None),
    cap: Optional[str] = Query(None),
    q: Optional[str] = Query(None),
    index: CapabilityIndex = Depends(get_capability_index),
):
    query = (capability or cap or q or "").lower().strip()
    try:
        matches = index.find(query)
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True, "query": query, "count": len(matches), "agents": matches}


@router.get("/capabilities", response_model=CapabilitiesResponse)
def list_capabilities(index: CapabilityIndex = Depends(get_capability_index)):
    try:
        summary = index.summary()
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    return {"success": True, "totalCapabilities": len(summary), "capabilities": summary}
