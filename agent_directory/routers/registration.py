import logging
import math

from fastapi import APIRouter, Depends, HTTPException, Request
from slowapi.util import get_remote_address

from agent_directory.config import DIRECTORY_URL, explorer_url
from agent_directory.deps import get_pipeline, get_verifiers
from agent_directory.errors import ChainError, DirectoryError, RateLimitedError
from agent_directory.pipeline import PlatformClaim, RegistrationPipeline
from agent_directory.schemas import (
    LegacyRegistrationRequest, RegistrationResponse,
    SponsoredRegistrationRequest, SupportedPlatformsResponse,
)
from agent_directory.verifiers import VerifierRegistry

logger = logging.getLogger("agent_directory.api")
router = APIRouter()


async def _register(pipeline: RegistrationPipeline, request: Request, name, claims, legacy: bool) -> dict:
    try:
        result = await pipeline.register(
            name, claims, caller_id=get_remote_address(request), legacy=legacy,
        )
    except ChainError as e:
        raise HTTPException(status_code=e.status_code, detail={"error": e.message, "txHash": e.tx_hash})
    except RateLimitedError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail=e.message,
            headers={"Retry-After": str(max(1, math.ceil(e.retry_after)))},
        )
    except DirectoryError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.exception(f"[ERROR] registration of {name!r} failed")
        raise HTTPException(status_code=500, detail=f"Registration failed: {e}")

    return {
        "success": True,
        "message": f"{result.name} registered successfully!",
        "agent": {
            "name": result.name,
            "platforms": result.platforms,
            "urls": result.urls,
            "unverified": result.unverified,
        },
        "txHash": result.tx_hash,
        "blockNumber": result.block_number,
        "explorerUrl": explorer_url(result.tx_hash),
        "directoryUrl": DIRECTORY_URL,
    }


@router.post("/register/sponsored", response_model=RegistrationResponse)
async def register_sponsored(
    request: Request,
    payload: SponsoredRegistrationRequest,
    pipeline: RegistrationPipeline = Depends(get_pipeline),
):
    """Free registration: the sponsor wallet pays the fee and gas."""
    claims = [
        PlatformClaim(platform=p.platform or "", handle=p.handle or "")
        for p in payload.platforms or []
    ]
    return await _register(pipeline, request, payload.name, claims, legacy=False)


@router.post("/register", response_model=RegistrationResponse)
async def register_legacy(
    request: Request,
    payload: LegacyRegistrationRequest,
    pipeline: RegistrationPipeline = Depends(get_pipeline),
):
    """Single-platform registration from a Moltbook username."""
    username = payload.moltbook_username
    claims = [PlatformClaim(platform="moltbook", handle=username.strip())] if username else []
    return await _register(pipeline, request, username, claims, legacy=True)


@router.get("/supported-platforms", response_model=SupportedPlatformsResponse)
def supported_platforms(verifiers: VerifierRegistry = Depends(get_verifiers)):
    return {"platforms": verifiers.platforms(), "notes": verifiers.describe()}
