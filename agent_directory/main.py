"""
FastAPI application for sponsored Agent Directory registration.

Run with ``uvicorn agent_directory.main:app`` or ``python -m agent_directory.main``.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from agent_directory import __version__, config
from agent_directory.deps import get_verifiers
from agent_directory.logging_config import setup_logging
from agent_directory.routers import capabilities, directory, registration

setup_logging()
logger = logging.getLogger("agent_directory")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Agent Directory API v{__version__} on {config.NETWORK_NAME}, contract {config.CONTRACT_ADDRESS}")
    logger.info(f"Sponsor wallet: {'configured' if config.SPONSOR_PRIVATE_KEY else 'NOT CONFIGURED'}")
    logger.info(f"Supported platforms: {', '.join(get_verifiers().platforms())}")
    yield


app = FastAPI(
    title="Agent Directory API",
    description="Sponsored on-chain registration and capability search for AI agents.",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = capabilities.limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies are client errors like any other validation failure."""
    reasons = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ())[1:])
        reasons.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"detail": "; ".join(reasons) or "Invalid request"})


app.include_router(registration.router, tags=["registration"])
app.include_router(directory.router, tags=["directory"])
app.include_router(capabilities.router, tags=["capabilities"])


@app.get("/health", tags=["meta"])
def health():
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("agent_directory.main:app", host="0.0.0.0", port=config.PORT)
