"""
IPTV Source Service - FastAPI Backend

Manages M3U playlist and Xtream-Codes sources and the channel list built
from them.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from iptvsource.config import get_settings
from iptvsource.routers import channels, sources, streams
from iptvsource.services.storage import get_storage

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)
# httpx logs every request URL at INFO, Xtream URLs carry the password
logging.getLogger("httpx").setLevel(logging.WARNING)

settings = get_settings()

# Rate limiter
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    logger.info("Starting IPTV Source Service...")

    storage = await get_storage()
    stats = await storage.get_stats()
    logger.info(f"Storage initialized at {storage.db_path}: {stats}")

    yield

    logger.info("Shutting down IPTV Source Service...")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="M3U and Xtream-Codes source acquisition",
    lifespan=lifespan
)

# Add rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sources.router)
app.include_router(channels.router)
app.include_router(streams.router)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": settings.app_version}


@app.get("/api/stats")
async def get_stats():
    """Get storage statistics."""
    storage = await get_storage()
    stats = await storage.get_stats()
    categories = await storage.get_categories()

    return {
        "total_channels": stats["channels"],
        "total_categories": len(categories),
        "m3u_sources": stats["m3u_sources"],
        "xtream_sources": stats["xtream_sources"],
    }


# Error handlers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "iptvsource.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
