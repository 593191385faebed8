"""Main FastAPI application."""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import settings
from app.api import websites, changes
from app.services.orchestrator import get_orchestrator
from app.utils.exceptions import AppException, status_code_for
from app.utils.logger import logger
from app.workers.config import IdleReaper
from app.workers.tasks import recover_orphaned_builds

# Create database tables (in production, use migrations)
# Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Recover persisted build state, run the idle reaper, stop processes on shutdown."""
    orchestrator = get_orchestrator()
    ctx = {"orchestrator": orchestrator}
    result = await recover_orphaned_builds(ctx)
    if not result["success"]:
        logger.error(f"Restart recovery failed: {result['error']}")

    reaper = IdleReaper(ctx)
    reaper.start()
    try:
        yield
    finally:
        await reaper.stop()
        await orchestrator.shutdown()


app = FastAPI(
    title="Website Preview Orchestrator API",
    description="Builds, serves and edits live previews of uploaded web projects",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Map domain errors to HTTP status codes."""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# Include routers
app.include_router(websites.router)
app.include_router(changes.router)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Website Preview Orchestrator API",
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint with supervisor statistics."""
    return {"status": "healthy", "supervisor": get_orchestrator().stats()}
