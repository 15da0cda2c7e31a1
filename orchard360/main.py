"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from orchard360.config import Settings, settings
from orchard360.api.rate_limit import limiter
from orchard360.api.v1.routers import audit, events, hierarchy, transfer
from orchard360.infrastructure.remote_storage import RemoteStorageProvider
from orchard360.infrastructure.storage import LocalStorageProvider, StorageProvider
from orchard360.middleware.error_handler import ErrorHandlerMiddleware
from orchard360.services.application.seed import seed_demo_data
from orchard360.services.domain.entity_store import EntityStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def build_storage_provider(config: Settings) -> StorageProvider:
    """
    Create the storage provider selected by configuration.
    
    Args:
        config: Application settings
        
    Returns:
        LocalStorageProvider or RemoteStorageProvider
        
    Raises:
        ValueError: If the configured backend is unknown
    """
    backend = config.storage_backend.lower()
    if backend == "local":
        return LocalStorageProvider(config.local_data_dir)
    if backend == "remote":
        return RemoteStorageProvider(
            base_url=config.remote_api_base_url,
            api_key=config.remote_api_key,
            timeout=config.request_timeout,
        )
    raise ValueError(f"Unknown storage backend '{config.storage_backend}'")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.
    
    Builds the session's entity store at startup and releases its storage
    provider at shutdown.
    """
    # Startup
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Storage backend: {settings.storage_backend}")
    logger.info(f"Rate limit: {settings.rate_limit_requests} transfer requests/minute")
    
    provider = build_storage_provider(settings)
    store = EntityStore(provider, actor=settings.audit_actor)
    loaded = await store.load()
    failed = [key for key, ok in loaded.items() if not ok]
    if failed:
        logger.warning(f"Continuing without collections: {', '.join(failed)}")
    
    if settings.seed_demo_data:
        await seed_demo_data(store)
    
    app.state.store = store
    
    yield
    
    # Shutdown
    logger.info("Shutting down application...")
    await provider.close()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Orchard Inventory API
    
    Tracks tree changes across the sector → orchard → block hierarchy.
    
    ## Features
    
    - **Master data**: sectors, orchards and blocks with referential
      integrity (a parent cannot be deleted while children reference it)
    - **Tree events**: planting, replanting, kneecapping, grafting and
      removal records with quantity, validated on save
    - **Block rollups**: per-block totals and latest updates for any filter
    - **Search**: scope, status and variety filters plus free-text search
    - **Audit log**: an append-only field-level change history
    - **CSV transfer**: export (full or filtered) and merge-by-id import,
      including the legacy flat per-tree format
    """,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Add CORS middleware with configurable origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Add global error handling middleware
app.add_middleware(ErrorHandlerMiddleware)

# Include routers
app.include_router(hierarchy.router, prefix="/api/v1")
app.include_router(events.router, prefix="/api/v1")
app.include_router(transfer.router, prefix="/api/v1")
app.include_router(audit.router, prefix="/api/v1")


@app.get("/", tags=["health"])
async def root():
    """
    Root endpoint for health check.
    
    Returns:
        Status message
    """
    return {
        "status": "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@app.get("/health", tags=["health"])
async def health_check():
    """
    Health check endpoint.
    
    Returns:
        Health status with store counts when the store is up
    """
    store = getattr(app.state, "store", None)
    return {
        "status": "healthy",
        "service": settings.app_name,
        "store": None if store is None else {
            "sectors": len(store.sectors()),
            "orchards": len(store.orchards()),
            "blocks": len(store.blocks()),
            "events": len(store.events()),
        },
    }
