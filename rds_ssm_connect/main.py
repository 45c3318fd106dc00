import atexit

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rds_ssm_connect.core.config import settings
from rds_ssm_connect.core.logging import logger
from rds_ssm_connect.dependencies.registry import get_connection_registry
from rds_ssm_connect.routers import connections, health, prerequisites, projects
from rds_ssm_connect.services.tunnels.process_manager import sweep_process_registry
from rds_ssm_connect.websocket import router as websocket_router
from rds_ssm_connect.websocket import websocket_manager

app = FastAPI(
    title=settings.PROJECT_NAME, openapi_url=f"{settings.API_V1_STR}/openapi.json"
)

# Set up CORS for the desktop and browser frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    projects.router, prefix=f"{settings.API_V1_STR}/projects", tags=["projects"]
)
app.include_router(
    connections.router, prefix=f"{settings.API_V1_STR}/connections", tags=["connections"]
)
app.include_router(
    prerequisites.router,
    prefix=f"{settings.API_V1_STR}/prerequisites",
    tags=["prerequisites"],
)
app.include_router(health.router)
app.include_router(websocket_router)

# Last resort if the interpreter exits without running the shutdown hook
atexit.register(sweep_process_registry)

_unsubscribe_events = None


@app.on_event("startup")
async def startup_event():
    """Initialize application at startup."""
    global _unsubscribe_events

    logger.info(f"[bold green]Starting {settings.PROJECT_NAME}[/bold green]")
    logger.info(f"Debug mode: {settings.DEBUG}")
    logger.info(f"Log level: {settings.LOG_LEVEL}")
    logger.info("Configuration loaded:")
    logger.info(f"  [cyan]Projects file:[/cyan] {settings.PROJECTS_CONFIG_PATH}")
    logger.info(f"  [cyan]AWS config:[/cyan] {settings.AWS_CONFIG_PATH}")
    logger.info(f"  [cyan]Identity wrapper:[/cyan] {settings.IDENTITY_WRAPPER}")

    registry = get_connection_registry()
    _unsubscribe_events = registry.subscribe(websocket_manager.broadcast_event)


@app.on_event("shutdown")
async def shutdown_event():
    """Close every tunnel before the process exits."""
    logger.info("Shutting down, closing all connections")
    if _unsubscribe_events is not None:
        _unsubscribe_events()

    count = await get_connection_registry().disconnect_all()
    logger.info(f"Closed {count} connections")

    swept = sweep_process_registry()
    if swept:
        logger.warning(f"Force killed {swept} leftover forwarding processes")
