"""
FastAPI application for managing and monitoring the Notion sync.

This module exposes endpoints to trigger full and single-entity syncs,
follow their progress (also over a WebSocket), cancel them, and inspect
the rolling sync health.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Set

import click
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from .sync.config import SyncConfig
from .sync.exceptions import ConfigurationError, SyncServiceUnavailableError
from .sync.interfaces import ProgressListener
from .sync.models import ProgressMessage, SyncContext, SyncDirection, SyncProgress, TriggerRequest
from .sync.progress import generate_operation_id
from .sync.service import SyncServiceContainer

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Sync components (initialized in lifespan)
container: Optional[SyncServiceContainer] = None

# Progress events buffered per WebSocket client
WEBSOCKET_QUEUE_SIZE = 256

# Keeps background sync tasks referenced until they finish
_background_tasks: Set[asyncio.Task] = set()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan event handler.

    Builds the sync components from the environment on startup and stops
    them on shutdown. The API keeps serving if initialization fails; sync
    endpoints then answer 503.
    """
    global container

    logger.info("Starting wrestling sync API")
    try:
        config = SyncConfig.from_env()
        logging.getLogger("wrestling_sync").setLevel(config.log_level.upper())
        container = SyncServiceContainer.from_config(config)
        await container.start()
        logger.info("Sync system initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize sync system: {e}", exc_info=True)
        container = None

    yield

    logger.info("Shutting down wrestling sync API")
    for task in list(_background_tasks):
        task.cancel()
    if container:
        try:
            await container.stop()
        except Exception as e:
            logger.error(f"Error stopping sync system: {e}")
    logger.info("Sync system shutdown complete")


app = FastAPI(
    title="Wrestling Sync",
    description="Synchronization of wrestling promotion data with Notion",
    version="1.0.0",
    lifespan=lifespan
)


def _require_container() -> SyncServiceContainer:
    if container is None:
        error = SyncServiceUnavailableError("sync", "sync system is not initialized")
        raise HTTPException(status_code=503, detail=error.to_dict())
    return container


def _context(request: TriggerRequest) -> SyncContext:
    return SyncContext(timeout_seconds=request.timeout_seconds)


def _background_sync_done(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Background sync failed: {error}", exc_info=error)


@app.get("/health")
async def health_check():
    """
    Liveness check.

    Returns:
        JSON response with application status
    """
    return {
        "status": "healthy",
        "application": "Wrestling Sync",
        "version": app.version,
        "sync_system": "enabled" if container is not None else "disabled",
        "timestamp": datetime.now().isoformat()
    }


@app.get("/api/sync/notion/status")
async def get_sync_status():
    """Configuration, sync order, scheduler state and run flags."""
    services = _require_container()
    try:
        status = services.orchestrator.status()
        status["scheduler"] = services.scheduler.get_status()
        status["circuit_breakers"] = services.breakers.get_all_metrics()
        status["timestamp"] = datetime.now().isoformat()
        return status
    except Exception as e:
        logger.error(f"Error getting sync status: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail=f"Failed to get sync status: {e}")


@app.get("/api/sync/notion/entities")
async def get_supported_entities():
    """Supported entities with their dependencies, in sync order."""
    services = _require_container()
    graph = services.graph
    return {
        "entities": [
            {
                "name": name,
                "level": graph.level_of(name),
                "depends_on": sorted(graph.dependencies_of(name)),
                "last_sync_time": (
                    services.orchestrator.last_sync_time(name).isoformat()
                    if services.orchestrator.last_sync_time(name) else None
                ),
            }
            for name in graph.automatic_sync_order()
        ],
        "levels": services.orchestrator.levels(),
    }


@app.post("/api/sync/notion/trigger")
async def trigger_full_sync(request: Optional[TriggerRequest] = None):
    """
    Run a full sync.

    With ``background`` set, the sync is started and its operation ID is
    returned at once; progress is then available under
    ``/api/sync/notion/progress/{operation_id}``.
    """
    services = _require_container()
    request = request or TriggerRequest()
    try:
        ctx = _context(request)
        direction = SyncDirection.parse(request.direction) if request.direction else None
        operation_id = request.operation_id or generate_operation_id("sync-all")
        orchestrator = services.orchestrator

        if orchestrator.is_run_active():
            return JSONResponse(status_code=409, content={
                "success": False,
                "operation_id": operation_id,
                "message": "sync already in progress",
            })

        if request.background:
            existing = services.progress_tracker.get(operation_id)
            if existing is not None and not existing.is_terminal:
                raise ValueError(f"Operation {operation_id} is already running")
            task = asyncio.create_task(orchestrator.run_all(ctx, operation_id, direction))
            _background_tasks.add(task)
            task.add_done_callback(_background_sync_done)
            return {"success": True, "accepted": True, "operation_id": operation_id}

        summary = await orchestrator.run_all(ctx, operation_id, direction)
        if summary.rejected:
            return JSONResponse(status_code=409, content=summary.to_dict())
        return summary.to_dict()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Full sync failed unexpectedly: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail=f"Sync failed: {e}")


@app.post("/api/sync/notion/trigger/{entity}")
async def trigger_entity_sync(entity: str, request: Optional[TriggerRequest] = None):
    """Sync one entity type; its dependencies are not synced first."""
    services = _require_container()
    request = request or TriggerRequest()
    try:
        result = await services.orchestrator.run_entity(
            entity, _context(request), request.operation_id, request.direction
        )
    except ConfigurationError as e:
        return JSONResponse(status_code=400, content={
            "success": False,
            "message": e.message,
            "valid_entities": services.graph.automatic_sync_order(),
        })
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Sync of {entity} failed unexpectedly: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail=f"Sync failed: {e}")

    if result.rejected:
        return JSONResponse(status_code=409, content=result.to_dict())
    return result.to_dict()


@app.get("/api/sync/notion/progress")
async def get_active_progress():
    services = _require_container()
    return {
        "operations": [p.to_dict() for p in services.progress_tracker.operations()],
        "active_count": len(services.progress_tracker.active_operations()),
    }


@app.get("/api/sync/notion/progress/{operation_id}")
async def get_operation_progress(operation_id: str):
    services = _require_container()
    progress = services.progress_tracker.get(operation_id)
    if progress is None:
        raise HTTPException(status_code=404, detail=f"Unknown operation: {operation_id}")
    return progress.to_dict()


@app.post("/api/sync/notion/cancel/{operation_id}")
async def cancel_operation(operation_id: str):
    services = _require_container()
    if not services.orchestrator.cancel(operation_id):
        raise HTTPException(
            status_code=404,
            detail=f"No running operation with ID {operation_id}"
        )
    return {"success": True, "operation_id": operation_id, "cancel_requested": True}


class _QueueListener(ProgressListener):
    """Forwards progress events into an asyncio queue from any thread."""

    def __init__(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue):
        self.loop = loop
        self.queue = queue
        self.dropped = 0

    def _put(self, event: str, progress: SyncProgress) -> None:
        message = ProgressMessage(
            event=event,
            operation_id=progress.operation_id,
            progress=progress.to_dict(),
        ).model_dump(mode="json")
        self.loop.call_soon_threadsafe(self._enqueue, message)

    def _enqueue(self, message: dict) -> None:
        # full queue: drop the oldest event
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(message)

    def on_operation_started(self, progress: SyncProgress) -> None:
        self._put("started", progress)

    def on_progress_updated(self, progress: SyncProgress) -> None:
        self._put("updated", progress)

    def on_operation_completed(self, progress: SyncProgress) -> None:
        self._put("completed", progress)


@app.websocket("/ws/progress")
async def progress_websocket(websocket: WebSocket):
    """
    Push progress events of all operations to the client.

    A snapshot of the retained operations is sent first.
    """
    if container is None:
        logger.warning("Progress WebSocket attempted but sync system not available")
        await websocket.close(code=1011, reason="Sync system unavailable")
        return

    await websocket.accept()
    tracker = container.progress_tracker
    queue: asyncio.Queue = asyncio.Queue(maxsize=WEBSOCKET_QUEUE_SIZE)
    listener = _QueueListener(asyncio.get_running_loop(), queue)
    tracker.subscribe(listener)

    try:
        await websocket.send_json({
            "type": "snapshot",
            "operations": [p.to_dict() for p in tracker.operations()],
            "timestamp": datetime.now().isoformat(),
        })
        while True:
            message = await queue.get()
            await websocket.send_json(message)
    except WebSocketDisconnect:
        logger.debug("Progress WebSocket client disconnected")
    except Exception as e:
        logger.warning(f"Progress WebSocket closed: {e}")
    finally:
        tracker.unsubscribe(listener)


@app.get("/api/sync/health")
async def get_sync_health():
    """Status and key figures."""
    services = _require_container()
    summary = services.health_monitor.summary()
    return {
        "status": summary.status.value,
        "healthy": summary.status.value == "healthy",
        "success_rate": round(summary.success_rate, 2),
        "consecutive_failures": summary.consecutive_failures,
        "average_sync_time_ms": round(summary.average_sync_time_ms, 2),
        "active_operations": summary.active_operations,
        "last_successful_sync": (
            summary.last_successful_sync.isoformat() if summary.last_successful_sync else None
        ),
        "last_error_message": summary.last_error_message,
        "timestamp": datetime.now().isoformat(),
    }


@app.get("/api/sync/health/summary")
async def get_health_summary():
    services = _require_container()
    return services.health_monitor.summary().to_dict()


@app.get("/api/sync/health/metrics")
async def get_recent_metrics(limit: int = Query(default=20, ge=1, le=500)):
    services = _require_container()
    metrics = services.health_monitor.recent_metrics(limit)
    return {"metrics": [m.to_dict() for m in metrics], "count": len(metrics)}


@app.get("/api/sync/health/stats")
async def get_health_stats():
    services = _require_container()
    return services.health_monitor.stats()


@app.get("/api/sync/health/recommendations")
async def get_health_recommendations():
    services = _require_container()
    summary = services.health_monitor.summary()
    return {
        "status": summary.status.value,
        "recommendations": services.health_monitor.recommendations(),
    }


@app.post("/api/sync/health/reset")
async def reset_health_metrics():
    services = _require_container()
    services.health_monitor.reset_metrics()
    return {"success": True, "message": "Sync health metrics reset"}


@click.command()
@click.option(
    '--host',
    envvar='WEB_HOST',
    default='0.0.0.0',
    show_default=True,
    help='Host to bind the web server to'
)
@click.option(
    '--port',
    envvar='WEB_PORT',
    type=int,
    default=8000,
    show_default=True,
    help='Port to bind the web server to'
)
@click.option(
    '--reload',
    envvar='WEB_RELOAD',
    is_flag=True,
    default=False,
    help='Enable auto-reload for development'
)
@click.option(
    '--log-level',
    envvar='WEB_LOG_LEVEL',
    default='info',
    show_default=True,
    type=click.Choice(['critical', 'error', 'warning', 'info', 'debug'], case_sensitive=False),
    help='Logging level for the web server'
)
def run_server(host: str, port: int, reload: bool, log_level: str):
    """
    Run the sync API with Uvicorn.

    Sync settings are read from SYNC_* environment variables (or a .env
    file) when the application starts.
    """
    import uvicorn

    from .sync.logging_config import setup_sync_logging
    setup_sync_logging(log_level)

    logger.info(f"Starting web server on {host}:{port}")
    uvicorn.run(
        "wrestling_sync.web:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level.lower(),
        ws="websockets",
    )
