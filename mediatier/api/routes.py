"""API routes."""
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import asyncio
import logging
import uuid

from mediatier.db.database import get_db
from mediatier.db.models import MediaItem, ActivityLog
from mediatier.api.models import (
    MediaItemResponse, ExclusionRequest, TransitionResponse, SweepResponse, UpcomingTransitionResponse,
    ActivityLogResponse, QueueItemResponse, QueueResponse, DownloadClientQueueItemResponse,
    DownloadClientQueueResponse, DiagnosticsResponse, SonarrWebhookPayload, RadarrWebhookPayload,
    JellyseerrWebhookPayload,
)
from mediatier.core.errors import (
    InvalidTransitionError, MediaItemNotFoundError, PathAuthorizationError, ServiceError,
)
from mediatier.core.models import FileState
from mediatier.core.notifications import emit_media_updated
from mediatier.dependencies import Runtime, get_runtime

logger = logging.getLogger(__name__)
router = APIRouter()

JELLYSEERR_AVAILABLE_EVENTS = {"request_available", "media_available"}
ARR_DOWNLOAD_EVENT = "download"


def _gate_owner(operation: str) -> str:
    # unique par requête: deux requêtes concurrentes attendent, sans réentrance
    return f"api:{operation}:{uuid.uuid4().hex[:8]}"


def _get_item_or_404(db: Session, item_id: int) -> MediaItem:
    item = db.get(MediaItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Media item not found")
    return item


@router.get("/api/health")
async def health(runtime: Runtime = Depends(get_runtime)):
    scheduler = runtime.scheduler.scheduler
    return {
        "status": "ok",
        "scheduler_running": bool(scheduler and scheduler.running),
        "gate_holder": runtime.gate.holder,
    }


@router.get("/api/media", response_model=List[MediaItemResponse])
async def list_media(
    state: Optional[FileState] = None,
    excluded: Optional[bool] = None,
    db: Session = Depends(get_db),
):
    """Liste les médias suivis."""
    query = db.query(MediaItem)
    if state is not None:
        query = query.filter(MediaItem.current_state == state)
    if excluded is not None:
        query = query.filter(MediaItem.is_excluded == excluded)
    return query.order_by(MediaItem.title, MediaItem.season_number, MediaItem.episode_number).all()


@router.get("/api/media/{item_id}", response_model=MediaItemResponse)
async def get_media(item_id: int, db: Session = Depends(get_db)):
    return _get_item_or_404(db, item_id)


@router.patch("/api/media/{item_id}/exclusion", response_model=MediaItemResponse)
async def set_exclusion(
    item_id: int,
    request: ExclusionRequest,
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime),
):
    """Exclut (ou réintègre) un média des transitions automatiques."""
    async with runtime.gate.hold(_gate_owner("exclusion")):
        item = _get_item_or_404(db, item_id)
        if item.is_excluded != request.is_excluded:
            item.is_excluded = request.is_excluded
            db.commit()
            db.refresh(item)
            emit_media_updated(runtime.notifier, [item])
        return item


async def _force_transition(item_id: int, target: FileState, runtime: Runtime) -> TransitionResponse:
    try:
        async with runtime.gate.hold(_gate_owner(f"transition-{target.value.lower()}")):
            settings = runtime.load_settings()
            outcome = await runtime.transitions.force_transition(item_id, target, settings)
    except MediaItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PathAuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ServiceError as e:
        logger.error("Manual transition of item %s failed: %s", item_id, e)
        raise HTTPException(status_code=502, detail=str(e))

    db = runtime.session_factory()
    try:
        item = db.get(MediaItem, item_id)
        return TransitionResponse(media_item_id=item_id, outcome=outcome, current_state=item.current_state)
    finally:
        db.close()


@router.post("/api/media/{item_id}/transition/mkv", response_model=TransitionResponse)
async def transition_to_mkv(item_id: int, runtime: Runtime = Depends(get_runtime)):
    """Force le passage en fichier local (recherche puis suppression du placeholder)."""
    return await _force_transition(item_id, FileState.MKV, runtime)


@router.post("/api/media/{item_id}/transition/symlink", response_model=TransitionResponse)
async def transition_to_symlink(item_id: int, runtime: Runtime = Depends(get_runtime)):
    """Force le retour en placeholder (demande Jellyseerr puis suppression du fichier)."""
    return await _force_transition(item_id, FileState.SYMLINK, runtime)


@router.post("/api/transitions/process", response_model=SweepResponse)
async def process_transitions(runtime: Runtime = Depends(get_runtime)):
    """Lance un balayage immédiat (sans effet hors mode FullAutomation)."""
    async with runtime.gate.hold(_gate_owner("sweep")):
        result = await runtime.transitions.check_and_process_transitions(runtime.load_settings())
    return SweepResponse(
        to_mkv=result.to_mkv,
        to_symlink=result.to_symlink,
        skipped=result.skipped,
        failed=result.failed,
        mode_disabled=result.mode_disabled,
    )


@router.get("/api/transitions/upcoming", response_model=List[UpcomingTransitionResponse])
async def upcoming_transitions(
    count: int = Query(10, ge=1, le=100),
    runtime: Runtime = Depends(get_runtime),
):
    return runtime.transitions.get_upcoming_transitions(runtime.load_settings(), count)


@router.get("/api/activity", response_model=List[ActivityLogResponse])
async def get_activity(
    limit: int = Query(50, ge=1, le=500),
    media_item_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """Journal des décisions, du plus récent au plus ancien."""
    query = db.query(ActivityLog, MediaItem.title).join(MediaItem, ActivityLog.media_item_id == MediaItem.id)
    if media_item_id is not None:
        query = query.filter(ActivityLog.media_item_id == media_item_id)
    rows = query.order_by(ActivityLog.timestamp.desc(), ActivityLog.id.desc()).limit(limit).all()
    return [
        ActivityLogResponse(
            id=log.id,
            media_item_id=log.media_item_id,
            media_title=title,
            action=log.action,
            from_state=log.from_state,
            to_state=log.to_state,
            details=log.details,
            timestamp=log.timestamp,
        )
        for log, title in rows
    ]


@router.get("/api/queue", response_model=QueueResponse)
async def get_queue(db: Session = Depends(get_db), runtime: Runtime = Depends(get_runtime)):
    """Files Sonarr/Radarr, rattachées aux médias suivis."""
    items: List[QueueItemResponse] = []
    errors = {}
    tracked = db.query(MediaItem).all()
    for handler in runtime.registry.handlers:
        if not handler.configured:
            continue
        try:
            queue = await handler.fetch_queue()
        except ServiceError as e:
            errors[handler.service_name] = str(e)
            continue
        for entry in queue:
            media_item = next(
                (i for i in tracked if handler.catalog_id(i) is not None and handler.catalog_id(i) == entry.catalog_id),
                None,
            )
            items.append(QueueItemResponse(
                download_id=entry.download_id,
                title=entry.title,
                status=entry.status,
                progress=entry.progress,
                size=entry.size,
                size_left=entry.size_left,
                error_message=entry.error_message,
                source=handler.service_name,
                media_item_id=media_item.id if media_item else None,
            ))
    return QueueResponse(items=items, errors=errors)


@router.get("/api/queue/clients", response_model=List[DownloadClientQueueResponse])
async def get_download_client_queues(runtime: Runtime = Depends(get_runtime)):
    service = runtime.download_clients
    queues = await asyncio.gather(*(service.get_queue(client) for client in service.clients))
    return [
        DownloadClientQueueResponse(
            client_name=client.name,
            client_type=client.type.value,
            items=[
                DownloadClientQueueItemResponse(
                    id=q.id,
                    name=q.name,
                    size=q.size,
                    size_remaining=q.size_remaining,
                    progress=q.progress,
                    status=q.status,
                    error_message=q.error_message,
                )
                for q in queue
            ],
        )
        for client, queue in zip(service.clients, queues)
    ]


@router.get("/api/diagnostics", response_model=DiagnosticsResponse)
async def diagnostics(runtime: Runtime = Depends(get_runtime)):
    """Vérifie les connexions aux APIs."""
    results = {}
    for name in ("jellyfin", "jellyseerr", "radarr", "sonarr"):
        service = getattr(runtime, name)
        if service is None:
            results[name] = {"configured": False, "connected": False}
        else:
            results[name] = {"configured": True, "connected": await service.test_connection()}

    results["download_clients"] = {}
    for client in runtime.download_clients.clients:
        results["download_clients"][client.name] = {
            "type": client.type.value,
            "connected": await runtime.download_clients.test_connection(client),
        }
    return DiagnosticsResponse(**results)


@router.get("/api/config")
async def get_config_endpoint(runtime: Runtime = Depends(get_runtime)):
    """Récupère la configuration actuelle (sans secrets)."""
    config = runtime.config
    settings = runtime.load_settings()
    return {
        "jellyfin": {"url": config.jellyfin.url if config.jellyfin else None},
        "jellyseerr": {"url": config.jellyseerr.url if config.jellyseerr else None},
        "radarr": {"url": config.radarr.url if config.radarr else None},
        "sonarr": {"url": config.sonarr.url if config.sonarr else None},
        "download_clients": [{"name": c.name, "type": c.type.value, "url": c.url} for c in config.download_clients],
        "library": {
            "library_mode": settings.library_mode.value,
            "symlink_to_mkv_seconds": int(settings.symlink_to_mkv.total_seconds()),
            "mkv_to_symlink_seconds": int(settings.mkv_to_symlink.total_seconds()),
            "media_library_path": settings.media_library_path,
        },
        "scheduler": config.scheduler.model_dump(),
        "app": config.app.model_dump(),
    }


# Webhooks

def _webhook_error(source: str, exc: Exception) -> JSONResponse:
    logger.exception("Error processing %s webhook", source)
    return JSONResponse(status_code=500, content={"error": str(exc), "type": exc.__class__.__name__})


@router.post("/api/webhooks/sonarr")
async def sonarr_webhook(payload: SonarrWebhookPayload, runtime: Runtime = Depends(get_runtime)):
    logger.info("Received Sonarr webhook: %s", payload.event_type)
    if payload.event_type.lower() != ARR_DOWNLOAD_EVENT or not payload.episode_file or not payload.episode_file.path:
        return {"handled": False}
    episode = payload.first_episode
    try:
        async with runtime.gate.hold(_gate_owner("webhook-sonarr")):
            item_id = await runtime.transitions.complete_download(
                payload.episode_file.path,
                "Sonarr",
                runtime.load_settings(),
                file_id=payload.episode_file.id,
                size=payload.episode_file.size,
                sonarr_id=payload.series.id if payload.series else None,
                season_number=episode.season_number if episode else None,
                episode_number=episode.episode_number if episode else None,
            )
    except PathAuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        return _webhook_error("Sonarr", e)
    return {"handled": item_id is not None, "media_item_id": item_id}


@router.post("/api/webhooks/radarr")
async def radarr_webhook(payload: RadarrWebhookPayload, runtime: Runtime = Depends(get_runtime)):
    logger.info("Received Radarr webhook: %s", payload.event_type)
    if payload.event_type.lower() != ARR_DOWNLOAD_EVENT or not payload.movie_file or not payload.movie_file.path:
        return {"handled": False}
    try:
        async with runtime.gate.hold(_gate_owner("webhook-radarr")):
            item_id = await runtime.transitions.complete_download(
                payload.movie_file.path,
                "Radarr",
                runtime.load_settings(),
                file_id=payload.movie_file.id,
                size=payload.movie_file.size,
                radarr_id=payload.movie.id if payload.movie else None,
            )
    except PathAuthorizationError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        return _webhook_error("Radarr", e)
    return {"handled": item_id is not None, "media_item_id": item_id}


@router.post("/api/webhooks/jellyseerr")
async def jellyseerr_webhook(payload: JellyseerrWebhookPayload, runtime: Runtime = Depends(get_runtime)):
    logger.info("Received Jellyseerr webhook: %s", payload.event)
    if payload.event not in JELLYSEERR_AVAILABLE_EVENTS or not payload.media or payload.media.tmdb_id is None:
        return {"handled": False}
    try:
        async with runtime.gate.hold(_gate_owner("webhook-jellyseerr")):
            count = await runtime.transitions.mark_request_available(payload.media.tmdb_id)
    except Exception as e:
        return _webhook_error("Jellyseerr", e)
    return {"handled": count > 0, "updated": count}


@router.websocket("/api/ws")
async def notifications_ws(websocket: WebSocket):
    """Flux des notifications MediaUpdated."""
    runtime = get_runtime()
    await websocket.accept()
    queue = runtime.notifier.subscribe()
    try:
        while True:
            message = await queue.get()
            await websocket.send_json(message)
    except WebSocketDisconnect:
        logger.debug("Notification subscriber disconnected")
    finally:
        runtime.notifier.unsubscribe(queue)
