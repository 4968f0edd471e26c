"""API routes for queueing, converting and downloading images and video."""
import asyncio
import logging
import uuid
from dataclasses import replace
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.exc import SQLAlchemyError

from mediabatch.batch import create_run, forget_run, get_run, save_bundle, set_run_completed, set_run_failed
from mediabatch.config import (
    BUNDLE_DIR,
    BUNDLE_DOWNLOAD_NAME,
    DEFAULT_VIDEO_HEIGHT,
    DEFAULT_VIDEO_WIDTH,
    IMAGE_EXTENSIONS,
    IMAGE_OUTPUT_FORMATS,
    MAX_IMAGE_SIZE_BYTES,
    MAX_IMAGES_PER_UPLOAD,
    MAX_VIDEO_SIZE_BYTES,
    MAX_VIDEOS_PER_UPLOAD,
    RESOLUTION_PRESETS,
    VIDEO_CODECS,
    VIDEO_EXTENSIONS,
    VIDEO_OUTPUT_FORMATS,
)
from mediabatch.conversion.models import BatchConfiguration, ItemStatus, ResolutionMode, VideoJob, VideoJobConfiguration
from mediabatch.conversion.resize import read_image_size
from mediabatch.conversion.service import ConversionService
from mediabatch.db import delete_session_data, get_session_activities, get_session_stats, record_activity
from mediabatch.engine import MediaEngine, get_engine
from mediabatch.handles import get_handle_store
from mediabatch.workspace import Workspace, drop_workspace, get_workspace

logger = logging.getLogger("mediabatch.api")
router = APIRouter(prefix="/api", tags=["mediabatch"])

CHUNK_SIZE = 1024 * 1024


def get_or_create_session_id(request: Request) -> str:
    """Use X-Session-ID header or generate and attach to request for response header."""
    sid = (request.headers.get("X-Session-ID") or "").strip()
    if sid:
        return sid
    sid = str(uuid.uuid4())
    request.state.session_id = sid
    return sid


def get_session_workspace(session_id: str = Depends(get_or_create_session_id)) -> Workspace:
    return get_workspace(session_id)


def get_service() -> ConversionService:
    return ConversionService(get_engine(), get_handle_store())


def require_engine() -> MediaEngine:
    engine = get_engine()
    if not engine.ready:
        raise HTTPException(503, engine.load_error or "Media engine is not loaded")
    return engine


async def _read_upload(file: UploadFile, max_bytes: int) -> bytes:
    max_mb = max_bytes // (1024 * 1024)
    chunks: list[bytes] = []
    total = 0
    while chunk := await file.read(CHUNK_SIZE):
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(413, f"File too large: {file.filename} (max {max_mb} MB)")
        chunks.append(chunk)
    return b"".join(chunks)


def _record(ws: Workspace, item, kind: str, run_id: Optional[str], duration_seconds: Optional[float]) -> None:
    try:
        record_activity(
            ws.session_id,
            item.item_id,
            kind,
            item.filename,
            item.status.value,
            run_id=run_id,
            output_name=item.output.filename if item.output else None,
            input_bytes=len(item.data),
            output_bytes=item.output.size if item.output else None,
            error=item.error,
            duration_seconds=duration_seconds,
        )
    except SQLAlchemyError as e:
        logger.exception("Could not record activity for %s: %s", item.item_id, e)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/engine")
def engine_status():
    """Readiness of the media engine; error carries the load failure message."""
    engine = get_engine()
    return {"ready": engine.ready, "error": engine.load_error}


@router.get("/limits")
def get_limits():
    return {
        "max_images_per_upload": MAX_IMAGES_PER_UPLOAD,
        "max_image_size_mb": MAX_IMAGE_SIZE_BYTES // (1024 * 1024),
        "max_image_size_bytes": MAX_IMAGE_SIZE_BYTES,
        "max_videos_per_upload": MAX_VIDEOS_PER_UPLOAD,
        "max_video_size_mb": MAX_VIDEO_SIZE_BYTES // (1024 * 1024),
        "max_video_size_bytes": MAX_VIDEO_SIZE_BYTES,
    }


@router.get("/formats")
def get_formats():
    return {
        "image": sorted(IMAGE_EXTENSIONS),
        "video": sorted(VIDEO_EXTENSIONS),
        "output_image": IMAGE_OUTPUT_FORMATS,
        "output_video": VIDEO_OUTPUT_FORMATS,
        "video_codecs": [{"value": k, "label": v} for k, v in VIDEO_CODECS.items()],
        "resolutions": ["original", *RESOLUTION_PRESETS, "custom"],
    }


# Images


def _images_state(ws: Workspace) -> dict:
    run = get_run(ws.last_run_id) if ws.last_run_id else None
    return {
        "items": [i.to_dict() for i in ws.images.items()],
        "pending": [i.item_id for i in ws.images.pending()],
        "completed": [i.item_id for i in ws.images.completed()],
        "settings": {"format": ws.config.output_format, "quality": ws.config.quality},
        "processing": ws.image_run_active,
        "run": run.to_dict() if run else None,
    }


@router.get("/images")
def list_images(ws: Workspace = Depends(get_session_workspace)):
    return _images_state(ws)


@router.post("/images")
async def add_images(
    files: list[UploadFile] = File(...),
    ws: Workspace = Depends(get_session_workspace),
):
    """Queue images. Each is decoded once to read its dimensions; unreadable files are skipped."""
    if len(files) > MAX_IMAGES_PER_UPLOAD:
        raise HTTPException(400, f"Max {MAX_IMAGES_PER_UPLOAD} images per upload")
    handles = get_handle_store()
    added: list[dict] = []
    skipped: list[dict] = []
    for file in files:
        filename = file.filename or "image"
        ext = Path(filename).suffix.lower()
        is_image = (file.content_type or "").startswith("image/") or ext in IMAGE_EXTENSIONS
        if not is_image:
            skipped.append({"filename": filename, "reason": "not an image"})
            continue
        data = await _read_upload(file, MAX_IMAGE_SIZE_BYTES)
        try:
            width, height = read_image_size(data)
        except ValueError as e:
            skipped.append({"filename": filename, "reason": str(e)})
            continue
        preview = handles.create(data, ext or "bin")
        item = ws.images.enqueue(filename, data, width, height, preview=preview)
        added.append(item.to_dict())
    if not added:
        raise HTTPException(400, "No valid images uploaded")
    return {"items": added, "skipped": skipped}


@router.put("/images/settings")
def update_image_settings(
    format: Optional[str] = Body(None),
    quality: Optional[int] = Body(None),
    ws: Workspace = Depends(get_session_workspace),
):
    """Output format and quality for the next run (applies to every item)."""
    try:
        ws.config = BatchConfiguration(
            output_format=format if format is not None else ws.config.output_format,
            quality=quality if quality is not None else ws.config.quality,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"format": ws.config.output_format, "quality": ws.config.quality}


@router.patch("/images/{item_id}")
def update_image(
    item_id: str,
    width: Optional[int] = Body(None),
    height: Optional[int] = Body(None),
    keyword: Optional[str] = Body(None),
    ws: Workspace = Depends(get_session_workspace),
):
    """Set width or height (the other follows the aspect ratio) and/or the keyword."""
    if width is not None and height is not None:
        raise HTTPException(400, "Set either width or height; the other follows the aspect ratio")
    try:
        if width is not None:
            ws.images.set_dimension(item_id, "width", width)
        elif height is not None:
            ws.images.set_dimension(item_id, "height", height)
        if keyword is not None:
            ws.images.set_keyword(item_id, keyword)
        return ws.images.require(item_id).to_dict()
    except KeyError:
        raise HTTPException(404, "Item not found")
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.delete("/images/{item_id}")
def discard_image(item_id: str, ws: Workspace = Depends(get_session_workspace)):
    try:
        ws.images.discard(item_id)
    except KeyError:
        raise HTTPException(404, "Item not found")
    return {"ok": True}


@router.delete("/images")
def clear_images(ws: Workspace = Depends(get_session_workspace)):
    count = len(ws.images)
    ws.images.clear()
    return {"ok": True, "removed": count}


def _run_image_batch(
    ws: Workspace,
    service: ConversionService,
    run_id: str,
    item_ids: list[str],
    config: BatchConfiguration,
) -> None:
    """Blocking: convert all then bundle. Called in thread."""
    try:
        result = service.convert_images(ws.images, config, item_ids)
        if result is None:
            set_run_failed(run_id, "Nothing to convert")
            return
        bundle_filename = save_bundle(run_id, result.bundle)
        set_run_completed(run_id, bundle_filename, result.entries, result.failed)
        attempted = [ws.images.get(i) for i in result.succeeded + result.failed]
        attempted = [i for i in attempted if i is not None]
        per_item = result.duration_seconds / len(attempted) if attempted else None
        for item in attempted:
            _record(ws, item, "image", run_id, per_item)
    except Exception as e:
        logger.exception("Image run %s failed: %s", run_id, e)
        set_run_failed(run_id, str(e))
    finally:
        ws.image_run_active = False


@router.post("/images/convert")
def convert_images(
    background_tasks: BackgroundTasks,
    item_ids: Optional[list[str]] = Body(None, embed=True),
    ws: Workspace = Depends(get_session_workspace),
    service: ConversionService = Depends(get_service),
):
    """Convert queued images (all, or item_ids) in the background and bundle them. Returns run_id."""
    require_engine()
    selected = ws.images.select(item_ids)
    if not selected:
        raise HTTPException(400, "No images queued")
    if not ws.begin_image_run():
        raise HTTPException(409, "A conversion is already running")

    run_id = str(uuid.uuid4())
    create_run(run_id, selected)
    if ws.last_run_id:
        forget_run(ws.last_run_id)
    ws.last_run_id = run_id
    config = replace(ws.config)

    async def run_batch_async():
        await asyncio.to_thread(_run_image_batch, ws, service, run_id, selected, config)

    background_tasks.add_task(run_batch_async)
    return {
        "run_id": run_id,
        "status": "processing",
        "items": len(selected),
        "message": f"Conversion started. Poll /api/images/runs/{run_id} for status.",
    }


@router.get("/images/runs/{run_id}")
def image_run_status(run_id: str):
    run = get_run(run_id)
    if not run:
        raise HTTPException(404, "Run not found")
    return run.to_dict()


@router.get("/images/bundle")
def download_bundle(ws: Workspace = Depends(get_session_workspace)):
    """Download the zip of the last completed run."""
    run = get_run(ws.last_run_id) if ws.last_run_id else None
    if not run or run.status != "completed" or not run.bundle_filename:
        raise HTTPException(404, "Bundle not ready")
    path = BUNDLE_DIR / run.bundle_filename
    if not path.is_file():
        raise HTTPException(404, "Bundle file not found")
    return FileResponse(path, filename=BUNDLE_DOWNLOAD_NAME, media_type="application/zip")


@router.get("/images/{item_id}/download")
def download_image(item_id: str, ws: Workspace = Depends(get_session_workspace)):
    item = ws.images.get(item_id)
    if not item:
        raise HTTPException(404, "Item not found")
    if item.status != ItemStatus.DONE or not item.output:
        raise HTTPException(404, "Item not converted")
    path = get_handle_store().path(item.output.handle)
    return FileResponse(path, filename=item.output.filename, media_type=item.output.media_type)


@router.get("/images/{item_id}/preview")
def preview_image(item_id: str, ws: Workspace = Depends(get_session_workspace)):
    item = ws.images.get(item_id)
    if not item or not item.preview:
        raise HTTPException(404, "Item not found")
    return FileResponse(get_handle_store().path(item.preview))


# Video


def _require_video(ws: Workspace) -> VideoJob:
    if ws.video_job is None:
        raise HTTPException(404, "No video loaded")
    return ws.video_job


@router.post("/video")
async def load_video(
    file: UploadFile = File(...),
    ws: Workspace = Depends(get_session_workspace),
    service: ConversionService = Depends(get_service),
):
    """Replace the active video and probe it. Unknown properties fall back to 1920x1080 for manual entry."""
    require_engine()
    if ws.video_run_active:
        raise HTTPException(409, "A video conversion is already running")
    filename = file.filename or "video"
    ext = Path(filename).suffix.lower()
    if not ((file.content_type or "").startswith("video/") or ext in VIDEO_EXTENSIONS):
        raise HTTPException(400, f"Unsupported video format: {ext or file.content_type}")
    data = await _read_upload(file, MAX_VIDEO_SIZE_BYTES)
    if not data:
        raise HTTPException(400, "Empty file")

    probe = await asyncio.to_thread(service.probe_video, data)
    width = probe.width or DEFAULT_VIDEO_WIDTH
    height = probe.height or DEFAULT_VIDEO_HEIGHT
    job = ws.start_video(filename, data, width, height, probe)
    return job.to_dict()


@router.get("/video")
def video_state(ws: Workspace = Depends(get_session_workspace)):
    job = _require_video(ws)
    state = job.to_dict()
    state["processing"] = ws.video_run_active
    return state


@router.delete("/video")
def discard_video(ws: Workspace = Depends(get_session_workspace)):
    if ws.video_run_active:
        raise HTTPException(409, "A video conversion is running")
    _require_video(ws)
    ws.discard_video()
    return {"ok": True}


@router.put("/video/settings")
def update_video_settings(
    format: Optional[str] = Body(None),
    resolution: Optional[str] = Body(None),
    codec: Optional[str] = Body(None),
    width: Optional[int] = Body(None),
    height: Optional[int] = Body(None),
    ws: Workspace = Depends(get_session_workspace),
):
    """Output format, resolution mode and codec; width or height for custom resolution."""
    job = _require_video(ws)
    if width is not None and height is not None:
        raise HTTPException(400, "Set either width or height; the other follows the aspect ratio")
    current = job.config
    try:
        config = VideoJobConfiguration(
            output_format=format if format is not None else current.output_format,
            resolution=resolution if resolution is not None else current.resolution,
            codec=codec if codec is not None else current.codec,
        )
        if config.stream_copy and config.mode != ResolutionMode.ORIGINAL:
            raise ValueError("Stream copy cannot be combined with a resolution change; choose a codec to re-encode")
        if width is not None:
            ws.video.set_dimension(job.item.item_id, "width", width)
        elif height is not None:
            ws.video.set_dimension(job.item.item_id, "height", height)
    except ValueError as e:
        raise HTTPException(400, str(e))
    job.config = config
    return job.to_dict()


def _run_video_job(ws: Workspace, service: ConversionService, job: VideoJob) -> None:
    """Blocking: run the video job. Called in thread."""
    try:
        service.convert_video(ws.video, job)
        if job.item.status in (ItemStatus.DONE, ItemStatus.ERROR):
            _record(ws, job.item, "video", None, None)
    except Exception as e:
        logger.exception("Video job failed: %s", e)
    finally:
        ws.video_run_active = False


@router.post("/video/convert")
def convert_video(
    background_tasks: BackgroundTasks,
    ws: Workspace = Depends(get_session_workspace),
    service: ConversionService = Depends(get_service),
):
    """Start the video conversion in the background. Poll GET /api/video for progress."""
    require_engine()
    job = _require_video(ws)
    if not ws.begin_video_run():
        raise HTTPException(409, "A video conversion is already running")

    async def run_video_async():
        await asyncio.to_thread(_run_video_job, ws, service, job)

    background_tasks.add_task(run_video_async)
    return {"status": "processing", "message": "Conversion started. Poll /api/video for progress."}


@router.get("/video/download")
def download_video(ws: Workspace = Depends(get_session_workspace)):
    job = _require_video(ws)
    output = job.item.output
    if job.item.status != ItemStatus.DONE or not output:
        raise HTTPException(404, "Video not converted")
    path = get_handle_store().path(output.handle)
    return FileResponse(path, filename=output.filename, media_type=output.media_type)


# Session


@router.get("/session/stats")
def session_stats(session_id: str = Depends(get_or_create_session_id)):
    """Return aggregated stats for the current session."""
    return get_session_stats(session_id)


@router.get("/session/activities")
def session_activities(
    limit: int = Query(50, ge=1, le=200),
    session_id: str = Depends(get_or_create_session_id),
):
    """Return recent conversion activities for the current session."""
    return {"activities": get_session_activities(session_id, limit=limit)}


@router.delete("/session/data")
def session_delete_data(session_id: str = Depends(get_or_create_session_id)):
    """Drop the session's queued items, outputs and bundle, and its statistics."""
    drop_workspace(session_id)
    removed = delete_session_data(session_id)
    return {"ok": True, "removed_activities": removed, "message": "Session data cleared"}
