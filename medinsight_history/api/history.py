"""
History API endpoints.

These endpoints expose the ledger to the UI views. The API layer
is thin: it maps ledger errors to HTTP status codes and delegates
everything else to HistoryService and HistoryTransferService.
"""

import asyncio
import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session, sessionmaker

from medinsight_history.change_feed import ChangeFeed, get_change_feed
from medinsight_history.config import get_settings
from medinsight_history.errors import (
    EmptyLedger,
    ImportFailed,
    InvalidSchema,
    MalformedImport,
    NotFound,
    StorageUnavailable,
)
from medinsight_history.models.base import get_db, get_session_factory
from medinsight_history.schemas.history import (
    HistoryEventCreate,
    HistoryEventRecord,
    ImportMode,
    ImportResult,
    RecordedResponse,
)
from medinsight_history.services.history_service import HistoryService
from medinsight_history.services.live_query import HistoryQuery, LiveQuery, subscribe
from medinsight_history.services.transfer_service import HistoryTransferService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/history", tags=["History"])


@router.get("", response_model=list[HistoryEventRecord])
def list_history(
    module: str | None = None,
    db: Session = Depends(get_db),
):
    """
    Get every history event, newest first.

    An unavailable store returns an empty list so the view
    still renders.
    """
    return HistoryService(db).get_all_history_events(HistoryQuery(module=module))


@router.post("", response_model=RecordedResponse, status_code=202)
def record_history_event(
    request: HistoryEventCreate,
    db: Session = Depends(get_db),
):
    """
    Record a workflow event.

    Best effort: a storage failure is logged and answered with
    an id of null instead of an error.
    """
    event_id = HistoryService(db).add_history_event(request)
    return RecordedResponse(id=event_id)


@router.delete("", status_code=204)
def clear_history(db: Session = Depends(get_db)):
    """Delete every history event. Irreversible."""
    try:
        HistoryService(db).clear_history()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return Response(status_code=204)


@router.get("/export")
def export_history(db: Session = Depends(get_db)):
    """Download the whole ledger as a JSON document."""
    service = HistoryTransferService(db)
    try:
        document = service.export_all()
    except EmptyLedger as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    filename = service.export_filename()
    return JSONResponse(
        content=document,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import", response_model=ImportResult)
async def import_history(
    request: Request,
    mode: ImportMode,
    db: Session = Depends(get_db),
):
    """
    Import a previously exported JSON document.

    The raw body is read here rather than parsed by FastAPI so
    that unparseable files and wrongly shaped files can be told
    apart. REPLACE discards the current ledger, APPEND keeps it.
    """
    body = await request.body()
    service = HistoryTransferService(db)
    try:
        return await run_in_threadpool(service.import_document, body, mode)
    except MalformedImport as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InvalidSchema as e:
        raise HTTPException(
            status_code=422,
            detail={"message": str(e), "errors": jsonable_errors(e.errors)},
        )
    except ImportFailed as e:
        raise HTTPException(status_code=500, detail=str(e))


def stream_session_factory() -> sessionmaker:
    """The process-wide session factory, or 503 if no store can be built."""
    try:
        return get_session_factory()
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.get("/stream")
async def stream_history(
    request: Request,
    module: str | None = None,
    session_factory: sessionmaker = Depends(stream_session_factory),
    feed: ChangeFeed = Depends(get_change_feed),
):
    """
    Follow the ledger as Server-Sent Events.

    The current snapshot is sent first, then a new one after
    every committed change that affects the query.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def deliver(snapshot: list[HistoryEventRecord]) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, snapshot)

    live = await run_in_threadpool(
        subscribe, session_factory, feed, HistoryQuery(module=module), deliver
    )
    heartbeat = get_settings().STREAM_HEARTBEAT_SECONDS
    return StreamingResponse(
        snapshot_events(request, live, queue, heartbeat),
        media_type="text/event-stream",
    )


@router.get("/{event_id}", response_model=HistoryEventRecord)
def get_history_event(event_id: int, db: Session = Depends(get_db)):
    try:
        return HistoryService(db).get_event(event_id)
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.delete("/{event_id}", status_code=204)
def delete_history_event(event_id: int, db: Session = Depends(get_db)):
    """
    Delete one history event.

    Deleting an id that does not exist succeeds and changes nothing.
    """
    try:
        HistoryService(db).delete_history_event(event_id)
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return Response(status_code=204)


# --- Server-Sent Events helpers ---

def format_sse(snapshot: list[HistoryEventRecord]) -> str:
    """Encode one snapshot as an SSE `snapshot` event."""
    data = json.dumps(
        [record.model_dump(mode="json", by_alias=True) for record in snapshot],
        separators=(",", ":"),
    )
    return f"event: snapshot\ndata: {data}\n\n"


async def snapshot_events(
    request: Request,
    live: LiveQuery,
    queue: asyncio.Queue,
    heartbeat: float,
):
    try:
        yield format_sse(live.snapshot)
        while True:
            try:
                snapshot = await asyncio.wait_for(queue.get(), timeout=heartbeat)
            except asyncio.TimeoutError:
                if await request.is_disconnected():
                    break
                yield ": keep-alive\n\n"
                continue
            yield format_sse(snapshot)
    finally:
        live.close()
        logger.debug("History stream closed")


def jsonable_errors(errors: list[dict]) -> list[dict]:
    """Pydantic error dicts with values JSON can carry."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in errors
    ]
