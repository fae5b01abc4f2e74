from __future__ import annotations

import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from scribe.api.deps import get_history_backend
from scribe.api.models import ClearResponse, HistoryContentResponse, HistorySaveRequest, HistorySaveResponse
from scribe.services.history_client import HistoryBackend
from scribe.storage.history_store import HistoryIndex

router = APIRouter()
logger = logging.getLogger("scribe.api.routes.history")


@router.post("/save", response_model=HistorySaveResponse)
async def save_history(payload: HistorySaveRequest, history: HistoryBackend = Depends(get_history_backend)) -> HistorySaveResponse:  # noqa: B008
  """Persist one generated document or prompt record."""
  try:
    entry = await history.save(payload.content, title=payload.title, query=payload.query, entry_type=payload.type)
  except ValueError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
  return HistorySaveResponse(entry=entry)


@router.get("/index", response_model=HistoryIndex)
async def history_index(history: HistoryBackend = Depends(get_history_backend)) -> HistoryIndex:  # noqa: B008
  """All entries newest first, grouped into sessions."""
  return await history.index()


@router.get("/load/{entry_id}", response_model=HistoryContentResponse)
async def load_history(entry_id: str, history: HistoryBackend = Depends(get_history_backend)) -> HistoryContentResponse:  # noqa: B008
  return HistoryContentResponse(content=await history.load(entry_id))


@router.get("/download/{entry_id}")
async def download_history(entry_id: str, history: HistoryBackend = Depends(get_history_backend)) -> JSONResponse:  # noqa: B008
  """Return the stored content as a JSON attachment."""
  content = await history.load(entry_id)
  disposition = f"attachment; filename*=UTF-8''{quote(entry_id)}.json"
  return JSONResponse(content=content, headers={"Content-Disposition": disposition})


@router.delete("/clear", response_model=ClearResponse)
async def clear_history(history: HistoryBackend = Depends(get_history_backend)) -> ClearResponse:  # noqa: B008
  removed = await history.clear()
  logger.info("History cleared: %d entries removed", removed)
  return ClearResponse(removed=removed)
