"""Shared FastAPI dependencies resolving services from the application container."""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from scribe.jobs.manager import TaskManager
from scribe.services.content import ContentGenerationService, ServiceContainer
from scribe.services.history_client import HistoryBackend


def get_container(request: Request) -> ServiceContainer:
  container = getattr(request.app.state, "container", None)
  if container is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up")
  return container


def get_task_manager(container: ServiceContainer = Depends(get_container)) -> TaskManager:  # noqa: B008
  return container.tasks


def get_content_service(container: ServiceContainer = Depends(get_container)) -> ContentGenerationService:  # noqa: B008
  return container.content


def get_history_backend(container: ServiceContainer = Depends(get_container)) -> HistoryBackend:  # noqa: B008
  return container.history
