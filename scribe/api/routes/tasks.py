from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status

from scribe.ai.pipeline.contracts import GenerationConfig
from scribe.api.deps import get_content_service, get_task_manager
from scribe.api.models import ClearResponse
from scribe.jobs.manager import TaskManager
from scribe.jobs.models import Task, TaskStatus
from scribe.services.content import ContentGenerationService
from scribe.telemetry.prompt_audit import PromptRecord

router = APIRouter()
logger = logging.getLogger("scribe.api.routes.tasks")


async def _run_in_background(service: ContentGenerationService, task_id: str) -> None:
  try:
    await service.run_task(task_id)
  except Exception:  # noqa: BLE001
    # The runner has already marked the task failed; there is no caller to re-raise to.
    logger.error("Background run of task %s failed", task_id, exc_info=True)


@router.post("", response_model=Task, status_code=status.HTTP_202_ACCEPTED)
async def create_task(  # noqa: B008
  config: GenerationConfig,
  background_tasks: BackgroundTasks,
  service: ContentGenerationService = Depends(get_content_service),  # noqa: B008
) -> Task:
  """Create a generation task and run it in the background."""
  task = service.create_task(config)
  background_tasks.add_task(_run_in_background, service, task.id)
  return task


@router.get("", response_model=list[Task])
async def list_tasks(status_filter: TaskStatus | None = Query(default=None, alias="status"), manager: TaskManager = Depends(get_task_manager)) -> list[Task]:  # noqa: B008
  """List tasks newest first, optionally filtered by status."""
  if status_filter is not None:
    return manager.get_tasks_by_status(status_filter)
  return manager.list_tasks()


@router.delete("", response_model=ClearResponse)
async def clear_tasks(manager: TaskManager = Depends(get_task_manager)) -> ClearResponse:  # noqa: B008
  return ClearResponse(removed=manager.clear_all())


@router.get("/{task_id}", response_model=Task)
async def get_task(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> Task:  # noqa: B008
  return manager.get_task(task_id)


@router.get("/{task_id}/prompts", response_model=list[PromptRecord])
async def get_task_prompts(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> list[PromptRecord]:  # noqa: B008
  """Prompt audit trail of one task."""
  return manager.get_task_prompt_history(task_id)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: str, manager: TaskManager = Depends(get_task_manager)) -> Response:  # noqa: B008
  manager.delete_task(task_id)
  return Response(status_code=status.HTTP_204_NO_CONTENT)
