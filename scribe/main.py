from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from scribe import __version__
from scribe.api.deps import get_container
from scribe.api.models import HealthResponse
from scribe.api.routes import history, tasks
from scribe.config import Settings, get_settings
from scribe.core.exceptions import register_exception_handlers
from scribe.core.lifespan import lifespan
from scribe.core.middleware import RequestLoggingMiddleware
from scribe.services.content import ServiceContainer
from scribe.services.history_client import HISTORY_API_PREFIX


def create_app(settings: Settings | None = None, *, container: ServiceContainer | None = None) -> FastAPI:
  """Build the API application; a prebuilt container skips construction at startup."""
  settings = settings or get_settings()
  application = FastAPI(title="Scribe", version=__version__, lifespan=lifespan)
  application.state.container = container

  application.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization"])
  application.add_middleware(RequestLoggingMiddleware)
  register_exception_handlers(application)

  @application.get("/health", response_model=HealthResponse, include_in_schema=False)
  async def health_check(request: Request) -> HealthResponse:
    """Report liveness, the active model provider and where history is kept."""
    active = get_container(request)
    history_location = active.settings.history_base_url or str(active.history_store.root if active.history_store else active.settings.history_dir)
    return HealthResponse(status="ok", version=__version__, provider=active.client.provider_name, history=history_location)

  application.include_router(tasks.router, prefix="/v1/tasks", tags=["tasks"])
  application.include_router(history.router, prefix=HISTORY_API_PREFIX, tags=["history"])
  return application


app = create_app()
