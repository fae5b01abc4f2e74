import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from scribe.config import get_settings
from scribe.core.logging import initialize_logging
from scribe.services.content import build_container


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and the service container for the lifetime of the server."""
  settings = get_settings()
  logger = logging.getLogger("scribe.core.lifespan")
  log_path = initialize_logging(settings)
  logger.info("Startup complete - logging to %s", log_path)

  owns_container = getattr(app.state, "container", None) is None
  if owns_container:
    app.state.container = build_container(settings)
  container = app.state.container
  logger.info("Model provider: %s", container.client.provider_name)

  try:
    yield
  finally:
    if owns_container:
      await container.aclose()
      app.state.container = None
    logger.info("Shutdown complete")
