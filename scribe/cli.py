"""Command line entry point: one-shot generation, task inspection and the API server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import get_args

from pydantic import ValidationError

from scribe.ai.pipeline.contracts import Audience, GenerationConfig, Style
from scribe.config import Settings, get_settings
from scribe.core.logging import initialize_logging
from scribe.jobs.models import TaskNotFoundError, TaskStatus
from scribe.services.content import build_container

logger = logging.getLogger("scribe.cli")


def _build_parser() -> argparse.ArgumentParser:
  parser = argparse.ArgumentParser(prog="scribe", description="Generate long-form articles with a glossary of key terms.")
  commands = parser.add_subparsers(dest="command", required=True)

  generate = commands.add_parser("generate", help="Run the full workflow for a topic.")
  generate.add_argument("topic", help="Topic or prompt to write about.")
  generate.add_argument("--word-count", type=int, default=None, help="Desired article length in words (at least 100).")
  generate.add_argument("--no-keywords", action="store_true", help="Skip term extraction and the glossary.")
  generate.add_argument("--validate", action="store_true", help="Run the optional content review stage.")
  generate.add_argument("--style", choices=get_args(Style), default="formal")
  generate.add_argument("--audience", choices=get_args(Audience), default="beginner")
  generate.add_argument("--model", default=None, help="Override the configured model name.")
  generate.add_argument("--output", type=Path, default=None, help="Write the markdown to this file instead of stdout.")

  tasks = commands.add_parser("tasks", help="Inspect stored tasks.")
  task_commands = tasks.add_subparsers(dest="task_command", required=True)
  task_list = task_commands.add_parser("list", help="List tasks, newest first.")
  task_list.add_argument("--status", choices=get_args(TaskStatus), default=None)
  task_show = task_commands.add_parser("show", help="Show one task as JSON.")
  task_show.add_argument("task_id")

  serve = commands.add_parser("serve", help="Run the HTTP API.")
  serve.add_argument("--host", default="127.0.0.1")
  serve.add_argument("--port", type=int, default=8000)
  return parser


async def _generate(settings: Settings, args: argparse.Namespace) -> int:
  try:
    config = GenerationConfig(
      topic=args.topic,
      word_count=args.word_count,
      enable_keyword_extraction=not args.no_keywords,
      enable_validation=args.validate,
      style=args.style,
      target_audience=args.audience,
      model=args.model,
    )
  except ValidationError as exc:
    print(f"ERROR: invalid generation settings: {exc}", file=sys.stderr)
    return 2

  container = build_container(settings)
  try:
    content = await container.content.generate(config)
  finally:
    await container.aclose()

  document = f"# {content.title}\n\n{content.main_content}"
  if args.output is not None:
    args.output.write_text(document, encoding="utf-8")
    print(f"Wrote {len(document)} characters to {args.output}")
  else:
    print(document)
  if container.client.is_mock:
    print("WARN: no model credential configured; the document contains mock responses.", file=sys.stderr)
  return 0


def _tasks(settings: Settings, args: argparse.Namespace) -> int:
  manager = build_container(settings).tasks
  if args.task_command == "list":
    tasks = manager.get_tasks_by_status(args.status) if args.status else manager.list_tasks()
    for task in tasks:
      print(f"{task.id}  {task.status:<9}  {task.created_at.isoformat()}  {task.topic[:60]}")
    return 0

  try:
    task = manager.get_task(args.task_id)
  except TaskNotFoundError as exc:
    print(f"ERROR: {exc}", file=sys.stderr)
    return 1
  print(task.model_dump_json(indent=2))
  return 0


def _serve(args: argparse.Namespace) -> int:
  import uvicorn

  uvicorn.run("scribe.main:app", host=args.host, port=args.port)
  return 0


def main(argv: list[str] | None = None) -> int:
  args = _build_parser().parse_args(argv)
  if args.command == "serve":
    return _serve(args)

  settings = get_settings()
  initialize_logging(settings)
  if args.command == "generate":
    return asyncio.run(_generate(settings, args))
  return _tasks(settings, args)


if __name__ == "__main__":
  raise SystemExit(main())
