from . import history, tasks

__all__ = ["history", "tasks"]
