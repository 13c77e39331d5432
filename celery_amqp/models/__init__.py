from .task import Task, new_task  # noqa: F401
