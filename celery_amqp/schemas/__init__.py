from .task import TIME_FORMAT, TaskMessage, format_timestamp, parse_timestamp

__all__ = [
    "TIME_FORMAT",
    "TaskMessage",
    "format_timestamp",
    "parse_timestamp",
]
