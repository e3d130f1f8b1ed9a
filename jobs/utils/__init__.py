"""Task utilities."""
from jobs.utils.database import task_custody_service

__all__ = [
    "task_custody_service",
]
