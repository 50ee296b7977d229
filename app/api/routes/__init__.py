from . import admin, billing, jobs, tasks

__all__ = ["admin", "billing", "jobs", "tasks"]
