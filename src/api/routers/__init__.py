"""
API Routers package.

- jobs: job management and manual runs
- scheduler: start/stop/status of the background scheduler
"""

from . import jobs, scheduler

__all__ = ["jobs", "scheduler"]
