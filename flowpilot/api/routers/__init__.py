"""
API Routers package.

- jobs: job creation, queries and per-job commands
- scheduler: dispatcher control plane
"""

from . import jobs, scheduler

__all__ = ["jobs", "scheduler"]
