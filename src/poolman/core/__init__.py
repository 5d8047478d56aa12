"""Core helpers shared between the CLI and the watcher."""

from .async_utils import init_semaphore, run_sync, run_sync_limited

__all__ = ["init_semaphore", "run_sync", "run_sync_limited"]
