"""Shared helpers: seeding, task dispatch and cancellation."""

from commstats.utils.parallel import check_cancelled, run_tasks, spawn_generators

__all__ = ["check_cancelled", "run_tasks", "spawn_generators"]
