"""Background job modules for RQ workers and schedulers."""

from .maintenance import run_taste_decay_job

__all__ = ["run_taste_decay_job"]
