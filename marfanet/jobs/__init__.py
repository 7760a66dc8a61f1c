"""
Background Jobs Module

Handles scheduled tasks for:
- Invoice aging (pending -> overdue)
- Statistics cache cleanup
"""

from marfanet.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from marfanet.jobs.overdue_invoices import sweep_overdue_invoices
from marfanet.jobs.cache_jobs import cleanup_expired_cache

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "sweep_overdue_invoices",
    "cleanup_expired_cache",
]
