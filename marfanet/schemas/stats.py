"""Pydantic schemas for dashboard statistics."""
from datetime import datetime
from typing import Any, Dict
from pydantic import BaseModel


class MetricResponse(BaseModel):
    """One memoized aggregate."""
    metric_key: str
    value: Any
    calculated_at: datetime
    valid_until: datetime


class DashboardResponse(BaseModel):
    """All dashboard aggregates keyed by metric name."""
    metrics: Dict[str, MetricResponse]
