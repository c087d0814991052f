"""Pydantic schemas for tracker-sync domain models."""

from tracker_sync.models.rates import BatchRateUpdateResult, RateChange

__all__ = ["BatchRateUpdateResult", "RateChange"]
