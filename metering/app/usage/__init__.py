"""Usage counter service for metered features."""

from .service import UsageCounterService

__all__ = ["UsageCounterService"]
