"""Monitoring and observability package."""
from .health import HealthCheck
from .logging import setup_logging
from .metrics import metrics

__all__ = ["HealthCheck", "metrics", "setup_logging"]
