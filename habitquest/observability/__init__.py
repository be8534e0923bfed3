"""
Observability module for habitquest.

This module provides:
- Metrics collection with Prometheus
"""

__all__ = ["metrics"]
