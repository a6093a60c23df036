"""Celery tasks for Fortunia.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.
"""

from fortunia.tasks.retention_sweep import retention_sweep

__all__ = ["retention_sweep"]
