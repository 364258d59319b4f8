"""Celery workers for netcomply."""

from netcomply.workers.compliance_tasks import (
    celery_app,
    check_device_compliance,
    check_devices_compliance,
)

__all__ = [
    "celery_app",
    "check_device_compliance",
    "check_devices_compliance",
]
