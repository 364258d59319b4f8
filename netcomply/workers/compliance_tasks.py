"""Celery tasks for compliance checks.

Provides async task processing for:
- Checking one device against its policies
- Checking a batch of devices
"""

from typing import Any, Dict, List, Optional
import logging

from celery import Celery, shared_task

from netcomply.common.config import SandboxConfig
from netcomply.common.settings import get_settings
from netcomply.compliance.context import EvaluationContext
from netcomply.compliance.device import Device
from netcomply.compliance.errors import PersistenceError
from netcomply.compliance.runner import ComplianceRunner
from netcomply.db.repository import ComplianceRepository
from netcomply.db.session import get_session
from netcomply.rules.sandbox import configure_sandboxes

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Celery
celery_app = Celery(
    'netcomply',
    broker=settings.celery_broker,
    backend=settings.celery_backend,
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_routes={
        'netcomply.workers.compliance_tasks.check_device_compliance': {'queue': 'compliance'},
        'netcomply.workers.compliance_tasks.check_devices_compliance': {'queue': 'compliance'},
    },
    task_default_queue='default',
)

configure_sandboxes(SandboxConfig(timeout=settings.sandbox_timeout))


def _run_compliance(
    devices: List[Dict[str, Any]],
    policy_ids: Optional[List[int]],
) -> Dict[str, Any]:
    """Load policies and exemptions, then check the given device payloads."""
    db = get_session()
    try:
        repository = ComplianceRepository(db)
        policies = repository.load_policies(policy_ids)
        exemptions = repository.load_exemptions(int(d["id"]) for d in devices)
    finally:
        db.close()

    targets = [Device.from_dict(payload, exemptions=exemptions) for payload in devices]
    runner = ComplianceRunner(
        max_workers=settings.compliance_max_workers,
        evaluation_timeout=settings.compliance_evaluation_timeout,
    )
    context = EvaluationContext()
    run = runner.run(policies, targets, context)

    report = run.to_dict()
    report["log"] = context.as_text()
    return report


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def check_device_compliance(
    self,
    device: Dict[str, Any],
    policy_ids: Optional[List[int]] = None,
) -> Dict[str, Any]:
    """
    Async task to check one device against compliance policies.

    Args:
        device: Device snapshot (id, name, driver, family, groups, attributes)
        policy_ids: Policies to check, all policies when None

    Returns:
        Serialized compliance run
    """
    logger.info(f"Checking compliance of device {device.get('name')}")
    try:
        return _run_compliance([device], policy_ids)
    except PersistenceError as e:
        logger.error(f"Compliance check of {device.get('name')} failed: {e}")
        raise self.retry(exc=e)


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def check_devices_compliance(
    self,
    devices: List[Dict[str, Any]],
    policy_ids: Optional[List[int]] = None,
) -> Dict[str, Any]:
    """
    Async task to check a batch of devices in a single run.

    Args:
        devices: Device snapshots
        policy_ids: Policies to check, all policies when None

    Returns:
        Serialized compliance run
    """
    logger.info(f"Checking compliance of {len(devices)} device(s)")
    try:
        return _run_compliance(devices, policy_ids)
    except PersistenceError as e:
        logger.error(f"Batch compliance check failed: {e}")
        raise self.retry(exc=e)
