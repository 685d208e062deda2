# desk_core/tasks.py
from __future__ import annotations

from celery import shared_task

from desk_core.sla.monitor import check_sla_breaches


@shared_task
def scan_sla_breaches(tenant_id: int | None = None) -> int:
    return check_sla_breaches(tenant_id=tenant_id)
