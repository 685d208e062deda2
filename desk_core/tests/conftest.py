# desk_core/tests/conftest.py

from __future__ import annotations

import uuid
from datetime import datetime, timezone as dt_timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from django.contrib.auth import authenticate, get_user_model
from rest_framework.test import APIClient

from desk_core.context import ExecutionContext
from desk_core.models import Brand, SlaPolicy, Tenant, TenantRole, TicketWorkflow
from desk_core.services.sla_policies import create_policy
from desk_core.services.workflow_definitions import create_workflow

UTC = dt_timezone.utc

WEEKDAYS_9_TO_5 = [
    {"weekday": day, "start": "09:00", "end": "17:00"}
    for day in ("mon", "tue", "wed", "thu", "fri")
]


def _rand(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


def _support_states() -> List[Dict[str, Any]]:
    """
    new -> open -> solved, plus open -> new.
    """
    return [
        {"slug": "new", "name": "New", "is_initial": True},
        {"slug": "open", "name": "Open", "sla_minutes": 240},
        {"slug": "solved", "name": "Solved", "is_terminal": True},
    ]


def _support_transitions() -> List[Dict[str, Any]]:
    return [
        {"from": "new", "to": "open"},
        {"from": "open", "to": "solved", "requires_comment": True},
        {"from": "open", "to": "new"},
    ]


class AuthAPIClient(APIClient):
    """
    Test client that uses force_authenticate for predictable DRF auth and
    carries the tenant / brand scope headers.
    """

    _user = None

    def login(self, username: str, password: str, **kwargs) -> bool:  # type: ignore[override]
        user = authenticate(username=username, password=password)
        if not user:
            return False
        self.force_authenticate(user=user)
        self._user = user
        return True

    def as_user(self, user, *, tenant=None, brand=None) -> "AuthAPIClient":
        self.force_authenticate(user=user)
        self._user = user
        headers = {}
        if tenant is not None:
            headers["HTTP_X_TENANT"] = str(tenant.pk)
        if brand is not None:
            headers["HTTP_X_BRAND"] = str(brand.pk)
        self.credentials(**headers)
        return self


@pytest.fixture
def api_client() -> AuthAPIClient:
    return AuthAPIClient()


# =============================================================
# Tenancy
# =============================================================

@pytest.fixture
def tenant(db) -> Tenant:
    return Tenant.objects.create(slug=_rand("acme"), name="Acme Support")


@pytest.fixture
def other_tenant(db) -> Tenant:
    return Tenant.objects.create(slug=_rand("globex"), name="Globex")


@pytest.fixture
def brand(tenant) -> Brand:
    return Brand.objects.create(tenant=tenant, slug=_rand("brand"), name="Acme Retail")


def _user(username: str):
    User = get_user_model()
    user = User.objects.create_user(username=username, password="pass123")
    return user


@pytest.fixture
def admin_user(tenant):
    user = _user("desk-admin")
    TenantRole.objects.create(user=user, tenant=tenant, role=TenantRole.ROLE_ADMIN)
    return user


@pytest.fixture
def agent_user(tenant):
    user = _user("desk-agent")
    TenantRole.objects.create(user=user, tenant=tenant, role=TenantRole.ROLE_AGENT)
    return user


@pytest.fixture
def viewer_user(tenant):
    user = _user("desk-viewer")
    TenantRole.objects.create(user=user, tenant=tenant, role=TenantRole.ROLE_VIEWER)
    return user


@pytest.fixture
def ctx(tenant, admin_user) -> ExecutionContext:
    return ExecutionContext(tenant_id=tenant.pk, actor=admin_user)


@pytest.fixture
def brand_ctx(tenant, brand, admin_user) -> ExecutionContext:
    return ExecutionContext(tenant_id=tenant.pk, brand_id=brand.pk, actor=admin_user)


# =============================================================
# Builders
# =============================================================

@pytest.fixture
def workflow_factory(db) -> Callable[..., TicketWorkflow]:
    def _factory(
        context: ExecutionContext,
        *,
        slug: Optional[str] = None,
        states: Optional[List[Dict[str, Any]]] = None,
        transitions: Optional[List[Dict[str, Any]]] = None,
        is_default: bool = False,
        brand_id: Optional[int] = None,
    ) -> TicketWorkflow:
        outcome = create_workflow(
            context=context,
            slug=slug or _rand("support"),
            name="Support",
            states=_support_states() if states is None else states,
            transitions=_support_transitions() if transitions is None else transitions,
            is_default=is_default,
            brand_id=brand_id,
        )
        return outcome.workflow

    return _factory


@pytest.fixture
def support_states() -> List[Dict[str, Any]]:
    return _support_states()


@pytest.fixture
def support_transitions() -> List[Dict[str, Any]]:
    return _support_transitions()


@pytest.fixture
def support_workflow(ctx, workflow_factory) -> TicketWorkflow:
    return workflow_factory(ctx, slug="support", is_default=True)


@pytest.fixture
def policy_factory(db) -> Callable[..., SlaPolicy]:
    def _factory(context: ExecutionContext, **data: Any) -> SlaPolicy:
        payload = {
            "name": "Standard",
            "timezone": "UTC",
            "enforce_business_hours": True,
            "first_response_minutes": 60,
            "resolution_minutes": 480,
            "business_hours": WEEKDAYS_9_TO_5,
            "holidays": [],
            "targets": [],
        }
        payload.update(data)
        return create_policy(context=context, data=payload)

    return _factory
