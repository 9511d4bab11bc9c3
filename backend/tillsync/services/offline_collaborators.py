# Overview: Collaborator contracts for the offline engine and their default bindings.

"""
The offline engine never imports the authoritative write paths directly.
It talks to them through the small contracts below, bundled in
OfflineCollaborators and handed to the engine's constructor.

The default bindings are the service modules themselves: each module
exposes module-level functions with exactly these signatures, so it
satisfies the protocol structurally. Tests swap in spies or fakes for any
single collaborator.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Protocol

from . import (
    approval_service,
    audit_service,
    inventory_service,
    permission_service,
    purchase_service,
    sales_service,
    settings_service,
    subscription_service,
)


class SubscriptionLookup(Protocol):
    def get_subscription(self, business_id: int) -> subscription_service.SubscriptionSnapshot | None: ...

    def assert_limit(self, business_id: int, key: str, amount: int = 1) -> None: ...


class PermissionResolver(Protocol):
    def resolve_user_access(self, user_id: int, business_id: int) -> permission_service.UserAccess: ...


class SettingsLookup(Protocol):
    def get_settings(self, business_id: int) -> settings_service.BusinessSettingsSnapshot: ...


class SaleWriter(Protocol):
    def create_draft(
        self,
        business_id: int,
        user_id: int,
        permissions: list[str],
        data: dict,
        *,
        offline_device_id: str | None = None,
    ) -> Any: ...

    def complete_sale(
        self,
        business_id: int,
        sale_id: int,
        user_id: int,
        *,
        payments: list[dict] | None = None,
        permissions: list[str] | None = None,
        credit_due_date: date | None = None,
        idempotency_key: str | None = None,
    ) -> Any: ...


class PurchaseWriter(Protocol):
    def create_draft_purchase(self, business_id: int, user_id: int, data: dict) -> Any: ...


class StockWriter(Protocol):
    def create_adjustment(self, business_id: int, user_id: int, data: dict, *, approval_id: int | None = None) -> Any: ...


class ApprovalLookup(Protocol):
    def get_approval(self, business_id: int, approval_id: int) -> Any: ...


class AuditSink(Protocol):
    def log_event(self, record: audit_service.AuditRecord) -> Any: ...


@dataclass(frozen=True)
class OfflineCollaborators:
    subscriptions: SubscriptionLookup
    permissions: PermissionResolver
    settings: SettingsLookup
    sales: SaleWriter
    purchases: PurchaseWriter
    stock: StockWriter
    approvals: ApprovalLookup
    audit: AuditSink

    @classmethod
    def default(cls) -> "OfflineCollaborators":
        return cls(
            subscriptions=subscription_service,
            permissions=permission_service,
            settings=settings_service,
            sales=sales_service,
            purchases=purchase_service,
            stock=inventory_service,
            approvals=approval_service,
            audit=audit_service,
        )

    def with_overrides(self, **overrides) -> "OfflineCollaborators":
        return replace(self, **overrides)
