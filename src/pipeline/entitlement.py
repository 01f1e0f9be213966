"""Billing entitlement gate.

A denial is an expected outcome, not an error: callers check the flags and
refuse with a distinct status, logging at INFO.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.orm import Session

from src.db.models import Shop

# Configure module logger
logger = logging.getLogger(__name__)

ACTIVE_BILLING_STATUS = "active"


@dataclass(frozen=True)
class Entitlement:
    can_run_jobs: bool
    can_render_buttons: bool
    status: str

    @classmethod
    def denied(cls, status: str) -> "Entitlement":
        return cls(can_run_jobs=False, can_render_buttons=False, status=status)

    @classmethod
    def granted(cls, status: str) -> "Entitlement":
        return cls(can_run_jobs=True, can_render_buttons=True, status=status)


class EntitlementProvider(Protocol):
    def get_entitlement(self, session: Session, shop_id: int) -> Entitlement:
        ...


class BillingEntitlementProvider:
    """Derives entitlements from the shop's stored billing status.

    ``active`` grants everything; any other status denies everything. With
    ``bypass`` set (development stores) every shop is granted. Lookup
    failures deny.
    """

    def __init__(self, bypass: bool = False):
        self.bypass = bypass

    def get_entitlement(self, session: Session, shop_id: int) -> Entitlement:
        if self.bypass:
            return Entitlement.granted("development")

        try:
            shop = session.get(Shop, shop_id)
        except Exception as e:
            logger.error(
                "Entitlement lookup failed",
                extra={"shop_id": shop_id, "error": str(e)},
            )
            return Entitlement.denied("error")

        if shop is None:
            return Entitlement.denied("none")
        if shop.billing_status == ACTIVE_BILLING_STATUS:
            return Entitlement.granted(shop.billing_status)
        return Entitlement.denied(shop.billing_status)
