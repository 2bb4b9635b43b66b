# Overview: Tender types and the pluggable authorization gateway used by checkout.

"""
Payment Authorization

WHY: Card processing is an external capability. Checkout only needs a
yes/no (plus a reference) before it writes anything, so the gateway is a
small strategy interface that tests and deployments swap freely.

Cash never goes through a gateway: it is settled at the register against
cash_tendered.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# =============================================================================
# TENDER TYPES (CONSTANTS)
# =============================================================================

TENDER_CASH = "CASH"
TENDER_CARD = "CARD"
TENDER_GIFT_CARD = "GIFT_CARD"

VALID_TENDER_TYPES = [
    TENDER_CASH,
    TENDER_CARD,
    TENDER_GIFT_CARD,
]

PAYMENT_STATUS_COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class PaymentResult:
    approved: bool
    reference: str | None = None
    decline_reason: str | None = None


class PaymentGateway:
    """
    Authorize a non-cash tender for an amount in cents.

    checkout() authorizes at most once per sale and calls void() on an
    approved authorization if the sale is then rolled back.
    """

    def authorize(self, amount_cents: int, method: str, reference: str | None = None) -> PaymentResult:
        raise NotImplementedError

    def void(self, reference: str, amount_cents: int, method: str) -> None:
        raise NotImplementedError


class ApprovingGateway(PaymentGateway):
    """
    Default gateway: approves every authorization.

    Stands in for the card terminal, which confirms the charge before the
    register submits the sale. The caller's reference (terminal approval
    code) is kept; otherwise one is generated.
    """

    def authorize(self, amount_cents: int, method: str, reference: str | None = None) -> PaymentResult:
        ref = reference or f"{method}-{int(time.time() * 1000)}"
        logger.debug("Authorized %s for %d cents (%s)", method, amount_cents, ref)
        return PaymentResult(approved=True, reference=ref)

    def void(self, reference: str, amount_cents: int, method: str) -> None:
        logger.info("Voided %s authorization %s for %d cents", method, reference, amount_cents)


class DecliningGateway(PaymentGateway):
    """Declines everything; used to exercise the decline path."""

    def __init__(self, reason: str = "Card authorization failed"):
        self.reason = reason

    def authorize(self, amount_cents: int, method: str, reference: str | None = None) -> PaymentResult:
        return PaymentResult(approved=False, decline_reason=self.reason)

    def void(self, reference: str, amount_cents: int, method: str) -> None:
        return None
