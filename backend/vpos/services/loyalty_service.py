# Overview: Loyalty tiers, point accrual and redemption against the customer ledger.

"""
Loyalty Ledger

WHY: Points and spend aggregates are money-like. They must change together
with the sale that caused them and must never be lost to a concurrent
update of the same customer.

DESIGN:
- Tier and accrual math are pure functions over integer cents.
- Every mutation of Customer counters is ONE SQL UPDATE with arithmetic
  expressions (loyalty_points = loyalty_points + n). Nothing is read,
  modified in Python and written back, so concurrent checkouts for the
  same customer serialize on the row instead of overwriting each other.
- Redemption is a conditional UPDATE (... WHERE loyalty_points >= n). A
  zero-row result means insufficient points and the balance is untouched.
- Tier is recomputed from the post-purchase total inside the same UPDATE.
- Each mutation appends a LoyaltyLedgerEntry. Nothing here commits except
  redeem(), which is its own unit of work.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import case, func, select, update
from sqlalchemy.orm import Session

from vpos.errors import CustomerNotFound, InsufficientPoints, ValidationError
from vpos.models import Customer, LoyaltyLedgerEntry
from vpos.time_utils import utcnow
from .audit_service import ACTION_LOYALTY_POINTS_REDEEMED, AuditSink, build_entry


# =============================================================================
# TIERS (CONSTANTS)
# =============================================================================

TIER_BRONZE = "BRONZE"
TIER_SILVER = "SILVER"
TIER_GOLD = "GOLD"
TIER_PLATINUM = "PLATINUM"

# (tier, minimum lifetime spend in cents), ascending
TIER_THRESHOLDS = [
    (TIER_BRONZE, 0),
    (TIER_SILVER, 50_000),
    (TIER_GOLD, 200_000),
    (TIER_PLATINUM, 500_000),
]

ENTRY_EARN = "EARN"
ENTRY_REDEEM = "REDEEM"


# =============================================================================
# PURE CALCULATIONS
# =============================================================================

def tier_for_total_spent(total_spent_cents: int) -> str:
    tier = TIER_BRONZE
    for name, minimum in TIER_THRESHOLDS:
        if total_spent_cents >= minimum:
            tier = name
    return tier


def points_for_amount(amount_cents: int) -> int:
    """One point per whole currency unit spent."""
    if amount_cents <= 0:
        return 0
    return amount_cents // 100


@dataclass(frozen=True)
class Accrual:
    points_earned: int
    new_total_spent_cents: int
    new_tier: str


def accrue_on_purchase(customer: Customer, amount_spent_cents: int) -> Accrual:
    """What a purchase would do to the customer's aggregates. Pure."""
    new_total = (customer.total_spent_cents or 0) + amount_spent_cents
    return Accrual(
        points_earned=points_for_amount(amount_spent_cents),
        new_total_spent_cents=new_total,
        new_tier=tier_for_total_spent(new_total),
    )


def loyalty_summary(customer: Customer) -> dict:
    total = customer.total_spent_cents or 0
    current = tier_for_total_spent(total)
    next_tier = None
    amount_to_next = 0
    for name, minimum in TIER_THRESHOLDS:
        if minimum > total:
            next_tier = name
            amount_to_next = minimum - total
            break
    return {
        "customer_id": customer.id,
        "loyalty_points": customer.loyalty_points,
        "current_tier": current,
        "next_tier": next_tier,
        "amount_to_next_tier_cents": amount_to_next,
        "total_spent_cents": total,
    }


def _tier_expression(total_expr):
    """SQL CASE mirroring tier_for_total_spent over a spend expression."""
    whens = [
        (total_expr >= minimum, name)
        for name, minimum in reversed(TIER_THRESHOLDS)
        if minimum > 0
    ]
    return case(*whens, else_=TIER_BRONZE)


# =============================================================================
# MUTATIONS
# =============================================================================

@dataclass(frozen=True)
class EarnPoints:
    amount: int


@dataclass(frozen=True)
class RedeemPoints:
    amount: int


def _current_balance(session: Session, customer_id: int) -> int:
    return session.execute(
        select(Customer.loyalty_points).where(Customer.id == customer_id)
    ).scalar_one()


def _append_ledger(
    session: Session,
    customer_id: int,
    entry_type: str,
    points: int,
    *,
    reason: str | None,
    transaction_id: int | None,
    actor_id: int | None,
) -> LoyaltyLedgerEntry:
    entry = LoyaltyLedgerEntry(
        customer_id=customer_id,
        entry_type=entry_type,
        points=points,
        balance_after=_current_balance(session, customer_id),
        transaction_id=transaction_id,
        reason=reason,
        actor_id=actor_id,
        occurred_at=utcnow(),
    )
    session.add(entry)
    return entry


def apply_mutation(
    session: Session,
    customer_id: int,
    mutation: EarnPoints | RedeemPoints,
    reason: str | None = None,
    *,
    transaction_id: int | None = None,
    actor_id: int | None = None,
) -> LoyaltyLedgerEntry:
    """
    Apply one point mutation as a single UPDATE and append its ledger entry.

    Runs inside the caller's unit of work; does not commit.

    Raises:
        ValidationError: If the amount is not positive
        CustomerNotFound: If the customer does not exist
        InsufficientPoints: If a redemption exceeds the balance
    """
    if mutation.amount <= 0:
        raise ValidationError("Points must be positive", details={"points": mutation.amount})

    if isinstance(mutation, EarnPoints):
        stmt = (
            update(Customer)
            .where(Customer.id == customer_id)
            .values(
                loyalty_points=Customer.loyalty_points + mutation.amount,
                points_lifetime_earned=Customer.points_lifetime_earned + mutation.amount,
                version_id=Customer.version_id + 1,
            )
        )
        entry_type, signed = ENTRY_EARN, mutation.amount
    elif isinstance(mutation, RedeemPoints):
        stmt = (
            update(Customer)
            .where(Customer.id == customer_id, Customer.loyalty_points >= mutation.amount)
            .values(
                loyalty_points=Customer.loyalty_points - mutation.amount,
                points_lifetime_redeemed=Customer.points_lifetime_redeemed + mutation.amount,
                version_id=Customer.version_id + 1,
            )
        )
        entry_type, signed = ENTRY_REDEEM, -mutation.amount
    else:
        raise ValidationError(f"Unsupported loyalty mutation: {type(mutation).__name__}")

    result = session.execute(stmt, execution_options={"synchronize_session": "fetch"})
    if result.rowcount == 0:
        balance = session.execute(
            select(Customer.loyalty_points).where(Customer.id == customer_id)
        ).scalar_one_or_none()
        if balance is None:
            raise CustomerNotFound(f"Customer {customer_id} not found")
        raise InsufficientPoints(
            "Insufficient loyalty points",
            details={"requested": mutation.amount, "available": balance},
        )

    return _append_ledger(
        session,
        customer_id,
        entry_type,
        signed,
        reason=reason,
        transaction_id=transaction_id,
        actor_id=actor_id,
    )


def record_purchase(
    session: Session,
    customer_id: int,
    amount_spent_cents: int,
    *,
    transaction_id: int | None = None,
    actor_id: int | None = None,
    occurred_at=None,
) -> int:
    """
    Apply a committed-to-be sale to the customer's aggregates.

    One UPDATE increments spend, purchase count and points, stamps the
    purchase dates and sets the tier from the post-purchase total. Runs in
    the caller's unit of work. Returns the points earned.

    Raises:
        CustomerNotFound: If the customer does not exist
    """
    points = points_for_amount(amount_spent_cents)
    now = occurred_at or utcnow()
    new_total = Customer.total_spent_cents + amount_spent_cents

    result = session.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(
            total_spent_cents=new_total,
            transaction_count=Customer.transaction_count + 1,
            loyalty_points=Customer.loyalty_points + points,
            points_lifetime_earned=Customer.points_lifetime_earned + points,
            loyalty_tier=_tier_expression(new_total),
            first_purchase_at=func.coalesce(Customer.first_purchase_at, now),
            last_purchase_at=now,
            version_id=Customer.version_id + 1,
        ),
        execution_options={"synchronize_session": "fetch"},
    )
    if result.rowcount == 0:
        raise CustomerNotFound(f"Customer {customer_id} not found")

    if points > 0:
        _append_ledger(
            session,
            customer_id,
            ENTRY_EARN,
            points,
            reason="Purchase",
            transaction_id=transaction_id,
            actor_id=actor_id,
        )
    return points


def redeem(
    session: Session,
    customer_id: int,
    points: int,
    reason: str,
    *,
    actor_id: int | None = None,
    audit_sink: AuditSink | None = None,
) -> Customer:
    """
    Stand-alone redemption (outside a checkout). Commits.

    Raises:
        ValidationError: If points is not positive or reason is empty
        CustomerNotFound: If the customer does not exist
        InsufficientPoints: If points exceed the balance (balance unchanged)
    """
    if not reason or not reason.strip():
        raise ValidationError("Redemption reason required")

    try:
        entry = apply_mutation(
            session,
            customer_id,
            RedeemPoints(points),
            reason.strip(),
            actor_id=actor_id,
        )
        session.commit()
    except Exception:
        session.rollback()
        raise

    customer = session.get(Customer, customer_id)

    if audit_sink is not None:
        audit_sink.record(build_entry(
            ACTION_LOYALTY_POINTS_REDEEMED,
            "customer",
            entity_id=customer_id,
            actor_id=actor_id,
            details={"points": points, "balance_after": entry.balance_after, "reason": entry.reason},
        ))
    return customer


def ledger_balance(session: Session, customer_id: int) -> int:
    """Sum of signed ledger points; equals Customer.loyalty_points."""
    return session.execute(
        select(func.coalesce(func.sum(LoyaltyLedgerEntry.points), 0))
        .where(LoyaltyLedgerEntry.customer_id == customer_id)
    ).scalar_one()
