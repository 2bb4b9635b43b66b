# Overview: Customer registration and lookup.

from __future__ import annotations

from datetime import date

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vpos.errors import CustomerNotFound, ValidationError
from vpos.models import Customer
from .audit_service import ACTION_CUSTOMER_CREATED, AuditSink, build_entry
from .loyalty_service import TIER_BRONZE


def register_customer(
    session: Session,
    *,
    first_name: str,
    last_name: str,
    email: str | None = None,
    phone: str | None = None,
    date_of_birth: date | None = None,
    is_tax_exempt: bool = False,
    tax_exemption_number: str | None = None,
    actor_id: int | None = None,
    audit_sink: AuditSink | None = None,
) -> Customer:
    """
    Create a customer with an empty loyalty ledger.

    Loyalty counters always start at zero; points only ever arrive through
    the ledger so the balance equation holds from the first row.

    Raises:
        ValidationError: On missing names, a tax exemption without a
            certificate number, or a duplicate email
    """
    if len((first_name or "").strip()) < 2:
        raise ValidationError("First name must be at least 2 characters")
    if len((last_name or "").strip()) < 2:
        raise ValidationError("Last name must be at least 2 characters")
    if is_tax_exempt and not tax_exemption_number:
        raise ValidationError("tax_exemption_number required for tax-exempt customers")

    normalized_email = email.strip().lower() if email else None

    customer = Customer(
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        email=normalized_email,
        phone=phone,
        date_of_birth=date_of_birth,
        is_tax_exempt=is_tax_exempt,
        tax_exemption_number=tax_exemption_number,
        loyalty_points=0,
        points_lifetime_earned=0,
        points_lifetime_redeemed=0,
        loyalty_tier=TIER_BRONZE,
        total_spent_cents=0,
        transaction_count=0,
    )
    session.add(customer)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError("A customer with this email already exists", details={"email": normalized_email})

    if audit_sink is not None:
        audit_sink.record(build_entry(
            ACTION_CUSTOMER_CREATED,
            "customer",
            entity_id=customer.id,
            actor_id=actor_id,
            details={"is_tax_exempt": is_tax_exempt},
        ))
    return customer


def get_customer(session: Session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if not customer:
        raise CustomerNotFound(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer
