# Overview: Checkout orchestration; turns a cart into one committed transaction.

"""
Checkout Orchestrator

WHY: A sale changes inventory, the transaction log and the customer's
loyalty aggregates. These must change together or not at all, and a
restricted product must never leave the store without a valid age check.

FLOW (one unit of work):
    validate request (no I/O)
    -> load store, products (locked), check active + stock
    -> age verification gate (restricted lines only)
    -> load customer (locked), compute tax
    -> settle payment (cash tendered / gateway authorization)
    -> conditional stock decrement per product
    -> insert Transaction + LineItems
    -> consume verification, redeem points, accrue loyalty
    -> commit
    -> audit (after commit, never blocks or reverses the sale)

CONCURRENCY:
- On SQLite the unit of work opens with BEGIN IMMEDIATE; elsewhere product
  and customer rows are read FOR UPDATE.
- The decrement is always UPDATE ... SET on_hand = on_hand - q
  WHERE on_hand >= q. A zero-row result raises ConcurrentStockConflict,
  the unit of work rolls back and the whole checkout is retried once with
  fresh reads. A second conflict surfaces InsufficientStock.
- A card is authorized at most once per checkout() call. A retry reuses
  the approval; a checkout that ends without committing voids it.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from dataclasses import dataclass, field

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from vpos.errors import (
    AgeVerificationFailed,
    AgeVerificationRequired,
    ConcurrentStockConflict,
    CustomerNotFound,
    EmptyCart,
    InsufficientCash,
    InsufficientStock,
    InvalidQuantity,
    PaymentDeclined,
    PersistenceFailure,
    PosError,
    ProductInactive,
    ProductNotFound,
    StoreNotFound,
    TransactionNotFound,
    ValidationError,
)
from vpos.models import AgeVerificationRecord, Customer, LineItem, Product, Store, Transaction
from vpos.money import cents_to_decimal, decimal_to_cents
from vpos.time_utils import utcnow
from . import loyalty_service
from .age_verification_service import resolve_for_checkout
from .audit_service import (
    ACTION_AGE_VERIFICATION_CONSUMED,
    ACTION_AGE_VERIFICATION_FAILED,
    ACTION_CHECKOUT_REJECTED,
    ACTION_PAYMENT_FAILED,
    ACTION_TRANSACTION_CREATED,
    SEVERITY_HIGH,
    AuditEntry,
    AuditSink,
    build_entry,
)
from .concurrency import UnitOfWork, lock_for_update
from .payment_service import (
    PAYMENT_STATUS_COMPLETED,
    TENDER_CASH,
    VALID_TENDER_TYPES,
    ApprovingGateway,
    PaymentGateway,
    PaymentResult,
)
from .tax_service import TaxLine, compute_tax

logger = logging.getLogger(__name__)


TRANSACTION_TYPE_SALE = "SALE"

RECEIPT_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase


# =============================================================================
# REQUEST / CONFIG
# =============================================================================

@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class CheckoutRequest:
    store_id: int
    lines: tuple[CartLine, ...]
    payment_method: str
    customer_id: int | None = None
    cash_tendered_cents: int | None = None
    age_verification_completed: bool = False
    age_verification_id: str | None = None
    employee_id: int | None = None
    points_to_redeem: int = 0
    payment_reference: str | None = None


@dataclass(frozen=True)
class CheckoutConfig:
    immediate_transactions: bool = True
    verification_ttl_minutes: int = 30
    default_jurisdiction: str | None = None
    conflict_retries: int = 1
    receipt_attempts: int = 5

    @classmethod
    def from_app_config(cls, config) -> "CheckoutConfig":
        return cls(
            immediate_transactions=bool(config.get("SQLITE_IMMEDIATE_TRANSACTIONS", True)),
            verification_ttl_minutes=int(config.get("AGE_VERIFICATION_TTL_MINUTES", 30)),
            default_jurisdiction=config.get("DEFAULT_TAX_JURISDICTION") or None,
        )


@dataclass
class _CheckoutOutcome:
    transaction: Transaction
    verification: AgeVerificationRecord | None = None
    audit_entries: list[AuditEntry] = field(default_factory=list)


@dataclass
class _PaymentState:
    """Card authorization held across retries of one checkout."""
    method: str | None = None
    amount_cents: int = 0
    result: PaymentResult | None = None
    settled: bool = False


# =============================================================================
# VALIDATION (no I/O)
# =============================================================================

def _validate_request(request: CheckoutRequest) -> None:
    if not request.lines:
        raise EmptyCart("Cart is empty")

    for index, line in enumerate(request.lines):
        qty = line.quantity
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise InvalidQuantity(
                "Quantity must be a positive integer",
                details={"line_index": index, "product_id": line.product_id, "quantity": qty},
            )

    if request.payment_method not in VALID_TENDER_TYPES:
        raise ValidationError(
            f"Invalid payment method: {request.payment_method}. Must be one of {VALID_TENDER_TYPES}"
        )

    if request.payment_method == TENDER_CASH:
        if request.cash_tendered_cents is None:
            raise ValidationError("cash_tendered required for cash payments")
        if request.cash_tendered_cents < 0:
            raise ValidationError("cash_tendered cannot be negative")

    if request.points_to_redeem < 0:
        raise ValidationError("points_to_redeem cannot be negative")
    if request.points_to_redeem and request.customer_id is None:
        raise ValidationError("points_to_redeem requires a customer")


def merge_quantities(lines) -> dict[int, int]:
    """Total requested quantity per product, in first-seen cart order."""
    merged: dict[int, int] = {}
    for line in lines:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return merged


def generate_receipt_number() -> str:
    """R + epoch milliseconds + 4 random base36 characters."""
    millis = int(time.time() * 1000)
    suffix = "".join(secrets.choice(RECEIPT_SUFFIX_ALPHABET) for _ in range(4))
    return f"R{millis}{suffix}"


# =============================================================================
# UNIT OF WORK STEPS
# =============================================================================

def _load_products(session: Session, store_id: int, merged: dict[int, int]) -> dict[int, Product]:
    products = {
        p.id: p
        for p in lock_for_update(session.query(Product).filter(Product.id.in_(list(merged)))).all()
    }
    for product_id, qty in merged.items():
        product = products.get(product_id)
        if product is None or product.store_id != store_id:
            raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
        if not product.is_active:
            raise ProductInactive(
                f"Product {product.name} is no longer sold",
                details={"product_id": product_id},
            )
        if product.on_hand < qty:
            raise InsufficientStock(
                f"Insufficient stock for {product.name}. Available: {product.on_hand}, Requested: {qty}",
                details={"product_id": product_id, "available": product.on_hand, "requested": qty},
            )
    return products


def _decrement_stock(session: Session, product_id: int, quantity: int) -> None:
    result = session.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.on_hand >= quantity,
            Product.is_active.is_(True),
        )
        .values(on_hand=Product.on_hand - quantity, version_id=Product.version_id + 1)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise ConcurrentStockConflict(
            "Stock changed during checkout",
            details={"product_id": product_id, "requested": quantity},
        )


def _consume_verification(session: Session, record: AgeVerificationRecord, transaction_id: int) -> None:
    result = session.execute(
        update(AgeVerificationRecord)
        .where(
            AgeVerificationRecord.id == record.id,
            AgeVerificationRecord.consumed_by_transaction_id.is_(None),
        )
        .values(consumed_by_transaction_id=transaction_id)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        raise AgeVerificationFailed(
            "Age verification has already been used for a sale",
            details={"verification_id": record.verification_id},
        )


def _unique_receipt_number(session: Session, store_id: int, attempts: int) -> str:
    for _ in range(attempts):
        receipt_number = generate_receipt_number()
        taken = session.execute(
            select(Transaction.id).where(
                Transaction.store_id == store_id,
                Transaction.receipt_number == receipt_number,
            )
        ).first()
        if taken is None:
            return receipt_number
    raise PersistenceFailure("Could not allocate a unique receipt number", transient=True)


def _authorize_once(
    gateway: PaymentGateway,
    payment: _PaymentState,
    request: CheckoutRequest,
    total_cents: int,
) -> PaymentResult:
    """
    Authorize the tender, reusing an approval from an earlier attempt.

    A retry that arrives at a different total (prices changed between
    attempts) voids the old approval before asking for a new one.
    """
    if payment.result is not None:
        if payment.amount_cents == total_cents and payment.method == request.payment_method:
            return payment.result
        _void_authorization(gateway, payment)

    result = gateway.authorize(total_cents, request.payment_method, request.payment_reference)
    if not result.approved:
        raise PaymentDeclined(
            result.decline_reason or "Payment declined",
            details={"payment_method": request.payment_method, "total": str(cents_to_decimal(total_cents))},
        )
    payment.method = request.payment_method
    payment.amount_cents = total_cents
    payment.result = result
    return result


def _void_authorization(gateway: PaymentGateway, payment: _PaymentState) -> None:
    """Release an approved authorization the sale will not use. Never raises."""
    result, payment.result = payment.result, None
    if result is None or payment.settled:
        return
    try:
        gateway.void(result.reference, payment.amount_cents, payment.method)
    except Exception:
        logger.exception(
            "Could not void payment authorization",
            extra={"extra": {"payment_reference": result.reference, "amount_cents": payment.amount_cents}},
        )


def _run_checkout(
    session: Session,
    request: CheckoutRequest,
    gateway: PaymentGateway,
    config: CheckoutConfig,
    payment: _PaymentState,
) -> _CheckoutOutcome:
    store = session.get(Store, request.store_id)
    if store is None:
        raise StoreNotFound(f"Store {request.store_id} not found")

    merged = merge_quantities(request.lines)
    products = _load_products(session, store.id, merged)

    # Age verification gate
    age_required = any(products[line.product_id].age_restricted for line in request.lines)
    verification = None
    if age_required:
        if request.age_verification_id:
            verification = resolve_for_checkout(
                session,
                request.age_verification_id,
                store_id=store.id,
                ttl_minutes=config.verification_ttl_minutes,
            )
        elif not request.age_verification_completed:
            raise AgeVerificationRequired(
                "Age verification required for restricted products",
                details={
                    "requires_age_verification": True,
                    "product_ids": sorted({
                        line.product_id for line in request.lines
                        if products[line.product_id].age_restricted
                    }),
                },
            )

    customer = None
    if request.customer_id is not None:
        customer = lock_for_update(session.query(Customer).filter_by(id=request.customer_id)).first()
        if customer is None or not customer.is_active:
            raise CustomerNotFound(
                f"Customer {request.customer_id} not found",
                details={"customer_id": request.customer_id},
            )

    # Totals
    line_totals = [products[line.product_id].price_cents * line.quantity for line in request.lines]
    tax_lines = [
        TaxLine(
            amount=cents_to_decimal(total),
            category=products[line.product_id].category,
            special_category=products[line.product_id].special_tax_category,
            is_exempt=products[line.product_id].is_tax_exempt,
        )
        for line, total in zip(request.lines, line_totals)
    ]
    jurisdiction = store.state_code or config.default_jurisdiction
    breakdown = compute_tax(tax_lines, jurisdiction, customer_exempt=bool(customer and customer.is_tax_exempt))

    subtotal_cents = sum(line_totals)
    tax_cents = decimal_to_cents(breakdown.total_tax_amount)
    total_cents = subtotal_cents + tax_cents

    # Payment
    cash_tendered_cents = None
    change_cents = None
    payment_reference = request.payment_reference
    if request.payment_method == TENDER_CASH:
        if request.cash_tendered_cents < total_cents:
            raise InsufficientCash(
                "Insufficient cash tendered",
                details={
                    "total": str(cents_to_decimal(total_cents)),
                    "cash_tendered": str(cents_to_decimal(request.cash_tendered_cents)),
                },
            )
        cash_tendered_cents = request.cash_tendered_cents
        change_cents = cash_tendered_cents - total_cents
    else:
        payment_reference = _authorize_once(gateway, payment, request, total_cents).reference

    # Writes start here
    for product_id, qty in merged.items():
        _decrement_stock(session, product_id, qty)

    points_earned = loyalty_service.points_for_amount(total_cents) if customer is not None else 0

    txn = Transaction(
        store_id=store.id,
        receipt_number=_unique_receipt_number(session, store.id, config.receipt_attempts),
        transaction_type=TRANSACTION_TYPE_SALE,
        customer_id=customer.id if customer is not None else None,
        employee_id=request.employee_id,
        subtotal_cents=subtotal_cents,
        tax_cents=tax_cents,
        exempt_cents=decimal_to_cents(breakdown.exempt_amount),
        total_cents=total_cents,
        tax_jurisdiction=breakdown.jurisdiction,
        tax_breakdown=breakdown.to_dict(),
        payment_method=request.payment_method,
        payment_status=PAYMENT_STATUS_COMPLETED,
        payment_reference=payment_reference,
        cash_tendered_cents=cash_tendered_cents,
        change_given_cents=change_cents,
        age_verification_required=age_required,
        age_verification_completed=age_required,
        age_verification_id=verification.verification_id if verification is not None else None,
        loyalty_points_earned=points_earned,
        loyalty_points_redeemed=request.points_to_redeem,
        transaction_at=utcnow(),
    )
    session.add(txn)

    for number, (line, total) in enumerate(zip(request.lines, line_totals), start=1):
        product = products[line.product_id]
        session.add(LineItem(
            transaction=txn,
            line_number=number,
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            product_barcode=product.barcode,
            category=product.category,
            quantity=line.quantity,
            unit_price_cents=product.price_cents,
            line_total_cents=total,
            special_tax_category=product.special_tax_category,
            is_tax_exempt=product.is_tax_exempt,
            age_verification_required=product.age_restricted,
            lot_number=product.lot_number,
            expiration_date=product.expiration_date,
        ))
    session.flush()

    if verification is not None:
        _consume_verification(session, verification, txn.id)

    if customer is not None:
        if request.points_to_redeem:
            loyalty_service.apply_mutation(
                session,
                customer.id,
                loyalty_service.RedeemPoints(request.points_to_redeem),
                f"Redeemed on {txn.receipt_number}",
                transaction_id=txn.id,
                actor_id=request.employee_id,
            )
        loyalty_service.record_purchase(
            session,
            customer.id,
            total_cents,
            transaction_id=txn.id,
            actor_id=request.employee_id,
            occurred_at=txn.transaction_at,
        )
        balance_after, tier_after = session.execute(
            select(Customer.loyalty_points, Customer.loyalty_tier).where(Customer.id == customer.id)
        ).one()
        txn.loyalty_balance_after = balance_after
        txn.loyalty_tier_after = tier_after

    outcome = _CheckoutOutcome(transaction=txn, verification=verification)
    outcome.audit_entries.append(build_entry(
        ACTION_TRANSACTION_CREATED,
        "transaction",
        entity_id=txn.receipt_number,
        actor_id=request.employee_id,
        actor_role="cashier",
        store_id=store.id,
        details={
            "receipt_number": txn.receipt_number,
            "subtotal": str(cents_to_decimal(subtotal_cents)),
            "tax": str(cents_to_decimal(tax_cents)),
            "total": str(cents_to_decimal(total_cents)),
            "payment_method": request.payment_method,
            "customer_id": txn.customer_id,
            "age_verification_required": age_required,
            "line_count": len(request.lines),
            "loyalty_points_earned": points_earned,
            "loyalty_points_redeemed": request.points_to_redeem,
        },
    ))
    if verification is not None:
        outcome.audit_entries.append(build_entry(
            ACTION_AGE_VERIFICATION_CONSUMED,
            "age_verification",
            entity_id=verification.verification_id,
            actor_id=request.employee_id,
            store_id=store.id,
            details={
                "receipt_number": txn.receipt_number,
                "record_type": verification.record_type,
                "manager_id": verification.manager_id,
            },
        ))
    elif age_required:
        outcome.audit_entries.append(build_entry(
            ACTION_AGE_VERIFICATION_CONSUMED,
            "transaction",
            entity_id=txn.receipt_number,
            actor_id=request.employee_id,
            store_id=store.id,
            details={"receipt_number": txn.receipt_number, "attested_by_register": True},
        ))
    return outcome


def _rejection_entry(request: CheckoutRequest, exc: PosError) -> AuditEntry | None:
    """Compliance-relevant rejections are audited even though nothing committed."""
    base = {
        "store_id": request.store_id,
        "actor_id": request.employee_id,
        "actor_role": "cashier",
    }
    if isinstance(exc, AgeVerificationRequired):
        return build_entry(
            ACTION_CHECKOUT_REJECTED,
            "checkout",
            severity=SEVERITY_HIGH,
            details={"code": exc.code, "reason": exc.message, **exc.details},
            **base,
        )
    if isinstance(exc, AgeVerificationFailed):
        return build_entry(
            ACTION_AGE_VERIFICATION_FAILED,
            "checkout",
            entity_id=request.age_verification_id,
            details={"code": exc.code, "reason": exc.message, **exc.details},
            **base,
        )
    if isinstance(exc, PaymentDeclined):
        return build_entry(
            ACTION_PAYMENT_FAILED,
            "checkout",
            details={"code": exc.code, "reason": exc.message, **exc.details},
            **base,
        )
    return None


# =============================================================================
# PUBLIC API
# =============================================================================

def checkout(
    session: Session,
    request: CheckoutRequest,
    *,
    audit_sink: AuditSink | None,
    payment_gateway: PaymentGateway | None = None,
    config: CheckoutConfig | None = None,
) -> Transaction:
    """
    Run a checkout to a committed Transaction.

    Validation happens before any read or write. Everything after that runs
    in one unit of work; any failure rolls all of it back. Audit entries go
    to the sink only after commit (or after rollback, for audited
    rejections).

    Raises:
        EmptyCart, InvalidQuantity, ValidationError, InsufficientCash:
            Request problems; nothing was read or written
        StoreNotFound, ProductNotFound, ProductInactive, CustomerNotFound
        InsufficientStock: Not enough stock, including after a retried
            concurrent conflict
        AgeVerificationRequired, AgeVerificationFailed
        PaymentDeclined
        InsufficientPoints
        PersistenceFailure: The commit failed and was rolled back
    """
    _validate_request(request)
    gateway = payment_gateway or ApprovingGateway()
    config = config or CheckoutConfig()

    payment = _PaymentState()
    try:
        outcome = _checkout_with_retry(session, request, gateway, config, payment, audit_sink)
    except Exception:
        _void_authorization(gateway, payment)
        raise
    payment.settled = True

    txn = outcome.transaction
    logger.info(
        "Checkout committed",
        extra={"extra": {
            "receipt_number": txn.receipt_number,
            "store_id": txn.store_id,
            "total_cents": txn.total_cents,
            "verification_id": txn.age_verification_id,
        }},
    )
    if audit_sink is not None:
        for entry in outcome.audit_entries:
            audit_sink.record(entry)
    return txn


def _checkout_with_retry(
    session: Session,
    request: CheckoutRequest,
    gateway: PaymentGateway,
    config: CheckoutConfig,
    payment: _PaymentState,
    audit_sink: AuditSink | None,
) -> _CheckoutOutcome:
    """Run the unit of work, retrying once on a stock conflict."""
    attempts = 1 + max(0, config.conflict_retries)
    for attempt in range(1, attempts + 1):
        uow = UnitOfWork(session, immediate=config.immediate_transactions)
        try:
            uow.begin()
            outcome = _run_checkout(session, request, gateway, config, payment)
            uow.commit()
            return outcome
        except ConcurrentStockConflict as exc:
            uow.rollback()
            if attempt < attempts:
                logger.info(
                    "Stock conflict during checkout; retrying with fresh reads",
                    extra={"extra": {"store_id": request.store_id, "attempt": attempt, **exc.details}},
                )
                continue
            raise InsufficientStock(
                "Insufficient stock (changed during checkout)",
                details=exc.details,
            ) from exc
        except PosError as exc:
            uow.rollback()
            entry = _rejection_entry(request, exc)
            if entry is not None and audit_sink is not None:
                audit_sink.record(entry)
            raise
        except SQLAlchemyError as exc:
            uow.rollback()
            logger.exception(
                "Checkout persistence failure",
                extra={"extra": {"store_id": request.store_id}},
            )
            raise PersistenceFailure(
                "Checkout could not be saved; nothing was recorded",
                details={"store_id": request.store_id},
                transient=isinstance(exc, OperationalError),
            ) from exc
        except Exception:
            uow.rollback()
            raise

    # Unreachable: the loop either returns or raises
    raise InsufficientStock("Insufficient stock")


def get_transaction(session: Session, transaction_id: int) -> Transaction:
    txn = session.get(Transaction, transaction_id)
    if not txn:
        raise TransactionNotFound(f"Transaction {transaction_id} not found")
    return txn


def get_transaction_by_receipt(session: Session, store_id: int, receipt_number: str) -> Transaction:
    txn = session.query(Transaction).filter_by(store_id=store_id, receipt_number=receipt_number).first()
    if not txn:
        raise TransactionNotFound(f"Receipt {receipt_number} not found")
    return txn


def list_transactions(
    session: Session,
    *,
    store_id: int | None = None,
    customer_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Transaction], int]:
    query = session.query(Transaction)
    if store_id is not None:
        query = query.filter(Transaction.store_id == store_id)
    if customer_id is not None:
        query = query.filter(Transaction.customer_id == customer_id)
    total = query.count()
    items = (
        query.order_by(Transaction.transaction_at.desc(), Transaction.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total
