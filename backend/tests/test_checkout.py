import re
import threading
import time
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from vpos.errors import (
    AgeVerificationFailed,
    AgeVerificationRequired,
    ConcurrentStockConflict,
    CustomerNotFound,
    EmptyCart,
    InsufficientCash,
    InsufficientPoints,
    InsufficientStock,
    InvalidQuantity,
    PaymentDeclined,
    PersistenceFailure,
    ProductInactive,
    ProductNotFound,
    ValidationError,
)
from vpos.extensions import db
from vpos.models import AgeVerificationRecord, Customer, LoyaltyLedgerEntry, Product, Store, Transaction
from vpos.services import age_verification_service, checkout_service
from vpos.services.age_verification_service import VerificationRequest
from vpos.services.checkout_service import CartLine, CheckoutConfig, CheckoutRequest
from vpos.services.audit_service import AuditSink, AuditSpool, AuditTransport
from vpos.services.concurrency import UnitOfWork
from vpos.services.payment_service import DecliningGateway, PaymentGateway, PaymentResult
from vpos.time_utils import today


def _request(store, *lines, **overrides):
    values = {
        "store_id": store.id,
        "lines": tuple(CartLine(product.id, qty) for product, qty in lines),
        "payment_method": "CASH",
        "cash_tendered_cents": 100_000,
        "employee_id": 7,
    }
    values.update(overrides)
    return CheckoutRequest(**values)


def _stock(session, product_id):
    session.expire_all()
    return session.get(Product, product_id).on_hand


def _verify(session, store, years_old_days):
    dob = today() - timedelta(days=years_old_days)
    return age_verification_service.record_verification(
        session,
        VerificationRequest(
            id_type="drivers_license",
            id_number="D1234567",
            id_expiration_date=today() + timedelta(days=365),
            date_of_birth=dob,
            store_id=store.id,
            employee_id=7,
        ),
    )


# =============================================================================
# WORKED EXAMPLES
# =============================================================================

def test_restricted_cart_without_verification_is_rejected(db_session, store_ny, cigarettes_ny, audit_sink, audit_transport):
    with pytest.raises(AgeVerificationRequired) as exc_info:
        checkout_service.checkout(db_session, _request(store_ny, (cigarettes_ny, 1)), audit_sink=audit_sink)

    assert exc_info.value.details["product_ids"] == [cigarettes_ny.id]
    assert _stock(db_session, cigarettes_ny.id) == 20
    assert db_session.query(Transaction).count() == 0

    [entry] = audit_transport.sent
    assert entry.action == "checkout_rejected"
    assert entry.severity == "high"


def test_cash_short_of_total_is_rejected(db_session, store_ny, cigarettes_ny, audit_sink):
    request = _request(store_ny, (cigarettes_ny, 1), cash_tendered_cents=2000, age_verification_completed=True)

    with pytest.raises(InsufficientCash) as exc_info:
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)

    assert exc_info.value.details == {"total": "21.75", "cash_tendered": "20.00"}
    assert _stock(db_session, cigarettes_ny.id) == 20


def test_cash_sale_of_restricted_item(db_session, store_ny, cigarettes_ny, audit_sink, audit_transport):
    request = _request(store_ny, (cigarettes_ny, 1), cash_tendered_cents=2500, age_verification_completed=True)

    txn = checkout_service.checkout(db_session, request, audit_sink=audit_sink)

    assert txn.subtotal_cents == 1599
    assert txn.tax_cents == 576
    assert txn.total_cents == 2175
    assert txn.change_given_cents == 325
    assert txn.age_verification_required is True
    assert txn.age_verification_completed is True
    assert txn.tax_jurisdiction == "NY"
    assert len(txn.tax_breakdown["jurisdiction_breakdown"]) == 3
    assert re.fullmatch(r"R\d{13}[0-9A-Z]{4}", txn.receipt_number)
    assert _stock(db_session, cigarettes_ny.id) == 19

    assert audit_transport.actions() == ["transaction_created", "age_verification_consumed"]
    attestation = audit_transport.by_action("age_verification_consumed")[0]
    assert attestation.details["attested_by_register"] is True


def test_purchase_moves_customer_into_silver(db_session, store_default, lighter_default, regular_customer, audit_sink):
    request = _request(
        store_default,
        (lighter_default, 1),
        payment_method="CARD",
        cash_tendered_cents=None,
        customer_id=regular_customer.id,
    )

    txn = checkout_service.checkout(db_session, request, audit_sink=audit_sink)

    assert txn.tax_cents == 240
    assert txn.total_cents == 3240
    assert txn.loyalty_points_earned == 32
    assert txn.payment_reference.startswith("CARD-")
    assert txn.change_given_cents is None

    db_session.expire_all()
    customer = db_session.get(Customer, regular_customer.id)
    assert customer.total_spent_cents == 51_240
    assert customer.loyalty_tier == "SILVER"
    assert customer.loyalty_points == 512
    assert customer.transaction_count == 13


def test_manager_override_lets_sale_proceed(db_session, store_ny, cigarettes_ny, audit_sink, audit_transport):
    failed, decision = _verify(db_session, store_ny, 365 * 20 + 30)
    assert decision.calculated_age == 20
    assert decision.requires_manager_override is True

    request = _request(store_ny, (cigarettes_ny, 1), age_verification_id=failed.verification_id)
    with pytest.raises(AgeVerificationFailed):
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)
    assert audit_transport.actions() == ["age_verification_failed"]
    assert _stock(db_session, cigarettes_ny.id) == 20

    override = age_verification_service.apply_override(db_session, failed.verification_id, 42, "ID renewal receipt shown")
    txn = checkout_service.checkout(db_session, request, audit_sink=audit_sink)

    assert txn.age_verification_id == override.verification_id
    db_session.expire_all()
    records = db_session.query(AgeVerificationRecord).order_by(AgeVerificationRecord.id).all()
    assert [r.record_type for r in records] == ["EVALUATION", "OVERRIDE"]
    assert records[0].is_verified is False
    assert records[0].consumed_by_transaction_id is None
    assert records[1].consumed_by_transaction_id == txn.id

    consumed = audit_transport.by_action("age_verification_consumed")[0]
    assert consumed.entity_id == override.verification_id
    assert consumed.details["manager_id"] == 42


def test_verification_authorizes_only_one_sale(db_session, store_ny, cigarettes_ny, audit_sink):
    passed, _ = _verify(db_session, store_ny, 365 * 30)
    request = _request(store_ny, (cigarettes_ny, 1), age_verification_id=passed.verification_id)

    checkout_service.checkout(db_session, request, audit_sink=audit_sink)
    with pytest.raises(AgeVerificationFailed):
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)
    assert _stock(db_session, cigarettes_ny.id) == 19


def test_redeeming_more_points_than_held_changes_nothing(db_session, store_default, lighter_default, regular_customer, audit_sink):
    regular_customer.loyalty_points = 300
    regular_customer.points_lifetime_earned = 300
    db_session.commit()

    request = _request(
        store_default,
        (lighter_default, 1),
        customer_id=regular_customer.id,
        points_to_redeem=500,
    )
    with pytest.raises(InsufficientPoints):
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)

    db_session.expire_all()
    customer = db_session.get(Customer, regular_customer.id)
    assert customer.loyalty_points == 300
    assert customer.total_spent_cents == 48_000
    assert _stock(db_session, lighter_default.id) == 10
    assert db_session.query(Transaction).count() == 0


# =============================================================================
# REQUEST VALIDATION
# =============================================================================

def test_empty_cart(db_session, store_ny, audit_sink):
    with pytest.raises(EmptyCart):
        checkout_service.checkout(db_session, _request(store_ny), audit_sink=audit_sink)


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity(db_session, store_default, lighter_default, audit_sink, quantity):
    with pytest.raises(InvalidQuantity):
        checkout_service.checkout(db_session, _request(store_default, (lighter_default, quantity)), audit_sink=audit_sink)


def test_unknown_payment_method(db_session, store_default, lighter_default, audit_sink):
    request = _request(store_default, (lighter_default, 1), payment_method="SPLIT")
    with pytest.raises(ValidationError):
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)


def test_cash_requires_tendered_amount(db_session, store_default, lighter_default, audit_sink):
    request = _request(store_default, (lighter_default, 1), cash_tendered_cents=None)
    with pytest.raises(ValidationError):
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)


def test_points_redemption_requires_customer(db_session, store_default, lighter_default, audit_sink):
    request = _request(store_default, (lighter_default, 1), points_to_redeem=10)
    with pytest.raises(ValidationError):
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)


def test_repeated_lines_are_checked_against_combined_quantity(db_session, store_default, lighter_default, audit_sink):
    request = _request(store_default, (lighter_default, 6), (lighter_default, 6))
    with pytest.raises(InsufficientStock) as exc_info:
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)
    assert exc_info.value.details["requested"] == 12
    assert _stock(db_session, lighter_default.id) == 10


def test_product_from_another_store_is_not_found(db_session, store_ny, lighter_default, audit_sink):
    with pytest.raises(ProductNotFound):
        checkout_service.checkout(db_session, _request(store_ny, (lighter_default, 1)), audit_sink=audit_sink)


def test_inactive_product_is_refused(db_session, store_default, lighter_default, audit_sink):
    lighter_default.is_active = False
    db_session.commit()
    with pytest.raises(ProductInactive):
        checkout_service.checkout(db_session, _request(store_default, (lighter_default, 1)), audit_sink=audit_sink)


def test_unknown_customer(db_session, store_default, lighter_default, audit_sink):
    request = _request(store_default, (lighter_default, 1), customer_id=9999)
    with pytest.raises(CustomerNotFound):
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)


# =============================================================================
# PAYMENT, LOYALTY AND SNAPSHOTS
# =============================================================================

def test_declined_card_leaves_no_trace_but_an_audit_entry(db_session, store_default, lighter_default, audit_sink, audit_transport):
    request = _request(store_default, (lighter_default, 2), payment_method="CARD", cash_tendered_cents=None)

    with pytest.raises(PaymentDeclined):
        checkout_service.checkout(
            db_session, request, audit_sink=audit_sink, payment_gateway=DecliningGateway("Do not honor")
        )

    assert _stock(db_session, lighter_default.id) == 10
    assert db_session.query(Transaction).count() == 0
    [entry] = audit_transport.sent
    assert entry.action == "payment_failed"
    assert entry.details["reason"] == "Do not honor"


def test_terminal_reference_is_kept(db_session, store_default, lighter_default, audit_sink):
    request = _request(
        store_default, (lighter_default, 1),
        payment_method="GIFT_CARD", cash_tendered_cents=None, payment_reference="GC-778899",
    )
    txn = checkout_service.checkout(db_session, request, audit_sink=audit_sink)
    assert txn.payment_reference == "GC-778899"


def test_redeem_and_earn_in_one_checkout(db_session, store_default, lighter_default, regular_customer, audit_sink):
    request = _request(
        store_default, (lighter_default, 1),
        customer_id=regular_customer.id, points_to_redeem=100,
    )
    txn = checkout_service.checkout(db_session, request, audit_sink=audit_sink)

    db_session.expire_all()
    customer = db_session.get(Customer, regular_customer.id)
    assert customer.loyalty_points == 480 - 100 + 32
    assert txn.loyalty_points_redeemed == 100

    entries = db_session.query(LoyaltyLedgerEntry).order_by(LoyaltyLedgerEntry.id).all()
    assert [(e.entry_type, e.points) for e in entries] == [("REDEEM", -100), ("EARN", 32)]
    assert all(e.transaction_id == txn.id for e in entries)


def test_tax_exempt_customer_pays_subtotal(db_session, store_ny, cigarettes_ny, audit_sink):
    customer = Customer(first_name="Reservation", last_name="Co-op", is_tax_exempt=True, tax_exemption_number="EX-1")
    db_session.add(customer)
    db_session.commit()

    request = _request(
        store_ny, (cigarettes_ny, 2),
        customer_id=customer.id, age_verification_completed=True,
    )
    txn = checkout_service.checkout(db_session, request, audit_sink=audit_sink)
    assert txn.tax_cents == 0
    assert txn.exempt_cents == 3198
    assert txn.total_cents == 3198


def test_line_items_snapshot_product_at_sale_time(db_session, store_default, lighter_default, audit_sink):
    txn = checkout_service.checkout(db_session, _request(store_default, (lighter_default, 2)), audit_sink=audit_sink)
    txn_id = txn.id

    lighter_default.price_cents = 4500
    lighter_default.name = "Renamed Lighter"
    db_session.commit()

    db_session.expire_all()
    [line] = db_session.get(Transaction, txn_id).line_items
    assert line.unit_price_cents == 3000
    assert line.line_total_cents == 6000
    assert line.product_name == "Butane Torch Lighter"


def test_default_jurisdiction_from_config(db_session, store_default, lighter_default, audit_sink):
    config = CheckoutConfig(default_jurisdiction="TX")
    txn = checkout_service.checkout(
        db_session, _request(store_default, (lighter_default, 1)), audit_sink=audit_sink, config=config
    )
    assert txn.tax_jurisdiction == "TX"
    assert txn.tax_cents == 188


# =============================================================================
# ATOMICITY AND CONCURRENCY
# =============================================================================

def test_failed_commit_rolls_everything_back(db_session, store_default, lighter_default, regular_customer, audit_sink, monkeypatch):
    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session(), "commit", broken_commit)
    request = _request(store_default, (lighter_default, 3), customer_id=regular_customer.id)

    with pytest.raises(PersistenceFailure) as exc_info:
        checkout_service.checkout(db_session, request, audit_sink=audit_sink)

    assert exc_info.value.transient is True
    assert _stock(db_session, lighter_default.id) == 10
    assert db_session.query(Transaction).count() == 0
    assert db_session.query(LoyaltyLedgerEntry).count() == 0
    customer = db_session.get(Customer, regular_customer.id)
    assert customer.total_spent_cents == 48_000
    assert customer.loyalty_points == 480


def test_stock_conflict_is_retried_once(db_session, store_default, lighter_default, audit_sink, monkeypatch):
    real_decrement = checkout_service._decrement_stock
    calls = []

    def flaky(session, product_id, quantity):
        calls.append(product_id)
        if len(calls) == 1:
            raise ConcurrentStockConflict("Stock changed during checkout", details={"product_id": product_id})
        return real_decrement(session, product_id, quantity)

    monkeypatch.setattr(checkout_service, "_decrement_stock", flaky)

    txn = checkout_service.checkout(db_session, _request(store_default, (lighter_default, 1)), audit_sink=audit_sink)
    assert txn.id is not None
    assert len(calls) == 2
    assert _stock(db_session, lighter_default.id) == 9


def test_second_stock_conflict_surfaces_insufficient_stock(db_session, store_default, lighter_default, audit_sink, monkeypatch):
    def always_conflict(session, product_id, quantity):
        raise ConcurrentStockConflict("Stock changed during checkout", details={"product_id": product_id})

    monkeypatch.setattr(checkout_service, "_decrement_stock", always_conflict)

    with pytest.raises(InsufficientStock):
        checkout_service.checkout(db_session, _request(store_default, (lighter_default, 1)), audit_sink=audit_sink)
    assert _stock(db_session, lighter_default.id) == 10
    assert db_session.query(Transaction).count() == 0


def test_receipt_number_collision_exhausts_attempts(db_session, store_default, lighter_default, audit_sink, monkeypatch):
    monkeypatch.setattr(checkout_service, "generate_receipt_number", lambda: "R1700000000000ABCD")

    first = checkout_service.checkout(db_session, _request(store_default, (lighter_default, 1)), audit_sink=audit_sink)
    assert first.receipt_number == "R1700000000000ABCD"

    with pytest.raises(PersistenceFailure):
        checkout_service.checkout(db_session, _request(store_default, (lighter_default, 1)), audit_sink=audit_sink)
    assert _stock(db_session, lighter_default.id) == 9


def test_concurrent_checkouts_never_oversell(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    db.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)

    with Session() as setup:
        store = Store(name="Race Store", code="RACE")
        setup.add(store)
        setup.flush()
        product = Product(store_id=store.id, sku="POD", name="Vape Pod", price_cents=999, on_hand=5)
        setup.add(product)
        setup.commit()
        store_id, product_id = store.id, product.id

    results = []
    lock = threading.Lock()

    def buy():
        session = Session()
        try:
            checkout_service.checkout(
                session,
                CheckoutRequest(
                    store_id=store_id,
                    lines=(CartLine(product_id, 1),),
                    payment_method="CARD",
                ),
                audit_sink=None,
            )
            outcome = "sold"
        except InsufficientStock:
            outcome = "out"
        finally:
            session.close()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=buy) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    with Session() as check:
        remaining = check.get(Product, product_id).on_hand
        sold = check.query(Transaction).count()

    engine.dispose()
    assert results.count("sold") == 5
    assert results.count("out") == 5
    assert remaining == 0
    assert sold == 5


def test_unit_of_work_runs_on_the_scoped_sessions_current_session(db_session):
    uow = UnitOfWork(db_session).begin()
    assert uow.session is db_session()
    uow.rollback()


def test_concurrent_checkouts_conserve_loyalty(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'loyalty.sqlite3'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    db.metadata.create_all(engine)
    Session = sessionmaker(bind=engine)

    with Session() as setup:
        store = Store(name="Race Store", code="RACE")
        customer = Customer(first_name="Sam", last_name="Ortiz", loyalty_points=400, points_lifetime_earned=400)
        setup.add_all([store, customer])
        setup.flush()
        setup.add(LoyaltyLedgerEntry(customer_id=customer.id, entry_type="EARN", points=400, balance_after=400))
        product = Product(store_id=store.id, sku="POD", name="Vape Pod", price_cents=2499, on_hand=100)
        setup.add(product)
        setup.commit()
        store_id, product_id, customer_id = store.id, product.id, customer.id

    buyers = 8
    errors = []
    lock = threading.Lock()

    def buy(n):
        session = Session()
        try:
            checkout_service.checkout(
                session,
                CheckoutRequest(
                    store_id=store_id,
                    lines=(CartLine(product_id, 1 + n % 3),),
                    payment_method="CARD",
                    customer_id=customer_id,
                    points_to_redeem=50,
                ),
                audit_sink=None,
            )
        except Exception as exc:
            with lock:
                errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=buy, args=(n,)) for n in range(buyers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    with Session() as check:
        customer = check.get(Customer, customer_id)
        transactions = check.query(Transaction).all()
        ledger_sum = sum(e.points for e in check.query(LoyaltyLedgerEntry).filter_by(customer_id=customer_id))

        earned = sum(t.loyalty_points_earned for t in transactions)
        redeemed = sum(t.loyalty_points_redeemed for t in transactions)
        assert errors == []
        assert len(transactions) == buyers
        assert customer.transaction_count == buyers
        assert customer.total_spent_cents == sum(t.total_cents for t in transactions)
        assert customer.points_lifetime_earned == 400 + earned
        assert customer.points_lifetime_redeemed == redeemed == 50 * buyers
        assert customer.loyalty_points == customer.points_lifetime_earned - customer.points_lifetime_redeemed
        assert ledger_sum == customer.loyalty_points
    engine.dispose()


# =============================================================================
# PAYMENT AUTHORIZATION
# =============================================================================

class CountingGateway(PaymentGateway):
    """Approves everything and remembers each authorize and void."""

    def __init__(self):
        self.authorized = []
        self.voided = []

    def authorize(self, amount_cents, method, reference=None):
        ref = f"AUTH-{len(self.authorized) + 1}"
        self.authorized.append((amount_cents, method))
        return PaymentResult(approved=True, reference=ref)

    def void(self, reference, amount_cents, method):
        self.voided.append((reference, amount_cents))


def test_stock_conflict_retry_reuses_card_authorization(db_session, store_default, lighter_default, audit_sink, monkeypatch):
    real_decrement = checkout_service._decrement_stock
    calls = []

    def flaky(session, product_id, quantity):
        calls.append(product_id)
        if len(calls) == 1:
            raise ConcurrentStockConflict("Stock changed during checkout", details={"product_id": product_id})
        return real_decrement(session, product_id, quantity)

    monkeypatch.setattr(checkout_service, "_decrement_stock", flaky)
    gateway = CountingGateway()

    txn = checkout_service.checkout(
        db_session,
        _request(store_default, (lighter_default, 1), payment_method="CARD"),
        audit_sink=audit_sink,
        payment_gateway=gateway,
    )

    assert len(calls) == 2
    assert gateway.authorized == [(txn.total_cents, "CARD")]
    assert gateway.voided == []
    assert txn.payment_reference == "AUTH-1"


def test_failed_commit_voids_card_authorization(db_session, store_default, lighter_default, audit_sink, monkeypatch):
    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db_session(), "commit", broken_commit)
    gateway = CountingGateway()

    with pytest.raises(PersistenceFailure):
        checkout_service.checkout(
            db_session,
            _request(store_default, (lighter_default, 1), payment_method="CARD"),
            audit_sink=audit_sink,
            payment_gateway=gateway,
        )

    [(amount_cents, _)] = gateway.authorized
    assert gateway.voided == [("AUTH-1", amount_cents)]


def test_exhausted_stock_retries_void_card_authorization(db_session, store_default, lighter_default, audit_sink, monkeypatch):
    def always_conflict(session, product_id, quantity):
        raise ConcurrentStockConflict("Stock changed during checkout", details={"product_id": product_id})

    monkeypatch.setattr(checkout_service, "_decrement_stock", always_conflict)
    gateway = CountingGateway()

    with pytest.raises(InsufficientStock):
        checkout_service.checkout(
            db_session,
            _request(store_default, (lighter_default, 1), payment_method="CARD"),
            audit_sink=audit_sink,
            payment_gateway=gateway,
        )

    assert len(gateway.authorized) == 1
    assert [ref for ref, _ in gateway.voided] == ["AUTH-1"]


def test_cash_sale_never_reaches_the_gateway(db_session, store_default, lighter_default, audit_sink):
    gateway = CountingGateway()
    checkout_service.checkout(
        db_session, _request(store_default, (lighter_default, 1)), audit_sink=audit_sink, payment_gateway=gateway,
    )
    assert gateway.authorized == []


# =============================================================================
# AUDIT OUTAGE
# =============================================================================

class SlowCollector(AuditTransport):
    """Collector that hangs before failing until it is brought back."""

    def __init__(self, delay):
        self.delay = delay
        self.down = True
        self.sent = []

    def send(self, entry):
        if self.down:
            time.sleep(self.delay)
            raise ConnectionError("collector timed out")
        self.sent.append(entry.action)


def test_audit_outage_does_not_delay_checkout(tmp_path, db_session, store_default, lighter_default):
    collector = SlowCollector(delay=1.0)
    spool = AuditSpool(str(tmp_path / "spool.sqlite3"))
    sink = AuditSink(collector, spool, retry_interval=0.05)
    sink.start()
    try:
        started = time.monotonic()
        txn = checkout_service.checkout(db_session, _request(store_default, (lighter_default, 1)), audit_sink=sink)
        elapsed = time.monotonic() - started

        assert txn.id is not None
        assert elapsed < 0.5
        assert sink.pending_count() == 1

        collector.down = False
        deadline = time.time() + 5
        while sink.pending_count() and time.time() < deadline:
            time.sleep(0.05)
    finally:
        sink.stop()
        spool.dispose()

    assert sink.pending_count() == 0
    assert collector.sent == ["transaction_created"]
