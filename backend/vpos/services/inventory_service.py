# Overview: Product stock adjustments and soft deactivation outside of checkout.

"""
Inventory Administration

Invariants:
- on_hand never goes negative. Adjustments are a conditional UPDATE
  (on_hand = on_hand + delta WHERE on_hand + delta >= 0), the same shape
  checkout uses for its decrement.
- Products are never deleted; deactivation is a flag. Inactive products
  cannot be sold (checkout raises ProductInactive).
- Every adjustment and deactivation is audited after commit.
"""

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from vpos.errors import InsufficientStock, ProductNotFound, StoreNotFound, ValidationError
from vpos.models import Product, Store
from .audit_service import (
    ACTION_INVENTORY_ADJUSTED,
    ACTION_PRODUCT_DEACTIVATED,
    AuditSink,
    build_entry,
)
from .concurrency import run_with_retry


def create_product(
    session: Session,
    *,
    store_id: int,
    sku: str,
    name: str,
    price_cents: int,
    on_hand: int = 0,
    barcode: str | None = None,
    category: str | None = None,
    age_restricted: bool = False,
    special_tax_category: str | None = None,
    is_tax_exempt: bool = False,
    lot_number: str | None = None,
    expiration_date=None,
) -> Product:
    if session.get(Store, store_id) is None:
        raise StoreNotFound(f"Store {store_id} not found")
    if price_cents < 0:
        raise ValidationError("price_cents must be >= 0")
    if on_hand < 0:
        raise ValidationError("on_hand must be >= 0")

    product = Product(
        store_id=store_id,
        sku=sku,
        name=name,
        price_cents=price_cents,
        on_hand=on_hand,
        barcode=barcode,
        category=category,
        age_restricted=age_restricted,
        special_tax_category=special_tax_category,
        is_tax_exempt=is_tax_exempt,
        lot_number=lot_number,
        expiration_date=expiration_date,
    )
    session.add(product)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ValidationError("SKU already exists in this store", details={"store_id": store_id, "sku": sku})
    return product


def get_product(session: Session, product_id: int) -> Product:
    product = session.get(Product, product_id)
    if not product:
        raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def adjust_inventory(
    session: Session,
    product_id: int,
    quantity_delta: int,
    reason: str,
    *,
    actor_id: int | None = None,
    audit_sink: AuditSink | None = None,
) -> Product:
    """
    Add or remove stock (receiving, shrink, count corrections).

    Raises:
        ValidationError: On a zero delta or missing reason
        ProductNotFound: If the product does not exist
        InsufficientStock: If the adjustment would make on-hand negative
    """
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    if not reason or not reason.strip():
        raise ValidationError("Adjustment reason required")

    def _op():
        result = session.execute(
            update(Product)
            .where(Product.id == product_id, Product.on_hand + quantity_delta >= 0)
            .values(on_hand=Product.on_hand + quantity_delta, version_id=Product.version_id + 1)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            on_hand = session.execute(
                select(Product.on_hand).where(Product.id == product_id)
            ).scalar_one_or_none()
            session.rollback()
            if on_hand is None:
                raise ProductNotFound(f"Product {product_id} not found", details={"product_id": product_id})
            raise InsufficientStock(
                "Adjustment would make on-hand negative",
                details={"product_id": product_id, "on_hand": on_hand, "quantity_delta": quantity_delta},
            )
        session.commit()
        return session.get(Product, product_id)

    product = run_with_retry(session, _op)

    if audit_sink is not None:
        audit_sink.record(build_entry(
            ACTION_INVENTORY_ADJUSTED,
            "product",
            entity_id=product.id,
            actor_id=actor_id,
            store_id=product.store_id,
            details={
                "sku": product.sku,
                "quantity_delta": quantity_delta,
                "on_hand_after": product.on_hand,
                "reason": reason.strip(),
            },
        ))
    return product


def deactivate_product(
    session: Session,
    product_id: int,
    *,
    actor_id: int | None = None,
    reason: str | None = None,
    audit_sink: AuditSink | None = None,
) -> Product:
    """
    Soft-deactivate a product. Idempotent.

    Historical line items keep their own snapshot, so receipts are not
    affected.
    """
    product = get_product(session, product_id)
    if not product.is_active:
        return product

    product.is_active = False
    product.version_id = (product.version_id or 0) + 1
    session.commit()

    if audit_sink is not None:
        audit_sink.record(build_entry(
            ACTION_PRODUCT_DEACTIVATED,
            "product",
            entity_id=product.id,
            actor_id=actor_id,
            store_id=product.store_id,
            details={"sku": product.sku, "reason": reason},
        ))
    return product
