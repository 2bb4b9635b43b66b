import pytest

from vpos.errors import CustomerNotFound, InsufficientStock, ProductNotFound, StoreNotFound, ValidationError
from vpos.models import Customer
from vpos.services import customer_service, inventory_service


class TestCreateProduct:
    def test_creates_product_with_compliance_flags(self, db_session, store_ny):
        product = inventory_service.create_product(
            db_session,
            store_id=store_ny.id,
            sku="JUUL-MINT",
            name="JUUL Pods Mint",
            price_cents=1999,
            on_hand=12,
            age_restricted=True,
            special_tax_category="vape",
        )
        assert product.id is not None
        assert product.is_active is True
        assert product.age_restricted is True

    def test_unknown_store(self, db_session):
        with pytest.raises(StoreNotFound):
            inventory_service.create_product(db_session, store_id=404, sku="X", name="X", price_cents=100)

    def test_negative_values_rejected(self, db_session, store_ny):
        with pytest.raises(ValidationError):
            inventory_service.create_product(db_session, store_id=store_ny.id, sku="X", name="X", price_cents=-1)
        with pytest.raises(ValidationError):
            inventory_service.create_product(
                db_session, store_id=store_ny.id, sku="X", name="X", price_cents=100, on_hand=-2
            )

    def test_duplicate_sku_in_store_rejected(self, db_session, store_ny, cigarettes_ny):
        with pytest.raises(ValidationError):
            inventory_service.create_product(
                db_session, store_id=store_ny.id, sku=cigarettes_ny.sku, name="Dup", price_cents=100
            )

    def test_same_sku_allowed_in_other_store(self, db_session, store_default, cigarettes_ny):
        product = inventory_service.create_product(
            db_session, store_id=store_default.id, sku=cigarettes_ny.sku, name="Marlboro Red", price_cents=1499
        )
        assert product.store_id == store_default.id


class TestAdjustInventory:
    def test_adjust_up_and_down(self, db_session, lighter_default):
        assert inventory_service.adjust_inventory(db_session, lighter_default.id, 4, "Delivery").on_hand == 14
        assert inventory_service.adjust_inventory(db_session, lighter_default.id, -14, "Recount").on_hand == 0

    def test_cannot_go_negative(self, db_session, lighter_default):
        with pytest.raises(InsufficientStock) as exc_info:
            inventory_service.adjust_inventory(db_session, lighter_default.id, -11, "Shrink")
        assert exc_info.value.details["on_hand"] == 10

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFound):
            inventory_service.adjust_inventory(db_session, 404, 1, "Delivery")

    def test_deactivate_is_idempotent(self, db_session, lighter_default, audit_sink, audit_transport):
        inventory_service.deactivate_product(db_session, lighter_default.id, audit_sink=audit_sink)
        product = inventory_service.deactivate_product(db_session, lighter_default.id, audit_sink=audit_sink)
        assert product.is_active is False
        assert audit_transport.actions() == ["product_deactivated"]


class TestRegisterCustomer:
    def test_register_starts_at_bronze_with_no_points(self, db_session, audit_sink, audit_transport):
        customer = customer_service.register_customer(
            db_session, first_name=" Ada ", last_name="Lovelace", email="ADA@Example.com", audit_sink=audit_sink
        )
        assert customer.first_name == "Ada"
        assert customer.email == "ada@example.com"
        assert customer.loyalty_tier == "BRONZE"
        assert customer.loyalty_points == 0
        assert audit_transport.actions() == ["customer_created"]

    def test_short_names_rejected(self, db_session):
        with pytest.raises(ValidationError):
            customer_service.register_customer(db_session, first_name="A", last_name="Lovelace")

    def test_duplicate_email_rejected(self, db_session, regular_customer):
        with pytest.raises(ValidationError):
            customer_service.register_customer(
                db_session, first_name="Dana", last_name="Other", email=regular_customer.email
            )
        assert db_session.query(Customer).count() == 1

    def test_get_unknown_customer(self, db_session):
        with pytest.raises(CustomerNotFound):
            customer_service.get_customer(db_session, 404)
