# Overview: Pytest coverage for sale completion, receipts and voids.

import pytest
from sqlalchemy.exc import OperationalError

from conftest import RecordingNotifier, blend_line, context, product_line, variant_line
from shopledger.errors import (
    AlreadyVoided,
    AmbiguousScentResolution,
    EmptyCart,
    InsufficientStock,
    NotFound,
    PersistenceFailure,
    ProductNotFound,
    UnitMismatch,
    ValidationError,
)
from shopledger.models import CustomerPreference, Product, ProductVariant, ReceiptSequence, Sale, SaleItem, StockMovement
from shopledger.models.inventory import TRACKING_ML
from shopledger.services import preference_service, sales_service


def _stock(db_session, product):
    return db_session.get(Product, product.id, populate_existing=True)


class TestCompleteSale:
    def test_empty_cart_rejected(self, db_session, general, notifier):
        with pytest.raises(EmptyCart):
            sales_service.complete_sale([], context(general), notifier=notifier)
        assert db_session.query(Sale).count() == 0

    def test_total_equals_sum_of_line_subtotals(self, db_session, general, water, soap_pack, notifier):
        receipt = sales_service.complete_sale(
            [product_line(water, 3), product_line(soap_pack, 1)],
            context(general),
            notifier=notifier,
        )

        sale = db_session.get(Sale, receipt.sale_id)
        items = db_session.query(SaleItem).filter_by(sale_id=sale.id).all()
        assert sale.total_cents == sum(item.subtotal_cents for item in items) == 3000 + 4500
        assert sale.status == "completed"
        assert _stock(db_session, water).stock == 7
        assert _stock(db_session, soap_pack).stock == 6

    def test_receipt_numbers_increase(self, db_session, general, water, notifier):
        first = sales_service.complete_sale([product_line(water, 1)], context(general), notifier=notifier)
        second = sales_service.complete_sale([product_line(water, 1)], context(general), notifier=notifier)

        assert first.receipt_number == "RCP-000001"
        assert second.receipt_number == "RCP-000002"
        assert first.invoice_number is None

    def test_wholesale_line_derives_invoice_number(self, db_session, general, water, notifier):
        receipt = sales_service.complete_sale(
            [product_line(water, 2, price=800, customer_type="wholesale")],
            context(general),
            notifier=notifier,
        )

        assert receipt.is_invoice is True
        assert receipt.invoice_number == receipt.receipt_number.replace("RCP", "INV")

    def test_failing_line_rolls_back_everything(self, db_session, general, water, soap_pack, notifier):
        with pytest.raises(InsufficientStock):
            sales_service.complete_sale(
                [product_line(water, 2), product_line(soap_pack, 5)],
                context(general),
                notifier=notifier,
            )

        assert _stock(db_session, water).stock == 10
        assert _stock(db_session, soap_pack).stock == 12
        assert db_session.query(Sale).count() == 0
        assert db_session.query(SaleItem).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert notifier.deliveries == []

    def test_failed_sale_does_not_consume_receipt_number(self, db_session, general, water, notifier):
        with pytest.raises(InsufficientStock):
            sales_service.complete_sale([product_line(water, 50)], context(general), notifier=notifier)

        receipt = sales_service.complete_sale([product_line(water, 1)], context(general), notifier=notifier)
        assert receipt.receipt_number == "RCP-000001"

    def test_unit_mismatch_on_line(self, db_session, general, water, notifier):
        with pytest.raises(UnitMismatch):
            sales_service.complete_sale([product_line(water, 2, unit="ml")], context(general), notifier=notifier)
        assert _stock(db_session, water).stock == 10

    def test_product_from_other_department_rejected(self, db_session, perfume, water, notifier):
        with pytest.raises(ProductNotFound):
            sales_service.complete_sale([product_line(water, 1)], context(perfume), notifier=notifier)

    def test_underpayment_rejected_unless_credit(self, db_session, general, water, notifier):
        with pytest.raises(ValidationError):
            sales_service.complete_sale(
                [product_line(water, 2)], context(general, amount_paid_cents=1500), notifier=notifier,
            )

        receipt = sales_service.complete_sale(
            [product_line(water, 2)],
            context(general, payment_method="credit", amount_paid_cents=0),
            notifier=notifier,
        )
        assert receipt.amount_paid_cents == 0
        assert receipt.change_cents == 0

    def test_change_is_computed(self, db_session, general, water, notifier):
        receipt = sales_service.complete_sale(
            [product_line(water, 2)], context(general, amount_paid_cents=5000), notifier=notifier,
        )
        assert receipt.total_cents == 2000
        assert receipt.change_cents == 3000

    def test_unknown_payment_method(self, db_session, general, water, notifier):
        with pytest.raises(ValidationError):
            sales_service.complete_sale(
                [product_line(water, 1)], context(general, payment_method="cheque"), notifier=notifier,
            )

    def test_service_line_has_no_stock_effect(self, db_session, perfume, refill, notifier):
        receipt = sales_service.complete_sale(
            [{"name": "Bottle Refill", "service_id": refill.id, "quantity": 2, "unit_price_cents": 2000}],
            context(perfume),
            notifier=notifier,
        )

        assert receipt.total_cents == 4000
        assert receipt.lines[0].service_id == refill.id
        assert db_session.query(StockMovement).count() == 0

    def test_line_needs_exactly_one_target(self, db_session, general, water, refill, notifier):
        line = product_line(water, 1)
        line["service_id"] = refill.id
        with pytest.raises(ValidationError):
            sales_service.complete_sale([line], context(general), notifier=notifier)

    @pytest.mark.parametrize("quantity", [10**19, True, float("nan"), "inf"])
    def test_unusable_quantity_rejected(self, db_session, general, water, notifier, quantity):
        with pytest.raises(ValidationError):
            sales_service.complete_sale([product_line(water, quantity)], context(general), notifier=notifier)

        assert _stock(db_session, water).stock == 10
        assert db_session.query(Sale).count() == 0

    def test_line_total_is_bounded(self, db_session, general, water, notifier):
        water.stock = 1_000_000
        db_session.commit()

        with pytest.raises(ValidationError):
            sales_service.complete_sale(
                [product_line(water, 1_000_000, price=10_000_000)], context(general), notifier=notifier,
            )

        assert _stock(db_session, water).stock == 1_000_000

    def test_oversized_service_quantity_rejected(self, db_session, perfume, refill, notifier):
        line = {"name": "Bottle Refill", "service_id": refill.id, "quantity": 10**19, "unit_price_cents": 2000}
        with pytest.raises(ValidationError):
            sales_service.complete_sale([line], context(perfume), notifier=notifier)


class TestBlendSales:
    def test_blend_decrements_each_component(self, db_session, perfume, rose, oud, notifier):
        receipt = sales_service.complete_sale(
            [blend_line([("Rose", 10), ("Oud", 20)], price=100)],
            context(perfume),
            notifier=notifier,
        )

        assert _stock(db_session, rose).stock_ml == pytest.approx(90.0)
        assert _stock(db_session, oud).stock_ml == pytest.approx(180.0)
        assert receipt.total_cents == 3000

        line = receipt.lines[0]
        assert line.total_ml == 30
        assert [c["scent"] for c in line.scent_breakdown] == ["Rose", "Oud"]

    def test_blend_lines_point_at_master_product(self, db_session, perfume, rose, oud, notifier):
        first = sales_service.complete_sale([blend_line([("Rose", 5)])], context(perfume), notifier=notifier)
        second = sales_service.complete_sale([blend_line([("Oud", 5)])], context(perfume), notifier=notifier)

        master = db_session.query(Product).filter_by(name="Oil Perfume").one()
        assert master.tracking_type == TRACKING_ML
        assert master.department_id is None
        assert first.lines[0].product_id == second.lines[0].product_id == master.id

    def test_blend_component_shortage_rolls_back_other_components(self, db_session, perfume, rose, oud, notifier):
        with pytest.raises(InsufficientStock):
            sales_service.complete_sale(
                [blend_line([("Oud", 50), ("Rose", 150)])], context(perfume), notifier=notifier,
            )

        assert _stock(db_session, oud).stock_ml == pytest.approx(200.0)
        assert _stock(db_session, rose).stock_ml == pytest.approx(100.0)
        assert db_session.query(Product).filter_by(name="Oil Perfume").count() == 0

    def test_ambiguous_scent_aborts_sale(self, db_session, perfume, rose, notifier):
        db_session.add(Product(name="Rose", tracking_type=TRACKING_ML, stock_ml=40.0))
        db_session.commit()

        with pytest.raises(AmbiguousScentResolution):
            sales_service.complete_sale([blend_line([("Rose", 5)])], context(perfume), notifier=notifier)
        assert _stock(db_session, rose).stock_ml == pytest.approx(100.0)

    def test_explicit_scent_id_resolves_ambiguity(self, db_session, perfume, rose, notifier):
        global_rose = Product(name="Rose", tracking_type=TRACKING_ML, stock_ml=40.0)
        db_session.add(global_rose)
        db_session.commit()

        line = blend_line([("Rose", 5)])
        line["scents"][0]["scent_id"] = global_rose.id
        sales_service.complete_sale([line], context(perfume), notifier=notifier)

        assert _stock(db_session, global_rose).stock_ml == pytest.approx(35.0)
        assert _stock(db_session, rose).stock_ml == pytest.approx(100.0)

    def test_declared_bottle_size_must_match_components(self, db_session, perfume, rose, notifier):
        line = blend_line([("Rose", 10)])
        line["total_ml"] = 30
        with pytest.raises(ValidationError):
            sales_service.complete_sale([line], context(perfume), notifier=notifier)


class TestVariantSales:
    def _variant(self, db_session, variant):
        return db_session.get(ProductVariant, variant.id, populate_existing=True)

    def test_variant_line_takes_variant_stock(self, db_session, general, tshirt, notifier):
        small = tshirt.variants[0]

        receipt = sales_service.complete_sale([variant_line(small, 2)], context(general), notifier=notifier)

        assert receipt.total_cents == 10000
        assert receipt.lines[0].variant_id == small.id
        assert receipt.lines[0].product_id == tshirt.id
        assert self._variant(db_session, small).stock == 1
        assert _stock(db_session, tshirt).stock == 0

    def test_variant_shortage_rolls_back_sale(self, db_session, general, water, tshirt, notifier):
        medium = tshirt.variants[1]

        with pytest.raises(InsufficientStock):
            sales_service.complete_sale(
                [product_line(water, 2), variant_line(medium, 2)], context(general), notifier=notifier,
            )

        assert _stock(db_session, water).stock == 10
        assert self._variant(db_session, medium).stock == 1
        assert db_session.query(Sale).count() == 0

    def test_variant_must_belong_to_named_product(self, db_session, general, water, tshirt, notifier):
        line = variant_line(tshirt.variants[0], 1)
        line["product_id"] = water.id

        with pytest.raises(ValidationError):
            sales_service.complete_sale([line], context(general), notifier=notifier)

    def test_variant_of_other_department_rejected(self, db_session, perfume, tshirt, notifier):
        with pytest.raises(ProductNotFound):
            sales_service.complete_sale([variant_line(tshirt.variants[0], 1)], context(perfume), notifier=notifier)

    def test_void_restores_variant_stock(self, db_session, general, water, tshirt, notifier):
        small = tshirt.variants[0]
        receipt = sales_service.complete_sale(
            [variant_line(small, 3), product_line(water, 1)], context(general), notifier=notifier,
        )

        sales_service.void_sale(receipt.sale_id, "Wrong size", "Manager")

        assert self._variant(db_session, small).stock == 3
        assert _stock(db_session, water).stock == 10
        restored = db_session.query(StockMovement).filter_by(reason="SALE_VOID", variant_id=small.id).one()
        assert restored.delta == 3


class TestAfterCommit:
    def test_preferences_merged_for_known_customer(self, db_session, perfume, rose, oud, customer, notifier):
        sales_service.complete_sale(
            [blend_line([("Rose", 10), ("Oud", 20)])],
            context(perfume, customer_id=customer.id),
            notifier=notifier,
        )
        sales_service.complete_sale(
            [blend_line([("Rose", 15)])],
            context(perfume, customer_id=customer.id),
            notifier=notifier,
        )

        pref = preference_service.get_customer_preferences(customer.id)
        assert pref.preferred_scents == ["Rose", "Oud"]
        assert pref.preferred_bottle_sizes == ["30ml", "15ml"]

    def test_preference_failure_is_a_warning(self, db_session, perfume, rose, customer, notifier, monkeypatch):
        def broken(*args, **kwargs):
            raise OperationalError("UPDATE customer_preferences", {}, Exception("disk I/O error"))

        monkeypatch.setattr(sales_service, "merge_customer_preferences", broken)

        receipt = sales_service.complete_sale(
            [blend_line([("Rose", 10)])],
            context(perfume, customer_id=customer.id),
            notifier=notifier,
        )

        assert db_session.get(Sale, receipt.sale_id).status == "completed"
        assert len(receipt.warnings) == 1
        assert db_session.query(CustomerPreference).count() == 0

    def test_notifier_receives_receipt(self, db_session, general, water, notifier):
        receipt = sales_service.complete_sale(
            [product_line(water, 1)],
            context(general, customer_email="buyer@example.com"),
            notifier=notifier,
        )

        payload, recipient = notifier.deliveries[0]
        assert recipient == "buyer@example.com"
        assert payload["receipt_number"] == receipt.receipt_number
        assert payload["total_cents"] == 1000

    def test_notifier_failure_keeps_sale(self, db_session, general, water):
        receipt = sales_service.complete_sale(
            [product_line(water, 1)], context(general), notifier=RecordingNotifier(fail=True),
        )

        assert db_session.get(Sale, receipt.sale_id) is not None
        assert _stock(db_session, water).stock == 9
        assert receipt.warnings == ["Sale completed, but the receipt could not be sent."]

    def test_receipt_rebuilt_from_rows(self, db_session, general, water, soap_pack, notifier):
        receipt = sales_service.complete_sale(
            [product_line(water, 2), product_line(soap_pack, 1)], context(general), notifier=notifier,
        )
        db_session.expire_all()

        rebuilt = sales_service.build_receipt(receipt.sale_id)
        assert rebuilt.to_dict() == {**receipt.to_dict(), "warnings": []}
        assert [line.name for line in rebuilt.lines] == ["Bottled Water", "Soap (6-pack)"]


class TestPersistence:
    def test_storage_failure_surfaces_as_persistence_failure(self, db_session, general, water, notifier, monkeypatch):
        def broken():
            raise OperationalError("UPDATE receipt_sequences", {}, Exception("database is locked"))

        monkeypatch.setattr(sales_service, "allocate_receipt_number", broken)

        with pytest.raises(PersistenceFailure) as exc:
            sales_service.complete_sale([product_line(water, 1)], context(general), notifier=notifier)

        assert exc.value.retryable is True
        assert _stock(db_session, water).stock == 10
        assert db_session.query(ReceiptSequence).count() == 0


class TestVoidSale:
    def test_void_restores_stock(self, db_session, general, water, soap_pack, notifier):
        receipt = sales_service.complete_sale(
            [product_line(water, 3), product_line(soap_pack, 1)], context(general), notifier=notifier,
        )

        sale = sales_service.void_sale(receipt.sale_id, "Customer changed mind", "Manager")

        assert sale.status == "voided"
        assert sale.voided_by == "Manager"
        assert sale.void_reason == "Customer changed mind"
        assert sale.voided_at is not None
        assert _stock(db_session, water).stock == 10
        assert _stock(db_session, soap_pack).stock == 12

    def test_void_restores_blend_components(self, db_session, perfume, rose, oud, notifier):
        receipt = sales_service.complete_sale(
            [blend_line([("Rose", 10.5), ("Oud", 20)])], context(perfume), notifier=notifier,
        )

        sales_service.void_sale(receipt.sale_id, "Wrong blend", "Manager")

        assert _stock(db_session, rose).stock_ml == pytest.approx(100.0)
        assert _stock(db_session, oud).stock_ml == pytest.approx(200.0)
        reasons = {m.reason for m in db_session.query(StockMovement).all()}
        assert reasons == {"SALE", "SALE_VOID"}

    def test_second_void_fails_without_side_effects(self, db_session, general, water, notifier):
        receipt = sales_service.complete_sale([product_line(water, 3)], context(general), notifier=notifier)
        sales_service.void_sale(receipt.sale_id, "Mistake", "Manager")
        movements = db_session.query(StockMovement).count()

        with pytest.raises(AlreadyVoided):
            sales_service.void_sale(receipt.sale_id, "Again", "Someone else")

        sale = db_session.get(Sale, receipt.sale_id, populate_existing=True)
        assert sale.voided_by == "Manager"
        assert _stock(db_session, water).stock == 10
        assert db_session.query(StockMovement).count() == movements

    def test_void_requires_reason(self, db_session, general, water, notifier):
        receipt = sales_service.complete_sale([product_line(water, 1)], context(general), notifier=notifier)
        with pytest.raises(ValidationError):
            sales_service.void_sale(receipt.sale_id, "  ", "Manager")

    def test_void_unknown_sale(self, db_session):
        with pytest.raises(NotFound):
            sales_service.void_sale(12345, "Mistake", "Manager")
