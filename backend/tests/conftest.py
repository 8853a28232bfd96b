"""
Pytest fixtures for the shopledger backend tests.

Provides the test app on in-memory SQLite, a per-test clean database,
departments, stock rows (unit, ml and variants), a service and a recording
notifier.
"""

import pytest

from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import Customer, Department, Product, ProductVariant, Sale, Service
from shopledger.models.inventory import TRACKING_ML, TRACKING_QUANTITY
from shopledger.services.notification_service import Notifier


class RecordingNotifier(Notifier):
    """Keeps every delivered payload; optionally fails on purpose."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.deliveries = []

    def deliver(self, receipt, recipient=None):
        if self.fail:
            raise RuntimeError("printer offline")
        self.deliveries.append((receipt, recipient))


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope='function')
def general(db_session):
    department = Department(name="General Store", kind="general")
    db_session.add(department)
    db_session.commit()
    return department


@pytest.fixture(scope='function')
def perfume(db_session):
    department = Department(name="Perfume Bar", kind="perfume")
    db_session.add(department)
    db_session.commit()
    return department


@pytest.fixture(scope='function')
def agency(db_session):
    department = Department(name="Mobile Money Agency", kind="mobile_money")
    db_session.add(department)
    db_session.commit()
    return department


@pytest.fixture(scope='function')
def water(db_session, general):
    """10 single bottles at 1,000 each (cost 600)."""
    product = Product(
        department_id=general.id,
        name="Bottled Water",
        tracking_type=TRACKING_QUANTITY,
        stock=10,
        price_cents=1000,
        wholesale_price_cents=800,
        cost_price_cents=600,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def soap_pack(db_session, general):
    """Sold in packs of 6; 12 physical bars on hand."""
    product = Product(
        department_id=general.id,
        name="Soap (6-pack)",
        tracking_type=TRACKING_QUANTITY,
        stock=12,
        quantity_per_unit=6,
        price_cents=4500,
        cost_price_cents=3000,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def tshirt(db_session, general):
    """Parent holds no stock of its own; variants Small (3) and Medium (1)."""
    product = Product(
        department_id=general.id,
        name="T-Shirt",
        tracking_type=TRACKING_QUANTITY,
        stock=0,
        price_cents=5000,
        cost_price_cents=2500,
    )
    db_session.add(product)
    db_session.commit()
    db_session.add_all([
        ProductVariant(product_id=product.id, name="Small", size="S", stock=3, price_cents=5000),
        ProductVariant(product_id=product.id, name="Medium", size="M", stock=1, price_cents=5000),
    ])
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def rose(db_session, perfume):
    """Department scent row with 100 ml."""
    product = Product(
        department_id=perfume.id,
        name="Rose",
        tracking_type=TRACKING_ML,
        stock_ml=100.0,
        price_cents=120,
        cost_price_cents=60,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def oud(db_session):
    """Global scent row with 200 ml."""
    product = Product(
        department_id=None,
        name="Oud",
        tracking_type=TRACKING_ML,
        stock_ml=200.0,
        price_cents=150,
        cost_price_cents=80,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def refill(db_session, perfume):
    service = Service(department_id=perfume.id, name="Bottle Refill", price_cents=2000, material_cost_cents=500)
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture(scope='function')
def customer(db_session, perfume):
    customer = Customer(department_id=perfume.id, name="Amina", email="amina@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


def product_line(product, quantity, *, price=None, customer_type="retail", unit=None):
    line = {
        "name": product.name,
        "product_id": product.id,
        "quantity": quantity,
        "unit_price_cents": product.price_cents if price is None else price,
        "customer_type": customer_type,
    }
    if unit is not None:
        line["unit"] = unit
    return line


def variant_line(variant, quantity, *, price=None):
    return {
        "name": variant.name,
        "variant_id": variant.id,
        "quantity": quantity,
        "unit_price_cents": variant.price_cents if price is None else price,
    }


def blend_line(components, *, price=100, name="Custom Blend"):
    """components: [(scent_name, ml), ...]; price is per ml."""
    return {
        "name": name,
        "unit_price_cents": price,
        "scents": [{"scent": scent, "ml": ml} for scent, ml in components],
        "scent_mixture": " + ".join(scent for scent, _ in components),
    }


def context(department, **overrides):
    data = {
        "department_id": department.id,
        "cashier_name": "Grace",
        "payment_method": "cash",
    }
    data.update(overrides)
    return data


def make_sale(db_session, department, total_cents, *, payment_method="cash", status="completed", created_at=None):
    """Insert a bare Sale header; for reconciliation and reporting windows."""
    sale = Sale(
        department_id=department.id,
        receipt_number=f"TEST-{db_session.query(Sale).count() + 1:06d}",
        cashier_name="Grace",
        payment_method=payment_method,
        subtotal_cents=total_cents,
        total_cents=total_cents,
        amount_paid_cents=total_cents,
        status=status,
    )
    if created_at is not None:
        sale.created_at = created_at
    db_session.add(sale)
    db_session.commit()
    return sale
