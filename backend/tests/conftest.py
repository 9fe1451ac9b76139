"""
Pytest fixtures for Aurora backend tests.

Provides an in-memory application, per-test table wipe, factories for the
network (users, PDVs, products, stock) and authentication helpers.
"""

import pytest

from aurora import create_app
from aurora.extensions import db
from aurora.models import User, PDV, Product
from aurora.models.users import ROLE_ADMIN, ROLE_PROMOTER, ROLE_PARTNER
from aurora.models.inventory import KIND_ADJUSTMENT
from aurora.services import sale_events
from aurora.services.auth_service import hash_password
from aurora.services.locations import Location
from aurora.services.movement_service import record_movement


TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'MERCADOPAGO_ACCESS_TOKEN': 'TEST-TOKEN',
        'ASAAS_API_KEY': 'test-asaas-key',
        'PUBLIC_BASE_URL': 'https://aurora.test',
        'SALE_EVENTS_HEARTBEAT_SECONDS': 0.05,
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
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        sale_events.clear()
        app.extensions.pop("payment_transport", None)

        yield db.session

        db.session.rollback()


def _make_user(db_session, *, name, email, role, promoter_level=None, superior_id=None, is_active=True):
    user = User(
        name=name,
        email=email,
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=role,
        promoter_level=promoter_level,
        superior_id=superior_id,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user(role=..., name=..., promoter_level=..., superior_id=...)."""
    counter = {"n": 0}

    def _factory(role=ROLE_PROMOTER, name=None, **kwargs):
        counter["n"] += 1
        n = counter["n"]
        return _make_user(
            db_session,
            name=name or f"{role.title()} {n}",
            email=f"{role.lower()}{n}@aurora.test",
            role=role,
            **kwargs,
        )

    return _factory


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(ROLE_ADMIN, name="Admin")


@pytest.fixture(scope='function')
def promoter(make_user):
    return make_user(ROLE_PROMOTER, name="Paula Promotora", promoter_level="JUNIOR")


@pytest.fixture(scope='function')
def partner(make_user):
    return make_user(ROLE_PARTNER, name="Pedro Parceiro")


@pytest.fixture(scope='function')
def make_pdv(db_session):
    def _factory(promoter_id=None, partner_id=None, trade_name=None):
        pdv = PDV(
            trade_name=trade_name or "Loja Centro",
            promoter_id=promoter_id,
            partner_id=partner_id,
            city="Belo Horizonte",
            state="MG",
        )
        db_session.add(pdv)
        db_session.commit()
        return pdv

    return _factory


@pytest.fixture(scope='function')
def pdv(make_pdv, promoter, partner):
    return make_pdv(promoter_id=promoter.id, partner_id=partner.id)


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {"n": 0}

    def _factory(price_cents=10000, cost_cents=4000, name=None):
        counter["n"] += 1
        product = Product(
            sku=f"AUR-{counter['n']:04d}",
            name=name or f"Brinco {counter['n']}",
            category="Brincos",
            price_cents=price_cents,
            cost_cents=cost_cents,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _factory


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def stock(db_session):
    """Put units straight into a location with an ADJUSTMENT: stock(Location.pdv(1), product, 10)."""
    def _stock(location: Location, product, quantity: int, actor_user_id=None):
        return record_movement(
            product_id=product.id,
            quantity=quantity,
            origin=None,
            destination=location,
            actor_user_id=actor_user_id,
            kind=KIND_ADJUSTMENT,
        )

    return _stock


def get_auth_token(client, email: str, password: str = TEST_PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def login(client):
    """login(user) -> Authorization headers for a fresh session of that user."""
    def _login(user, password: str = TEST_PASSWORD):
        token = get_auth_token(client, user.email, password)
        assert token, f"login failed for {user.email}"
        return auth_headers(token)

    return _login
