import pytest
from decimal import Decimal
from flask import g, has_app_context
from flask_login import FlaskLoginClient
from app import create_app
from config import Config
from extensions import db as _db # Alias to avoid fixture name conflict
from models import Plan, PlanTypeEnum, User, UserRoleEnum

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:' # Use in-memory SQLite for tests
    WTF_CSRF_ENABLED = False
    SECRET_KEY = 'test-secret-key' # Flask-Login keeps the user id in the signed session cookie
    RAZORPAY_KEY_ID = 'rzp_test_key'
    RAZORPAY_KEY_SECRET = 'test_key_secret'
    RAZORPAY_WEBHOOK_SECRET = 'test_webhook_secret'
    RAZORPAY_API_BASE = 'https://razorpay.test'
    PAYMENT_GATEWAY_TIMEOUT = 2
    SUBSCRIPTIONS_PER_PAGE = 20
    LOG_LEVEL = 'DEBUG'


class ApiTestClient(FlaskLoginClient):
    """
    FlaskLoginClient whose requests each load the logged-in user afresh.
    Requests run inside the test's app context, where Flask-Login caches the user on `g`.
    """
    def open(self, *args, **kwargs):
        if has_app_context():
            g.pop('_login_user', None)
        return super().open(*args, **kwargs)


@pytest.fixture(scope='session')
def app():
    """
    Session-wide test Flask application.
    Ensures the app is created once per test session with TestConfig.
    """
    app_instance = create_app(config_class=TestConfig)
    app_instance.test_client_class = ApiTestClient
    return app_instance

@pytest.fixture(scope='function')
def app_context(app):
    """
    Function-scoped application context.
    Pushes an app context before each test that needs it and pops it afterwards.
    """
    with app.app_context():
        yield

@pytest.fixture(scope='function')
def db(app_context):
    """
    Function-scoped database fixture.
    Creates all database tables before each test and drops them afterwards.
    """
    _db.create_all()
    yield _db
    _db.session.remove()
    _db.drop_all()

@pytest.fixture
def admin(db):
    user = User(name='Admin One', mobile='9000000001', role=UserRoleEnum.ADMIN)
    db.session.add(user)
    db.session.commit()
    return user

@pytest.fixture
def owner(db):
    """The subscriber used across the payment scenarios (user 42)."""
    user = User(id=42, name='Fleet Owner', mobile='9000000042', role=UserRoleEnum.OWNER)
    db.session.add(user)
    db.session.commit()
    return user

@pytest.fixture
def other_owner(db):
    user = User(name='Other Owner', mobile='9000000043', role=UserRoleEnum.OWNER)
    db.session.add(user)
    db.session.commit()
    return user

@pytest.fixture
def monthly_plan(db):
    """Plan 7: 999.00 for 30 days."""
    plan = Plan(id=7, name='Monthly Plan', type=PlanTypeEnum.MONTHLY, price=Decimal('999.00'),
                duration_days=30, features=['Unlimited machines'], display_order=2)
    db.session.add(plan)
    db.session.commit()
    return plan

@pytest.fixture
def trial_plan(db):
    plan = Plan(name='Basic Plan', type=PlanTypeEnum.TRIAL, price=Decimal('0'),
                duration_days=7, features=['Up to 5 machines'], display_order=1)
    db.session.add(plan)
    db.session.commit()
    return plan

@pytest.fixture
def inactive_plan(db):
    plan = Plan(name='Legacy Plan', type=PlanTypeEnum.QUARTERLY, price=Decimal('2000.00'),
                duration_days=90, is_active=False, display_order=9)
    db.session.add(plan)
    db.session.commit()
    return plan

@pytest.fixture
def client(app):
    """Anonymous test client."""
    return app.test_client()

@pytest.fixture
def admin_client(app, admin):
    return app.test_client(user=admin)

@pytest.fixture
def owner_client(app, owner):
    return app.test_client(user=owner)

@pytest.fixture
def other_owner_client(app, other_owner):
    return app.test_client(user=other_owner)
