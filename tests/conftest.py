import pytest
from datetime import datetime
from app import create_app
from config import Config
from extensions import db as _db # Alias to avoid fixture name conflict
from models import User
from services.payment_methods import add_payment_method
from services.plan_catalog import seed_default_plans

# Fixed clock shared by the billing tests.
NOW = datetime(2025, 3, 10, 12, 0, 0)

# A card that validates against NOW and against the real clock.
VALID_CARD = {
    'card_holder': 'Jane Parent',
    'card_number': '4111111111111111',
    'expiry_month': 12,
    'expiry_year': 2035,
    'cvv': '123',
}

class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:' # Use in-memory SQLite for tests
    WTF_CSRF_ENABLED = False # Disable CSRF for form testing convenience
    SECRET_KEY = 'test-secret-key-for-forms' # WTForms/Flask-Login require a SECRET_KEY for session context
    LOG_LEVEL = 'DEBUG'
    ROLE_SYSTEM_ENABLED = False

@pytest.fixture(scope='session')
def app():
    """
    Session-wide test Flask application.
    Ensures the app is created once per test session with TestConfig.
    """
    app_instance = create_app(config_class=TestConfig)
    return app_instance

@pytest.fixture(scope='function')
def app_context(app):
    """
    Function-scoped application context.
    Pushes an app context before each test that needs it and pops it afterwards.
    This is crucial for tests that interact with Flask's application context globals
    like `current_app` or extensions initialized with `init_app`.
    """
    with app.app_context():
        yield

@pytest.fixture(scope='function')
def db(app_context): # db fixture now correctly depends on app_context
    """
    Function-scoped database fixture.
    Creates all database tables before each test and drops them afterwards.
    This ensures a clean database state for each test.
    It yields the database instance for use in tests.
    """
    _db.create_all() # Create tables based on models
    yield _db          # Provide the database session/object to the test
    _db.session.remove() # Ensure session is closed
    _db.drop_all()     # Drop all tables to clean up

@pytest.fixture(scope='function')
def client(app):
    """
    Test client fixture for making requests to the application.
    Function-scoped so the login cookie of one test never leaks into the next.
    """
    return app.test_client()

@pytest.fixture
def now():
    """The fixed 'current time' passed to the billing services."""
    return NOW

@pytest.fixture
def valid_card():
    """Fresh card details that pass PaymentMethodForm validation."""
    return dict(VALID_CARD)

@pytest.fixture
def user(db):
    """A parent account with no billing history."""
    parent = User(email='parent@example.com', full_name='Jane Parent', role='parent')
    db.session.add(parent)
    db.session.commit()
    return parent

@pytest.fixture
def other_user(db):
    """A second account, used to check ownership rules."""
    stranger = User(email='other@example.com', full_name='Other Parent', role='parent')
    db.session.add(stranger)
    db.session.commit()
    return stranger

@pytest.fixture
def plans(db):
    """The default catalog: Basic (29.99), Family (49.99), Premium (79.99), keyed by short name."""
    created = seed_default_plans()
    return {plan.name.split()[0].lower(): plan for plan in created}

@pytest.fixture
def payment_method(user):
    """The user's first (and therefore default) card."""
    return add_payment_method(user.id, dict(VALID_CARD), now=NOW)

@pytest.fixture
def auth_client(client, user):
    """A test client logged in as `user` through the Flask-Login session."""
    with client.session_transaction() as sess:
        sess['_user_id'] = str(user.id)
        sess['_fresh'] = True
    return client
