"""Shared test fixtures."""
from datetime import date, datetime

import pytest
from unittest.mock import patch, MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from leadtrack.database import Base


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine('sqlite:///:memory:')
    import leadtrack.models.lead_record
    import leadtrack.models.product
    import leadtrack.models.campaign_stat
    import leadtrack.models.clarity
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    """SQLAlchemy session bound to in-memory SQLite. Rolls back after each test."""
    Session = sessionmaker(bind=db_engine)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def patch_get_session(db_session):
    """Route all get_session() calls to the test session.

    We disable close() so that route handlers calling session.close()
    in their finally blocks don't invalidate the shared test session.
    """
    _real_close = db_session.close
    db_session.close = lambda: None
    with patch('leadtrack.database.get_session', return_value=db_session):
        yield db_session
    db_session.close = _real_close


@pytest.fixture
def mock_redis():
    """Mock Redis client. Returns a MagicMock with common Redis methods."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.hgetall.return_value = {}
    mock.incr.return_value = 1
    with patch('leadtrack.extensions.redis_client', mock):
        yield mock


@pytest.fixture
def app(mock_redis):
    """Flask test app."""
    from leadtrack import create_app
    app = create_app()
    app.config['TESTING'] = True
    yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_record(db_session):
    """Factory fixture — inserts a LeadRecord with explicit timestamps."""
    from leadtrack.models.lead_record import LeadRecord

    def _make(**overrides):
        defaults = dict(
            lead_id=None,
            offer_id=None,
            campaign='CampA',
            adset='SetA',
            ad='AdA',
            notification_type='lead',
            date=date(2024, 3, 1),
            created_at=datetime(2024, 3, 1, 10, 0, 0),
        )
        defaults.update(overrides)
        record = LeadRecord(**defaults)
        db_session.add(record)
        db_session.commit()
        return record
    return _make


@pytest.fixture
def make_product(db_session):
    """Factory fixture — inserts a Product."""
    from leadtrack.models.product import Product

    def _make(name='Gota Slim', offer_id='OFF1', account_name='Conta A'):
        product = Product(name=name, offer_id=offer_id, account_name=account_name)
        db_session.add(product)
        db_session.commit()
        return product
    return _make
