import os, sys, pytest
# Ensure the backend directory is on path so 'stockhub' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from stockhub import create_app, get_db, dispose_db
from stockhub.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import stockhub.models.business  # noqa: F401
import stockhub.models.product  # noqa: F401
import stockhub.models.audit  # noqa: F401

TEST_CONFIG = {
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
    'TESTING': True,
    'LOG_LEVEL': 'WARNING',
}


@pytest.fixture()
def app_instance():
    # fresh in-memory database per test
    app = create_app(dict(TEST_CONFIG))
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app
    dispose_db()


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def session(app_instance):
    with app_instance.app_context():
        yield get_db()
