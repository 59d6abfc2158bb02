import pathlib
import sys

import pytest

# Ensure repo root is on sys.path
root = pathlib.Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

from walletpoint.app import create_app  # noqa: E402
from walletpoint.dao import Database  # noqa: E402
from walletpoint.marketplace import MarketplaceService, StatusPolicy  # noqa: E402
from walletpoint.testing import create_test_db  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    return create_test_db(str(tmp_path / "test_app.sqlite"))


@pytest.fixture
def db(db_path):
    return Database(db_path)


@pytest.fixture
def conn(db):
    with db.connect() as c:
        yield c


@pytest.fixture
def service(db):
    return MarketplaceService(db, StatusPolicy())


@pytest.fixture
def app(db_path):
    return create_app({"DB_PATH": db_path, "TESTING": True})


@pytest.fixture
def client(app):
    return app.test_client()
