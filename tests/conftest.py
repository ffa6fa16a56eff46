import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from uuid6 import uuid7
from freshcart.auth.utils import ADMIN_ROLE, create_access_token
from freshcart.cache.ttl_cache import FeatureAvailability, InMemoryTTLCache
from freshcart.common.circuit_breaker import db_circuit
from freshcart.db.dependencies import get_session
from freshcart.main import app
from tests.fakes import FakeOrderRepository, FakeRecommendationRepository, FakeStore, NullSession, RecordingPublisher


@pytest.fixture(autouse=True)
def closed_circuit():
    db_circuit.reset()
    yield
    db_circuit.reset()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def order_repo(store):
    return FakeOrderRepository(store)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def reco_repo():
    return FakeRecommendationRepository()


@pytest.fixture
def cache():
    return InMemoryTTLCache()


@pytest.fixture
def features():
    return FeatureAvailability()


@pytest.fixture
def user_id():
    return uuid7()


@pytest.fixture
def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_access_token(uuid7(), user_roles=[ADMIN_ROLE])}"}


@pytest.fixture
def null_session():
    return NullSession()


@pytest.fixture
async def ac_client(null_session):
    async def _session():
        yield null_session

    app.dependency_overrides[get_session] = _session
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()
