import httpx
import pytest
from fastapi.testclient import TestClient

from backend import config
from backend.main import Services, build_services, create_app
from backend.models import UserRecord
from backend.snapshot import SnapshotStore
from backend.tests.fakes import TEST_TOKEN, FakeClock, FakeUpstream, InMemoryUserStore


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "TELEGRAM_BOT_TOKEN", "123:test")
    monkeypatch.setattr(config, "GITHUB_CLIENT_ID", "client-id")
    monkeypatch.setattr(config, "GITHUB_CLIENT_SECRET", "client-secret")
    monkeypatch.setattr(config, "PUBLIC_URL", "https://bridge.example.com")
    monkeypatch.setattr(config, "AGREEMENT_URL", "https://bridge.example.com/agreement")
    monkeypatch.setattr(config, "REPO_CACHE_TTL_SECONDS", 300)


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def user_store() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture()
def snapshot(tmp_path) -> SnapshotStore:
    return SnapshotStore(str(tmp_path / "data.json"))


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def services(
    upstream: FakeUpstream,
    user_store: InMemoryUserStore,
    snapshot: SnapshotStore,
    clock: FakeClock,
) -> Services:
    return build_services(
        store=user_store,
        snapshot=snapshot,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handle)),
        clock=clock,
        invalidate_on_create=True,
    )


@pytest.fixture()
def client(services: Services) -> TestClient:
    return TestClient(create_app(services, register_webhook=False))


@pytest.fixture()
def linked_user(user_store: InMemoryUserStore) -> UserRecord:
    record = UserRecord(
        chat_id="1001",
        github_id="4242",
        github_token=TEST_TOKEN,
        github_username="octocat",
        has_agreed=True,
    )
    user_store.records[record.chat_id] = record
    return record
