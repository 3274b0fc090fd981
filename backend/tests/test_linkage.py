from urllib.parse import parse_qs, urlparse

import pytest

from backend.errors import AuthExchangeError, MissingParameter
from backend.models import UserRecord
from backend.snapshot import oauth_key, repos_key, user_key
from backend.tests.fakes import GOOD_CODE, TEST_TOKEN, make_repo


def test_begin_authorization_embeds_chat_id_as_state(services, user_store, snapshot) -> None:
    first = services.linkage.begin_authorization("1001")
    second = services.linkage.begin_authorization("1001")

    for url in (first, second):
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.netloc == "github.com"
        assert parsed.path == "/login/oauth/authorize"
        assert query["state"] == ["1001"]
        assert query["client_id"] == ["client-id"]
        assert query["scope"] == ["user repo delete_repo"]
        assert query["redirect_uri"] == ["https://bridge.example.com/auth/github/callback"]
    assert user_store.writes == 0
    assert user_store.records == {}
    assert snapshot.read(oauth_key("1001"))["chatId"] == "1001"


def test_begin_authorization_requires_chat_id(services) -> None:
    with pytest.raises(MissingParameter):
        services.linkage.begin_authorization("")


@pytest.mark.asyncio
async def test_complete_authorization_without_code_makes_no_request(services, upstream) -> None:
    with pytest.raises(MissingParameter):
        await services.linkage.complete_authorization("", "1001")
    with pytest.raises(MissingParameter):
        await services.linkage.complete_authorization(GOOD_CODE, "")
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_complete_authorization_links_user_in_both_stores(
    services, user_store, snapshot, upstream
) -> None:
    user = await services.linkage.complete_authorization(GOOD_CODE, "1001")

    assert user.is_linked is True
    assert user.github_token == TEST_TOKEN
    assert user.github_id == "4242"
    assert user.github_username == "octocat"

    durable = user_store.get("1001")
    assert durable.is_linked is True and durable.github_token == TEST_TOKEN
    cached = UserRecord.model_validate(snapshot.read(user_key("1001")))
    assert cached.is_linked is True and cached.github_token == TEST_TOKEN

    fetched = services.linkage.get_user("1001")
    assert fetched.is_linked is True and fetched.github_token

    assert upstream.sent_messages[0]["chat_id"] == "1001"
    assert "octocat" in upstream.sent_messages[0]["text"]


@pytest.mark.asyncio
async def test_rejected_code_raises_auth_exchange_error(services, user_store, upstream) -> None:
    with pytest.raises(AuthExchangeError) as excinfo:
        await services.linkage.complete_authorization("stale-code", "1001")

    assert "incorrect or expired" in str(excinfo.value)
    assert user_store.records == {}
    assert upstream.github_calls("GET", "/user") == 0


@pytest.mark.asyncio
async def test_notification_failure_does_not_fail_linkage(services, user_store, upstream) -> None:
    upstream.telegram_down = True

    user = await services.linkage.complete_authorization(GOOD_CODE, "1001")

    assert user.is_linked is True
    assert user_store.records["1001"].github_token == TEST_TOKEN


@pytest.mark.asyncio
async def test_reauthorization_keeps_agreement_and_overwrites_token(
    services, user_store
) -> None:
    user_store.records["1001"] = UserRecord(
        chat_id="1001", has_agreed=True, github_token="old-token", github_username="old"
    )

    user = await services.linkage.complete_authorization(GOOD_CODE, "1001")

    assert user.has_agreed is True
    assert user.github_token == TEST_TOKEN
    assert user.github_username == "octocat"
    assert user.created_at == user_store.records["1001"].created_at


def test_agree_to_terms_upserts(services, user_store, snapshot) -> None:
    created = services.linkage.agree_to_terms("2002")
    again = services.linkage.agree_to_terms("2002")

    assert created.has_agreed is True and created.is_linked is False
    assert again.created_at == created.created_at
    assert user_store.records["2002"].has_agreed is True
    assert snapshot.read(user_key("2002"))["has_agreed"] is True


@pytest.mark.asyncio
async def test_reauthorization_drops_cached_repository_list(
    services, upstream, snapshot, linked_user
) -> None:
    before = await services.gateway.list_repositories(linked_user.chat_id)
    assert [repo["full_name"] for repo in before] == ["octocat/hello", "octocat/spoon-knife"]

    upstream.profile = {"id": 9999, "login": "someone-else"}
    upstream.repos = [make_repo("theirs", owner="someone-else")]
    await services.linkage.complete_authorization(GOOD_CODE, linked_user.chat_id)

    assert snapshot.read(repos_key(linked_user.chat_id)) is None
    after = await services.gateway.list_repositories(linked_user.chat_id)
    assert [repo["full_name"] for repo in after] == ["someone-else/theirs"]


@pytest.mark.asyncio
async def test_empty_profile_body_still_links(services, upstream, user_store) -> None:
    upstream.profile = None

    user = await services.linkage.complete_authorization(GOOD_CODE, "1001")

    assert user.is_linked is True
    assert user.github_id is None
    assert user.github_username is None
    assert user_store.records["1001"].github_token == TEST_TOKEN
