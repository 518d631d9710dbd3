import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import seed_distribution, seed_member
from database import get_db
from main import app
from routers.billing import get_billing_service
from services.billing import DownloadBillingService
from services.dedupe import TableDedupeGuard
from services.distributions import DistributionDirectory
from services.session_token import create_session_token

OWNER_ID = "route-owner"
OWNER_HEADER = {"Authorization": f"Bearer {create_session_token(OWNER_ID)['token']}"}


@pytest_asyncio.fixture
async def billing_client(session_maker):
    await seed_member(session_maker, OWNER_ID, balance=10)
    await seed_member(session_maker, "broke-owner", balance=2)
    await seed_member(session_maker, "regional-owner", balance=40)
    await seed_distribution(session_maker, "dist-1", OWNER_ID, code="APP-1")
    await seed_distribution(session_maker, "dist-cn", "regional-owner", code="APP-CN", network_area="CN")
    await seed_distribution(session_maker, "dist-broke", "broke-owner")

    service = DownloadBillingService(
        guard=TableDedupeGuard(),
        distributions=DistributionDirectory(),
        session_maker=session_maker,
        clock=lambda: 1_760_000_000.0,
    )

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_service] = lambda: service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    await service.drain()
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_billing_service, None)


@pytest.mark.asyncio
async def test_bill_download_then_replay_is_deduped(billing_client):
    client = billing_client
    body = {"accountId": OWNER_ID, "distributionId": "dist-1", "platform": "apk"}

    first = await client.post("/billing/bill", json=body)
    assert first.status_code == 200
    assert first.json() == {"ok": True, "cost": 3}

    replay = await client.post("/billing/bill", json=body)
    assert replay.status_code == 200
    assert replay.json() == {"ok": True, "cost": 0, "deduped": True}


@pytest.mark.asyncio
async def test_bill_download_accepts_snake_case_and_link_id(billing_client):
    client = billing_client
    response = await client.post(
        "/billing/bill",
        json={"account_id": "regional-owner", "link_id": "dist-cn", "platform": "ipa"},
    )
    assert response.status_code == 200
    assert response.json() == {"ok": True, "cost": 30}


@pytest.mark.asyncio
async def test_bill_download_error_statuses(billing_client):
    client = billing_client

    insufficient = await client.post(
        "/billing/bill",
        json={"accountId": "broke-owner", "distributionId": "dist-broke", "platform": "apk"},
    )
    assert insufficient.status_code == 402
    assert insufficient.json() == {"ok": False, "error": "INSUFFICIENT_POINTS"}

    missing_distribution = await client.post(
        "/billing/bill",
        json={"accountId": OWNER_ID, "distributionId": "nope", "platform": "apk"},
    )
    assert missing_distribution.status_code == 404
    assert missing_distribution.json()["error"] == "DISTRIBUTION_NOT_FOUND"

    missing_account = await client.post(
        "/billing/bill",
        json={"accountId": "ghost", "distributionId": "dist-1", "platform": "apk"},
    )
    assert missing_account.status_code == 404
    assert missing_account.json()["error"] == "ACCOUNT_NOT_FOUND"

    bad_platform = await client.post(
        "/billing/bill",
        json={"accountId": OWNER_ID, "distributionId": "dist-1", "platform": "dmg"},
    )
    assert bad_platform.status_code == 400
    assert bad_platform.json()["error"] == "INVALID_PLATFORM"

    malformed = await client.post("/billing/bill", json={"accountId": OWNER_ID})
    assert malformed.status_code == 400
    assert malformed.json()["error"] == "BAD_REQUEST"
    assert "distributionId" in malformed.json()["fields"] or "distribution_id" in malformed.json()["fields"]


@pytest.mark.asyncio
async def test_points_summary_lists_balance_costs_and_entries(billing_client):
    client = billing_client
    await client.post("/billing/bill", json={"accountId": OWNER_ID, "distributionId": "dist-1", "platform": "ipa"})

    response = await client.get("/billing/points", headers=OWNER_HEADER)
    assert response.status_code == 200
    payload = response.json()
    assert payload["balance"] == 5
    assert payload["costs"]["regional"]["ipa"] == 30
    reasons = sorted(entry["reason"] for entry in payload["recent_entries"])
    assert reasons == ["download", "recharge"]
    assert sum(entry["delta"] for entry in payload["recent_entries"]) == 5

    unauthenticated = await client.get("/billing/points")
    assert unauthenticated.status_code == 401


@pytest.mark.asyncio
async def test_distribution_download_stats_are_owner_only(billing_client, session_maker):
    client = billing_client
    await client.post("/billing/bill", json={"accountId": OWNER_ID, "distributionId": "dist-1", "platform": "apk"})
    await app.dependency_overrides[get_billing_service]().drain()

    response = await client.get(
        "/billing/distributions/dist-1/downloads",
        headers=OWNER_HEADER,
        params={"start_date": "2025-10-01", "end_date": "2025-10-31"},
    )
    assert response.status_code == 200
    days = response.json()["days"]
    assert days == [{"date": "2025-10-09", "apk_downloads": 1, "ipa_downloads": 0}]

    stranger = {"Authorization": f"Bearer {create_session_token('broke-owner')['token']}"}
    forbidden = await client.get("/billing/distributions/dist-1/downloads", headers=stranger)
    assert forbidden.status_code == 403
