import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from conftest import seed_member
from database import get_db
from main import app
from routers.recharge import get_ecpay_config
from services.ecpay import EcpayConfig, compute_check_mac_value, verify_check_mac_value
from services.session_token import create_session_token

ADMIN_ID = "recharge-admin"
MEMBER_ID = "recharge-member"
ADMIN_HEADER = {"Authorization": f"Bearer {create_session_token(ADMIN_ID, role='admin')['token']}"}
MEMBER_HEADER = {"Authorization": f"Bearer {create_session_token(MEMBER_ID)['token']}"}

CONFIG = EcpayConfig(
    merchant_id="3002607",
    hash_key="pwFHCqoQZGmho4w6",
    hash_iv="EkRm7iFT261dpevs",
    checkout_url="https://payment-stage.ecpay.com.tw/Cashier/AioCheckOut/V5",
    return_url="https://points.test/recharge/ecpay/notify",
    client_back_url="https://points.test/recharge",
)


@pytest_asyncio.fixture
async def recharge_client(session_maker):
    await seed_member(session_maker, ADMIN_ID, role="admin")
    await seed_member(session_maker, MEMBER_ID, balance=5)

    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ecpay_config] = lambda: CONFIG
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_ecpay_config, None)


@pytest.mark.asyncio
async def test_admin_recharge_credits_member(recharge_client):
    client = recharge_client
    response = await client.post(
        "/recharge",
        headers=ADMIN_HEADER,
        json={"accountId": MEMBER_ID, "amount": 40, "memo": " promo "},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["amount"] == 40
    assert payload["balance"] == 45
    assert payload["ledger_id"]


@pytest.mark.asyncio
async def test_recharge_errors(recharge_client):
    client = recharge_client

    zero = await client.post("/recharge", headers=ADMIN_HEADER, json={"account_id": MEMBER_ID, "amount": 0})
    assert zero.status_code == 400
    assert zero.json() == {"ok": False, "error": "INVALID_AMOUNT"}

    fractional = await client.post("/recharge", headers=ADMIN_HEADER, json={"account_id": MEMBER_ID, "amount": 2.5})
    assert fractional.json()["error"] == "INVALID_AMOUNT"

    ghost = await client.post("/recharge", headers=ADMIN_HEADER, json={"account_id": "ghost", "amount": 10})
    assert ghost.status_code == 404
    assert ghost.json()["error"] == "ACCOUNT_NOT_FOUND"

    not_admin = await client.post("/recharge", headers=MEMBER_HEADER, json={"account_id": MEMBER_ID, "amount": 10})
    assert not_admin.status_code == 403


@pytest.mark.asyncio
async def test_member_role_claim_alone_does_not_grant_admin(recharge_client):
    client = recharge_client
    forged = {"Authorization": f"Bearer {create_session_token(MEMBER_ID, role='admin')['token']}"}
    response = await client.post("/recharge", headers=forged, json={"account_id": MEMBER_ID, "amount": 10})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_ecpay_checkout_notify_and_order_status(recharge_client):
    client = recharge_client

    checkout = await client.post("/recharge/ecpay", headers=MEMBER_HEADER, json={"amount": 100, "points": 120})
    assert checkout.status_code == 200
    checkout_payload = checkout.json()
    assert checkout_payload["action"] == CONFIG.checkout_url
    assert verify_check_mac_value(checkout_payload["form"], CONFIG.hash_key, CONFIG.hash_iv)
    trade_no = checkout_payload["merchant_trade_no"]

    notify = {
        "MerchantID": CONFIG.merchant_id,
        "MerchantTradeNo": trade_no,
        "RtnCode": "1",
        "RtnMsg": "Succeeded",
        "TradeNo": "2510091234567890",
        "TradeAmt": "100",
        "PaymentType": "Credit_CreditCard",
    }
    notify["CheckMacValue"] = compute_check_mac_value(notify, CONFIG.hash_key, CONFIG.hash_iv)

    first = await client.post("/recharge/ecpay/notify", data=notify)
    assert first.status_code == 200
    assert first.text == "1|OK"
    replay = await client.post("/recharge/ecpay/notify", data=notify)
    assert replay.text == "1|OK"

    status = await client.get(f"/recharge/ecpay/orders/{trade_no}", headers=MEMBER_HEADER)
    assert status.status_code == 200
    order = status.json()["order"]
    assert order["status"] == "paid"
    assert order["points"] == 120

    summary = await client.get("/billing/points", headers=MEMBER_HEADER)
    assert summary.json()["balance"] == 125

    other = await client.get(f"/recharge/ecpay/orders/{trade_no}", headers=ADMIN_HEADER)
    assert other.status_code == 403


@pytest.mark.asyncio
async def test_ecpay_notify_with_bad_signature_is_rejected(recharge_client):
    client = recharge_client
    response = await client.post(
        "/recharge/ecpay/notify",
        data={"MerchantTradeNo": "PT1", "RtnCode": "1", "CheckMacValue": "DEADBEEF"},
    )
    assert response.status_code == 400
    assert response.text == "0|INVALID_SIGNATURE"

    missing = await client.get("/recharge/ecpay/orders/PT404", headers=MEMBER_HEADER)
    assert missing.status_code == 404
    assert missing.json()["error"] == "ORDER_NOT_FOUND"


@pytest.mark.asyncio
async def test_boolean_recharge_amount_is_rejected(recharge_client):
    client = recharge_client
    response = await client.post("/recharge", headers=ADMIN_HEADER, json={"account_id": MEMBER_ID, "amount": True})
    assert response.status_code == 400
    assert response.json()["error"] == "BAD_REQUEST"

    summary = await client.get("/billing/points", headers=MEMBER_HEADER)
    assert summary.json()["balance"] == 5


@pytest.mark.asyncio
async def test_order_history_lists_only_the_callers_orders(recharge_client):
    client = recharge_client
    mine = []
    for amount in (100, 200):
        checkout = await client.post("/recharge/ecpay", headers=MEMBER_HEADER, json={"amount": amount})
        mine.append(checkout.json()["merchant_trade_no"])
    await client.post("/recharge/ecpay", headers=ADMIN_HEADER, json={"amount": 300})

    response = await client.get("/recharge/ecpay/orders", headers=MEMBER_HEADER)
    assert response.status_code == 200
    orders = response.json()["orders"]
    assert sorted(order["merchant_trade_no"] for order in orders) == sorted(mine)
    assert all(order["status"] == "pending" for order in orders)

    limited = await client.get("/recharge/ecpay/orders", headers=MEMBER_HEADER, params={"limit": 1})
    assert len(limited.json()["orders"]) == 1

    unauthenticated = await client.get("/recharge/ecpay/orders")
    assert unauthenticated.status_code == 401


@pytest.mark.asyncio
async def test_payment_info_callback_stores_atm_instructions(recharge_client):
    client = recharge_client
    checkout = await client.post("/recharge/ecpay", headers=MEMBER_HEADER, json={"amount": 100})
    trade_no = checkout.json()["merchant_trade_no"]

    info = {
        "MerchantID": CONFIG.merchant_id,
        "MerchantTradeNo": trade_no,
        "RtnCode": "2",
        "RtnMsg": "Get VirtualAccount Succeeded",
        "TradeNo": "2510091234567891",
        "TradeAmt": "100",
        "PaymentType": "ATM_TAISHIN",
        "BankCode": "812",
        "vAccount": "9103522175887271",
        "ExpireDate": "2025/10/12",
    }
    info["CheckMacValue"] = compute_check_mac_value(info, CONFIG.hash_key, CONFIG.hash_iv)

    response = await client.post("/recharge/ecpay/payment-info", data=info)
    assert response.status_code == 200
    assert response.text == "1|OK"

    status = await client.get(f"/recharge/ecpay/orders/{trade_no}", headers=MEMBER_HEADER)
    order = status.json()["order"]
    assert order["status"] == "pending"
    assert order["payment_type"] == "ATM_TAISHIN"
    assert order["payment_info"]["BankCode"] == "812"
    assert order["payment_info"]["vAccount"] == "9103522175887271"

    summary = await client.get("/billing/points", headers=MEMBER_HEADER)
    assert summary.json()["balance"] == 5

    forged = dict(info, BankCode="000")
    rejected = await client.post("/recharge/ecpay/payment-info", data=forged)
    assert rejected.status_code == 400
    assert rejected.text == "0|INVALID_SIGNATURE"
