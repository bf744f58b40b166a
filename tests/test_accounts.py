from app import db as db_module
from app.models import AdAccount, AdAccountSubscription, PerAccountBillingHistory, StripeCustomer


def _add_account(client, user_id, name="Main", account_id="act_1"):
    return client.post(
        "/api/accounts",
        json={"userId": user_id, "accountName": name, "accountId": account_id},
    )


def test_add_and_list_accounts(client, user):
    resp = _add_account(client, user.id)
    assert resp.status_code == 200
    data = resp.json()
    assert data["account"]["accountId"] == "act_1"
    assert data["totalAccounts"] == 1
    assert data["nextCharge"] == 10.0
    assert "$10.00" in data["message"]

    _add_account(client, user.id, "Second", "act_2")
    resp = client.get("/api/accounts", params={"userId": user.id})
    assert resp.status_code == 200
    data = resp.json()
    assert len(data["accounts"]) == 2
    assert data["totalAccounts"] == 2
    assert data["pricePerAccount"] == 10.0
    assert data["nextCharge"] == 20.0


def test_list_excludes_inactive_from_totals(client, user):
    _add_account(client, user.id)
    with db_module.SessionLocal() as db:
        db.add(
            AdAccount(
                user_id=user.id,
                account_name="Paused",
                account_id="act_paused",
                status="inactive",
            )
        )
        db.commit()
    data = client.get("/api/accounts", params={"userId": user.id}).json()
    assert len(data["accounts"]) == 2
    assert data["totalAccounts"] == 1
    assert data["nextCharge"] == 10.0


def test_add_account_missing_name(client, user):
    resp = client.post("/api/accounts", json={"userId": user.id})
    assert resp.status_code == 400
    assert resp.json()["detail"] == {
        "code": "BAD_REQUEST",
        "message": "Missing required field: accountName",
    }


def test_add_account_duplicate(client, user):
    assert _add_account(client, user.id).status_code == 200
    resp = _add_account(client, user.id, "Again")
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "CONFLICT"


def test_add_account_unknown_user(client):
    resp = _add_account(client, 9999)
    assert resp.status_code == 404


def test_list_requires_user_id(client):
    resp = client.get("/api/accounts")
    assert resp.status_code == 400
    assert resp.json()["detail"]["message"] == "Missing required field: userId"


def test_delete_account(client, user):
    row_id = _add_account(client, user.id).json()["account"]["id"]
    _add_account(client, user.id, "Second", "act_2")

    resp = client.delete(
        "/api/accounts", params={"accountId": row_id, "userId": user.id}
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["deletedAccount"]["accountId"] == "act_1"
    assert data["totalAccounts"] == 1
    assert data["nextCharge"] == 10.0


def test_delete_account_updates_billing_summary(client, user, fake_stripe):
    row_id = _add_account(client, user.id).json()["account"]["id"]
    _add_account(client, user.id, "Second", "act_2")
    _add_account(client, user.id, "Third", "act_3")
    before = client.get("/api/billing/accounts", params={"userId": user.id}).json()
    assert before["totalAccounts"] == 3
    assert before["nextCharge"] == 30.0

    client.delete("/api/accounts", params={"accountId": row_id, "userId": user.id})

    after = client.get("/api/billing/accounts", params={"userId": user.id}).json()
    assert after["totalAccounts"] == before["totalAccounts"] - 1
    assert after["nextCharge"] == 20.0
    assert {a["accountId"] for a in after["accounts"]} == {"act_2", "act_3"}


def test_delete_account_not_owned(client, user):
    row_id = _add_account(client, user.id).json()["account"]["id"]
    resp = client.delete(
        "/api/accounts", params={"accountId": row_id, "userId": user.id + 1}
    )
    assert resp.status_code == 404


def test_billing_summary(client, user, fake_stripe):
    _add_account(client, user.id)
    _add_account(client, user.id, "Second", "act_2")
    with db_module.SessionLocal() as db:
        db.add(StripeCustomer(user_id=user.id, stripe_customer_id="cus_known"))
        sub = AdAccountSubscription(
            user_id=user.id,
            ad_account_id="act_1",
            ad_account_name="Main",
            stripe_subscription_id="sub_1",
            plan_id="basic",
            billing_cycle="monthly",
            amount_cents=1000,
            status="active",
        )
        db.add(sub)
        db.flush()
        for i in range(7):
            db.add(
                PerAccountBillingHistory(
                    subscription_id=sub.id,
                    user_id=user.id,
                    ad_account_id="act_1",
                    stripe_invoice_id=f"in_{i}",
                    amount_cents=1000,
                    currency="usd",
                    status="paid",
                )
            )
        db.commit()
    fake_stripe.upcoming = {"next_payment_attempt": 1769904000}

    resp = client.get("/api/billing/accounts", params={"userId": user.id})
    assert resp.status_code == 200
    data = resp.json()
    assert data["totalAccounts"] == 2
    assert data["activeSubscriptions"] == 1
    assert data["nextCharge"] == 20.0
    assert data["nextBillingDate"].startswith("2026-02-01")
    assert len(data["billingHistory"]) == 5
    assert len(data["accounts"]) == 2


def test_billing_summary_without_customer(client, user, fake_stripe):
    data = client.get("/api/billing/accounts", params={"userId": user.id}).json()
    assert data["totalAccounts"] == 0
    assert data["nextCharge"] == 0
    assert data["nextBillingDate"] is None
    assert data["billingHistory"] == []
