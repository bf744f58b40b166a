import pytest


@pytest.mark.smoke
def test_signup_to_usage_report(client, fake_stripe):
    """User signs up, connects two accounts, subscribes them and reports usage."""
    user = client.post("/api/users", json={"email": "smoke@example.com"}).json()["user"]

    for account_id in ("act_a", "act_b"):
        resp = client.post(
            "/api/accounts",
            json={"userId": user["id"], "accountName": account_id, "accountId": account_id},
        )
        assert resp.status_code == 200

    resp = client.post(
        "/api/create-per-account-subscriptions",
        json={
            "userId": user["id"],
            "adAccounts": [{"id": "act_a", "name": "A"}, {"id": "act_b", "name": "B"}],
            "planId": "pro",
            "billingCycle": "monthly",
        },
    )
    assert resp.json()["summary"]["created"] == 2

    summary = client.get("/api/billing/accounts", params={"userId": user["id"]}).json()
    assert summary["activeSubscriptions"] == 2
    assert summary["nextCharge"] == 20.0

    report = client.post("/api/billing/accounts", json={"userId": user["id"]}).json()
    assert report["reported"] == 2
