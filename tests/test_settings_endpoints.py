from conftest import create_expense


def test_settings_defaults(client, headers):
    res = client.get("/api/settings", headers=headers)
    assert res.status_code == 200
    assert res.json() == {
        "currency": "USD",
        "theme": "system",
        "language": "en",
        "notifications_enabled": True,
        "onboarding_completed": False,
    }


def test_settings_partial_update(client, headers):
    res = client.patch("/api/settings", json={"currency": "eur", "theme": "dark"}, headers=headers)
    assert res.status_code == 200
    data = res.json()
    assert data["currency"] == "EUR"
    assert data["theme"] == "dark"
    assert data["language"] == "en"

    res = client.patch("/api/settings", json={"onboarding_completed": True}, headers=headers)
    assert res.json()["onboarding_completed"] is True
    assert res.json()["currency"] == "EUR"


def test_settings_reject_bad_values(client, headers):
    assert client.patch("/api/settings", json={"theme": "neon"}, headers=headers).status_code == 422
    assert client.patch("/api/settings", json={"currency": "EURO"}, headers=headers).status_code == 422


def test_new_expenses_use_settings_currency(client, headers):
    client.patch("/api/settings", json={"currency": "GBP"}, headers=headers)
    expense = create_expense(client, headers, 10)
    assert expense["currency"] == "GBP"

    explicit = create_expense(client, headers, 10, currency="jpy")
    assert explicit["currency"] == "JPY"


def test_settings_require_auth(client):
    assert client.get("/api/settings").status_code == 401
