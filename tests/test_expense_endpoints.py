from conftest import create_expense, default_category_id


def test_create_expense(client, headers):
    cat_id = default_category_id(client, headers)
    payload = {
        "amount": 100.00,
        "expense_date": "2025-01-01",
        "category_id": cat_id,
        "description": "Test Expense",
        "payment_method": "cash",
        "notes": "for testing",
    }
    res = client.post("/api/expenses", json=payload, headers=headers)
    assert res.status_code == 201

    data = res.json()
    assert float(data["amount"]) == 100.00
    assert data["currency"] == "USD"
    assert data["category_id"] == cat_id
    assert data["payment_method"] == "cash"
    assert data["description"] == "Test Expense"


def test_create_expense_requires_auth(client):
    res = client.post(
        "/api/expenses",
        json={"amount": 1, "expense_date": "2025-01-01", "category_id": 1},
    )
    assert res.status_code == 401
    assert res.json()["detail"] == "Unauthorized"


def test_create_expense_uses_settings_currency(client, headers):
    client.patch("/api/settings", json={"currency": "eur"}, headers=headers)
    data = create_expense(client, headers, 10)
    assert data["currency"] == "EUR"

    data = create_expense(client, headers, 10, currency="gbp")
    assert data["currency"] == "GBP"


def test_create_expense_invalid_category(client, headers):
    res = client.post(
        "/api/expenses",
        json={"amount": 10.0, "expense_date": "2025-01-01", "category_id": 999999},
        headers=headers,
    )
    assert res.status_code == 400
    assert "Category not found" in res.text


def test_create_expense_negative_amount(client, headers):
    res = client.post(
        "/api/expenses",
        json={
            "amount": -10.0,
            "expense_date": "2025-01-01",
            "category_id": default_category_id(client, headers),
        },
        headers=headers,
    )
    assert res.status_code == 422
    assert "Amount must be greater than 0" in res.text


def test_create_expense_bad_date(client, headers):
    res = client.post(
        "/api/expenses",
        json={
            "amount": 10.0,
            "expense_date": "01/02/2025",
            "category_id": default_category_id(client, headers),
        },
        headers=headers,
    )
    assert res.status_code == 422


def test_read_expense(client, headers):
    created = create_expense(client, headers, 42, description="Lunch")
    res = client.get(f"/api/expenses/{created['id']}", headers=headers)
    assert res.status_code == 200
    assert res.json()["description"] == "Lunch"

    assert client.get("/api/expenses/999999", headers=headers).status_code == 404


def test_update_expense(client, headers):
    created = create_expense(client, headers, 150, description="Original")
    new_cat = default_category_id(client, headers, "Shopping")

    res = client.patch(
        f"/api/expenses/{created['id']}",
        json={"description": "Updated", "amount": 250.0, "category_id": new_cat},
        headers=headers,
    )
    assert res.status_code == 200
    data = res.json()
    assert data["description"] == "Updated"
    assert float(data["amount"]) == 250.0
    assert data["category_id"] == new_cat


def test_update_expense_invalid_category(client, headers):
    created = create_expense(client, headers, 20)
    res = client.patch(f"/api/expenses/{created['id']}", json={"category_id": 999999}, headers=headers)
    assert res.status_code == 400
    assert "Category not found" in res.text


def test_update_expense_only_notes_preserves_other_fields(client, headers):
    original = create_expense(client, headers, 100.5, description="Nobu dinner", notes="Birthday")

    res = client.patch(f"/api/expenses/{original['id']}", json={"notes": "Updated note"}, headers=headers)
    assert res.status_code == 200
    data = res.json()

    assert data["notes"] == "Updated note"
    assert data["description"] == original["description"]
    assert data["amount"] == original["amount"]
    assert data["expense_date"] == original["expense_date"]
    assert data["category_id"] == original["category_id"]


def test_update_expense_null_amount_is_ignored(client, headers):
    original = create_expense(client, headers, 30)
    res = client.patch(f"/api/expenses/{original['id']}", json={"amount": None}, headers=headers)
    assert res.status_code == 200
    assert res.json()["amount"] == original["amount"]


def test_update_expense_not_found(client, headers):
    res = client.patch("/api/expenses/999999", json={"notes": "Nope"}, headers=headers)
    assert res.status_code == 404


def test_delete_expense(client, headers):
    created = create_expense(client, headers, 75)

    assert client.delete(f"/api/expenses/{created['id']}", headers=headers).status_code == 204

    ids = [row["id"] for row in client.get("/api/expenses", headers=headers).json()["data"]]
    assert created["id"] not in ids
    assert client.delete(f"/api/expenses/{created['id']}", headers=headers).status_code == 404


def test_bulk_delete_expenses(client, headers):
    a = create_expense(client, headers, 1)
    b = create_expense(client, headers, 2)
    c = create_expense(client, headers, 3)

    res = client.post(
        "/api/expenses/bulk-delete",
        json={"ids": [a["id"], b["id"], b["id"], 999999]},
        headers=headers,
    )
    assert res.status_code == 200
    assert res.json() == {"requested": 3, "deleted": 2}

    remaining = [row["id"] for row in client.get("/api/expenses", headers=headers).json()["data"]]
    assert remaining == [c["id"]]


def test_bulk_delete_requires_ids(client, headers):
    res = client.post("/api/expenses/bulk-delete", json={"ids": []}, headers=headers)
    assert res.status_code == 422
