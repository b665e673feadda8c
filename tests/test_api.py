import config
from tests.conftest import register


def _category_id(client, headers, name):
    cats = client.get("/api/categories", headers=headers).json()
    return next(c["id"] for c in cats if c["name"] == name)


def _budget(client, headers, amount=500, **extra):
    r = client.post("/api/budgets", headers=headers, json={
        "name": "May", "amount": amount, "start_date": "2024-05-01", "end_date": "2024-05-31", **extra,
    })
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_register_login_me(client):
    headers = register(client)
    assert client.get("/api/auth/me", headers=headers).json()["email"] == "ann@fastmail.com"

    assert client.post("/api/auth/register", json={"email": "ann@fastmail.com", "password": "secret123"}).status_code == 400
    assert client.post("/api/auth/login", json={"email": "ann@fastmail.com", "password": "wrong"}).status_code == 401

    r = client.post("/api/auth/login", json={"email": "ann@fastmail.com", "password": "secret123"})
    assert r.status_code == 200
    assert r.json()["token_type"] == "bearer"


def test_requires_a_valid_token(client):
    assert client.get("/api/budgets").status_code in (401, 403)
    assert client.get("/api/budgets", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_settings_roundtrip(client, headers):
    assert client.get("/api/settings", headers=headers).json()["currency_symbol"] == "$"
    r = client.put("/api/settings", headers=headers, json={"currency_symbol": "€", "symbol_position": "after"})
    assert r.status_code == 200
    assert (r.json()["currency_symbol"], r.json()["symbol_position"]) == ("€", "after")
    assert client.put("/api/settings", headers=headers, json={"symbol_position": "middle"}).status_code == 422


def test_allocation_flow(client, headers):
    budget = _budget(client, headers)
    housing = _category_id(client, headers, "Housing")
    groceries = _category_id(client, headers, "Groceries")
    url = f"/api/budgets/{budget['id']}/allocations"

    assert client.put(f"{url}/{housing}", headers=headers, json={"category_id": housing, "amount": 300}).status_code == 200

    r = client.put(f"{url}/{groceries}", headers=headers, json={"category_id": groceries, "amount": 250})
    assert r.status_code == 409
    detail = r.json()["detail"]
    assert (detail["error"], detail["entity"], detail["constraint"]) == ("over_allocation", "Budget", "allocated_lte_amount")

    assert client.put(f"{url}/{groceries}", headers=headers, json={"category_id": groceries, "amount": 200}).status_code == 200
    assert len(client.get(url, headers=headers).json()) == 2

    utilization = client.get(f"/api/budgets/{budget['id']}/utilization", headers=headers).json()
    assert utilization["allocated"] == 500
    assert utilization["unallocated"] == 0

    assert client.delete(f"{url}/{groceries}", headers=headers).status_code == 204
    assert client.delete(f"{url}/{groceries}", headers=headers).status_code == 204

    r = client.put(f"/api/budgets/{budget['id']}", headers=headers, json={"amount": 100})
    assert r.status_code == 409

    assert client.delete(f"/api/budgets/{budget['id']}", headers=headers).status_code == 204
    assert client.get(f"/api/budgets/{budget['id']}", headers=headers).status_code == 404


def test_budgets_are_private(client, headers):
    budget = _budget(client, headers)
    intruder = register(client, email="eve@fastmail.com")

    r = client.get(f"/api/budgets/{budget['id']}", headers=intruder)
    assert r.status_code == 404
    assert r.json()["detail"]["error"] == "not_found"
    assert client.get("/api/budgets", headers=intruder).json() == []


def test_invalid_budget_period(client, headers):
    r = client.post("/api/budgets", headers=headers, json={
        "name": "Bad", "amount": 10, "start_date": "2024-05-31", "end_date": "2024-05-01",
    })
    assert r.status_code == 409
    assert r.json()["detail"]["constraint"] == "end_after_start"


def test_transactions_and_stats(client, headers):
    groceries = _category_id(client, headers, "Groceries")
    salary = _category_id(client, headers, "Salary")
    for payload in (
        {"amount": 40, "date": "2024-05-01", "category_id": groceries, "description": "Market"},
        {"amount": 2000, "date": "2024-05-02", "category_id": salary, "type": "INCOME"},
    ):
        assert client.post("/api/transactions", headers=headers, json=payload).status_code == 201

    r = client.post("/api/transactions", headers=headers, json={"amount": 0, "date": "2024-05-01", "category_id": groceries})
    assert r.status_code == 422
    assert r.json()["detail"]["error"] == "invalid_amount"

    txs = client.get("/api/transactions", headers=headers, params={"search": "market"}).json()
    assert [t["amount"] for t in txs] == [40]
    assert txs[0]["category"]["name"] == "Groceries"

    tx_id = txs[0]["id"]
    r = client.put(f"/api/transactions/{tx_id}", headers=headers, json={"amount": 45.5})
    assert r.json()["amount"] == 45.5

    stats = client.get("/api/transactions/stats", headers=headers, params={"date_from": "2024-05-01"}).json()
    assert stats["summary"]["balance"] == 1954.5

    assert client.delete(f"/api/transactions/{tx_id}", headers=headers).status_code == 204
    assert client.get(f"/api/transactions/{tx_id}", headers=headers).status_code == 404


def test_bill_lifecycle(client, headers):
    housing = _category_id(client, headers, "Housing")
    r = client.post("/api/bills", headers=headers, json={
        "name": "Rent", "amount": 1200, "due_date": "2024-01-15", "frequency": "MONTHLY", "category_id": housing,
    })
    assert r.status_code == 201
    bill = r.json()

    status = client.get(f"/api/bills/{bill['id']}/status", headers=headers, params={"as_of": "2024-01-16"}).json()
    assert (status["status"], status["due_date"]) == ("OVERDUE", "2024-01-15")

    r = client.post(f"/api/bills/{bill['id']}/pay", headers=headers, json={"payment_date": "2024-01-16"})
    assert r.status_code == 201
    assert r.json()["warnings"] == []

    status = client.get(f"/api/bills/{bill['id']}/status", headers=headers, params={"as_of": "2024-01-16"}).json()
    assert status["status"] == "PAID"

    r = client.post(f"/api/bills/{bill['id']}/pay", headers=headers, json={"payment_date": "2024-01-17"})
    assert r.json()["warnings"] == ["bill_already_paid"]

    listed = client.get("/api/bills", headers=headers, params={"status": "PAID", "as_of": "2024-01-20"}).json()
    assert [b["name"] for b in listed] == ["Rent"]

    assert client.delete(f"/api/bills/{bill['id']}", headers=headers).status_code == 204
    payments = client.get("/api/transactions", headers=headers).json()
    assert len(payments) == 2
    assert all(p["bill_id"] is None for p in payments)


def test_category_delete_policy(client, headers):
    r = client.post("/api/categories", headers=headers, json={"name": "Pets"})
    assert r.status_code == 201
    pets = r.json()["id"]
    healthcare = _category_id(client, headers, "Healthcare")
    client.post("/api/transactions", headers=headers, json={"amount": 30, "date": "2024-05-01", "category_id": pets})

    r = client.delete(f"/api/categories/{pets}", headers=headers)
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "dependency_exists"

    assert client.delete(f"/api/categories/{pets}", headers=headers, params={"reassign_to": healthcare}).status_code == 204
    assert client.put(f"/api/categories/{healthcare}", headers=headers, json={"name": "Doctors"}).status_code == 403


def test_savings_goals(client, headers):
    r = client.post("/api/savings-goals", headers=headers, json={"name": "Bike", "target_amount": 400})
    assert r.status_code == 201
    goal = r.json()
    assert (goal["completed"], goal["progress"]) == (False, 0)

    assert client.put(f"/api/savings-goals/{goal['id']}", headers=headers, json={"completed": True}).status_code == 422

    r = client.post(f"/api/savings-goals/{goal['id']}/add-funds", headers=headers, json={"amount": 400})
    assert r.json()["completed"] is True
    assert r.json()["progress_percentage"] == 100

    assert client.post(f"/api/savings-goals/{goal['id']}/add-funds", headers=headers, json={"amount": 1}).status_code == 403
    assert client.post(f"/api/savings-goals/{goal['id']}/add-funds", headers=headers, json={"amount": -1}).status_code == 422

    overview = client.get("/api/savings-goals", headers=headers, params={"status": "completed"}).json()
    assert [g["name"] for g in overview["goals"]] == ["Bike"]
    assert client.get("/api/savings-goals", headers=headers, params={"status": "active"}).json()["goals"] == []


def test_delete_account(client, headers):
    _budget(client, headers)
    assert client.delete("/api/auth/me", headers=headers).status_code == 204
    assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_chat_without_api_key(client, headers, monkeypatch):
    monkeypatch.setattr(config, "OPENAI_API_KEY", None)
    r = client.post("/api/chat", headers=headers, json={"messages": [{"role": "user", "content": "hi"}]})
    assert r.status_code == 503


def test_dashboard(client, headers):
    _budget(client, headers)
    groceries = _category_id(client, headers, "Groceries")
    salary = _category_id(client, headers, "Salary")
    client.post("/api/transactions", headers=headers, json={"amount": 125, "date": "2024-05-14", "category_id": groceries})
    client.post("/api/transactions", headers=headers, json={"amount": 900, "date": "2024-05-02", "category_id": salary, "type": "INCOME"})

    summary = client.get("/api/dashboard/summary", headers=headers, params={"date_from": "2024-05-01", "date_to": "2024-05-31"}).json()
    assert (summary["income_total"], summary["expense_total"], summary["remaining_amount"]) == (900, 125, 775)

    today = client.get("/api/dashboard/today", headers=headers, params={"as_of": "2024-05-14"}).json()
    assert (today["day"], today["total_spent"], today["daily_budget"]) == ("2024-05-14", 125, 16.13)

    progress = client.get("/api/dashboard/budget-progress", headers=headers, params={"period": "MONTHLY", "as_of": "2024-05-20"}).json()
    assert (progress["percentage_used"], progress["remaining_amount"]) == (25, 375)
    assert client.get("/api/dashboard/budget-progress", headers=headers, params={"period": "DAILY"}).status_code == 422

    comparison = client.get("/api/dashboard/budget-comparison", headers=headers, params={"as_of": "2024-05-31"}).json()
    assert comparison["items"][-1]["label"] == "May 2024"
    assert comparison["total_variance"] == -375

    assert client.get("/api/dashboard/summary").status_code in (401, 403)


def test_sub_cent_amount_is_rejected_before_storage(client, headers):
    groceries = _category_id(client, headers, "Groceries")
    r = client.post("/api/transactions", headers=headers, json={"amount": 0.004, "date": "2024-05-01", "category_id": groceries})
    assert r.status_code == 422
    assert r.json()["detail"]["error"] == "invalid_amount"
    assert client.get("/api/transactions", headers=headers).json() == []
