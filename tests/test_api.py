import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _setup_admin(client: TestClient) -> None:
    response = client.post(
        "/api/setup",
        json={"name": "Admin", "email": "admin@example.com", "password": "secret123"},
    )
    assert response.status_code == 201


def test_requests_without_session_are_rejected(client):
    response = client.get("/api/incomes")
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_setup_runs_only_once(client):
    _setup_admin(client)
    response = client.post(
        "/api/setup",
        json={"name": "Other", "email": "other@example.com", "password": "secret123"},
    )
    assert response.status_code == 403


def test_login_sets_session_cookie(client):
    _setup_admin(client)
    client.post("/api/auth/logout")
    client.cookies.clear()

    bad = client.post(
        "/api/auth/login", json={"email": "admin@example.com", "password": "nope"}
    )
    good = client.post(
        "/api/auth/login", json={"email": "admin@example.com", "password": "secret123"}
    )

    assert bad.status_code == 401
    assert good.status_code == 200
    assert "token" in good.cookies
    assert client.get("/api/auth/me").json()["email"] == "admin@example.com"


def test_installment_purchase_lifecycle_over_http(client):
    _setup_admin(client)

    created = client.post(
        "/api/expenses",
        json={
            "description": "Notebook",
            "total_amount": "299.99",
            "payment_date": "2024-01-10",
            "category": "compras_internet",
            "installments": 3,
        },
    )
    assert created.status_code == 201
    body = created.json()
    assert body["count"] == 3
    second = body["expenses"][1]
    assert second["installment_details"]["current_installment"] == 2
    assert second["amount"] == 100.0

    february = client.get("/api/expenses", params={"month": 2, "year": 2024}).json()
    assert [e["description"] for e in february] == ["Notebook (2/3)"]

    deleted = client.delete(f"/api/expenses/{second['id']}")
    assert deleted.json() == {"success": True, "deleted": 3}
    assert client.get("/api/expenses", params={"month": 1, "year": 2024}).json() == []


def test_validation_errors_are_reported_per_field(client):
    _setup_admin(client)

    response = client.post(
        "/api/incomes",
        json={
            "description": "Freela",
            "amount": "500.00",
            "date": "2024-06-05",
            "type": "intervalo",
        },
    )

    assert response.status_code == 400
    assert "end_date" in response.json()["errors"]


def test_dashboard_and_annual_report(client):
    _setup_admin(client)
    client.post(
        "/api/incomes",
        json={
            "description": "Salário",
            "amount": "1000.00",
            "date": "2024-01-10",
            "type": "mensal",
        },
    )
    client.post(
        "/api/expenses",
        json={
            "description": "Mercado",
            "total_amount": "250.00",
            "payment_date": "2024-03-02",
            "category": "mercado",
        },
    )

    summary = client.get("/api/dashboard/summary", params={"month": 3, "year": 2024})
    report = client.get("/api/reports/annual", params={"year": 2024})
    years = client.get("/api/reports/annual", params={"years": "true"})

    assert summary.json()["balance"] == 750.0
    assert summary.json()["top_expenses"][0]["description"] == "Mercado"
    data = report.json()
    assert data["total_annual_income"] == 12000.0
    assert data["expenses_by_account"] == [
        {"account_id": None, "name": "Sem conta", "color": "#718096", "total": 250.0}
    ]
    assert data["detailed_income_events"][0]["id"].endswith(":2024-01")
    assert years.json() == {"years": [2024]}


def test_unknown_records_return_not_found(client):
    _setup_admin(client)
    assert client.delete("/api/accounts/999").status_code == 404
    assert client.get("/api/dashboard/summary", params={"month": 13}).status_code == 400
