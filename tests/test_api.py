import logging
from datetime import date

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import issue_caller_token, read_caller_token
from database import Base
from factories import seed_calendar
from main import app, get_db


def _client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with TestingSession() as session:
        seed_calendar(session, 2025, today=date(2025, 10, 20))

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def _headers(owner_id: int = 1, role: str = "user") -> dict[str, str]:
    return {"X-Caller-Token": issue_caller_token(owner_id, role)}


def test_caller_token_round_trip() -> None:
    caller = read_caller_token(issue_caller_token(42, "admin"))
    assert caller.owner_id == 42
    assert caller.role == "admin"


def test_requests_without_token_are_rejected() -> None:
    client = _client()
    try:
        response = client.get(
            "/api/period-summary",
            params={"period_type": "monthly", "source_period_id": "2025-M10"},
        )
        assert response.status_code == 401
        response = client.get(
            "/api/period-summary",
            params={"period_type": "monthly", "source_period_id": "2025-M10"},
            headers={"X-Caller-Token": "forged"},
        )
        assert response.status_code == 401
    finally:
        app.dependency_overrides.clear()


def test_obligation_payment_and_summary_flow() -> None:
    client = _client()
    try:
        response = client.post(
            "/api/obligations",
            json={
                "kind": "outflow",
                "name": "Rent",
                "amount_cents": 100000,
                "frequency": "monthly",
                "first_date": "2025-10-01",
            },
            headers=_headers(),
        )
        assert response.status_code == 200
        rent = response.json()
        assert rent["generated_until"] is not None

        response = client.post(
            "/api/transactions",
            json={
                "date": "2025-10-01",
                "type": "expense",
                "amount_cents": 100000,
                "splits": [{"amount_cents": 100000, "obligation_id": rent["id"]}],
            },
            headers=_headers(),
        )
        assert response.status_code == 200
        [split] = response.json()["splits"]
        assert f"{rent['id']}_2025-M10" in split["period_instance_ids"]

        response = client.post(
            "/api/period-summary/recalculate",
            json={
                "period_type": "monthly",
                "source_period_id": "2025-M10",
                "include_entries": True,
                "forced": True,
            },
            headers=_headers(),
        )
        assert response.status_code == 200
        body = response.json()
        assert body["cross_metrics"]["total_expenses_cents"] == 100000
        assert body["outflows"][0]["paid_cents"] == 100000

        response = client.get(
            "/api/period-summary",
            params={"period_type": "monthly", "source_period_id": "2025-M10"},
            headers=_headers(),
        )
        assert response.status_code == 200
        assert "outflows" not in response.json()
    finally:
        app.dependency_overrides.clear()


def test_error_mapping() -> None:
    client = _client()
    try:
        response = client.get(
            "/api/period-summary",
            params={"period_type": "monthly", "source_period_id": "2031-M01"},
            headers=_headers(),
        )
        assert response.status_code == 412

        response = client.post(
            "/api/transactions",
            json={
                "date": "2025-10-01",
                "type": "expense",
                "amount_cents": 1000,
                "splits": [{"amount_cents": 400}],
            },
            headers=_headers(),
        )
        assert response.status_code == 400

        response = client.delete("/api/transactions/999", headers=_headers())
        assert response.status_code == 404
    finally:
        app.dependency_overrides.clear()


def test_account_creation_precreates_summaries(caplog) -> None:
    client = _client()
    caplog.set_level(logging.INFO, logger="main")
    try:
        response = client.post("/api/accounts", headers=_headers(5))
        assert response.status_code == 200
        # Only periods inside the seeded year exist around the current ones.
        assert response.json()["summaries_created"] > 0
        assert any(
            record.name == "main" and "account_initialized: user=5" in record.getMessage()
            for record in caplog.records
        )
    finally:
        app.dependency_overrides.clear()


def test_calendar_import_requires_admin() -> None:
    client = _client()
    content = (
        "Id,Type,StartDate,EndDate,Index,Year,Month,WeekNumber,BiMonthlyHalf\n"
        "2026-M01,monthly,2026-01-01,2026-01-31,24312,2026,1,,\n"
    )
    try:
        files = {"file": ("calendar.csv", content, "text/csv")}
        response = client.post("/api/source-periods/import", files=files, headers=_headers())
        assert response.status_code == 403

        response = client.post(
            "/api/source-periods/import", files=files, headers=_headers(role="admin")
        )
        assert response.status_code == 200
        assert response.json() == {"rows": 1, "created": 1}
    finally:
        app.dependency_overrides.clear()
