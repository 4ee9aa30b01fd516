# tests/smoke_test.py
# Run with:
#   pytest -q -m smoke --maxfail=1 --disable-warnings -rA

from __future__ import annotations

import datetime
import io

import pytest
from pypdf import PdfReader
from sqlalchemy import select

import iptaxcalc.app as app_module
from iptaxcalc.db import SessionLocal
from iptaxcalc.models import AuditLog, StatementUpload

pytestmark = pytest.mark.smoke


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
KASPI_PAIR_CSV = (
    "date,amount,description\n"
    "2026-03-01,-50000,Kaspi Gold\n"
    "2026-03-01,50000,Kaspi Deposit\n"
    "2026-03-02,120000,Payment from client\n"
).encode("utf-8")


def _upload(client, auth, content: bytes, filename: str = "statement.csv", mime: str = "text/csv"):
    return client.post("/api/upload/parse", headers=auth, files={"file": (filename, io.BytesIO(content), mime)})


def _add(client, auth, **body):
    payload = {"description": "", **body}
    r = client.post("/api/transactions", headers=auth, json=payload)
    assert r.status_code == 201, r.text
    return r.json()


# --------------------------------------------------------------------------------------
# Service endpoints + auth
# --------------------------------------------------------------------------------------
def test_health_and_version(client):
    assert client.get("/health").json() == {"status": "ok"}
    body = client.get("/version").json()
    assert body["name"] == "IpTaxCalc"
    assert body["version"]


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/user"),
        ("get", "/api/transactions"),
        ("get", "/api/taxes/calculate?year=2026"),
        ("get", "/api/deadlines"),
        ("put", "/api/settings/tax"),
    ],
)
def test_api_requires_bearer_token(client, method, path):
    r = getattr(client, method)(path)
    assert r.status_code == 401
    assert r.headers["www-authenticate"] == "Bearer"


def test_unknown_token_is_rejected(client):
    r = client.get("/api/user", headers={"Authorization": "Bearer not-a-real-token"})
    assert r.status_code == 401


def test_register_login_logout(client, user, auth):
    me = client.get("/api/user", headers=auth).json()
    assert me == {"id": user["id"], "username": user["username"]}

    dup = client.post("/api/register", json={"username": user["username"], "password": "whatever1"})
    assert dup.status_code == 400

    bad = client.post("/api/login", json={"username": user["username"], "password": "wrong-password"})
    assert bad.status_code == 401

    r = client.post("/api/login", json={"username": user["username"], "password": "secret123"})
    assert r.status_code == 200
    fresh = {"Authorization": f"Bearer {r.json()['token']}"}
    # login rotates the token
    assert client.get("/api/user", headers=auth).status_code == 401
    assert client.post("/api/logout", headers=fresh).json() == {"success": True}
    assert client.get("/api/user", headers=fresh).status_code == 401


def test_register_validates_input(client):
    r = client.post("/api/register", json={"username": "ab", "password": "123"})
    assert r.status_code == 422


# --------------------------------------------------------------------------------------
# Upload: parse (preview) then import
# --------------------------------------------------------------------------------------
def test_parse_preview_classifies_transfers(client, auth):
    r = _upload(client, auth, KASPI_PAIR_CSV)
    assert r.status_code == 200, r.text
    body = r.json()

    assert body["success"] is True
    assert body["parser"] == "csv"
    assert body["errors"] == []
    assert isinstance(body["uploadId"], int)
    assert [t["type"] for t in body["transactions"]] == ["transfer", "transfer", "income"]
    assert body["transactions"][0] == {
        "date": "2026-03-01",
        "amount": "50000.00",
        "type": "transfer",
        "description": "Kaspi Gold",
        "counterparty": None,
    }

    # preview writes no transactions
    assert client.get("/api/transactions", headers=auth).json() == []

    with SessionLocal() as s:
        upload = s.get(StatementUpload, body["uploadId"])
        assert upload is not None
        assert upload.parser == "csv"
        assert len(upload.sha256) == 64


def test_parse_reports_row_errors(client, auth):
    data = b"date,amount,description\n2026-03-01,1000,A\nnot-a-date,2000,B\n2026-03-03,-300,C\n"
    body = _upload(client, auth, data).json()
    assert body["errors"] == ["Row 3: invalid date 'not-a-date'"]
    assert len(body["transactions"]) == 2


@pytest.mark.parametrize(
    "filename, content, status",
    [
        ("statement.xlsx", b"date,amount\n2026-01-01,5\n", 400),
        ("statement.csv", b"", 400),
        ("statement.csv", b"just some words\nand more words\n", 400),
    ],
)
def test_parse_rejects_unusable_files(client, auth, filename, content, status):
    r = _upload(client, auth, content, filename=filename)
    assert r.status_code == status
    assert "detail" in r.json()


def test_oversized_upload_is_413(client, auth, monkeypatch):
    monkeypatch.setattr(app_module, "MAX_UPLOAD_BYTES", 64)
    r = _upload(client, auth, KASPI_PAIR_CSV + b"2026-03-03,1,x\n" * 10)
    assert r.status_code == 413

    small = _upload(client, auth, b"date,amount\n2026-03-01,5\n")
    assert small.status_code == 200


def test_import_persists_and_skips_duplicates(client, auth):
    parsed = _upload(client, auth, KASPI_PAIR_CSV).json()
    items = parsed["transactions"]
    payload = {"transactions": items, "uploadId": parsed["uploadId"]}

    first = client.post("/api/upload/import", headers=auth, json=payload)
    assert first.status_code == 200, first.text
    body = first.json()
    assert body["inserted"] == 3
    assert body["skippedDuplicates"] == 0
    assert [t["type"] for t in body["transactions"]] == ["transfer", "transfer", "income"]
    assert all(t["isDeductible"] is False for t in body["transactions"])

    again = client.post("/api/upload/import", headers=auth, json=payload).json()
    assert again["inserted"] == 0
    assert again["skippedDuplicates"] == 3

    # transfers never count
    calc = client.get("/api/taxes/calculate?year=2026", headers=auth).json()
    assert calc["income"] == "120000.00"
    assert calc["taxAmount"] == "4800.00"

    with SessionLocal() as s:
        actions = s.scalars(select(AuditLog.action).where(AuditLog.target_id == parsed["uploadId"])).all()
        assert "upload:import" in actions


def test_import_validates_items(client, auth):
    bad_amount = {"transactions": [{"date": "2026-03-01", "amount": "-5", "type": "income"}]}
    assert client.post("/api/upload/import", headers=auth, json=bad_amount).status_code == 422

    bad_type = {"transactions": [{"date": "2026-03-01", "amount": "5", "type": "gift"}]}
    assert client.post("/api/upload/import", headers=auth, json=bad_type).status_code == 422


def test_import_rejects_foreign_upload(client, auth, other_auth):
    upload_id = _upload(client, other_auth, KASPI_PAIR_CSV).json()["uploadId"]
    payload = {"transactions": [], "uploadId": upload_id}
    assert client.post("/api/upload/import", headers=auth, json=payload).status_code == 404


# --------------------------------------------------------------------------------------
# Transactions + categories
# --------------------------------------------------------------------------------------
def test_transactions_crud_and_filters(client, auth, other_auth):
    a = _add(client, auth, date="2026-02-01", amount="1000", type="income")
    _add(client, auth, date="2026-02-02", amount="250.5", type="expense", isDeductible=True)
    _add(client, auth, date="2025-12-31", amount="99", type="income")

    assert a["amount"] == "1000.00"
    assert len(client.get("/api/transactions?year=2026", headers=auth).json()) == 2
    expenses = client.get("/api/transactions?year=2026&type=expense", headers=auth).json()
    assert [t["amount"] for t in expenses] == ["250.50"]
    assert expenses[0]["isDeductible"] is True

    assert client.delete(f"/api/transactions/{a['id']}", headers=other_auth).status_code == 404
    assert client.delete(f"/api/transactions/{a['id']}", headers=auth).json() == {"success": True}
    assert len(client.get("/api/transactions?year=2026", headers=auth).json()) == 1


def test_categories_crud(client, auth, other_auth):
    starter = client.get("/api/categories", headers=auth).json()
    assert starter, "new accounts get starter categories"

    r = client.post("/api/categories", headers=auth, json={"name": "Consulting", "type": "income", "color": "#0ea5e9"})
    assert r.status_code == 201
    cat = r.json()

    upd = client.put(f"/api/categories/{cat['id']}", headers=auth, json={"name": "Advisory", "type": "income"})
    assert upd.json()["name"] == "Advisory"
    assert client.put(f"/api/categories/{cat['id']}", headers=other_auth, json={"name": "x", "type": "income"}).status_code == 404

    tx = _add(client, auth, date="2026-06-01", amount="10", type="income", categoryId=cat["id"])
    assert tx["categoryId"] == cat["id"]
    assert client.delete(f"/api/categories/{cat['id']}", headers=auth).status_code == 200
    left = client.get("/api/transactions", headers=auth).json()
    assert left[0]["categoryId"] is None


# --------------------------------------------------------------------------------------
# Settings, deadlines, calculation, report
# --------------------------------------------------------------------------------------
def test_default_settings(client, auth):
    body = client.get("/api/settings/tax?year=2026", headers=auth).json()
    assert body["taxSystem"] == "simplified_4"
    assert body["year"] == 2026


def test_deadlines_exist_for_default_regime(client, auth):
    client.get("/api/settings/tax", headers=auth)
    deadlines = client.get("/api/deadlines", headers=auth).json()
    this_year = datetime.date.today().year
    assert [d["quarter"] for d in deadlines] == [1, 2, 3, 4]
    assert {d["year"] for d in deadlines} == {this_year}

    r = client.patch(f"/api/deadlines/{deadlines[0]['id']}", headers=auth, json={"isPaid": True})
    assert r.json()["isPaid"] is True
    calc = client.get("/api/taxes/calculate", headers=auth).json()
    assert calc["quarterlyPayments"][0]["isPaid"] is True


def test_invalid_regime_is_422(client, auth):
    r = client.put("/api/settings/tax", headers=auth, json={"taxSystem": "patent", "year": 2026})
    assert r.status_code == 422


def test_general_regime_end_to_end(client, auth):
    r = client.put("/api/settings/tax", headers=auth, json={"taxSystem": "general", "year": 2026})
    assert r.status_code == 200
    assert r.json()["taxSystem"] == "general"

    _add(client, auth, date="2026-03-10", amount="1000000", type="income")
    _add(client, auth, date="2026-04-10", amount="300000", type="expense", isDeductible=True)
    _add(client, auth, date="2026-04-11", amount="50000", type="expense")

    calc = client.get("/api/taxes/calculate?year=2026", headers=auth).json()
    assert calc["taxSystem"] == "general"
    assert calc["taxBase"] == "700000.00"
    assert calc["taxRate"] == "10.00"
    assert calc["taxAmount"] == "70000.00"
    assert calc["isEstimate"] is True
    assert [p["amount"] for p in calc["quarterlyPayments"]] == ["17500.00"] * 4
    assert [p["dueDate"] for p in calc["quarterlyPayments"]] == [
        "2026-05-25", "2026-08-25", "2026-11-25", "2027-02-25",
    ]

    deadlines = client.get("/api/deadlines?year=2026", headers=auth).json()
    assert [d["quarter"] for d in deadlines] == [1, 2, 3, 4]
    assert deadlines[0]["amount"] == "17500.00"

    patched = client.patch(f"/api/deadlines/{deadlines[0]['id']}", headers=auth, json={"isPaid": True})
    assert patched.status_code == 200
    assert patched.json()["isPaid"] is True

    calc = client.get("/api/taxes/calculate?year=2026", headers=auth).json()
    assert [p["isPaid"] for p in calc["quarterlyPayments"]] == [True, False, False, False]

    stats = client.get("/api/dashboard/stats?year=2026", headers=auth).json()
    assert stats == {
        "totalIncome": "1000000.00",
        "totalExpenses": "350000.00",
        "netProfit": "650000.00",
        "estimatedTax": "70000.00",
        "transactionCount": 3,
    }

    pdf = client.get("/api/taxes/report.pdf?year=2026", headers=auth)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")
    text = "\n".join(page.extract_text() or "" for page in PdfReader(io.BytesIO(pdf.content)).pages)
    assert "70 000.00 KZT" in text
    assert "17 500.00 KZT" in text


def test_deadline_of_other_user_is_404(client, auth, other_auth):
    theirs = client.get("/api/deadlines?year=2026", headers=other_auth).json()
    r = client.patch(f"/api/deadlines/{theirs[0]['id']}", headers=auth, json={"isPaid": True})
    assert r.status_code == 404


def test_regime_change_moves_unpaid_deadlines_only(client, auth):
    client.put("/api/settings/tax", headers=auth, json={"taxSystem": "simplified_4", "year": 2026})
    first = client.get("/api/deadlines?year=2026", headers=auth).json()
    client.patch(f"/api/deadlines/{first[1]['id']}", headers=auth, json={"isPaid": True})

    client.put("/api/settings/tax", headers=auth, json={"taxSystem": "self_employed", "year": 2026})
    after = client.get("/api/deadlines?year=2026", headers=auth).json()
    assert len(after) == 4
    assert [d["isPaid"] for d in after] == [False, True, False, False]


# --------------------------------------------------------------------------------------
# Dashboard + analytics
# --------------------------------------------------------------------------------------
def test_monthly_has_twelve_months(client, auth):
    _add(client, auth, date="2026-07-15", amount="500", type="income")
    _add(client, auth, date="2026-07-16", amount="200", type="expense")
    _add(client, auth, date="2026-07-17", amount="900", type="transfer")

    months = client.get("/api/dashboard/monthly?year=2026", headers=auth).json()
    assert len(months) == 12
    july = months[6]
    assert july == {"month": "2026-07", "income": "500.00", "expenses": "200.00"}
    assert months[0]["income"] == "0.00"


def test_daily_series(client, auth):
    today = datetime.date.today().isoformat()
    _add(client, auth, date=today, amount="42", type="income")
    days = client.get("/api/dashboard/daily?range=7", headers=auth).json()
    assert len(days) == 7
    assert days[-1]["date"] == today
    assert days[-1]["income"] == "42.00"


def test_category_breakdown(client, auth):
    cats = {c["name"]: c for c in client.get("/api/categories", headers=auth).json()}
    rent = cats["Rent"]["id"]
    _add(client, auth, date="2026-02-01", amount="300", type="expense", categoryId=rent)
    _add(client, auth, date="2026-02-02", amount="100", type="expense")

    rows = client.get("/api/analytics/categories?year=2026&type=expense", headers=auth).json()
    assert [(r["categoryName"], r["amount"], r["percentage"]) for r in rows] == [
        ("Rent", "300.00", "75.00"),
        ("Uncategorized", "100.00", "25.00"),
    ]
