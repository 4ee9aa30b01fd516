# app.py
"""
Main FastAPI application.

This file wires together:
- the web server (FastAPI + Uvicorn)
- the statement classifier (bank CSV / PDF -> candidate transactions)
- the tax engine (annual tax + quarterly schedule per regime)
- the database session and models
- clean, documented endpoints

Endpoints:
  GET    /health                      → liveness check
  GET    /version                     → app version metadata
  POST   /api/register | /api/login   → { user, token }
  POST   /api/logout, GET /api/user
  POST   /api/upload/parse            → classify a statement and PREVIEW (no transaction writes)
  POST   /api/upload/import           → SAVE confirmed transactions (dedup by hash)
  GET    /api/transactions            → list (filters: year, type); POST / DELETE /{id}
  GET    /api/categories              → list; POST; PUT / DELETE /{id}
  GET    /api/settings/tax            → regime of a year; PUT to change it
  GET    /api/deadlines               → quarterly deadlines; PATCH /{id} to mark paid
  GET    /api/taxes/calculate         → TaxCalculation of a year
  GET    /api/taxes/report.pdf        → the same as a PDF report
  GET    /api/dashboard/stats | /api/dashboard/monthly | /api/dashboard/daily
  GET    /api/analytics/categories    → category breakdown

Every /api/* endpoint except register/login needs `Authorization: Bearer <token>`.

  Command to start the server: uvicorn iptaxcalc.app:app --reload
"""

import datetime
import hashlib
import logging
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import statement_parser
from .__about__ import __title__, __version__
from .audit_utils import audit
from .auth import authenticate, current_user, hash_password, new_token
from .calc_runner import get_or_create_settings, run_calculation
from .config import LOG_LEVEL, MAX_UPLOAD_MB
from .db import get_session, init_db
from .deadlines import ensure_year_deadlines
from .errors import IpTaxCalcError
from .models import Category, StatementUpload, TaxDeadline, TransactionRow, User
from .report_pdf import build_tax_report_pdf
from .schemas import (
    AuthResponse,
    CategoryBreakdown,
    CategoryCreate,
    CategoryRead,
    CategoryType,
    DailyData,
    DashboardStats,
    DeadlinePatch,
    ImportRequest,
    ImportResponse,
    MonthlyData,
    ParsedTransaction,
    ParseResponse,
    TaxCalculation,
    TaxDeadlineRead,
    TaxSettingsRead,
    TaxSettingsUpdate,
    TransactionCreate,
    TransactionRead,
    TxType,
    UserCredentials,
    UserRead,
    quantize_money,
)
from .utils_files import persist_uploaded_file

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title=__title__, version=__version__)

ALLOWED_EXTENSIONS = {".csv", ".pdf"}
MAX_UPLOAD_BYTES = MAX_UPLOAD_MB * 1024 * 1024

ZERO = Decimal("0")
UNCATEGORIZED_COLOR = "#94a3b8"

# Created for every new account so the first import can be categorised right away
DEFAULT_CATEGORIES = [
    ("Services", "briefcase", "#22c55e", CategoryType.INCOME),
    ("Sales", "shopping-bag", "#16a34a", CategoryType.INCOME),
    ("Rent", "home", "#ef4444", CategoryType.EXPENSE),
    ("Supplies", "package", "#f97316", CategoryType.EXPENSE),
    ("Bank fees", "credit-card", "#64748b", CategoryType.EXPENSE),
]


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

def compute_tx_hash(user_id: int, tx: ParsedTransaction) -> str:
    """
    Compute a deterministic SHA-256 hash for a transaction based on key fields.
    This allows us to detect duplicates across imports even if the same
    statement is uploaded again.

    The string we hash is built from a few important fields joined together with '|'.
    """
    base_string = (
        f"{user_id}|"
        f"{tx.date.isoformat()}|"
        f"{tx.type.value}|"
        f"{quantize_money(tx.amount)}|"
        f"{(tx.description or '').strip()}|"
        f"{(tx.counterparty or '').strip()}"
    )
    return hashlib.sha256(base_string.encode("utf-8")).hexdigest()


def _this_year() -> int:
    return datetime.date.today().year


def _year_bounds(year: int) -> tuple[datetime.date, datetime.date]:
    return datetime.date(year, 1, 1), datetime.date(year, 12, 31)


def _owned(session: Session, model, obj_id: int, user: User, what: str):
    """Fetch a row of `model` owned by `user`; foreign and unknown ids are both 404."""
    obj = session.get(model, obj_id)
    if obj is None or obj.user_id != user.id:
        raise HTTPException(status_code=404, detail=f"{what} not found")
    return obj


def _check_category(session: Session, category_id: Optional[int], user: User) -> None:
    if category_id is not None:
        _owned(session, Category, category_id, user, "Category")


def _year_rows(session: Session, user: User, year: int) -> List[TransactionRow]:
    start, end = _year_bounds(year)
    stmt = (
        select(TransactionRow)
        .where(TransactionRow.user_id == user.id, TransactionRow.date >= start, TransactionRow.date <= end)
        .order_by(TransactionRow.date.asc(), TransactionRow.id.asc())
    )
    return list(session.scalars(stmt))


# -----------------------------------------------------------------------------
# Startup + error mapping
# -----------------------------------------------------------------------------
@app.on_event("startup")
def on_startup() -> None:
    """
    Runs when the server starts.
    - Ensures database tables exist (idempotent).
    """
    init_db()
    logger.info("%s %s started", __title__, __version__)


@app.exception_handler(IpTaxCalcError)
async def domain_error_handler(request: Request, exc: IpTaxCalcError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# -----------------------------------------------------------------------------
# Health + version endpoints (simple sanity checks)
# -----------------------------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, str]:
    """Quick liveness check for monitoring or manual testing."""
    return {"status": "ok"}


@app.get("/version")
def version() -> Dict[str, str]:
    """Show the backend name and version (useful to confirm deployments)."""
    return {"name": __title__, "version": __version__}


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------
@app.post("/api/register", response_model=AuthResponse, status_code=201)
def register(creds: UserCredentials, session: Session = Depends(get_session)) -> AuthResponse:
    """Create an account (plus a starter set of categories) and log it in."""
    exists = session.scalars(select(User).where(User.username == creds.username)).first()
    if exists is not None:
        raise HTTPException(status_code=400, detail="Username already taken")

    user = User(username=creds.username, password_hash=hash_password(creds.password), token=new_token())
    session.add(user)
    session.flush()
    for name, icon, color, cat_type in DEFAULT_CATEGORIES:
        session.add(Category(user_id=user.id, name=name, icon=icon, color=color, type=cat_type.value))
    audit(session, user.username, "user:register", "users", user.id, None)
    session.commit()
    return AuthResponse(user=UserRead.model_validate(user), token=user.token)


@app.post("/api/login", response_model=AuthResponse)
def login(creds: UserCredentials, session: Session = Depends(get_session)) -> AuthResponse:
    user = authenticate(session, creds.username, creds.password)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    user.token = new_token()
    session.commit()
    return AuthResponse(user=UserRead.model_validate(user), token=user.token)


@app.post("/api/logout")
def logout(user: User = Depends(current_user), session: Session = Depends(get_session)) -> Dict[str, bool]:
    user.token = None
    session.commit()
    return {"success": True}


@app.get("/api/user", response_model=UserRead)
def get_user(user: User = Depends(current_user)) -> User:
    return user


# -----------------------------------------------------------------------------
# Statement upload: preview, then import
# -----------------------------------------------------------------------------
@app.post("/api/upload/parse", response_model=ParseResponse)
async def upload_parse(
    file: UploadFile = File(...),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> ParseResponse:
    """
    Accept a bank statement (CSV or PDF), classify it and return a PREVIEW.

    Nothing is written to the transactions table here: the user reviews the
    rows (errors and warnings included) and confirms via /api/upload/import.
    The original bytes are kept, content-addressed, for provenance.
    """
    filename = file.filename or ""
    if Path(filename).suffix.lower() not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail="Please upload a .csv or .pdf file")

    # at most one byte past the limit
    data = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(data) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(data) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"File is larger than {MAX_UPLOAD_MB} MB")

    # StatementFormatError propagates to the domain error handler (400)
    result = statement_parser.parse(data, mime_type=file.content_type, filename=filename)

    blob_path, digest = persist_uploaded_file(filename, data)
    upload = StatementUpload(
        user_id=user.id,
        filename=filename,
        sha256=digest,
        mime_type=file.content_type,
        parser=result.parser,
        blob_path=blob_path,
    )
    session.add(upload)
    session.flush()
    audit(
        session, user.username, "upload:parse", "statement_uploads", upload.id,
        {"filename": filename, "sha256": digest, "parser": result.parser,
         "rows": len(result.transactions), "errors": len(result.errors)},
    )
    session.commit()

    return ParseResponse(
        success=result.success,
        transactions=result.transactions,
        errors=result.errors,
        warnings=result.warnings,
        parser=result.parser,
        upload_id=upload.id,
    )


@app.post("/api/upload/import", response_model=ImportResponse)
def upload_import(
    payload: ImportRequest,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> ImportResponse:
    """
    Persist confirmed transactions.

    Items were validated by the request model (positive amount, known type).
    Rows whose content hash already exists for the user, in the database or
    earlier in the same request, are skipped and counted.
    """
    if payload.upload_id is not None:
        _owned(session, StatementUpload, payload.upload_id, user, "Upload")
    for item in payload.transactions:
        _check_category(session, item.category_id, user)

    seen = set(
        session.scalars(
            select(TransactionRow.hash).where(TransactionRow.user_id == user.id, TransactionRow.hash.is_not(None))
        )
    )
    rows: List[TransactionRow] = []
    skipped_duplicates = 0
    for item in payload.transactions:
        tx_hash = compute_tx_hash(user.id, item)
        if tx_hash in seen:
            skipped_duplicates += 1
            continue
        seen.add(tx_hash)
        row = TransactionRow(
            user_id=user.id,
            hash=tx_hash,
            amount=item.amount,
            type=item.type.value,
            category_id=item.category_id,
            description=item.description,
            date=item.date,
            counterparty=item.counterparty,
            # transfers are never deductible
            is_deductible=item.is_deductible and item.type == TxType.EXPENSE,
            upload_id=payload.upload_id,
        )
        session.add(row)
        rows.append(row)

    session.flush()
    audit(
        session, user.username, "upload:import", "statement_uploads", payload.upload_id,
        {"inserted": len(rows), "skipped_duplicates": skipped_duplicates},
    )
    session.commit()
    logger.info("User %s imported %d transaction(s), %d duplicate(s) skipped", user.id, len(rows), skipped_duplicates)

    return ImportResponse(
        inserted=len(rows),
        skipped_duplicates=skipped_duplicates,
        transactions=[TransactionRead.model_validate(r) for r in rows],
    )


# -----------------------------------------------------------------------------
# Transactions
# -----------------------------------------------------------------------------
@app.get("/api/transactions", response_model=List[TransactionRead])
def list_transactions(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    type_: Optional[TxType] = Query(None, alias="type"),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> List[TransactionRow]:
    """Newest first."""
    stmt = select(TransactionRow).where(TransactionRow.user_id == user.id)
    if year is not None:
        start, end = _year_bounds(year)
        stmt = stmt.where(TransactionRow.date >= start, TransactionRow.date <= end)
    if type_ is not None:
        stmt = stmt.where(TransactionRow.type == type_.value)
    stmt = stmt.order_by(TransactionRow.date.desc(), TransactionRow.id.desc())
    return list(session.scalars(stmt))


@app.post("/api/transactions", response_model=TransactionRead, status_code=201)
def create_transaction(
    payload: TransactionCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> TransactionRow:
    _check_category(session, payload.category_id, user)
    row = TransactionRow(
        user_id=user.id,
        hash=compute_tx_hash(user.id, ParsedTransaction.model_validate(payload.model_dump())),
        amount=payload.amount,
        type=payload.type.value,
        category_id=payload.category_id,
        description=payload.description,
        date=payload.date,
        counterparty=payload.counterparty,
        is_deductible=payload.is_deductible and payload.type == TxType.EXPENSE,
    )
    session.add(row)
    session.commit()
    return row


@app.delete("/api/transactions/{tx_id}")
def delete_transaction(
    tx_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> Dict[str, bool]:
    row = _owned(session, TransactionRow, tx_id, user, "Transaction")
    session.delete(row)
    audit(session, user.username, "transaction:delete", "transactions", tx_id, None)
    session.commit()
    return {"success": True}


# -----------------------------------------------------------------------------
# Categories
# -----------------------------------------------------------------------------
@app.get("/api/categories", response_model=List[CategoryRead])
def list_categories(user: User = Depends(current_user), session: Session = Depends(get_session)) -> List[Category]:
    stmt = select(Category).where(Category.user_id == user.id).order_by(Category.type.asc(), Category.name.asc())
    return list(session.scalars(stmt))


@app.post("/api/categories", response_model=CategoryRead, status_code=201)
def create_category(
    payload: CategoryCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> Category:
    cat = Category(user_id=user.id, name=payload.name, icon=payload.icon, color=payload.color, type=payload.type.value)
    session.add(cat)
    session.commit()
    return cat


@app.put("/api/categories/{category_id}", response_model=CategoryRead)
def update_category(
    category_id: int,
    payload: CategoryCreate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> Category:
    cat = _owned(session, Category, category_id, user, "Category")
    cat.name, cat.icon, cat.color, cat.type = payload.name, payload.icon, payload.color, payload.type.value
    session.commit()
    return cat


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> Dict[str, bool]:
    """Transactions of the category stay, uncategorised."""
    cat = _owned(session, Category, category_id, user, "Category")
    for row in session.scalars(select(TransactionRow).where(TransactionRow.category_id == category_id)):
        row.category_id = None
    session.delete(cat)
    session.commit()
    return {"success": True}


# -----------------------------------------------------------------------------
# Tax settings + deadlines
# -----------------------------------------------------------------------------
@app.get("/api/settings/tax", response_model=TaxSettingsRead)
def get_tax_settings(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    settings = get_or_create_settings(session, user.id, year or _this_year())
    session.commit()
    return settings


@app.put("/api/settings/tax", response_model=TaxSettingsRead)
def put_tax_settings(
    payload: TaxSettingsUpdate,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
):
    """Change the regime of a year (last write wins) and realign its unpaid deadlines."""
    settings = get_or_create_settings(session, user.id, payload.year)
    previous = settings.tax_system
    settings.tax_system = payload.tax_system.value
    ensure_year_deadlines(session, user.id, payload.year, payload.tax_system)
    audit(
        session, user.username, "settings:tax", "tax_settings", settings.id,
        {"year": payload.year, "from": previous, "to": settings.tax_system},
    )
    session.commit()
    return settings


@app.get("/api/deadlines", response_model=List[TaxDeadlineRead])
def list_user_deadlines(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> List[TaxDeadline]:
    """
    Deadlines of `year`, or of every year when omitted. The four quarters of
    `year` (default: current year) are created on first access.
    """
    ensured_year = year or _this_year()
    settings = get_or_create_settings(session, user.id, ensured_year)
    ensure_year_deadlines(session, user.id, ensured_year, settings.tax_system)
    session.commit()
    stmt = (
        select(TaxDeadline)
        .where(TaxDeadline.user_id == user.id)
        .order_by(TaxDeadline.due_date.asc(), TaxDeadline.quarter.asc())
    )
    if year is not None:
        stmt = stmt.where(TaxDeadline.year == year)
    return list(session.scalars(stmt))


@app.patch("/api/deadlines/{deadline_id}", response_model=TaxDeadlineRead)
def patch_deadline(
    deadline_id: int,
    payload: DeadlinePatch,
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> TaxDeadline:
    deadline = _owned(session, TaxDeadline, deadline_id, user, "Deadline")
    deadline.is_paid = payload.is_paid
    audit(
        session, user.username, "deadline:paid" if payload.is_paid else "deadline:unpaid",
        "tax_deadlines", deadline.id, {"year": deadline.year, "quarter": deadline.quarter},
    )
    session.commit()
    return deadline


# -----------------------------------------------------------------------------
# Taxes
# -----------------------------------------------------------------------------
@app.get("/api/taxes/calculate", response_model=TaxCalculation)
def taxes_calculate(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> TaxCalculation:
    """
    Annual tax of `year` (default: current year) under the user's regime of
    that year, over saved income/expense transactions. Transfers are ignored.
    """
    result = run_calculation(session, user.id, year or _this_year())
    session.commit()
    return result


@app.get("/api/taxes/report.pdf", summary="Download the tax estimate of a year as PDF")
def taxes_report_pdf(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> StreamingResponse:
    year = year or _this_year()
    result = run_calculation(session, user.id, year)
    session.commit()
    pdf_bytes = build_tax_report_pdf(result, username=user.username)
    return StreamingResponse(
        BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="tax_estimate_{year}.pdf"'},
    )


# -----------------------------------------------------------------------------
# Dashboard + analytics
# -----------------------------------------------------------------------------
@app.get("/api/dashboard/stats", response_model=DashboardStats)
def dashboard_stats(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> DashboardStats:
    """Cash totals of the year (transfers excluded) plus the estimated tax."""
    year = year or _this_year()
    rows = _year_rows(session, user, year)
    income = sum((r.amount for r in rows if r.type == TxType.INCOME.value), ZERO)
    expenses = sum((r.amount for r in rows if r.type == TxType.EXPENSE.value), ZERO)
    calc = run_calculation(session, user.id, year)
    session.commit()
    return DashboardStats(
        total_income=quantize_money(income),
        total_expenses=quantize_money(expenses),
        net_profit=quantize_money(income - expenses),
        estimated_tax=calc.tax_amount,
        transaction_count=len(rows),
    )


@app.get("/api/dashboard/monthly", response_model=List[MonthlyData])
def dashboard_monthly(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> List[MonthlyData]:
    """Twelve entries, `month` as YYYY-MM, empty months included."""
    year = year or _this_year()
    income = {m: ZERO for m in range(1, 13)}
    expenses = {m: ZERO for m in range(1, 13)}
    for r in _year_rows(session, user, year):
        if r.type == TxType.INCOME.value:
            income[r.date.month] += r.amount
        elif r.type == TxType.EXPENSE.value:
            expenses[r.date.month] += r.amount
    return [
        MonthlyData(month=f"{year}-{m:02d}", income=quantize_money(income[m]), expenses=quantize_money(expenses[m]))
        for m in range(1, 13)
    ]


@app.get("/api/dashboard/daily", response_model=List[DailyData])
def dashboard_daily(
    range_days: int = Query(30, alias="range", ge=1, le=366),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> List[DailyData]:
    """One entry per day of the last `range` days, today included."""
    today = datetime.date.today()
    start = today - datetime.timedelta(days=range_days - 1)
    stmt = select(TransactionRow).where(
        TransactionRow.user_id == user.id, TransactionRow.date >= start, TransactionRow.date <= today
    )
    income: Dict[datetime.date, Decimal] = {}
    expenses: Dict[datetime.date, Decimal] = {}
    for r in session.scalars(stmt):
        if r.type == TxType.INCOME.value:
            income[r.date] = income.get(r.date, ZERO) + r.amount
        elif r.type == TxType.EXPENSE.value:
            expenses[r.date] = expenses.get(r.date, ZERO) + r.amount

    out = []
    for offset in range(range_days):
        day = start + datetime.timedelta(days=offset)
        out.append(
            DailyData(
                date=day,
                label=day.strftime("%d.%m"),
                income=quantize_money(income.get(day, ZERO)),
                expenses=quantize_money(expenses.get(day, ZERO)),
            )
        )
    return out


@app.get("/api/analytics/categories", response_model=List[CategoryBreakdown])
def analytics_categories(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    type_: CategoryType = Query(CategoryType.EXPENSE, alias="type"),
    user: User = Depends(current_user),
    session: Session = Depends(get_session),
) -> List[CategoryBreakdown]:
    """Share of each category in the year's income or expenses, largest first."""
    year = year or _this_year()
    categories = {c.id: c for c in session.scalars(select(Category).where(Category.user_id == user.id))}

    sums: Dict[Optional[int], Decimal] = {}
    for r in _year_rows(session, user, year):
        if r.type != type_.value:
            continue
        key = r.category_id if r.category_id in categories else None
        sums[key] = sums.get(key, ZERO) + r.amount

    total = sum(sums.values(), ZERO)
    out = []
    for cat_id, amount in sums.items():
        cat = categories.get(cat_id)
        out.append(
            CategoryBreakdown(
                category_id=cat_id,
                category_name=cat.name if cat else "Uncategorized",
                category_color=cat.color if cat else UNCATEGORIZED_COLOR,
                amount=quantize_money(amount),
                percentage=quantize_money(amount / total * 100) if total else ZERO,
            )
        )
    out.sort(key=lambda b: (-b.amount, b.category_name))
    return out
