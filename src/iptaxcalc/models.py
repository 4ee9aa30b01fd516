from __future__ import annotations
import datetime
from decimal import Decimal
from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import Numeric, TypeDecorator


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None, microsecond=0)


# ---------- Base ----------
class Base(DeclarativeBase):
    pass

# ---------- Decimal helper (fixed 2 dp, tiyn precision) ----------
class MoneyDecimal(TypeDecorator):
    impl = Numeric(18, 2, asdecimal=True)
    cache_ok = True
    SCALE = Decimal("0.01")
    def process_bind_param(self, value, dialect):
        if value is None: return None
        return Decimal(value).quantize(self.SCALE)
    def process_result_value(self, value, dialect):
        if value is None: return None
        return Decimal(value).quantize(self.SCALE)

# ---------- ORM models ----------
class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    # Opaque bearer token; rotated on every login, cleared on logout
    token: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True, index=True)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=_utcnow)

class Category(Base):
    __tablename__ = "categories"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    icon: Mapped[str] = mapped_column(String(64), nullable=False, default="circle")
    color: Mapped[str] = mapped_column(String(32), nullable=False, default="#64748b")
    type: Mapped[str] = mapped_column(String(16), nullable=False)

class Transaction(Base):
    __tablename__ = "transactions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    hash: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    # Always a positive magnitude; direction lives in `type`
    amount: Mapped[Decimal] = mapped_column(MoneyDecimal, nullable=False)
    # Use String to avoid Enum friction with the statement parsers
    type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    counterparty: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_deductible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    upload_id: Mapped[int | None] = mapped_column(
        ForeignKey("statement_uploads.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=_utcnow)

Index("idx_transactions_user_date", Transaction.user_id, Transaction.date)

class TaxSettings(Base):
    __tablename__ = "tax_settings"
    __table_args__ = (UniqueConstraint("user_id", "year", name="uq_tax_settings_user_year"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    tax_system: Mapped[str] = mapped_column(String(32), nullable=False)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=_utcnow, onupdate=_utcnow
    )

class TaxDeadline(Base):
    __tablename__ = "tax_deadlines"
    __table_args__ = (UniqueConstraint("user_id", "year", "quarter", name="uq_tax_deadlines_user_year_q"),)
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    quarter: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    amount: Mapped[Decimal | None] = mapped_column(MoneyDecimal, nullable=True)

# Stores original uploads (provenance)
class StatementUpload(Base):
    __tablename__ = "statement_uploads"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    filename: Mapped[str | None] = mapped_column(String(256), nullable=True)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    mime_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    parser: Mapped[str | None] = mapped_column(String(64), nullable=True)
    received_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=_utcnow)
    blob_path: Mapped[str | None] = mapped_column(String(512), nullable=True)

class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    target_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    ts: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=_utcnow, index=True)

# Alias used by the calculation code
TransactionRow = Transaction
