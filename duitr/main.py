import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import bcrypt
import structlog
from fastapi import FastAPI, HTTPException, Header, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    Sequence,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    false,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError

from duitr.balance_engine import (
    LedgerEntry,
    WalletState,
    apply_updates,
    balance_updates,
    balance_updates_for_deletion,
    balance_updates_for_update,
    total_balance,
    validate_entry,
)
from duitr.budget_engine import (
    Budget,
    BudgetEvaluation,
    Transaction,
    build_alert,
    evaluate_budget,
    get_period_range,
    normalize_period,
    summarize,
)
from duitr.csv_export import ExportRow, export_transactions_csv
from duitr.currency_conversion import (
    SUPPORTED_CURRENCIES,
    build_rate_provider,
    convert_amount,
    get_exchange_rate,
    round_money,
    validate_supported_currency,
)
from duitr.finance_insight import FinanceSummary, build_finance_summary
from duitr.gemini_client import AIUnavailableError, GeminiFinanceAdvisor, GeminiTransactionParser
from duitr.log import configure_logging
from duitr.password_policy import check_password, normalize_email
from duitr.prediction_engine import (
    BudgetPrediction,
    BudgetTarget,
    predict_budgets,
    summarize_predictions,
)
from duitr.statistics import (
    LedgerRow,
    category_breakdown,
    daily_average_spending,
    month_end,
    month_start,
    monthly_summary,
    monthly_trend,
    wallet_stats,
)
from duitr.transaction_parser import AIParseError, ParsedTransaction

configure_logging(os.getenv("LOG_LEVEL", "INFO"))
logger = structlog.get_logger(__name__)

app = FastAPI(title="Duitr")

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:5173")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./duitr.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)
metadata = MetaData()


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "IDR")
    try:
        return validate_supported_currency(raw)
    except ValueError:
        return "IDR"


SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()
FX_PROVIDER = build_rate_provider(os.getenv("EXCHANGE_RATE_API_KEY"))
AI_PARSER = GeminiTransactionParser(
    os.getenv("GEMINI_API_KEY"),
    model_name=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
)
AI_ADVISOR = GeminiFinanceAdvisor(
    os.getenv("GEMINI_API_KEY"),
    model_name=os.getenv("GEMINI_MODEL", "gemini-1.5-flash"),
)
PREDICTION_CACHE_HOURS = int(os.getenv("PREDICTION_CACHE_HOURS", "6"))
PREDICTION_RETENTION_DAYS = 90
SUPPORTED_LANGUAGES = {"en", "id"}
WANT_TO_BUY_CATEGORIES = {"Keinginan", "Kebutuhan"}
WANT_TO_BUY_PRIORITIES = {"Tinggi", "Sedang", "Rendah"}
LOAN_CATEGORIES = {"Utang", "Piutang"}
CENT = Decimal("0.01")
MONEY_LIMIT = Decimal("1000000000000")

# (id, key, English name, Indonesian name, type, icon, colour)
DEFAULT_CATEGORIES = [
    (1, "expense_groceries", "Groceries", "Kebutuhan Rumah", "expense", "shopping-basket", "#EF4444"),
    (2, "expense_food", "Dining", "Makan di Luar", "expense", "utensils", "#F97316"),
    (3, "expense_transportation", "Transportation", "Transportasi", "expense", "car", "#F59E0B"),
    (4, "expense_subscription", "Subscription", "Berlangganan", "expense", "repeat", "#3B82F6"),
    (5, "expense_housing", "Housing", "Perumahan", "expense", "home", "#8B5CF6"),
    (6, "expense_entertainment", "Entertainment", "Hiburan", "expense", "film", "#EC4899"),
    (7, "expense_shopping", "Shopping", "Belanja", "expense", "shopping-cart", "#F43F5E"),
    (8, "expense_health", "Health", "Kesehatan", "expense", "heart-pulse", "#10B981"),
    (9, "expense_education", "Education", "Pendidikan", "expense", "graduation-cap", "#06B6D4"),
    (10, "expense_travel", "Travel", "Perjalanan", "expense", "plane", "#6366F1"),
    (11, "expense_personal", "Personal Care", "Perawatan Diri", "expense", "user", "#A855F7"),
    (12, "expense_other", "Other", "Lainnya", "expense", "more-horizontal", "#6B7280"),
    (13, "income_salary", "Salary", "Gaji", "income", "wallet", "#10B981"),
    (14, "income_business", "Business", "Bisnis", "income", "briefcase", "#3B82F6"),
    (15, "income_investment", "Investment", "Investasi", "income", "trending-up", "#8B5CF6"),
    (16, "income_gift", "Gift", "Hadiah", "income", "gift", "#EC4899"),
    (17, "income_other", "Other", "Lainnya", "income", "more-horizontal", "#6B7280"),
    (18, "system_transfer", "Transfer", "Transfer", "system", "arrow-right-left", "#0EA5E9"),
    (19, "expense_donation", "Donation", "Donasi", "expense", "heart", "#F87171"),
    (20, "expense_investment", "Investment", "Investasi", "expense", "trending-up", "#34D399"),
    (21, "expense_baby", "Baby Needs", "Kebutuhan Bayi", "expense", "baby", "#FBB6CE"),
]
DEFAULT_CATEGORY_KEYS = {"expense": "expense_other", "income": "income_other", "transfer": "system_transfer"}

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("hashed_password", String(255), nullable=False),
    Column("currency", String(3)),
    Column("language", String(2), nullable=False, server_default="id"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

wallets = Table(
    "wallets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("balance", Numeric(14, 2), nullable=False, server_default="0"),
    Column("type", String(20), nullable=False, server_default="cash"),
    Column("color", String(20), nullable=False),
    Column("icon", String(50)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

# Custom categories are numbered above the seeded defaults.
categories = Table(
    "categories",
    metadata,
    Column("id", Integer, Sequence("categories_id_seq", start=100), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id")),
    Column("category_key", String(100), unique=True, nullable=False),
    Column("en_name", String(255), nullable=False),
    Column("id_name", String(255), nullable=False),
    Column("type", String(20), nullable=False),
    Column("icon", String(50), nullable=False, server_default="circle"),
    Column("color", String(20), nullable=False, server_default="#6B7280"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("wallet_id", Integer, ForeignKey("wallets.id"), nullable=False),
    Column("destination_wallet_id", Integer, ForeignKey("wallets.id")),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("fee", Numeric(14, 2)),
    Column("type", String(20), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("description", String(500)),
    Column("date", Date, nullable=False),
    Column("currency", String(3), nullable=False, server_default=SYSTEM_DEFAULT_CURRENCY),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budgets = Table(
    "budgets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id"), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("period", String(20), nullable=False, server_default="monthly"),
    Column("wallet_id", Integer, ForeignKey("wallets.id")),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("user_id", "category_id", "period", name="uq_budgets_user_category_period"),
)

want_to_buy_items = Table(
    "want_to_buy_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("price", Numeric(14, 2), nullable=False),
    Column("category", String(20), nullable=False),
    Column("priority", String(20), nullable=False),
    Column("estimated_date", Date, nullable=False),
    Column("is_purchased", Boolean, nullable=False, server_default=false()),
    Column("purchase_date", Date),
    Column("icon", String(50)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

loans = Table(
    "loans",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("name", String(255), nullable=False),
    Column("amount", Numeric(14, 2), nullable=False),
    Column("due_date", Date, nullable=False),
    Column("category", String(20), nullable=False),
    Column("description", String(500)),
    Column("lender_name", String(255)),
    Column("icon", String(50)),
    Column("is_settled", Boolean, nullable=False, server_default=false()),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budget_predictions = Table(
    "budget_predictions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("category_id", Integer, ForeignKey("categories.id")),
    Column("prediction_date", Date, nullable=False),
    Column("period_start", Date, nullable=False),
    Column("period_end", Date, nullable=False),
    Column("current_spend", Numeric(14, 2), nullable=False),
    Column("budget_limit", Numeric(14, 2), nullable=False),
    Column("projected_spend", Numeric(14, 2), nullable=False),
    Column("overrun_amount", Numeric(14, 2), nullable=False),
    Column("risk_level", String(10), nullable=False),
    Column("confidence", Numeric(4, 2)),
    Column("days_remaining", Integer),
    Column("recommended_daily_limit", Numeric(14, 2)),
    Column("insight", String(1000)),
    Column("created_at", DateTime, nullable=False),
)


def seed_default_categories(conn) -> None:
    existing = set(conn.execute(select(categories.c.category_key)).scalars().all())
    missing = [
        {
            "id": category_id,
            "user_id": None,
            "category_key": key,
            "en_name": en_name,
            "id_name": id_name,
            "type": category_type,
            "icon": icon,
            "color": color,
        }
        for category_id, key, en_name, id_name, category_type, icon, color in DEFAULT_CATEGORIES
        if key not in existing
    ]
    if missing:
        conn.execute(insert(categories), missing)


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)
    with engine.begin() as conn:
        seed_default_categories(conn)
    logger.info("database_ready", url=engine.url.render_as_string(hide_password=True))


class CredentialsPayload(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    created_at: datetime | None = None


class PasswordStrengthResponse(BaseModel):
    is_valid: bool
    strength: str
    score: int
    errors: list[str]


class UserSettingsPayload(BaseModel):
    currency: str | None = None
    language: str | None = None


class UserSettingsResponse(BaseModel):
    id: int
    email: str
    currency: str
    language: str


def validate_money(value: Decimal, message: str) -> Decimal:
    """Reject amounts that a Numeric(14, 2) column would round or overflow."""
    if not value.is_finite() or abs(value) >= MONEY_LIMIT:
        raise ValueError(message)
    if value.quantize(CENT) != value:
        raise ValueError(f"{message} Use at most two decimal places.")
    return value


class WalletType:
    values = {"cash", "bank", "e-wallet", "investment"}

    @classmethod
    def validate(cls, value: str | None) -> str:
        normalized = (value or "cash").strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid wallet type.")
        return normalized


class TransactionType:
    values = {"income", "expense", "transfer"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


class CategoryType:
    values = {"income", "expense"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError('Invalid category type. Must be "income" or "expense".')
        return normalized


class WalletPayload(BaseModel):
    name: str
    balance: Decimal = Decimal("0")
    type: str | None = "cash"
    color: str
    icon: str | None = None

    @classmethod
    def validate_payload(cls, payload: "WalletPayload") -> "WalletPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Wallet name is required.")
        validate_money(payload.balance, "Valid balance is required.")
        payload.type = WalletType.validate(payload.type)
        payload.color = payload.color.strip()
        if not payload.color:
            raise ValueError("Wallet color is required.")
        payload.icon = payload.icon.strip() if payload.icon else "wallet"
        return payload


class WalletResponse(BaseModel):
    id: int
    user_id: int
    name: str
    balance: Decimal
    type: str
    color: str
    icon: str
    created_at: datetime | None = None


class WalletBalanceResponse(BaseModel):
    id: int
    balance: Decimal


class WalletSummaryResponse(BaseModel):
    total_balance: Decimal
    wallet_count: int
    totals_by_type: dict[str, Decimal]


class CategoryPayload(BaseModel):
    name: str
    type: str
    icon: str | None = None
    color: str | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Category name is required.")
        payload.type = CategoryType.validate(payload.type)
        payload.icon = payload.icon.strip() if payload.icon and payload.icon.strip() else "circle"
        payload.color = payload.color.strip() if payload.color and payload.color.strip() else "#6B7280"
        return payload


class CategoryUpdatePayload(BaseModel):
    name: str | None = None
    icon: str | None = None
    color: str | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryUpdatePayload") -> dict:
        values: dict = {}
        if payload.name is not None:
            name = payload.name.strip()
            if not name:
                raise ValueError("Category name cannot be empty.")
            values["en_name"] = name
            values["id_name"] = name
        if payload.icon:
            values["icon"] = payload.icon.strip()
        if payload.color:
            values["color"] = payload.color.strip()
        if not values:
            raise ValueError("No fields to update.")
        return values


class CategoryResponse(BaseModel):
    id: int
    category_key: str
    en_name: str
    id_name: str
    display_name: str
    type: str
    icon: str
    color: str
    user_id: int | None = None
    is_custom: bool
    created_at: datetime | None = None


class TransactionPayload(BaseModel):
    wallet_id: int
    amount: Decimal
    type: str
    category_id: int | None = None
    description: str | None = None
    date: date
    destination_wallet_id: int | None = None
    fee: Decimal | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = TransactionType.validate(payload.type)
        payload.description = payload.description.strip() if payload.description else None
        validate_money(payload.amount, "Valid amount is required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        if payload.type == "transfer":
            if payload.destination_wallet_id is None:
                raise ValueError("Destination wallet is required for transfers.")
            if payload.destination_wallet_id == payload.wallet_id:
                raise ValueError("Cannot transfer to the same wallet.")
            payload.fee = payload.fee if payload.fee is not None else Decimal("0")
            validate_money(payload.fee, "Valid transfer fee is required.")
            if payload.fee < 0:
                raise ValueError("Transfer fee cannot be negative.")
            payload.category_id = None
        else:
            payload.destination_wallet_id = None
            payload.fee = None
        return payload


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    wallet_id: int
    destination_wallet_id: int | None = None
    amount: Decimal
    fee: Decimal | None = None
    type: str
    category_id: int
    description: str | None = None
    date: date
    currency: str
    created_at: datetime | None = None


class TransactionMutationResponse(BaseModel):
    transaction: TransactionResponse
    wallets: list[WalletBalanceResponse]


class BudgetPayload(BaseModel):
    category_id: int | None = None
    amount: Decimal
    period: str | None = "monthly"
    wallet_id: int | None = None

    @classmethod
    def validate_payload(cls, payload: "BudgetPayload") -> "BudgetPayload":
        validate_money(payload.amount, "Valid budget amount is required.")
        if payload.amount <= 0:
            raise ValueError("Budget amount must be greater than zero.")
        if payload.category_id is None:
            raise ValueError("Category is required.")
        payload.period = normalize_period(payload.period)
        return payload


class BudgetResponse(BaseModel):
    id: int
    user_id: int
    category_id: int
    amount: Decimal
    period: str
    wallet_id: int | None = None
    spent: Decimal
    remaining: Decimal
    utilization: Decimal
    status: str
    start_date: date
    end_date: date
    created_at: datetime | None = None


class BudgetAlertResponse(BaseModel):
    budget_id: int
    category_id: int
    status: str
    utilization: Decimal
    message: str


class BudgetSummaryResponse(BaseModel):
    total_budget: Decimal
    total_spent: Decimal
    overall_utilization: Decimal
    budget_count: int


class MonthlySummaryResponse(BaseModel):
    month: str
    income: Decimal
    expense: Decimal
    net_flow: Decimal


class CategoryBreakdownResponse(BaseModel):
    category_id: int | None = None
    category_name: str
    amount: Decimal
    count: int
    percentage: Decimal


class WalletStatsResponse(BaseModel):
    wallet_id: int
    wallet_name: str
    income: Decimal
    expense: Decimal


class DailyAverageResponse(BaseModel):
    days: int
    average: Decimal


class PredictionResponse(BaseModel):
    category_id: int
    category_name: str
    current_spend: Decimal
    budget_limit: Decimal
    projected_spend: Decimal
    overrun_amount: Decimal
    risk_level: str
    confidence: Decimal
    days_remaining: int
    recommended_daily_limit: Decimal
    insight: str


class PredictionSetResponse(BaseModel):
    predictions: list[PredictionResponse]
    overall_risk: str
    summary: str
    cached: bool


class AIParsePayload(BaseModel):
    input: str
    language: str | None = "id"


class AIParseResponse(BaseModel):
    valid: list[ParsedTransaction]
    invalid: list[ParsedTransaction]
    message: str | None = None


class AIDraftTransaction(BaseModel):
    description: str
    amount: Decimal
    category_id: int | None = None
    type: str = "expense"


class AICommitPayload(BaseModel):
    wallet_id: int
    transactions: list[AIDraftTransaction]


class AICommitResponse(BaseModel):
    inserted_count: int
    transactions: list[TransactionResponse]
    wallets: list[WalletBalanceResponse]


class AIInsightPayload(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    language: str | None = "id"


class AIQuestionPayload(AIInsightPayload):
    question: str


class CategoryAmountResponse(BaseModel):
    category: str
    amount: Decimal
    percentage: Decimal


class FinanceSummaryResponse(BaseModel):
    start_date: date
    end_date: date
    total_income: Decimal
    total_expense: Decimal
    net_flow: Decimal
    income: list[CategoryAmountResponse]
    expenses: list[CategoryAmountResponse]


class AIInsightResponse(BaseModel):
    result: str
    summary: FinanceSummaryResponse


class CurrencyConvertPayload(BaseModel):
    amount: Decimal
    from_currency: str
    to_currency: str


class CurrencyConvertResponse(BaseModel):
    converted_amount: Decimal
    rate: Decimal
    timestamp: datetime


class ExchangeRateResponse(BaseModel):
    base_currency: str
    target_currency: str
    rate: Decimal


class WantToBuyPayload(BaseModel):
    name: str
    price: Decimal
    category: str
    priority: str
    estimated_date: date
    icon: str | None = None
    is_purchased: bool | None = None
    purchase_date: date | None = None

    @classmethod
    def validate_payload(cls, payload: "WantToBuyPayload") -> "WantToBuyPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Item name is required.")
        validate_money(payload.price, "Valid price is required.")
        if payload.price <= 0:
            raise ValueError("Price must be greater than zero.")
        payload.category = payload.category.strip().capitalize()
        if payload.category not in WANT_TO_BUY_CATEGORIES:
            raise ValueError("Category must be Keinginan or Kebutuhan.")
        payload.priority = payload.priority.strip().capitalize()
        if payload.priority not in WANT_TO_BUY_PRIORITIES:
            raise ValueError("Priority must be Tinggi, Sedang, or Rendah.")
        payload.icon = payload.icon.strip() if payload.icon else None
        return payload


class WantToBuyResponse(BaseModel):
    id: int
    user_id: int
    name: str
    price: Decimal
    category: str
    priority: str
    estimated_date: date
    is_purchased: bool
    purchase_date: date | None = None
    icon: str | None = None
    created_at: datetime | None = None


class LoanPayload(BaseModel):
    name: str
    amount: Decimal
    due_date: date
    category: str
    description: str | None = None
    lender_name: str | None = None
    icon: str | None = None
    is_settled: bool | None = None

    @classmethod
    def validate_payload(cls, payload: "LoanPayload") -> "LoanPayload":
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Loan name is required.")
        validate_money(payload.amount, "Valid amount is required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        payload.category = payload.category.strip().capitalize()
        if payload.category not in LOAN_CATEGORIES:
            raise ValueError("Category must be Utang or Piutang.")
        payload.description = payload.description.strip() if payload.description else None
        payload.lender_name = payload.lender_name.strip() if payload.lender_name else None
        payload.icon = payload.icon.strip() if payload.icon else None
        return payload


class LoanResponse(BaseModel):
    id: int
    user_id: int
    name: str
    amount: Decimal
    due_date: date
    category: str
    description: str | None = None
    lender_name: str | None = None
    icon: str | None = None
    is_settled: bool
    created_at: datetime | None = None


class LoanSummaryResponse(BaseModel):
    total_debt: Decimal
    total_credit: Decimal
    net_position: Decimal


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), hashed_password.encode("utf-8"))


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def get_user_id(x_user_id: str | None) -> int:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        user_id = int(x_user_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid user identity.") from exc
    with engine.begin() as conn:
        result = conn.execute(select(users.c.id).where(users.c.id == user_id))
        if not result.first():
            raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def resolve_user_currency(conn, user_id: int) -> str:
    currency = conn.execute(
        select(users.c.currency).where(users.c.id == user_id)
    ).scalar_one_or_none()
    if currency:
        try:
            return validate_supported_currency(currency)
        except ValueError:
            pass
    return SYSTEM_DEFAULT_CURRENCY


def parse_month_value(value: str | None) -> date:
    if not value:
        return month_start(date.today())
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid month format. Use YYYY-MM.") from exc


def normalize_language(value: str | None) -> str:
    normalized = (value or "id").strip().lower()
    if normalized not in SUPPORTED_LANGUAGES:
        raise ValueError("Language must be 'en' or 'id'.")
    return normalized


def wallet_response(row) -> WalletResponse:
    return WalletResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        balance=row["balance"],
        type=row["type"],
        color=row["color"],
        icon=row["icon"] or "wallet",
        created_at=row["created_at"],
    )


def category_response(row, language: str = "id") -> CategoryResponse:
    return CategoryResponse(
        id=row["id"],
        category_key=row["category_key"],
        en_name=row["en_name"],
        id_name=row["id_name"],
        display_name=row["id_name"] if language == "id" else row["en_name"],
        type=row["type"],
        icon=row["icon"],
        color=row["color"],
        user_id=row["user_id"],
        is_custom=row["user_id"] is not None,
        created_at=row["created_at"],
    )


def transaction_response(row) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        user_id=row["user_id"],
        wallet_id=row["wallet_id"],
        destination_wallet_id=row["destination_wallet_id"],
        amount=row["amount"],
        fee=row["fee"],
        type=row["type"],
        category_id=row["category_id"],
        description=row["description"],
        date=row["date"],
        currency=row["currency"],
        created_at=row["created_at"],
    )


def want_to_buy_response(row) -> WantToBuyResponse:
    return WantToBuyResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        price=row["price"],
        category=row["category"],
        priority=row["priority"],
        estimated_date=row["estimated_date"],
        is_purchased=bool(row["is_purchased"]),
        purchase_date=row["purchase_date"],
        icon=row["icon"],
        created_at=row["created_at"],
    )


def loan_response(row) -> LoanResponse:
    return LoanResponse(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        amount=row["amount"],
        due_date=row["due_date"],
        category=row["category"],
        description=row["description"],
        lender_name=row["lender_name"],
        icon=row["icon"],
        is_settled=bool(row["is_settled"]),
        created_at=row["created_at"],
    )


def visible_category_clause(user_id: int):
    return or_(categories.c.user_id.is_(None), categories.c.user_id == user_id)


def get_category_id_by_key(conn, key: str) -> int:
    category_id = conn.execute(
        select(categories.c.id).where(categories.c.category_key == key)
    ).scalar_one_or_none()
    if category_id is None:
        raise HTTPException(status_code=500, detail="Default categories are missing.")
    return category_id


def resolve_transaction_category(
    conn, user_id: int, txn_type: str, category_id: int | None
) -> int:
    if txn_type == "transfer":
        return get_category_id_by_key(conn, DEFAULT_CATEGORY_KEYS["transfer"])
    if category_id is None:
        return get_category_id_by_key(conn, DEFAULT_CATEGORY_KEYS[txn_type])
    row = conn.execute(
        select(categories.c.id, categories.c.type).where(
            categories.c.id == category_id, visible_category_clause(user_id)
        )
    ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Category not found.")
    if row["type"] != txn_type:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid category type. Expected {txn_type}, got {row['type']}.",
        )
    return row["id"]


def load_wallet_states(conn, user_id: int, wallet_ids) -> list[WalletState]:
    wanted = {wallet_id for wallet_id in wallet_ids if wallet_id is not None}
    if not wanted:
        return []
    rows = conn.execute(
        select(wallets.c.id, wallets.c.balance).where(
            wallets.c.user_id == user_id, wallets.c.id.in_(wanted)
        )
    ).mappings().all()
    return [WalletState(row["id"], row["balance"]) for row in rows]


def require_wallets(states: list[WalletState], wallet_id: int, destination_id: int | None) -> None:
    known = {state.id for state in states}
    if wallet_id not in known:
        raise HTTPException(status_code=404, detail="Wallet not found.")
    if destination_id is not None and destination_id not in known:
        raise HTTPException(status_code=404, detail="Destination wallet not found.")


def write_balances(conn, user_id: int, updates) -> list[WalletBalanceResponse]:
    written: list[WalletBalanceResponse] = []
    for balance_update in updates:
        conn.execute(
            update(wallets)
            .where(wallets.c.id == balance_update.wallet_id, wallets.c.user_id == user_id)
            .values(balance=balance_update.new_balance)
        )
        logger.info(
            "wallet_balance_updated",
            user_id=user_id,
            wallet_id=balance_update.wallet_id,
            balance=str(balance_update.new_balance),
        )
        written.append(
            WalletBalanceResponse(id=balance_update.wallet_id, balance=balance_update.new_balance)
        )
    return written


def ledger_entry_from_row(row) -> LedgerEntry:
    return LedgerEntry(
        type=row["type"],
        amount=row["amount"],
        wallet_id=row["wallet_id"],
        destination_wallet_id=row["destination_wallet_id"],
        fee=row["fee"],
        category_id=row["category_id"],
    )


def ledger_entry_from_payload(payload: TransactionPayload, category_id: int) -> LedgerEntry:
    return LedgerEntry(
        type=payload.type,
        amount=payload.amount,
        wallet_id=payload.wallet_id,
        destination_wallet_id=payload.destination_wallet_id,
        fee=payload.fee,
        category_id=category_id,
    )


def insert_transaction(
    conn, user_id: int, payload: TransactionPayload
) -> tuple[TransactionResponse, list[WalletBalanceResponse]]:
    """Insert one transaction and move the wallet balances it touches."""
    category_id = resolve_transaction_category(conn, user_id, payload.type, payload.category_id)
    states = load_wallet_states(conn, user_id, (payload.wallet_id, payload.destination_wallet_id))
    require_wallets(states, payload.wallet_id, payload.destination_wallet_id)
    entry = ledger_entry_from_payload(payload, category_id)
    try:
        validate_entry(entry, states)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    currency = resolve_user_currency(conn, user_id)
    row = conn.execute(
        insert(transactions)
        .values(
            user_id=user_id,
            wallet_id=payload.wallet_id,
            destination_wallet_id=payload.destination_wallet_id,
            amount=payload.amount,
            fee=payload.fee,
            type=payload.type,
            category_id=category_id,
            description=payload.description,
            date=payload.date,
            currency=currency,
        )
        .returning(*transactions.c)
    ).mappings().first()
    if not row:
        raise HTTPException(status_code=500, detail="Failed to create transaction.")
    written = write_balances(conn, user_id, balance_updates(entry, states))
    logger.info(
        "transaction_created",
        user_id=user_id,
        transaction_id=row["id"],
        type=row["type"],
        amount=str(row["amount"]),
    )
    return transaction_response(row), written


def fetch_ledger_rows(
    user_id: int, start_date: date | None = None, end_date: date | None = None
) -> list[LedgerRow]:
    conditions = [transactions.c.user_id == user_id]
    if start_date is not None:
        conditions.append(transactions.c.date >= start_date)
    if end_date is not None:
        conditions.append(transactions.c.date <= end_date)
    with engine.begin() as conn:
        rows = conn.execute(
            select(
                transactions.c.amount,
                transactions.c.type,
                transactions.c.date,
                transactions.c.wallet_id,
                transactions.c.category_id,
            ).where(*conditions)
        ).mappings().all()
    return [
        LedgerRow(
            amount=row["amount"],
            type=row["type"],
            date=row["date"],
            wallet_id=row["wallet_id"],
            category_id=row["category_id"],
        )
        for row in rows
    ]


def fetch_expense_transactions(conn, user_id: int, start_date: date) -> list[Transaction]:
    rows = conn.execute(
        select(
            transactions.c.amount,
            transactions.c.type,
            transactions.c.date,
            transactions.c.category_id,
            transactions.c.wallet_id,
        ).where(
            transactions.c.user_id == user_id,
            transactions.c.type == "expense",
            transactions.c.date >= start_date,
        )
    ).mappings().all()
    return [
        Transaction(
            amount=row["amount"],
            type=row["type"],
            date=row["date"],
            category_id=row["category_id"],
            wallet_id=row["wallet_id"],
        )
        for row in rows
    ]


def category_names(conn, user_id: int, language: str = "en") -> dict[int, str]:
    name_column = categories.c.id_name if language == "id" else categories.c.en_name
    rows = conn.execute(
        select(categories.c.id, name_column.label("name")).where(visible_category_clause(user_id))
    ).mappings().all()
    return {row["id"]: row["name"] for row in rows}


def evaluate_user_budgets(user_id: int, today: date) -> list[BudgetResponse]:
    with engine.begin() as conn:
        budget_rows = conn.execute(
            select(budgets).where(budgets.c.user_id == user_id).order_by(budgets.c.id.asc())
        ).mappings().all()
        if not budget_rows:
            return []
        earliest = min(get_period_range(row["period"], today)[0] for row in budget_rows)
        txn_items = fetch_expense_transactions(conn, user_id, earliest)

    results: list[BudgetResponse] = []
    for row in budget_rows:
        budget = Budget(
            amount=row["amount"],
            category_id=row["category_id"],
            period=row["period"],
            wallet_id=row["wallet_id"],
        )
        evaluation = evaluate_budget(budget, txn_items, today)
        results.append(
            BudgetResponse(
                id=row["id"],
                user_id=row["user_id"],
                category_id=row["category_id"],
                amount=row["amount"],
                period=row["period"],
                wallet_id=row["wallet_id"],
                spent=evaluation.spent,
                remaining=evaluation.remaining,
                utilization=evaluation.utilization,
                status=evaluation.status,
                start_date=evaluation.start_date,
                end_date=evaluation.end_date,
                created_at=row["created_at"],
            )
        )
    return results


def validate_budget_references(conn, user_id: int, payload: BudgetPayload) -> None:
    row = conn.execute(
        select(categories.c.type).where(
            categories.c.id == payload.category_id, visible_category_clause(user_id)
        )
    ).first()
    if not row:
        raise HTTPException(status_code=404, detail="Category not found.")
    if row[0] != "expense":
        raise HTTPException(status_code=400, detail="Budgets require an expense category.")
    if payload.wallet_id is not None:
        wallet_exists = conn.execute(
            select(wallets.c.id).where(wallets.c.id == payload.wallet_id, wallets.c.user_id == user_id)
        ).first()
        if not wallet_exists:
            raise HTTPException(status_code=404, detail="Wallet not found.")


def prediction_response(prediction: BudgetPrediction) -> PredictionResponse:
    return PredictionResponse(
        category_id=prediction.category_id,
        category_name=prediction.category_name,
        current_spend=prediction.current_spend,
        budget_limit=prediction.budget_limit,
        projected_spend=prediction.projected_spend,
        overrun_amount=prediction.overrun_amount,
        risk_level=prediction.risk_level,
        confidence=prediction.confidence,
        days_remaining=prediction.days_remaining,
        recommended_daily_limit=prediction.recommended_daily_limit,
        insight=prediction.insight,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/auth/signup", response_model=UserResponse)
def signup(payload: CredentialsPayload) -> UserResponse:
    try:
        email = normalize_email(payload.email)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    password_check = check_password(payload.password)
    if not password_check.is_valid:
        raise HTTPException(status_code=400, detail=" ".join(password_check.errors))
    hashed_password = hash_password(payload.password)

    stmt = (
        insert(users)
        .values(email=email, hashed_password=hashed_password, currency=SYSTEM_DEFAULT_CURRENCY)
        .returning(users.c.id, users.c.email, users.c.created_at)
    )
    try:
        with engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
    except IntegrityError as exc:
        raise HTTPException(status_code=409, detail="Email already exists.") from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    logger.info("user_signed_up", user_id=row["id"])
    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.post("/auth/login", response_model=UserResponse)
def login(payload: CredentialsPayload) -> UserResponse:
    email = payload.email.strip().lower()
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.email == email)).mappings().first()

    if not row or not verify_password(payload.password, row["hashed_password"]):
        logger.warning("login_failed", email=email)
        raise HTTPException(status_code=401, detail="Invalid credentials.")

    return UserResponse(id=row["id"], email=row["email"], created_at=row["created_at"])


@app.get("/auth/password-strength", response_model=PasswordStrengthResponse)
def password_strength(password: str = Query(...)) -> PasswordStrengthResponse:
    result = check_password(password)
    return PasswordStrengthResponse(
        is_valid=result.is_valid,
        strength=result.strength,
        score=result.score,
        errors=result.errors,
    )


@app.get("/users/me/settings", response_model=UserSettingsResponse)
def get_user_settings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="User not found.")
        currency = resolve_user_currency(conn, user_id)
    return UserSettingsResponse(
        id=row["id"],
        email=row["email"],
        currency=currency,
        language=row["language"] or "id",
    )


@app.put("/users/me/settings", response_model=UserSettingsResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    values: dict = {}
    try:
        if payload.currency is not None:
            values["currency"] = validate_supported_currency(payload.currency)
        if payload.language is not None:
            values["language"] = normalize_language(payload.language)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not values:
        raise HTTPException(status_code=400, detail="Currency or language required.")

    with engine.begin() as conn:
        row = conn.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(**values)
            .returning(users.c.id, users.c.email, users.c.currency, users.c.language)
        ).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="User not found.")
    return UserSettingsResponse(
        id=row["id"],
        email=row["email"],
        currency=row["currency"] or SYSTEM_DEFAULT_CURRENCY,
        language=row["language"] or "id",
    )


@app.delete("/users/me/data")
def delete_user_data(x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        for table in (budget_predictions, transactions, budgets):
            conn.execute(table.delete().where(table.c.user_id == user_id))
        conn.execute(want_to_buy_items.delete().where(want_to_buy_items.c.user_id == user_id))
        conn.execute(loans.delete().where(loans.c.user_id == user_id))
        conn.execute(wallets.delete().where(wallets.c.user_id == user_id))
        conn.execute(categories.delete().where(categories.c.user_id == user_id))
    logger.info("user_data_deleted", user_id=user_id)
    return {"status": "deleted"}


@app.get("/wallets", response_model=list[WalletResponse])
def list_wallets(
    wallet_type: str | None = Query(None, alias="type"),
    sort: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[WalletResponse]:
    user_id = get_user_id(x_user_id)
    conditions = [wallets.c.user_id == user_id]
    if wallet_type:
        try:
            conditions.append(wallets.c.type == WalletType.validate(wallet_type))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    if sort is None:
        order = (wallets.c.created_at.asc(), wallets.c.id.asc())
    elif sort == "name":
        order = (func.lower(wallets.c.name).asc(), wallets.c.id.asc())
    elif sort == "balance":
        order = (wallets.c.balance.desc(), wallets.c.id.asc())
    else:
        raise HTTPException(status_code=400, detail="Sort must be 'name' or 'balance'.")
    with engine.begin() as conn:
        rows = conn.execute(select(wallets).where(*conditions).order_by(*order)).mappings().all()
    return [wallet_response(row) for row in rows]


@app.get("/wallets/summary", response_model=WalletSummaryResponse)
def wallet_summary(x_user_id: str | None = Header(None, alias="x-user-id")) -> WalletSummaryResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(wallets.c.id, wallets.c.balance, wallets.c.type).where(wallets.c.user_id == user_id)
        ).mappings().all()
    totals_by_type: dict[str, Decimal] = {}
    for row in rows:
        totals_by_type[row["type"]] = totals_by_type.get(row["type"], Decimal("0")) + row["balance"]
    return WalletSummaryResponse(
        total_balance=total_balance(WalletState(row["id"], row["balance"]) for row in rows),
        wallet_count=len(rows),
        totals_by_type=totals_by_type,
    )


@app.get("/wallets/{wallet_id}", response_model=WalletResponse)
def get_wallet(wallet_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> WalletResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            select(wallets).where(wallets.c.id == wallet_id, wallets.c.user_id == user_id)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Wallet not found.")
    return wallet_response(row)


@app.post("/wallets", response_model=WalletResponse)
def create_wallet(
    payload: WalletPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> WalletResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = WalletPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        insert(wallets)
        .values(
            user_id=user_id,
            name=payload.name,
            balance=payload.balance,
            type=payload.type,
            color=payload.color,
            icon=payload.icon,
        )
        .returning(*wallets.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create wallet.")
    logger.info("wallet_created", user_id=user_id, wallet_id=row["id"])
    return wallet_response(row)


@app.put("/wallets/{wallet_id}", response_model=WalletResponse)
def update_wallet(
    wallet_id: int, payload: WalletPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> WalletResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = WalletPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    stmt = (
        update(wallets)
        .where(wallets.c.id == wallet_id, wallets.c.user_id == user_id)
        .values(
            name=payload.name,
            balance=payload.balance,
            type=payload.type,
            color=payload.color,
            icon=payload.icon,
        )
        .returning(*wallets.c)
    )
    with engine.begin() as conn:
        row = conn.execute(stmt).mappings().first()

    if not row:
        raise HTTPException(status_code=404, detail="Wallet not found.")
    return wallet_response(row)


@app.delete("/wallets/{wallet_id}")
def delete_wallet(wallet_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        exists = conn.execute(
            select(wallets.c.id).where(wallets.c.id == wallet_id, wallets.c.user_id == user_id)
        ).first()
        if not exists:
            raise HTTPException(status_code=404, detail="Wallet not found.")

        linked = conn.execute(
            select(transactions).where(
                transactions.c.user_id == user_id,
                or_(
                    transactions.c.wallet_id == wallet_id,
                    transactions.c.destination_wallet_id == wallet_id,
                ),
            )
        ).mappings().all()

        # Transfers moved money into or out of other wallets; undo that side.
        entries = [ledger_entry_from_row(row) for row in linked if row["type"] == "transfer"]
        other_ids = {
            wallet
            for entry in entries
            for wallet in (entry.wallet_id, entry.destination_wallet_id)
            if wallet != wallet_id
        }
        states = load_wallet_states(conn, user_id, other_ids | {wallet_id})
        for entry in entries:
            states = apply_updates(states, balance_updates_for_deletion(entry, states))
        restored = [state for state in states if state.id in other_ids]
        for state in restored:
            conn.execute(
                update(wallets)
                .where(wallets.c.id == state.id, wallets.c.user_id == user_id)
                .values(balance=state.balance)
            )

        conn.execute(budgets.delete().where(budgets.c.wallet_id == wallet_id, budgets.c.user_id == user_id))
        conn.execute(
            transactions.delete().where(
                transactions.c.user_id == user_id,
                or_(
                    transactions.c.wallet_id == wallet_id,
                    transactions.c.destination_wallet_id == wallet_id,
                ),
            )
        )
        conn.execute(wallets.delete().where(wallets.c.id == wallet_id, wallets.c.user_id == user_id))
    logger.info(
        "wallet_deleted",
        user_id=user_id,
        wallet_id=wallet_id,
        removed_transactions=len(linked),
    )
    return {
        "status": "deleted",
        "wallets": [{"id": state.id, "balance": state.balance} for state in restored],
    }


@app.get("/categories", response_model=list[CategoryResponse])
def list_categories(
    category_type: str | None = Query(None, alias="type"),
    q: str | None = Query(None),
    language: str | None = Query("id"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryResponse]:
    user_id = get_user_id(x_user_id)
    try:
        language = normalize_language(language)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    conditions = [visible_category_clause(user_id)]
    if category_type:
        conditions.append(categories.c.type == category_type.strip().lower())
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        conditions.append(
            or_(
                func.lower(categories.c.en_name).like(pattern),
                func.lower(categories.c.id_name).like(pattern),
            )
        )
    with engine.begin() as conn:
        rows = conn.execute(
            select(categories)
            .where(*conditions)
            .order_by(categories.c.type.asc(), categories.c.en_name.asc(), categories.c.id.asc())
        ).mappings().all()
    return [category_response(row, language) for row in rows]


@app.get("/categories/{category_id}", response_model=CategoryResponse)
def get_category(
    category_id: int,
    language: str | None = Query("id"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> CategoryResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            select(categories).where(categories.c.id == category_id, visible_category_clause(user_id))
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Category not found.")
    return category_response(row, "en" if language == "en" else "id")


@app.post("/categories", response_model=CategoryResponse)
def create_category(
    payload: CategoryPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> CategoryResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = CategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        duplicate = conn.execute(
            select(categories.c.id).where(
                categories.c.user_id == user_id,
                categories.c.type == payload.type,
                func.lower(categories.c.en_name) == payload.name.lower(),
            )
        ).first()
        if duplicate:
            raise HTTPException(status_code=409, detail="A category with this name already exists.")
        row = conn.execute(
            insert(categories)
            .values(
                user_id=user_id,
                category_key=f"custom_{uuid4().hex}",
                en_name=payload.name,
                id_name=payload.name,
                type=payload.type,
                icon=payload.icon,
                color=payload.color,
            )
            .returning(*categories.c)
        ).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create category.")
    logger.info("category_created", user_id=user_id, category_id=row["id"])
    return category_response(row)


@app.put("/categories/{category_id}", response_model=CategoryResponse)
def update_category(
    category_id: int,
    payload: CategoryUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> CategoryResponse:
    user_id = get_user_id(x_user_id)
    try:
        values = CategoryUpdatePayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        row = conn.execute(
            update(categories)
            .where(categories.c.id == category_id, categories.c.user_id == user_id)
            .values(**values)
            .returning(*categories.c)
        ).mappings().first()

    if not row:
        raise HTTPException(
            status_code=404,
            detail="Category not found or you do not have permission to update it.",
        )
    return category_response(row)


@app.delete("/categories/{category_id}")
def delete_category(
    category_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            select(categories.c.id).where(
                categories.c.id == category_id, categories.c.user_id == user_id
            )
        ).first()
        if not row:
            raise HTTPException(
                status_code=404,
                detail="Category not found or you do not have permission to delete it.",
            )
        in_use = conn.execute(
            select(transactions.c.id).where(transactions.c.category_id == category_id).limit(1)
        ).first() or conn.execute(
            select(budgets.c.id).where(budgets.c.category_id == category_id).limit(1)
        ).first()
        if in_use:
            raise HTTPException(
                status_code=409,
                detail="Cannot delete category that is being used in transactions or budgets.",
            )
        # Stored predictions are derived data and go with the category.
        conn.execute(
            budget_predictions.delete().where(
                budget_predictions.c.user_id == user_id,
                budget_predictions.c.category_id == category_id,
            )
        )
        conn.execute(categories.delete().where(categories.c.id == category_id))
    return {"status": "deleted"}


@app.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    wallet_id: int | None = None,
    txn_type: str | None = Query(None, alias="type"),
    category_id: int | None = None,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    limit: int | None = Query(None, ge=1, le=1000),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TransactionResponse]:
    user_id = get_user_id(x_user_id)
    conditions = [transactions.c.user_id == user_id]
    if wallet_id is not None:
        conditions.append(
            or_(transactions.c.wallet_id == wallet_id, transactions.c.destination_wallet_id == wallet_id)
        )
    if txn_type:
        try:
            conditions.append(transactions.c.type == TransactionType.validate(txn_type))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    if category_id is not None:
        conditions.append(transactions.c.category_id == category_id)
    if start_date is not None:
        conditions.append(transactions.c.date >= start_date)
    if end_date is not None:
        conditions.append(transactions.c.date <= end_date)

    stmt = (
        select(transactions)
        .where(*conditions)
        .order_by(
            transactions.c.date.desc(),
            transactions.c.created_at.desc(),
            transactions.c.id.desc(),
        )
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    with engine.begin() as conn:
        rows = conn.execute(stmt).mappings().all()
    return [transaction_response(row) for row in rows]


@app.get("/transactions/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(
            select(transactions).where(
                transactions.c.id == transaction_id, transactions.c.user_id == user_id
            )
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Transaction not found.")
    return transaction_response(row)


@app.post("/transactions", response_model=TransactionMutationResponse)
def create_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> TransactionMutationResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        transaction, written = insert_transaction(conn, user_id, payload)
    return TransactionMutationResponse(transaction=transaction, wallets=written)


@app.put("/transactions/{transaction_id}", response_model=TransactionMutationResponse)
def update_transaction(
    transaction_id: int,
    payload: TransactionPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> TransactionMutationResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = TransactionPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        existing = conn.execute(
            select(transactions).where(
                transactions.c.id == transaction_id, transactions.c.user_id == user_id
            )
        ).mappings().first()
        if not existing:
            raise HTTPException(status_code=404, detail="Transaction not found.")

        category_id = resolve_transaction_category(conn, user_id, payload.type, payload.category_id)
        old_entry = ledger_entry_from_row(existing)
        new_entry = ledger_entry_from_payload(payload, category_id)
        states = load_wallet_states(
            conn,
            user_id,
            (
                old_entry.wallet_id,
                old_entry.destination_wallet_id,
                new_entry.wallet_id,
                new_entry.destination_wallet_id,
            ),
        )
        require_wallets(states, new_entry.wallet_id, new_entry.destination_wallet_id)
        intermediate = apply_updates(states, balance_updates_for_deletion(old_entry, states))
        try:
            validate_entry(new_entry, intermediate)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        row = conn.execute(
            update(transactions)
            .where(transactions.c.id == transaction_id, transactions.c.user_id == user_id)
            .values(
                wallet_id=payload.wallet_id,
                destination_wallet_id=payload.destination_wallet_id,
                amount=payload.amount,
                fee=payload.fee,
                type=payload.type,
                category_id=category_id,
                description=payload.description,
                date=payload.date,
            )
            .returning(*transactions.c)
        ).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="Transaction not found.")
        written = write_balances(
            conn, user_id, balance_updates_for_update(old_entry, new_entry, states)
        )

    logger.info("transaction_updated", user_id=user_id, transaction_id=transaction_id)
    return TransactionMutationResponse(transaction=transaction_response(row), wallets=written)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> dict:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        existing = conn.execute(
            select(transactions).where(
                transactions.c.id == transaction_id, transactions.c.user_id == user_id
            )
        ).mappings().first()
        if not existing:
            raise HTTPException(status_code=404, detail="Transaction not found.")
        entry = ledger_entry_from_row(existing)
        states = load_wallet_states(conn, user_id, (entry.wallet_id, entry.destination_wallet_id))
        conn.execute(transactions.delete().where(transactions.c.id == transaction_id))
        written = write_balances(conn, user_id, balance_updates_for_deletion(entry, states))

    logger.info("transaction_deleted", user_id=user_id, transaction_id=transaction_id)
    return {
        "status": "deleted",
        "wallets": [balance.model_dump() for balance in written],
    }


@app.get("/budgets", response_model=list[BudgetResponse])
def list_budgets(
    period: str | None = Query(None),
    status: str | None = Query(None),
    sort: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[BudgetResponse]:
    user_id = get_user_id(x_user_id)
    results = evaluate_user_budgets(user_id, date.today())
    if period:
        try:
            normalized_period = normalize_period(period)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        results = [item for item in results if item.period == normalized_period]
    if status:
        results = [item for item in results if item.status == status.strip().lower()]
    if sort == "utilization":
        results.sort(key=lambda item: item.utilization, reverse=True)
    elif sort is not None:
        raise HTTPException(status_code=400, detail="Sort must be 'utilization'.")
    return results


@app.get("/budgets/alerts", response_model=list[BudgetAlertResponse])
def budget_alerts(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[BudgetAlertResponse]:
    user_id = get_user_id(x_user_id)
    alerts: list[BudgetAlertResponse] = []
    for item in evaluate_user_budgets(user_id, date.today()):
        evaluation = BudgetEvaluation(
            spent=item.spent,
            remaining=item.remaining,
            utilization=item.utilization,
            status=item.status,
            start_date=item.start_date,
            end_date=item.end_date,
        )
        alert = build_alert(item.id, item.category_id, evaluation)
        if alert:
            alerts.append(
                BudgetAlertResponse(
                    budget_id=alert.budget_id,
                    category_id=alert.category_id,
                    status=alert.status,
                    utilization=alert.utilization,
                    message=alert.message,
                )
            )
    return alerts


@app.get("/budgets/summary", response_model=BudgetSummaryResponse)
def budget_summary(x_user_id: str | None = Header(None, alias="x-user-id")) -> BudgetSummaryResponse:
    user_id = get_user_id(x_user_id)
    results = evaluate_user_budgets(user_id, date.today())
    total_budget, total_spent, utilization = summarize((item.amount, item.spent) for item in results)
    return BudgetSummaryResponse(
        total_budget=total_budget,
        total_spent=total_spent,
        overall_utilization=utilization,
        budget_count=len(results),
    )


@app.post("/budgets", response_model=BudgetResponse)
def create_budget(
    payload: BudgetPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = BudgetPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        with engine.begin() as conn:
            validate_budget_references(conn, user_id, payload)
            row = conn.execute(
                insert(budgets)
                .values(
                    user_id=user_id,
                    category_id=payload.category_id,
                    amount=payload.amount,
                    period=payload.period,
                    wallet_id=payload.wallet_id,
                )
                .returning(budgets.c.id)
            ).first()
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409, detail="A budget for this category and period already exists."
        ) from exc

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create budget.")
    logger.info("budget_created", user_id=user_id, budget_id=row[0])
    return next(item for item in evaluate_user_budgets(user_id, date.today()) if item.id == row[0])


@app.put("/budgets/{budget_id}", response_model=BudgetResponse)
def update_budget(
    budget_id: int,
    payload: BudgetPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = BudgetPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    try:
        with engine.begin() as conn:
            validate_budget_references(conn, user_id, payload)
            result = conn.execute(
                update(budgets)
                .where(budgets.c.id == budget_id, budgets.c.user_id == user_id)
                .values(
                    category_id=payload.category_id,
                    amount=payload.amount,
                    period=payload.period,
                    wallet_id=payload.wallet_id,
                )
            )
            if result.rowcount == 0:
                raise HTTPException(status_code=404, detail="Budget not found.")
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409, detail="A budget for this category and period already exists."
        ) from exc

    return next(item for item in evaluate_user_budgets(user_id, date.today()) if item.id == budget_id)


@app.delete("/budgets/{budget_id}")
def delete_budget(budget_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = budgets.delete().where(budgets.c.id == budget_id, budgets.c.user_id == user_id)
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Budget not found.")
    return {"status": "deleted"}


@app.get("/statistics/monthly", response_model=MonthlySummaryResponse)
def statistics_monthly(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> MonthlySummaryResponse:
    user_id = get_user_id(x_user_id)
    month_date = parse_month_value(month)
    rows = fetch_ledger_rows(user_id, month_start(month_date), month_end(month_date))
    summary = monthly_summary(rows, month_date)
    return MonthlySummaryResponse(
        month=summary.month.strftime("%Y-%m"),
        income=summary.income,
        expense=summary.expense,
        net_flow=summary.net_flow,
    )


@app.get("/statistics/trend", response_model=list[MonthlySummaryResponse])
def statistics_trend(
    months: int = Query(6, ge=1, le=60),
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[MonthlySummaryResponse]:
    user_id = get_user_id(x_user_id)
    end_month = parse_month_value(month)
    trend = monthly_trend(fetch_ledger_rows(user_id, end_date=month_end(end_month)), end_month, months)
    return [
        MonthlySummaryResponse(
            month=item.month.strftime("%Y-%m"),
            income=item.income,
            expense=item.expense,
            net_flow=item.net_flow,
        )
        for item in trend
    ]


@app.get("/statistics/categories", response_model=list[CategoryBreakdownResponse])
def statistics_categories(
    txn_type: str = Query("expense", alias="type"),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    language: str | None = Query("id"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryBreakdownResponse]:
    user_id = get_user_id(x_user_id)
    normalized_type = txn_type.strip().lower()
    if normalized_type not in {"income", "expense"}:
        raise HTTPException(status_code=400, detail="Type must be 'income' or 'expense'.")
    today = date.today()
    if end_date is None:
        end_date = today
    if start_date is None:
        start_date = month_start(today)
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="Start date must be on or before end date.")

    rows = fetch_ledger_rows(user_id, start_date, end_date)
    with engine.begin() as conn:
        names = category_names(conn, user_id, "en" if language == "en" else "id")
    return [
        CategoryBreakdownResponse(
            category_id=item.category_id,
            category_name=names.get(item.category_id, "Other"),
            amount=item.amount,
            count=item.count,
            percentage=item.percentage,
        )
        for item in category_breakdown(rows, normalized_type)
    ]


@app.get("/statistics/wallets", response_model=list[WalletStatsResponse])
def statistics_wallets(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[WalletStatsResponse]:
    user_id = get_user_id(x_user_id)
    month_date = parse_month_value(month)
    rows = fetch_ledger_rows(user_id, month_start(month_date), month_end(month_date))
    with engine.begin() as conn:
        wallet_rows = conn.execute(
            select(wallets.c.id, wallets.c.name)
            .where(wallets.c.user_id == user_id)
            .order_by(wallets.c.id.asc())
        ).mappings().all()
    results: list[WalletStatsResponse] = []
    for wallet in wallet_rows:
        stats = wallet_stats(rows, wallet["id"], month_date)
        results.append(
            WalletStatsResponse(
                wallet_id=wallet["id"],
                wallet_name=wallet["name"],
                income=stats.income,
                expense=stats.expense,
            )
        )
    return results


@app.get("/statistics/daily-average", response_model=DailyAverageResponse)
def statistics_daily_average(
    days: int = Query(30, ge=1, le=366),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> DailyAverageResponse:
    user_id = get_user_id(x_user_id)
    today = date.today()
    rows = fetch_ledger_rows(user_id, today - timedelta(days=days))
    return DailyAverageResponse(days=days, average=daily_average_spending(rows, today, days))


@app.get("/predictions", response_model=PredictionSetResponse)
def budget_predictions_view(
    language: str | None = Query("id"),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> PredictionSetResponse:
    user_id = get_user_id(x_user_id)
    language = "en" if language == "en" else "id"
    today = date.today()
    period_start = month_start(today)
    period_end = month_end(today)

    with engine.begin() as conn:
        budget_rows = conn.execute(
            select(budgets.c.category_id, budgets.c.amount).where(
                budgets.c.user_id == user_id, budgets.c.period == "monthly"
            )
        ).mappings().all()
        if not budget_rows:
            raise HTTPException(status_code=400, detail="No budgets provided for prediction.")
        names = category_names(conn, user_id, language)
        category_ids = [row["category_id"] for row in budget_rows]

        cutoff = utc_now() - timedelta(hours=PREDICTION_CACHE_HOURS)
        cached_rows = conn.execute(
            select(budget_predictions)
            .where(
                budget_predictions.c.user_id == user_id,
                budget_predictions.c.period_start == period_start,
                budget_predictions.c.created_at >= cutoff,
                budget_predictions.c.category_id.in_(category_ids),
            )
            .order_by(budget_predictions.c.created_at.desc(), budget_predictions.c.id.desc())
        ).mappings().all()

        latest: dict[int, dict] = {}
        for row in cached_rows:
            latest.setdefault(row["category_id"], row)

        # A budget added since the last run forces a fresh prediction.
        if latest and set(latest) >= set(category_ids):
            predictions = [
                BudgetPrediction(
                    category_id=row["category_id"],
                    category_name=names.get(row["category_id"], f"Category {row['category_id']}"),
                    current_spend=row["current_spend"],
                    budget_limit=row["budget_limit"],
                    projected_spend=row["projected_spend"],
                    overrun_amount=row["overrun_amount"],
                    risk_level=row["risk_level"],
                    confidence=row["confidence"] if row["confidence"] is not None else Decimal("0.5"),
                    days_remaining=row["days_remaining"] or 0,
                    recommended_daily_limit=row["recommended_daily_limit"] or Decimal("0"),
                    insight=row["insight"] or "",
                )
                for row in latest.values()
            ]
            result = summarize_predictions(predictions, language, cached=True)
            return PredictionSetResponse(
                predictions=[prediction_response(item) for item in result.predictions],
                overall_risk=result.overall_risk,
                summary=result.summary,
                cached=True,
            )

        txn_items = fetch_expense_transactions(conn, user_id, period_start)
        targets = [
            BudgetTarget(
                category_id=row["category_id"],
                limit=row["amount"],
                category_name=names.get(row["category_id"]),
            )
            for row in budget_rows
        ]
        result = predict_budgets(targets, txn_items, today, language)
        created_at = utc_now()
        conn.execute(
            insert(budget_predictions),
            [
                {
                    "user_id": user_id,
                    "category_id": item.category_id,
                    "prediction_date": today,
                    "period_start": period_start,
                    "period_end": period_end,
                    "current_spend": item.current_spend,
                    "budget_limit": item.budget_limit,
                    "projected_spend": item.projected_spend,
                    "overrun_amount": item.overrun_amount,
                    "risk_level": item.risk_level,
                    "confidence": item.confidence,
                    "days_remaining": item.days_remaining,
                    "recommended_daily_limit": item.recommended_daily_limit,
                    "insight": item.insight,
                    "created_at": created_at,
                }
                for item in result.predictions
            ],
        )

    logger.info("predictions_generated", user_id=user_id, overall_risk=result.overall_risk)
    return PredictionSetResponse(
        predictions=[prediction_response(item) for item in result.predictions],
        overall_risk=result.overall_risk,
        summary=result.summary,
        cached=False,
    )


@app.post("/predictions/cleanup")
def cleanup_predictions(x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    cutoff = utc_now() - timedelta(days=PREDICTION_RETENTION_DAYS)
    with engine.begin() as conn:
        result = conn.execute(
            budget_predictions.delete().where(
                budget_predictions.c.user_id == user_id,
                budget_predictions.c.created_at < cutoff,
            )
        )
    return {"deleted_count": result.rowcount}


@app.post("/ai/parse-transactions", response_model=AIParseResponse)
def ai_parse_transactions(
    payload: AIParsePayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> AIParseResponse:
    user_id = get_user_id(x_user_id)
    if not payload.input.strip():
        raise HTTPException(status_code=400, detail="Input is required.")
    if not AI_PARSER.available:
        raise HTTPException(status_code=503, detail="AI parsing is not configured.")
    language = "en" if payload.language == "en" else "id"
    try:
        result = AI_PARSER.parse(payload.input, language)
    except AIUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except AIParseError as exc:
        logger.warning("ai_parse_failed", user_id=user_id, error=str(exc))
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return AIParseResponse(valid=result.valid, invalid=result.invalid, message=result.message)


@app.post("/ai/commit", response_model=AICommitResponse)
def ai_commit_transactions(
    payload: AICommitPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> AICommitResponse:
    user_id = get_user_id(x_user_id)
    if not payload.transactions:
        raise HTTPException(status_code=400, detail="No transactions to import.")

    drafts: list[TransactionPayload] = []
    for index, draft in enumerate(payload.transactions, start=1):
        if not draft.description.strip():
            raise HTTPException(status_code=400, detail=f"Row {index} is missing a description.")
        if draft.type.strip().lower() not in {"income", "expense"}:
            raise HTTPException(status_code=400, detail=f"Row {index} must be income or expense.")
        try:
            drafts.append(
                TransactionPayload.validate_payload(
                    TransactionPayload(
                        wallet_id=payload.wallet_id,
                        amount=draft.amount,
                        type=draft.type,
                        category_id=draft.category_id,
                        description=draft.description,
                        date=date.today(),
                    )
                )
            )
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Row {index}: {exc}") from exc

    created: list[TransactionResponse] = []
    balances: dict[int, Decimal] = {}
    with engine.begin() as conn:
        for draft in drafts:
            transaction, written = insert_transaction(conn, user_id, draft)
            created.append(transaction)
            balances.update({item.id: item.balance for item in written})

    return AICommitResponse(
        inserted_count=len(created),
        transactions=created,
        wallets=[WalletBalanceResponse(id=wallet_id, balance=balance) for wallet_id, balance in balances.items()],
    )


def resolve_finance_summary(user_id: int, payload: AIInsightPayload, language: str) -> FinanceSummary:
    today = date.today()
    start_date = payload.start_date or month_start(today)
    end_date = payload.end_date or today
    if start_date > end_date:
        raise HTTPException(status_code=400, detail="Start date must be on or before end date.")
    rows = fetch_ledger_rows(user_id, start_date, end_date)
    with engine.begin() as conn:
        names = category_names(conn, user_id, language)
    return build_finance_summary(rows, names, start_date, end_date, language)


def finance_summary_response(summary: FinanceSummary) -> FinanceSummaryResponse:
    return FinanceSummaryResponse(
        start_date=summary.start_date,
        end_date=summary.end_date,
        total_income=summary.total_income,
        total_expense=summary.total_expense,
        net_flow=summary.net_flow,
        income=[CategoryAmountResponse(**vars(item)) for item in summary.income],
        expenses=[CategoryAmountResponse(**vars(item)) for item in summary.expenses],
    )


@app.post("/ai/insight", response_model=AIInsightResponse)
def ai_finance_insight(
    payload: AIInsightPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> AIInsightResponse:
    user_id = get_user_id(x_user_id)
    if not AI_ADVISOR.available:
        raise HTTPException(status_code=503, detail="AI evaluation is not configured.")
    language = "en" if payload.language == "en" else "id"
    summary = resolve_finance_summary(user_id, payload, language)
    if not summary.income and not summary.expenses:
        raise HTTPException(status_code=400, detail="No transactions in the selected period.")
    try:
        result = AI_ADVISOR.insight(summary, language)
    except AIUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return AIInsightResponse(result=result, summary=finance_summary_response(summary))


@app.post("/ai/ask", response_model=AIInsightResponse)
def ai_ask_question(
    payload: AIQuestionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> AIInsightResponse:
    user_id = get_user_id(x_user_id)
    if not payload.question.strip():
        raise HTTPException(status_code=400, detail="Question is required.")
    if not AI_ADVISOR.available:
        raise HTTPException(status_code=503, detail="AI evaluation is not configured.")
    language = "en" if payload.language == "en" else "id"
    summary = resolve_finance_summary(user_id, payload, language)
    try:
        result = AI_ADVISOR.ask(payload.question, summary, language)
    except AIUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return AIInsightResponse(result=result, summary=finance_summary_response(summary))


@app.get("/currency/supported")
def supported_currencies() -> dict:
    return {"currencies": list(SUPPORTED_CURRENCIES), "default": SYSTEM_DEFAULT_CURRENCY}


@app.get("/currency/rate", response_model=ExchangeRateResponse)
def exchange_rate(
    base: str = Query(...),
    target: str = Query(...),
) -> ExchangeRateResponse:
    try:
        base_currency = validate_supported_currency(base)
        target_currency = validate_supported_currency(target)
        rate = get_exchange_rate(base_currency, target_currency, FX_PROVIDER)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ExchangeRateResponse(base_currency=base_currency, target_currency=target_currency, rate=rate)


@app.post("/currency/convert", response_model=CurrencyConvertResponse)
def convert_currency(payload: CurrencyConvertPayload) -> CurrencyConvertResponse:
    try:
        source = validate_supported_currency(payload.from_currency)
        target = validate_supported_currency(payload.to_currency)
        rate = get_exchange_rate(source, target, FX_PROVIDER)
        converted = convert_amount(payload.amount, source, target, rate_provider=FX_PROVIDER)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return CurrencyConvertResponse(
        converted_amount=round_money(converted),
        rate=rate,
        timestamp=utc_now(),
    )


@app.get("/export/transactions.csv")
def export_transactions(
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    include_summary: bool = Query(False),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> Response:
    user_id = get_user_id(x_user_id)
    if start_date and end_date and start_date > end_date:
        raise HTTPException(status_code=400, detail="Start date must be on or before end date.")
    conditions = [transactions.c.user_id == user_id]
    if start_date is not None:
        conditions.append(transactions.c.date >= start_date)
    if end_date is not None:
        conditions.append(transactions.c.date <= end_date)

    with engine.begin() as conn:
        rows = conn.execute(
            select(transactions)
            .where(*conditions)
            .order_by(
                transactions.c.date.desc(),
                transactions.c.created_at.desc(),
                transactions.c.id.desc(),
            )
        ).mappings().all()
        names = category_names(conn, user_id, "en")
        wallet_names = {
            row["id"]: row["name"]
            for row in conn.execute(
                select(wallets.c.id, wallets.c.name).where(wallets.c.user_id == user_id)
            ).mappings()
        }

    content = export_transactions_csv(
        [
            ExportRow(
                date=row["date"],
                type=row["type"],
                amount=row["amount"],
                wallet_id=row["wallet_id"],
                category_id=row["category_id"],
                description=row["description"],
            )
            for row in rows
        ],
        names,
        wallet_names,
        include_summary=include_summary,
    )
    filename = f"duitr-transactions-{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.get("/want-to-buy", response_model=list[WantToBuyResponse])
def list_want_to_buy(
    purchased: bool | None = Query(None),
    priority: str | None = Query(None),
    category: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[WantToBuyResponse]:
    user_id = get_user_id(x_user_id)
    conditions = [want_to_buy_items.c.user_id == user_id]
    if purchased is not None:
        conditions.append(want_to_buy_items.c.is_purchased == purchased)
    if priority:
        conditions.append(want_to_buy_items.c.priority == priority.strip().capitalize())
    if category:
        conditions.append(want_to_buy_items.c.category == category.strip().capitalize())
    with engine.begin() as conn:
        rows = conn.execute(
            select(want_to_buy_items)
            .where(*conditions)
            .order_by(want_to_buy_items.c.estimated_date.asc(), want_to_buy_items.c.id.asc())
        ).mappings().all()
    return [want_to_buy_response(row) for row in rows]


@app.post("/want-to-buy", response_model=WantToBuyResponse)
def create_want_to_buy(
    payload: WantToBuyPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> WantToBuyResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = WantToBuyPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        row = conn.execute(
            insert(want_to_buy_items)
            .values(
                user_id=user_id,
                name=payload.name,
                price=payload.price,
                category=payload.category,
                priority=payload.priority,
                estimated_date=payload.estimated_date,
                icon=payload.icon,
                is_purchased=False,
            )
            .returning(*want_to_buy_items.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=500, detail="Failed to create item.")
    return want_to_buy_response(row)


@app.put("/want-to-buy/{item_id}", response_model=WantToBuyResponse)
def update_want_to_buy(
    item_id: int,
    payload: WantToBuyPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> WantToBuyResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = WantToBuyPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    values = {
        "name": payload.name,
        "price": payload.price,
        "category": payload.category,
        "priority": payload.priority,
        "estimated_date": payload.estimated_date,
        "icon": payload.icon,
    }
    if payload.is_purchased is not None:
        values["is_purchased"] = payload.is_purchased
        values["purchase_date"] = (payload.purchase_date or date.today()) if payload.is_purchased else None
    with engine.begin() as conn:
        row = conn.execute(
            update(want_to_buy_items)
            .where(want_to_buy_items.c.id == item_id, want_to_buy_items.c.user_id == user_id)
            .values(**values)
            .returning(*want_to_buy_items.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Item not found.")
    return want_to_buy_response(row)


@app.post("/want-to-buy/{item_id}/toggle", response_model=WantToBuyResponse)
def toggle_want_to_buy(
    item_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
) -> WantToBuyResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        current = conn.execute(
            select(want_to_buy_items.c.is_purchased).where(
                want_to_buy_items.c.id == item_id, want_to_buy_items.c.user_id == user_id
            )
        ).first()
        if not current:
            raise HTTPException(status_code=404, detail="Item not found.")
        purchased = not bool(current[0])
        row = conn.execute(
            update(want_to_buy_items)
            .where(want_to_buy_items.c.id == item_id, want_to_buy_items.c.user_id == user_id)
            .values(is_purchased=purchased, purchase_date=date.today() if purchased else None)
            .returning(*want_to_buy_items.c)
        ).mappings().first()
    return want_to_buy_response(row)


@app.delete("/want-to-buy/{item_id}")
def delete_want_to_buy(item_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = want_to_buy_items.delete().where(
        want_to_buy_items.c.id == item_id, want_to_buy_items.c.user_id == user_id
    )
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Item not found.")
    return {"status": "deleted"}


@app.get("/loans", response_model=list[LoanResponse])
def list_loans(
    settled: bool | None = Query(None),
    category: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[LoanResponse]:
    user_id = get_user_id(x_user_id)
    conditions = [loans.c.user_id == user_id]
    if settled is not None:
        conditions.append(loans.c.is_settled == settled)
    if category:
        conditions.append(loans.c.category == category.strip().capitalize())
    with engine.begin() as conn:
        rows = conn.execute(
            select(loans).where(*conditions).order_by(loans.c.due_date.asc(), loans.c.id.asc())
        ).mappings().all()
    return [loan_response(row) for row in rows]


@app.get("/loans/upcoming", response_model=list[LoanResponse])
def upcoming_loans(
    days: int = Query(7, ge=0, le=365),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[LoanResponse]:
    user_id = get_user_id(x_user_id)
    today = date.today()
    with engine.begin() as conn:
        rows = conn.execute(
            select(loans)
            .where(
                loans.c.user_id == user_id,
                loans.c.is_settled == false(),
                loans.c.due_date >= today,
                loans.c.due_date <= today + timedelta(days=days),
            )
            .order_by(loans.c.due_date.asc(), loans.c.id.asc())
        ).mappings().all()
    return [loan_response(row) for row in rows]


@app.get("/loans/overdue", response_model=list[LoanResponse])
def overdue_loans(x_user_id: str | None = Header(None, alias="x-user-id")) -> list[LoanResponse]:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        rows = conn.execute(
            select(loans)
            .where(
                loans.c.user_id == user_id,
                loans.c.is_settled == false(),
                loans.c.due_date < date.today(),
            )
            .order_by(loans.c.due_date.asc(), loans.c.id.asc())
        ).mappings().all()
    return [loan_response(row) for row in rows]


@app.get("/loans/summary", response_model=LoanSummaryResponse)
def loan_summary(x_user_id: str | None = Header(None, alias="x-user-id")) -> LoanSummaryResponse:
    user_id = get_user_id(x_user_id)
    total_expr = func.coalesce(func.sum(loans.c.amount), 0).label("total")
    with engine.begin() as conn:
        rows = conn.execute(
            select(loans.c.category, total_expr)
            .where(loans.c.user_id == user_id, loans.c.is_settled == false())
            .group_by(loans.c.category)
        ).mappings().all()
    totals = {row["category"]: Decimal(str(row["total"])) for row in rows}
    total_debt = totals.get("Utang", Decimal("0"))
    total_credit = totals.get("Piutang", Decimal("0"))
    return LoanSummaryResponse(
        total_debt=total_debt,
        total_credit=total_credit,
        net_position=total_credit - total_debt,
    )


@app.post("/loans", response_model=LoanResponse)
def create_loan(payload: LoanPayload, x_user_id: str | None = Header(None, alias="x-user-id")) -> LoanResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = LoanPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        row = conn.execute(
            insert(loans)
            .values(
                user_id=user_id,
                name=payload.name,
                amount=payload.amount,
                due_date=payload.due_date,
                category=payload.category,
                description=payload.description,
                lender_name=payload.lender_name,
                icon=payload.icon,
                is_settled=False,
            )
            .returning(*loans.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=500, detail="Failed to create loan.")
    return loan_response(row)


@app.put("/loans/{loan_id}", response_model=LoanResponse)
def update_loan(
    loan_id: int, payload: LoanPayload, x_user_id: str | None = Header(None, alias="x-user-id")
) -> LoanResponse:
    user_id = get_user_id(x_user_id)
    try:
        payload = LoanPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    values = {
        "name": payload.name,
        "amount": payload.amount,
        "due_date": payload.due_date,
        "category": payload.category,
        "description": payload.description,
        "lender_name": payload.lender_name,
        "icon": payload.icon,
    }
    if payload.is_settled is not None:
        values["is_settled"] = payload.is_settled
    with engine.begin() as conn:
        row = conn.execute(
            update(loans)
            .where(loans.c.id == loan_id, loans.c.user_id == user_id)
            .values(**values)
            .returning(*loans.c)
        ).mappings().first()
    if not row:
        raise HTTPException(status_code=404, detail="Loan not found.")
    return loan_response(row)


@app.post("/loans/{loan_id}/toggle", response_model=LoanResponse)
def toggle_loan(loan_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> LoanResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        current = conn.execute(
            select(loans.c.is_settled).where(loans.c.id == loan_id, loans.c.user_id == user_id)
        ).first()
        if not current:
            raise HTTPException(status_code=404, detail="Loan not found.")
        row = conn.execute(
            update(loans)
            .where(loans.c.id == loan_id, loans.c.user_id == user_id)
            .values(is_settled=not bool(current[0]))
            .returning(*loans.c)
        ).mappings().first()
    return loan_response(row)


@app.delete("/loans/{loan_id}")
def delete_loan(loan_id: int, x_user_id: str | None = Header(None, alias="x-user-id")) -> dict:
    user_id = get_user_id(x_user_id)
    stmt = loans.delete().where(loans.c.id == loan_id, loans.c.user_id == user_id)
    with engine.begin() as conn:
        result = conn.execute(stmt)
        if result.rowcount == 0:
            raise HTTPException(status_code=404, detail="Loan not found.")
    return {"status": "deleted"}
