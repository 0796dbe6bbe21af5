from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .dates import parse_month_key
from .money import to_cents


class TransactionType(str, Enum):
    expense = "expense"
    income = "income"
    transfer = "transfer"


class TransferLeg(str, Enum):
    out = "out"
    in_ = "in"


class CategoryType(str, Enum):
    expense = "expense"
    income = "income"


class OfferStatus(str, Enum):
    active = "active"
    paused = "paused"


class SaleStatus(str, Enum):
    approved = "approved"
    pending = "pending"
    refunded = "refunded"
    chargeback = "chargeback"


class SessionSource(str, Enum):
    bearer = "bearer"
    cookie = "cookie"
    none = "none"


class ApiErrorDetail(BaseModel):
    field: str
    message: str


class ApiErrorPayload(BaseModel):
    code: str
    message: str
    details: list[ApiErrorDetail] = Field(default_factory=list)


class ApiErrorResponse(BaseModel):
    error: ApiErrorPayload


class HealthResponse(BaseModel):
    status: str


class SessionHealthResponse(BaseModel):
    authenticated: bool
    userId: Optional[UUID] = None
    source: SessionSource
    errorReason: Optional[str] = None


def _validate_month(value: str) -> str:
    parse_month_key(value)
    return value


class _AmountInput(BaseModel):
    """Accepts ``amountCents`` directly or a BRL ``amount`` such as ``"1.234,56"``."""

    @model_validator(mode="before")
    @classmethod
    def convert_amount(cls, data: Any) -> Any:
        if isinstance(data, dict) and "amount" in data and data.get("amountCents") is None:
            data = dict(data)
            data["amountCents"] = to_cents(data.pop("amount"))
        return data


class _NamedInput(BaseModel):
    @field_validator("name", mode="before", check_fields=False)
    @classmethod
    def strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class RegisterRequest(BaseModel):
    email: str
    password: str = Field(min_length=8, max_length=128)
    fullName: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        v = value.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("invalid email format")
        return v


class LoginRequest(BaseModel):
    email: str
    password: str = Field(min_length=8, max_length=128)
    rememberMe: bool = False

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return value.strip().lower()


class AuthResponse(BaseModel):
    token: str
    userId: UUID
    email: str
    fullName: Optional[str] = None


class ProfileResponse(BaseModel):
    userId: UUID
    email: str
    fullName: Optional[str] = None
    displayName: str
    onboardingDone: bool


class ProfileUpdate(BaseModel):
    fullName: Optional[str] = Field(default=None, max_length=200)
    displayName: Optional[str] = Field(default=None, max_length=80)


class AccountCreate(_NamedInput):
    name: str = Field(min_length=1, max_length=120)
    notes: Optional[str] = None
    initialBalanceCents: int = Field(default=0, ge=0)


class AccountUpdate(_NamedInput):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    notes: Optional[str] = None
    initialBalanceCents: Optional[int] = Field(default=None, ge=0)
    archived: Optional[bool] = None


class AccountResponse(BaseModel):
    id: UUID
    name: str
    notes: Optional[str] = None
    initialBalanceCents: int
    balanceCents: int
    archived: bool
    createdAt: datetime


class CardCreate(_NamedInput):
    name: str = Field(min_length=1, max_length=120)
    closingDay: int = Field(ge=1, le=31)
    dueDay: int = Field(ge=1, le=31)
    limitCents: Optional[int] = Field(default=None, ge=0)


class CardUpdate(_NamedInput):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    closingDay: Optional[int] = Field(default=None, ge=1, le=31)
    dueDay: Optional[int] = Field(default=None, ge=1, le=31)
    limitCents: Optional[int] = Field(default=None, ge=0)
    archived: Optional[bool] = None


class CardResponse(BaseModel):
    id: UUID
    name: str
    closingDay: int
    dueDay: int
    limitCents: Optional[int] = None
    archived: bool
    createdAt: datetime


class CategoryCreate(_NamedInput):
    name: str = Field(min_length=1, max_length=80)
    type: CategoryType


class CategoryUpdate(_NamedInput):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    type: Optional[CategoryType] = None
    archived: Optional[bool] = None


class CategoryResponse(BaseModel):
    id: UUID
    name: str
    type: CategoryType
    archived: bool
    createdAt: datetime


class TransactionCreate(_AmountInput):
    type: TransactionType
    occurredAt: datetime
    amountCents: int = Field(gt=0)
    accountId: Optional[UUID] = None
    cardId: Optional[UUID] = None
    categoryId: Optional[UUID] = None
    description: Optional[str] = Field(default=None, max_length=300)

    @model_validator(mode="after")
    def validate_destination(self) -> "TransactionCreate":
        if self.type == TransactionType.transfer:
            raise ValueError("use the transfers endpoint for transfers")
        if self.type == TransactionType.expense and bool(self.accountId) == bool(self.cardId):
            raise ValueError("expense needs exactly one of accountId or cardId")
        if self.type == TransactionType.income:
            if not self.accountId:
                raise ValueError("income needs an accountId")
            if self.cardId:
                raise ValueError("income cannot be assigned to a card")
        return self


class TransferCreate(_AmountInput):
    fromAccountId: UUID
    toAccountId: UUID
    amountCents: int = Field(gt=0)
    occurredAt: datetime
    description: Optional[str] = Field(default=None, max_length=300)

    @model_validator(mode="after")
    def validate_accounts(self) -> "TransferCreate":
        if self.fromAccountId == self.toAccountId:
            raise ValueError("source and destination accounts must differ")
        return self


class TransactionResponse(BaseModel):
    id: UUID
    type: TransactionType
    occurredAt: datetime
    amountCents: int
    accountId: Optional[UUID] = None
    cardId: Optional[UUID] = None
    categoryId: Optional[UUID] = None
    description: Optional[str] = None
    transferGroupId: Optional[UUID] = None
    transferLeg: Optional[TransferLeg] = None
    createdAt: datetime


class TransferResponse(BaseModel):
    transferGroupId: UUID
    outgoing: TransactionResponse
    incoming: TransactionResponse


class TransactionFilters(BaseModel):
    dateFrom: Optional[date] = None
    dateTo: Optional[date] = None
    accountId: Optional[UUID] = None
    cardId: Optional[UUID] = None
    categoryId: Optional[UUID] = None
    search: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1, le=500)


class FixedBillCreate(_NamedInput, _AmountInput):
    name: str = Field(min_length=1, max_length=120)
    amountCents: int = Field(gt=0)
    dayOfMonth: int = Field(ge=1, le=31)
    accountId: Optional[UUID] = None
    cardId: Optional[UUID] = None
    isActive: bool = True

    @model_validator(mode="after")
    def validate_destination(self) -> "FixedBillCreate":
        if bool(self.accountId) == bool(self.cardId):
            raise ValueError("fixed bill needs exactly one of accountId or cardId")
        return self


class FixedBillUpdate(_NamedInput, _AmountInput):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    amountCents: Optional[int] = Field(default=None, gt=0)
    dayOfMonth: Optional[int] = Field(default=None, ge=1, le=31)
    accountId: Optional[UUID] = None
    cardId: Optional[UUID] = None
    isActive: Optional[bool] = None

    @model_validator(mode="after")
    def validate_destination(self) -> "FixedBillUpdate":
        if self.accountId and self.cardId:
            raise ValueError("fixed bill needs exactly one of accountId or cardId")
        return self


class FixedBillResponse(BaseModel):
    id: UUID
    name: str
    amountCents: int
    dayOfMonth: int
    accountId: Optional[UUID] = None
    cardId: Optional[UUID] = None
    isActive: bool
    lastRunMonth: Optional[str] = None
    createdAt: datetime


class FixedBillRunRequest(BaseModel):
    month: str

    @field_validator("month")
    @classmethod
    def validate_month(cls, value: str) -> str:
        return _validate_month(value)


class FixedBillRunResponse(BaseModel):
    month: str
    created: int
    skipped: int
    failed: int = 0


class NextFixedBillResponse(BaseModel):
    id: UUID
    name: str
    amountCents: int
    dueDate: date
    daysUntil: int


class BudgetSet(_AmountInput):
    month: str
    amountCents: int = Field(gt=0)

    @field_validator("month")
    @classmethod
    def validate_month(cls, value: str) -> str:
        return _validate_month(value)


class BudgetResponse(BaseModel):
    month: str
    amountCents: int


class CycleWindow(BaseModel):
    start: date
    end: date
    dueDate: date
    daysToDue: int
    amountCents: int = 0


class CardCyclesResponse(BaseModel):
    cardId: UUID
    cardName: str
    closingDay: int
    dueDay: int
    limitCents: Optional[int] = None
    current: CycleWindow
    closed: CycleWindow


class InvoiceRow(BaseModel):
    cardId: UUID
    cardName: str
    amountCents: int
    dueDate: date
    daysToDue: int
    cycleStart: date
    cycleEnd: date
    closedAmountCents: int
    closedDueDate: date


class InvoicePaymentCreate(_AmountInput):
    cardId: UUID
    accountId: UUID
    amountCents: int = Field(gt=0)
    paidAt: Optional[datetime] = None


class InvoicePaymentResponse(BaseModel):
    transferGroupId: UUID
    paidCents: int
    openBalanceCents: int


class OfferCreate(_NamedInput):
    name: str = Field(min_length=2, max_length=120)
    status: OfferStatus = OfferStatus.active
    externalId: Optional[str] = None


class OfferUpdate(_NamedInput):
    name: Optional[str] = Field(default=None, min_length=2, max_length=120)
    status: Optional[OfferStatus] = None
    externalId: Optional[str] = None


class OfferResponse(BaseModel):
    id: UUID
    name: str
    status: OfferStatus
    externalId: Optional[str] = None
    createdAt: datetime


class SaleCreate(_AmountInput):
    offerId: UUID
    date: datetime
    amountCents: int = Field(gt=0)
    status: SaleStatus = SaleStatus.approved
    orderId: Optional[str] = Field(default=None, max_length=120)
    customerEmail: Optional[str] = None
    paymentMethod: Optional[str] = None


class SaleResponse(BaseModel):
    id: UUID
    offerId: UUID
    source: str
    orderId: str
    date: datetime
    amountCents: int
    status: SaleStatus
    customerEmail: Optional[str] = None
    paymentMethod: Optional[str] = None


class SpendCreate(_AmountInput):
    offerId: UUID
    date: date
    amountCents: int = Field(gt=0)
    note: Optional[str] = Field(default=None, max_length=300)


class SpendResponse(BaseModel):
    id: UUID
    offerId: UUID
    date: date
    amountCents: int
    note: Optional[str] = None


class WorkSessionStart(BaseModel):
    offerId: UUID
    note: Optional[str] = Field(default=None, max_length=300)


class WorkSessionLog(BaseModel):
    offerId: UUID
    startedAt: datetime
    durationMinutes: int = Field(gt=0, le=24 * 60)
    note: Optional[str] = Field(default=None, max_length=300)


class WorkSessionResponse(BaseModel):
    id: UUID
    offerId: UUID
    startedAt: datetime
    endedAt: Optional[datetime] = None
    durationMinutes: Optional[int] = None
    note: Optional[str] = None


class DigitalSummary(BaseModel):
    month: str
    spendCents: int = 0
    revenueCents: int = 0
    salesCount: int = 0
    hours: float = 0.0
    roi: Optional[float] = None
    cacCents: Optional[float] = None
    ticketCents: Optional[float] = None


class OfferRankingRow(BaseModel):
    offerId: UUID
    name: str
    spendCents: int
    revenueCents: int
    profitCents: int
    roi: Optional[float] = None
    salesCount: int
    hours: float


class PfSummary(BaseModel):
    month: str
    incomeCents: int = 0
    expenseCents: int = 0
    netCents: int = 0
    fixedBillsCents: int = 0
    budgetCents: int = 0
    budgetConsumedPct: Optional[float] = None
    runwayMonths: Optional[float] = None


class ActivityItem(BaseModel):
    id: UUID
    kind: str
    title: str
    amountCents: int
    occurredAt: datetime
    meta: dict[str, Any] = Field(default_factory=dict)


class FinanceDashboardData(BaseModel):
    summary: PfSummary
    invoices: list[InvoiceRow] = Field(default_factory=list)
    nextFixedBill: Optional[NextFixedBillResponse] = None


class DigitalDashboardData(BaseModel):
    summary: DigitalSummary
    ranking: list[OfferRankingRow] = Field(default_factory=list)


class FinanceDashboardView(BaseModel):
    data: FinanceDashboardData
    error: Optional[str] = None


class DigitalDashboardView(BaseModel):
    data: DigitalDashboardData
    error: Optional[str] = None


class ActivityView(BaseModel):
    data: list[ActivityItem] = Field(default_factory=list)
    error: Optional[str] = None


class OnboardingAccount(_NamedInput):
    name: str = Field(min_length=1, max_length=120)
    initialBalanceCents: int = Field(default=0, ge=0)


class OnboardingCard(_NamedInput):
    name: str = Field(min_length=1, max_length=120)
    closingDay: int = Field(ge=1, le=31)
    dueDay: int = Field(ge=1, le=31)
    limitCents: Optional[int] = Field(default=None, ge=0)


class OnboardingSubmit(BaseModel):
    displayName: Optional[str] = Field(default=None, max_length=80)
    accounts: list[OnboardingAccount] = Field(default_factory=list)
    cards: list[OnboardingCard] = Field(default_factory=list)


class OnboardingState(BaseModel):
    onboardingDone: bool
    displayName: str
    accountsCount: int
    cardsCount: int


class KiwifyPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    order_id: str
    event: str = Field(alias="Order[event]")
    total: str = Field(alias="Order[total]")
    paid_at: datetime = Field(alias="Order[paid_at]")
    product_name: str = Field(alias="Product[name]")
    product_id: Optional[str] = Field(default=None, alias="Product[id]")
    customer_email: Optional[str] = Field(default=None, alias="Customer[email]")
    payment_method: Optional[str] = Field(default=None, alias="Payment[method]")

    @field_validator("order_id", "product_id", mode="before")
    @classmethod
    def coerce_identifier(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("customer_email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        v = value.strip().lower()
        if "@" not in v or "." not in v.split("@")[-1]:
            raise ValueError("invalid email format")
        return v

    @field_validator("total")
    @classmethod
    def validate_total(cls, value: str) -> str:
        try:
            number = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError("Order[total] must be a decimal string") from exc
        if not number.is_finite():
            raise ValueError("Order[total] must be a decimal string")
        return value.strip()


class KpiResponse(BaseModel):
    month: str
    savingsRatioPct: float
    runwayMonths: Optional[float] = None
    budgetConsumedPct: Optional[float] = None
    creditUtilizationPct: float
    expenseMoMPct: float


class MonthlySeriesPoint(BaseModel):
    month: str
    incomeCents: int
    expenseCents: int
    netCents: int


class NetByPeriodResponse(BaseModel):
    dateFrom: date
    dateTo: date
    incomeCents: int
    expenseCents: int
    netCents: int


class CategoryShare(BaseModel):
    categoryId: Optional[UUID] = None
    categoryName: str
    totalCents: int
    count: int
    percentage: float
    cumulativePercentage: float


class BudgetComparison(BaseModel):
    month: str
    actualCents: int
    budgetCents: int
    varianceCents: int
    variancePct: Optional[float] = None


class CategoryBreakdownResponse(BaseModel):
    dateFrom: date
    dateTo: date
    totalExpenseCents: int
    pareto: list[CategoryShare] = Field(default_factory=list)
    budget: BudgetComparison


class WhoAmIResponse(BaseModel):
    userId: Optional[UUID] = None
    email: Optional[str] = None
    source: SessionSource
    errorReason: Optional[str] = None
    hasBearer: bool
    hasCookie: bool
