import logging
from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth import (
    SESSION_COOKIE_NAME,
    active_sessions,
    create_session,
    display_name,
    drop_session,
    get_or_create_profile,
    request_token,
    require_user,
    resolve_session,
    update_profile,
)
from .config import settings
from .dates import current_month_key, month_bounds, month_key, parse_month_key, today_local
from .persistence import get_persistence
from .schemas import (
    AccountCreate,
    AccountResponse,
    AccountUpdate,
    ActivityView,
    ApiErrorDetail,
    ApiErrorPayload,
    ApiErrorResponse,
    AuthResponse,
    BudgetComparison,
    BudgetResponse,
    BudgetSet,
    CardCreate,
    CardCyclesResponse,
    CardResponse,
    CardUpdate,
    CategoryBreakdownResponse,
    CategoryCreate,
    CategoryResponse,
    CategoryShare,
    CategoryType,
    CategoryUpdate,
    CycleWindow,
    DigitalDashboardView,
    FinanceDashboardView,
    FixedBillCreate,
    FixedBillResponse,
    FixedBillRunRequest,
    FixedBillRunResponse,
    FixedBillUpdate,
    HealthResponse,
    InvoicePaymentCreate,
    InvoicePaymentResponse,
    InvoiceRow,
    KpiResponse,
    LoginRequest,
    MonthlySeriesPoint,
    NetByPeriodResponse,
    NextFixedBillResponse,
    OfferCreate,
    OfferResponse,
    OfferStatus,
    OfferUpdate,
    OnboardingState,
    OnboardingSubmit,
    ProfileResponse,
    ProfileUpdate,
    RegisterRequest,
    SaleCreate,
    SaleResponse,
    SessionHealthResponse,
    SpendCreate,
    SpendResponse,
    TransactionCreate,
    TransactionFilters,
    TransactionResponse,
    TransferCreate,
    TransferResponse,
    WhoAmIResponse,
    WorkSessionLog,
    WorkSessionResponse,
    WorkSessionStart,
)
from .services import analytics, digital, finance, fixed_bills, invoices, onboarding, recent_activity
from .services.finance_dashboard import get_current_invoices, get_kpis
from .services.views import activity_view, digital_dashboard_view, finance_dashboard_view, invoice_row
from .services.webhooks import SIGNATURE_HEADER, handle_kiwify_webhook

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="NoCry Finance API",
    version="0.1.0",
    description="Personal finance and digital-offer tracking: accounts, cards, fixed bills, invoices and dashboards.",
)

persistence = get_persistence()

PUBLIC_API = {
    "/api/v1/health",
    "/api/v1/health/session",
    "/api/v1/auth/register",
    "/api/v1/auth/login",
    "/api/v1/auth/logout",
    "/api/v1/webhooks/kiwify",
    "/api/v1/debug/whoami",
    "/api/v1/debug/state",
}


def build_error_response(details: list[ApiErrorDetail], message: str = "Invalid request payload") -> JSONResponse:
    payload = ApiErrorResponse(
        error=ApiErrorPayload(code="VALIDATION_ERROR", message=message, details=details)
    )
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=payload.model_dump())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(details)


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError) -> JSONResponse:
    return build_error_response([ApiErrorDetail(field="body", message=str(exc))])


@app.middleware("http")
async def api_auth_middleware(request: Request, call_next):
    path = request.url.path
    if path.startswith("/api/v1") and path not in PUBLIC_API:
        resolution = resolve_session(request)
        if resolution.user_id is None:
            return JSONResponse(status_code=401, content={"detail": resolution.error_reason or "authentication required"})
    return await call_next(request)


def _month_or_current(month: Optional[str]) -> str:
    key = month or current_month_key()
    parse_month_key(key)
    return key


def _current_user(user_id: UUID) -> dict[str, Any]:
    user = persistence.get_user_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="user not found")
    return user


def _account_response(row: dict[str, Any]) -> AccountResponse:
    return AccountResponse(
        id=row["id"],
        name=row["name"],
        notes=row.get("notes"),
        initialBalanceCents=row["initial_balance_cents"] or 0,
        balanceCents=row["balance_cents"],
        archived=bool(row.get("archived")),
        createdAt=row["created_at"],
    )


def _card_response(row: dict[str, Any]) -> CardResponse:
    return CardResponse(
        id=row["id"],
        name=row["name"],
        closingDay=row["closing_day"],
        dueDay=row["due_day"],
        limitCents=row.get("limit_cents"),
        archived=bool(row.get("archived")),
        createdAt=row["created_at"],
    )


def _category_response(row: dict[str, Any]) -> CategoryResponse:
    return CategoryResponse(
        id=row["id"],
        name=row["name"],
        type=row["type"],
        archived=bool(row.get("archived")),
        createdAt=row["created_at"],
    )


def _transaction_response(row: dict[str, Any]) -> TransactionResponse:
    return TransactionResponse(
        id=row["id"],
        type=row["type"],
        occurredAt=row["occurred_at"],
        amountCents=row["amount_cents"],
        accountId=row.get("account_id"),
        cardId=row.get("card_id"),
        categoryId=row.get("category_id"),
        description=row.get("description"),
        transferGroupId=row.get("transfer_group_id"),
        transferLeg=row.get("transfer_leg"),
        createdAt=row["created_at"],
    )


def _fixed_bill_response(row: dict[str, Any]) -> FixedBillResponse:
    return FixedBillResponse(
        id=row["id"],
        name=row["name"],
        amountCents=row["amount_cents"],
        dayOfMonth=row["day_of_month"],
        accountId=row.get("account_id"),
        cardId=row.get("card_id"),
        isActive=bool(row.get("is_active")),
        lastRunMonth=row.get("last_run_month"),
        createdAt=row["created_at"],
    )


def _offer_response(row: dict[str, Any]) -> OfferResponse:
    return OfferResponse(
        id=row["id"],
        name=row["name"],
        status=row["status"],
        externalId=row.get("external_id"),
        createdAt=row["created_at"],
    )


def _sale_response(row: dict[str, Any]) -> SaleResponse:
    return SaleResponse(
        id=row["id"],
        offerId=row["offer_id"],
        source=row["source"],
        orderId=row["order_id"],
        date=row["date"],
        amountCents=row["amount_cents"],
        status=row["status"],
        customerEmail=row.get("customer_email"),
        paymentMethod=row.get("payment_method"),
    )


def _spend_response(row: dict[str, Any]) -> SpendResponse:
    return SpendResponse(
        id=row["id"], offerId=row["offer_id"], date=row["date"], amountCents=row["amount_cents"], note=row.get("note")
    )


def _work_session_response(row: dict[str, Any]) -> WorkSessionResponse:
    return WorkSessionResponse(
        id=row["id"],
        offerId=row["offer_id"],
        startedAt=row["started_at"],
        endedAt=row.get("ended_at"),
        durationMinutes=row.get("duration_minutes"),
        note=row.get("note"),
    )


def _profile_response(user: dict[str, Any], profile: dict[str, Any]) -> ProfileResponse:
    return ProfileResponse(
        userId=user["id"],
        email=user["email"],
        fullName=profile.get("full_name") or user.get("full_name"),
        displayName=display_name(profile, user["email"]),
        onboardingDone=bool(profile.get("onboarding_done")),
    )


# Health and session


@app.get("/api/v1/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/api/v1/health/session", response_model=SessionHealthResponse)
async def health_session(request: Request) -> SessionHealthResponse:
    resolution = resolve_session(request)
    return SessionHealthResponse(
        authenticated=resolution.user_id is not None,
        userId=resolution.user_id,
        source=resolution.source,
        errorReason=resolution.error_reason,
    )


# Auth and profile


@app.post("/api/v1/auth/register", response_model=AuthResponse, status_code=201)
async def auth_register(payload: RegisterRequest, response: Response) -> AuthResponse:
    user = persistence.register_user(payload.email, payload.password, payload.fullName)
    get_or_create_profile(persistence, user)
    token = create_session(user["id"])
    response.set_cookie(SESSION_COOKIE_NAME, token, httponly=True, samesite="lax", secure=False)
    return AuthResponse(token=token, userId=user["id"], email=user["email"], fullName=user.get("full_name"))


@app.post("/api/v1/auth/login", response_model=AuthResponse)
async def auth_login(payload: LoginRequest, response: Response) -> AuthResponse:
    user = persistence.authenticate_user(payload.email, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="invalid email or password")
    token = create_session(user["id"])
    if payload.rememberMe:
        response.set_cookie(SESSION_COOKIE_NAME, token, httponly=True, samesite="lax", secure=False, max_age=60 * 60 * 24 * 30)
    else:
        response.set_cookie(SESSION_COOKIE_NAME, token, httponly=True, samesite="lax", secure=False)
    return AuthResponse(token=token, userId=user["id"], email=user["email"], fullName=user.get("full_name"))


@app.get("/api/v1/auth/me", response_model=AuthResponse)
async def auth_me(request: Request) -> AuthResponse:
    user = _current_user(require_user(request))
    return AuthResponse(token=request_token(request), userId=user["id"], email=user["email"], fullName=user.get("full_name"))


@app.post("/api/v1/auth/logout")
async def auth_logout(request: Request, response: Response) -> dict[str, bool]:
    drop_session(request_token(request))
    drop_session(request.cookies.get(SESSION_COOKIE_NAME))
    response.delete_cookie(SESSION_COOKIE_NAME)
    return {"ok": True}


@app.get("/api/v1/profile", response_model=ProfileResponse)
async def get_profile(request: Request) -> ProfileResponse:
    user = _current_user(require_user(request))
    return _profile_response(user, get_or_create_profile(persistence, user))


@app.put("/api/v1/profile", response_model=ProfileResponse)
async def put_profile(payload: ProfileUpdate, request: Request) -> ProfileResponse:
    user = _current_user(require_user(request))
    return _profile_response(user, update_profile(persistence, user, payload))


# Onboarding


def _onboarding_state(state: dict[str, Any]) -> OnboardingState:
    return OnboardingState(
        onboardingDone=state["onboarding_done"],
        displayName=state["display_name"],
        accountsCount=state["accounts_count"],
        cardsCount=state["cards_count"],
    )


@app.get("/api/v1/onboarding", response_model=OnboardingState)
async def get_onboarding(request: Request) -> OnboardingState:
    user = _current_user(require_user(request))
    return _onboarding_state(onboarding.get_onboarding_state(persistence, user))


@app.post("/api/v1/onboarding", response_model=OnboardingState)
async def post_onboarding(payload: OnboardingSubmit, request: Request) -> OnboardingState:
    user = _current_user(require_user(request))
    return _onboarding_state(onboarding.submit_onboarding(persistence, user, payload))


# Accounts


@app.get("/api/v1/accounts", response_model=list[AccountResponse])
async def list_accounts(
    request: Request, includeArchived: bool = False, search: Optional[str] = None
) -> list[AccountResponse]:
    user_id = require_user(request)
    rows = finance.list_accounts(persistence, user_id, include_archived=includeArchived, search=search)
    return [_account_response(row) for row in rows]


@app.post("/api/v1/accounts", response_model=AccountResponse, status_code=201)
async def create_account(payload: AccountCreate, request: Request) -> AccountResponse:
    user_id = require_user(request)
    return _account_response(finance.create_account(persistence, user_id, payload))


@app.put("/api/v1/accounts/{account_id}", response_model=AccountResponse)
async def update_account(account_id: UUID, payload: AccountUpdate, request: Request) -> AccountResponse:
    user_id = require_user(request)
    return _account_response(finance.update_account(persistence, user_id, account_id, payload))


@app.post("/api/v1/accounts/{account_id}/archive", response_model=AccountResponse)
async def archive_account(account_id: UUID, request: Request) -> AccountResponse:
    user_id = require_user(request)
    return _account_response(finance.archive_account(persistence, user_id, account_id))


# Cards and invoices


@app.get("/api/v1/cards", response_model=list[CardResponse])
async def list_cards(request: Request, includeArchived: bool = False) -> list[CardResponse]:
    user_id = require_user(request)
    return [_card_response(row) for row in finance.list_cards(persistence, user_id, include_archived=includeArchived)]


@app.post("/api/v1/cards", response_model=CardResponse, status_code=201)
async def create_card(payload: CardCreate, request: Request) -> CardResponse:
    user_id = require_user(request)
    return _card_response(finance.create_card(persistence, user_id, payload))


@app.get("/api/v1/cards/cycles", response_model=list[CardCyclesResponse])
async def card_cycles(request: Request, today: Optional[date] = None) -> list[CardCyclesResponse]:
    user_id = require_user(request)
    result = []
    for item in invoices.get_card_cycles(persistence, user_id, today or today_local()):
        card = item["card"]
        result.append(
            CardCyclesResponse(
                cardId=card["id"],
                cardName=card["name"],
                closingDay=card["closing_day"],
                dueDay=card["due_day"],
                limitCents=card.get("limit_cents"),
                current=CycleWindow(
                    start=item["current"].start,
                    end=item["current"].end,
                    dueDate=item["current"].due,
                    daysToDue=item["current"].days_to_due,
                    amountCents=item["current_amount_cents"],
                ),
                closed=CycleWindow(
                    start=item["closed"].start,
                    end=item["closed"].end,
                    dueDate=item["closed"].due,
                    daysToDue=item["closed"].days_to_due,
                    amountCents=item["closed_amount_cents"],
                ),
            )
        )
    return result


@app.put("/api/v1/cards/{card_id}", response_model=CardResponse)
async def update_card(card_id: UUID, payload: CardUpdate, request: Request) -> CardResponse:
    user_id = require_user(request)
    return _card_response(finance.update_card(persistence, user_id, card_id, payload))


@app.post("/api/v1/cards/{card_id}/archive", response_model=CardResponse)
async def archive_card(card_id: UUID, request: Request) -> CardResponse:
    user_id = require_user(request)
    return _card_response(finance.archive_card(persistence, user_id, card_id))


@app.get("/api/v1/invoices/current", response_model=list[InvoiceRow])
async def current_invoices(request: Request, today: Optional[date] = None) -> list[InvoiceRow]:
    user_id = require_user(request)
    return [invoice_row(row) for row in get_current_invoices(persistence, user_id, today or today_local())]


@app.post("/api/v1/invoices/pay", response_model=InvoicePaymentResponse, status_code=201)
async def pay_invoice(payload: InvoicePaymentCreate, request: Request) -> InvoicePaymentResponse:
    user_id = require_user(request)
    result = invoices.pay_card_invoice(persistence, user_id, payload)
    return InvoicePaymentResponse(
        transferGroupId=result["transfer_group_id"],
        paidCents=result["paid_cents"],
        openBalanceCents=result["open_balance_cents"],
    )


# Categories


@app.get("/api/v1/categories", response_model=list[CategoryResponse])
async def list_categories(
    request: Request, includeArchived: bool = False, type: Optional[CategoryType] = None
) -> list[CategoryResponse]:
    user_id = require_user(request)
    rows = finance.list_categories(persistence, user_id, include_archived=includeArchived, category_type=type)
    return [_category_response(row) for row in rows]


@app.post("/api/v1/categories", response_model=CategoryResponse, status_code=201)
async def create_category(payload: CategoryCreate, request: Request) -> CategoryResponse:
    user_id = require_user(request)
    return _category_response(finance.create_category(persistence, user_id, payload))


@app.put("/api/v1/categories/{category_id}", response_model=CategoryResponse)
async def update_category(category_id: UUID, payload: CategoryUpdate, request: Request) -> CategoryResponse:
    user_id = require_user(request)
    return _category_response(finance.update_category(persistence, user_id, category_id, payload))


@app.post("/api/v1/categories/{category_id}/archive", response_model=CategoryResponse)
async def archive_category(category_id: UUID, request: Request) -> CategoryResponse:
    user_id = require_user(request)
    return _category_response(finance.update_category(persistence, user_id, category_id, CategoryUpdate(archived=True)))


@app.delete("/api/v1/categories/{category_id}")
async def delete_category(category_id: UUID, request: Request) -> dict[str, bool]:
    user_id = require_user(request)
    finance.delete_category(persistence, user_id, category_id)
    return {"deleted": True}


# Transactions and transfers


def _filters(
    dateFrom: Optional[date],
    dateTo: Optional[date],
    accountId: Optional[UUID],
    cardId: Optional[UUID],
    categoryId: Optional[UUID],
    search: Optional[str],
    limit: Optional[int],
) -> TransactionFilters:
    return TransactionFilters(
        dateFrom=dateFrom,
        dateTo=dateTo,
        accountId=accountId,
        cardId=cardId,
        categoryId=categoryId,
        search=search,
        limit=limit,
    )


@app.get("/api/v1/transactions", response_model=list[TransactionResponse])
async def list_transactions(
    request: Request,
    dateFrom: Optional[date] = None,
    dateTo: Optional[date] = None,
    accountId: Optional[UUID] = None,
    cardId: Optional[UUID] = None,
    categoryId: Optional[UUID] = None,
    search: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
) -> list[TransactionResponse]:
    user_id = require_user(request)
    filters = _filters(dateFrom, dateTo, accountId, cardId, categoryId, search, limit)
    return [_transaction_response(row) for row in finance.list_transactions(persistence, user_id, filters)]


@app.post("/api/v1/transactions", response_model=TransactionResponse, status_code=201)
async def create_transaction(payload: TransactionCreate, request: Request) -> TransactionResponse:
    user_id = require_user(request)
    return _transaction_response(finance.create_transaction(persistence, user_id, payload))


@app.delete("/api/v1/transactions/{transaction_id}")
async def delete_transaction(transaction_id: UUID, request: Request) -> dict[str, int]:
    user_id = require_user(request)
    return {"deleted": finance.delete_transaction(persistence, user_id, transaction_id)}


@app.post("/api/v1/transfers", response_model=TransferResponse, status_code=201)
async def create_transfer(payload: TransferCreate, request: Request) -> TransferResponse:
    user_id = require_user(request)
    group_id, outgoing, incoming = finance.create_transfer(persistence, user_id, payload)
    return TransferResponse(
        transferGroupId=group_id,
        outgoing=_transaction_response(outgoing),
        incoming=_transaction_response(incoming),
    )


# Budgets


@app.get("/api/v1/budgets/{month}", response_model=BudgetResponse)
async def get_budget(month: str, request: Request) -> BudgetResponse:
    user_id = require_user(request)
    parse_month_key(month)
    return BudgetResponse(month=month, amountCents=finance.get_budget(persistence, user_id, month))


@app.put("/api/v1/budgets", response_model=BudgetResponse)
async def set_budget(payload: BudgetSet, request: Request) -> BudgetResponse:
    user_id = require_user(request)
    row = finance.set_budget(persistence, user_id, payload)
    return BudgetResponse(month=row["month"], amountCents=row["amount_cents"])


# Fixed bills


@app.get("/api/v1/fixed-bills", response_model=list[FixedBillResponse])
async def list_fixed_bills(request: Request) -> list[FixedBillResponse]:
    user_id = require_user(request)
    return [_fixed_bill_response(row) for row in fixed_bills.list_fixed_bills(persistence, user_id)]


@app.post("/api/v1/fixed-bills", response_model=FixedBillResponse, status_code=201)
async def create_fixed_bill(payload: FixedBillCreate, request: Request) -> FixedBillResponse:
    user_id = require_user(request)
    return _fixed_bill_response(fixed_bills.create_fixed_bill(persistence, user_id, payload))


@app.post("/api/v1/fixed-bills/run", response_model=FixedBillRunResponse)
async def run_fixed_bills(payload: FixedBillRunRequest, request: Request) -> FixedBillRunResponse:
    user_id = require_user(request)
    stats = fixed_bills.run_fixed_for_month(persistence, user_id, payload.month)
    return FixedBillRunResponse(month=payload.month, created=stats.created, skipped=stats.skipped, failed=stats.failed)


@app.get("/api/v1/fixed-bills/next", response_model=Optional[NextFixedBillResponse])
async def next_fixed_bill(request: Request, today: Optional[date] = None) -> Optional[NextFixedBillResponse]:
    user_id = require_user(request)
    bill = fixed_bills.next_fixed_bill(persistence, user_id, today or today_local())
    if bill is None:
        return None
    return NextFixedBillResponse(
        id=bill["id"],
        name=bill["name"],
        amountCents=bill["amount_cents"],
        dueDate=bill["due_date"],
        daysUntil=bill["days_until"],
    )


@app.put("/api/v1/fixed-bills/{bill_id}", response_model=FixedBillResponse)
async def update_fixed_bill(bill_id: UUID, payload: FixedBillUpdate, request: Request) -> FixedBillResponse:
    user_id = require_user(request)
    return _fixed_bill_response(fixed_bills.update_fixed_bill(persistence, user_id, bill_id, payload))


@app.delete("/api/v1/fixed-bills/{bill_id}")
async def delete_fixed_bill(bill_id: UUID, request: Request) -> dict[str, bool]:
    user_id = require_user(request)
    fixed_bills.delete_fixed_bill(persistence, user_id, bill_id)
    return {"deleted": True}


# Digital: offers, sales, spend, work sessions


@app.get("/api/v1/offers", response_model=list[OfferResponse])
async def list_offers(request: Request, status: Optional[OfferStatus] = None) -> list[OfferResponse]:
    user_id = require_user(request)
    return [_offer_response(row) for row in digital.list_offers(persistence, user_id, status)]


@app.post("/api/v1/offers", response_model=OfferResponse, status_code=201)
async def create_offer(payload: OfferCreate, request: Request) -> OfferResponse:
    user_id = require_user(request)
    return _offer_response(digital.create_offer(persistence, user_id, payload))


@app.put("/api/v1/offers/{offer_id}", response_model=OfferResponse)
async def update_offer(offer_id: UUID, payload: OfferUpdate, request: Request) -> OfferResponse:
    user_id = require_user(request)
    return _offer_response(digital.update_offer(persistence, user_id, offer_id, payload))


@app.get("/api/v1/sales", response_model=list[SaleResponse])
async def list_sales(
    request: Request, month: Optional[str] = None, offerId: Optional[UUID] = None
) -> list[SaleResponse]:
    user_id = require_user(request)
    if month:
        parse_month_key(month)
    return [_sale_response(row) for row in digital.list_sales(persistence, user_id, month, offerId)]


@app.post("/api/v1/sales", response_model=SaleResponse, status_code=201)
async def create_sale(payload: SaleCreate, request: Request) -> SaleResponse:
    user_id = require_user(request)
    return _sale_response(digital.create_manual_sale(persistence, user_id, payload))


@app.get("/api/v1/spend-events", response_model=list[SpendResponse])
async def list_spend(
    request: Request, month: Optional[str] = None, offerId: Optional[UUID] = None
) -> list[SpendResponse]:
    user_id = require_user(request)
    if month:
        parse_month_key(month)
    return [_spend_response(row) for row in digital.list_spend(persistence, user_id, month, offerId)]


@app.post("/api/v1/spend-events", response_model=SpendResponse, status_code=201)
async def create_spend(payload: SpendCreate, request: Request) -> SpendResponse:
    user_id = require_user(request)
    return _spend_response(digital.create_spend(persistence, user_id, payload))


@app.get("/api/v1/work-sessions", response_model=list[WorkSessionResponse])
async def list_work_sessions(
    request: Request, month: Optional[str] = None, offerId: Optional[UUID] = None
) -> list[WorkSessionResponse]:
    user_id = require_user(request)
    if month:
        parse_month_key(month)
    return [_work_session_response(row) for row in digital.list_work_sessions(persistence, user_id, month, offerId)]


@app.post("/api/v1/work-sessions", response_model=WorkSessionResponse, status_code=201)
async def log_work_session(payload: WorkSessionLog, request: Request) -> WorkSessionResponse:
    user_id = require_user(request)
    return _work_session_response(digital.log_work_session(persistence, user_id, payload))


@app.post("/api/v1/work-sessions/start", response_model=WorkSessionResponse, status_code=201)
async def start_work_session(payload: WorkSessionStart, request: Request) -> WorkSessionResponse:
    user_id = require_user(request)
    return _work_session_response(digital.start_work_session(persistence, user_id, payload))


@app.post("/api/v1/work-sessions/{session_id}/end", response_model=WorkSessionResponse)
async def end_work_session(session_id: UUID, request: Request) -> WorkSessionResponse:
    user_id = require_user(request)
    return _work_session_response(digital.end_work_session(persistence, user_id, session_id))


# Dashboards and activity


@app.get("/api/v1/dashboard/finance", response_model=FinanceDashboardView)
async def dashboard_finance(
    request: Request, month: Optional[str] = None, today: Optional[date] = None
) -> FinanceDashboardView:
    user_id = require_user(request)
    return finance_dashboard_view(persistence, user_id, _month_or_current(month), today or today_local())


@app.get("/api/v1/dashboard/digital", response_model=DigitalDashboardView)
async def dashboard_digital(request: Request, month: Optional[str] = None) -> DigitalDashboardView:
    user_id = require_user(request)
    return digital_dashboard_view(persistence, user_id, _month_or_current(month))


@app.get("/api/v1/dashboard/kpis", response_model=KpiResponse)
async def dashboard_kpis(request: Request, month: Optional[str] = None) -> KpiResponse:
    user_id = require_user(request)
    kpis = get_kpis(persistence, user_id, _month_or_current(month))
    return KpiResponse(
        month=kpis["month"],
        savingsRatioPct=kpis["savings_ratio_pct"],
        runwayMonths=kpis["runway_months"],
        budgetConsumedPct=kpis["budget_consumed_pct"],
        creditUtilizationPct=kpis["credit_utilization_pct"],
        expenseMoMPct=kpis["expense_mom_pct"],
    )


@app.get("/api/v1/activity/recent", response_model=ActivityView)
async def activity_recent(request: Request, limit: int = Query(default=10, ge=1, le=100)) -> ActivityView:
    user_id = require_user(request)
    return activity_view(persistence, user_id, limit)


@app.get("/api/v1/activity/finance", response_model=list[TransactionResponse])
async def activity_finance(
    request: Request,
    dateFrom: Optional[date] = None,
    dateTo: Optional[date] = None,
    accountId: Optional[UUID] = None,
    cardId: Optional[UUID] = None,
    categoryId: Optional[UUID] = None,
    search: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=100),
) -> list[TransactionResponse]:
    user_id = require_user(request)
    filters = _filters(dateFrom, dateTo, accountId, cardId, categoryId, search, limit)
    rows = recent_activity.get_recent_finance_activity(persistence, user_id, filters)
    return [_transaction_response(row) for row in rows]


# Analytics


def _period_or_current_month(date_from: Optional[date], date_to: Optional[date]) -> tuple[date, date]:
    first, last = month_bounds(month_key(today_local()))
    return date_from or first, date_to or last


@app.get("/api/v1/analytics/monthly-series", response_model=list[MonthlySeriesPoint])
async def analytics_monthly_series(
    request: Request, month: Optional[str] = None, monthsBack: int = Query(default=12, ge=1, le=36)
) -> list[MonthlySeriesPoint]:
    user_id = require_user(request)
    series = analytics.get_monthly_series(persistence, user_id, _month_or_current(month), monthsBack)
    return [
        MonthlySeriesPoint(
            month=point["month"],
            incomeCents=point["income_cents"],
            expenseCents=point["expense_cents"],
            netCents=point["net_cents"],
        )
        for point in series
    ]


@app.get("/api/v1/analytics/net", response_model=NetByPeriodResponse)
async def analytics_net(
    request: Request, dateFrom: Optional[date] = None, dateTo: Optional[date] = None
) -> NetByPeriodResponse:
    user_id = require_user(request)
    date_from, date_to = _period_or_current_month(dateFrom, dateTo)
    totals = analytics.get_net_by_period(persistence, user_id, date_from, date_to)
    return NetByPeriodResponse(
        dateFrom=totals["date_from"],
        dateTo=totals["date_to"],
        incomeCents=totals["income_cents"],
        expenseCents=totals["expense_cents"],
        netCents=totals["net_cents"],
    )


@app.get("/api/v1/analytics/categories", response_model=CategoryBreakdownResponse)
async def analytics_categories(
    request: Request, dateFrom: Optional[date] = None, dateTo: Optional[date] = None
) -> CategoryBreakdownResponse:
    user_id = require_user(request)
    date_from, date_to = _period_or_current_month(dateFrom, dateTo)
    breakdown = analytics.get_category_breakdown(persistence, user_id, date_from, date_to)
    budget = breakdown["budget"]
    return CategoryBreakdownResponse(
        dateFrom=breakdown["date_from"],
        dateTo=breakdown["date_to"],
        totalExpenseCents=breakdown["total_expense_cents"],
        pareto=[
            CategoryShare(
                categoryId=item["category_id"],
                categoryName=item["category_name"],
                totalCents=item["total_cents"],
                count=item["count"],
                percentage=item["percentage"],
                cumulativePercentage=item["cumulative_percentage"],
            )
            for item in breakdown["pareto"]
        ],
        budget=BudgetComparison(
            month=budget["month"],
            actualCents=budget["actual_cents"],
            budgetCents=budget["budget_cents"],
            varianceCents=budget["variance_cents"],
            variancePct=budget["variance_pct"],
        ),
    )


# Webhooks


@app.post("/api/v1/webhooks/kiwify")
async def kiwify_webhook(request: Request) -> JSONResponse:
    raw_body = await request.body()
    status_code, body = handle_kiwify_webhook(
        persistence,
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
        dev_requested=request.query_params.get("dev") == "1",
    )
    return JSONResponse(status_code=status_code, content=body)


# Debug


@app.get("/api/v1/debug/whoami", response_model=WhoAmIResponse)
async def debug_whoami(request: Request) -> WhoAmIResponse:
    resolution = resolve_session(request)
    user = persistence.get_user_by_id(resolution.user_id) if resolution.user_id else None
    return WhoAmIResponse(
        userId=resolution.user_id,
        email=user["email"] if user else None,
        source=resolution.source,
        errorReason=resolution.error_reason,
        hasBearer=bool(request.headers.get("Authorization")),
        hasCookie=SESSION_COOKIE_NAME in request.cookies,
    )


@app.get("/api/v1/debug/state")
async def debug_state() -> dict[str, Any]:
    if not settings.dev_tools:
        raise HTTPException(status_code=404, detail="not found")
    return {
        "storageBackend": settings.storage_backend,
        "activeSessions": len(active_sessions),
        "counts": persistence.debug_counts(),
    }
