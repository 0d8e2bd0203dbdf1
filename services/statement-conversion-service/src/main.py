"""
Statement Conversion Service turns uploaded PDF bank statements into one merged,
date-sorted transaction table, with optional AI insights and savings goal plans.
"""

import logging
from collections import OrderedDict
from typing import Any, List

from fastapi import Depends, FastAPI, File, Form, Header, UploadFile
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from advisor_provider import AdvisorError, build_advisor_provider
from conversion_session import (
    DEFAULT_USER_ID,
    ConversionNotPermittedError,
    ConversionNotReadyError,
    ConversionSession,
    InvalidTransitionError,
    SessionSnapshot,
    SessionStateError,
)
from exporters import (
    CSV_FILENAME,
    XLSX_FILENAME,
    transactions_to_csv,
    transactions_to_tsv,
    transactions_to_xlsx,
)
from extraction_provider import build_extraction_provider
from file_intake import UnknownFileError
from persistence.database import SessionLocal, get_session, init_db
from persistence.repository import ConversionLedger, SqlUsageGate
from shared.observability.telemetry import setup_telemetry
from shared.provider_settings import (
    ProviderDefaults,
    ProviderSettings,
    ProviderSettingsError,
    load_provider_settings,
    read_int_setting,
    read_optional_int_setting,
)
from statement_model import GoalInput, SessionState, UploadedFile

app = FastAPI(title="Statement Conversion Service")
setup_telemetry(app, service_name="statement-conversion-service")
logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _load_extraction_provider_settings() -> ProviderSettings:
    # Every page of a statement goes out in a single vision request.
    return load_provider_settings(
        "EXTRACTION_PROVIDER",
        ProviderDefaults(provider="openai", timeout_seconds=120.0, temperature=0.0, max_output_tokens=8192),
    )


def _load_advisor_provider_settings() -> ProviderSettings:
    return load_provider_settings(
        "ADVISOR_PROVIDER",
        ProviderDefaults(provider="deterministic", timeout_seconds=60.0, temperature=0.3, max_output_tokens=2048),
    )


try:
    EXTRACTION_PROVIDER_SETTINGS = _load_extraction_provider_settings()
    ADVISOR_PROVIDER_SETTINGS = _load_advisor_provider_settings()
except ProviderSettingsError as exc:
    logger.error("Failed to load provider settings: %s", exc)
    raise


def _initialize_extraction_provider():
    provider_name = EXTRACTION_PROVIDER_SETTINGS.provider_name
    try:
        return build_extraction_provider(provider_name, settings=EXTRACTION_PROVIDER_SETTINGS)
    except ValueError as exc:
        logger.error("Unsupported extraction provider '%s'", provider_name)
        raise RuntimeError(f"Unsupported extraction provider '{provider_name}'") from exc


def _initialize_advisor_provider():
    provider_name = ADVISOR_PROVIDER_SETTINGS.provider_name
    try:
        return build_advisor_provider(provider_name, settings=ADVISOR_PROVIDER_SETTINGS)
    except ValueError as exc:
        logger.error("Unsupported advisor provider '%s'", provider_name)
        raise RuntimeError(f"Unsupported advisor provider '{provider_name}'") from exc


def _initialize_usage_gate() -> SqlUsageGate:
    return SqlUsageGate(SessionLocal, default_limit=read_optional_int_setting("CONVERSION_DEFAULT_LIMIT"))


EXTRACTION_PROVIDER = _initialize_extraction_provider()
ADVISOR_PROVIDER = _initialize_advisor_provider()
USAGE_GATE = _initialize_usage_gate()
MAX_IN_FLIGHT = read_int_setting("CONVERSION_MAX_IN_FLIGHT", 1, minimum=1)

MAX_SESSIONS = read_int_setting("CONVERSION_MAX_SESSIONS", 100, minimum=1)

# Least recently used first; the oldest sessions are evicted past MAX_SESSIONS.
SESSIONS: "OrderedDict[str, ConversionSession]" = OrderedDict()


def reload_providers_for_tests() -> None:
    """
    Refresh provider and quota wiring after tests mutate environment variables.
    """

    global EXTRACTION_PROVIDER_SETTINGS
    global ADVISOR_PROVIDER_SETTINGS
    global EXTRACTION_PROVIDER
    global ADVISOR_PROVIDER
    global USAGE_GATE
    global MAX_IN_FLIGHT
    global MAX_SESSIONS

    EXTRACTION_PROVIDER_SETTINGS = _load_extraction_provider_settings()
    ADVISOR_PROVIDER_SETTINGS = _load_advisor_provider_settings()
    EXTRACTION_PROVIDER = _initialize_extraction_provider()
    ADVISOR_PROVIDER = _initialize_advisor_provider()
    USAGE_GATE = _initialize_usage_gate()
    MAX_IN_FLIGHT = read_int_setting("CONVERSION_MAX_IN_FLIGHT", 1, minimum=1)
    MAX_SESSIONS = read_int_setting("CONVERSION_MAX_SESSIONS", 100, minimum=1)
    SESSIONS.clear()


class FileStateModel(BaseModel):
    id: str
    filename: str
    status: str
    has_password: bool
    error_message: str | None = None


class TransactionModel(BaseModel):
    date: str
    description: str
    debit: float | None = None
    credit: float | None = None
    balance: float
    source_file: str


class FinancialSummaryModel(BaseModel):
    total_income: float
    total_spending: float
    net_flow: float


class FinancialGoalModel(BaseModel):
    title: str
    description: str


class FinancialInsightsModel(BaseModel):
    summary: FinancialSummaryModel
    insights: list[str]
    goal: FinancialGoalModel | None = None


class GoalPlanStepModel(BaseModel):
    step: int
    action: str
    description: str


class GoalPlanModel(BaseModel):
    goal_name: str
    monthly_savings_target: float
    suggestions: list[str]
    plan: list[GoalPlanStepModel]


class SessionResponseModel(BaseModel):
    session_id: str
    state: str
    is_ready: bool
    files: list[FileStateModel]
    transactions: list[TransactionModel]
    insights: FinancialInsightsModel | None = None
    goal_plan: GoalPlanModel | None = None
    error: str | None = None
    warning: str | None = None


class PasswordPayload(BaseModel):
    password: str = Field(min_length=1)


class GoalPayload(BaseModel):
    goal_name: str = Field(min_length=1)
    target_amount: float = Field(gt=0)
    years: float = Field(gt=0)


class ConversionRecordModel(BaseModel):
    id: int
    filename: str
    transaction_count: int
    status: str
    created_at: str | None = None


class HistoryResponseModel(BaseModel):
    user_id: str
    remaining_conversions: int
    conversions: list[ConversionRecordModel]


def error_response(status_code: int, error_code: str, details: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": error_code, "details": details},
    )


def _provider_call_context(settings: ProviderSettings) -> dict[str, Any]:
    context: dict[str, Any] = {
        "provider_name": settings.provider_name,
        "timeout_seconds": settings.timeout_seconds,
        "temperature": settings.temperature,
        "max_output_tokens": settings.max_output_tokens,
    }
    if settings.openai:
        context["openai"] = {
            "model": settings.openai.model,
            "api_base": settings.openai.api_base,
        }
    return context


def _goal_plan_model(plan) -> GoalPlanModel:
    return GoalPlanModel(
        goal_name=plan.goal_name,
        monthly_savings_target=plan.monthly_savings_target,
        suggestions=list(plan.suggestions),
        plan=[GoalPlanStepModel(step=s.step, action=s.action, description=s.description) for s in plan.plan],
    )


def _session_response(session_id: str, snapshot: SessionSnapshot) -> SessionResponseModel:
    insights = None
    if snapshot.insights is not None:
        goal = snapshot.insights.goal
        insights = FinancialInsightsModel(
            summary=FinancialSummaryModel(
                total_income=snapshot.insights.summary.total_income,
                total_spending=snapshot.insights.summary.total_spending,
                net_flow=snapshot.insights.summary.net_flow,
            ),
            insights=list(snapshot.insights.insights),
            goal=FinancialGoalModel(title=goal.title, description=goal.description) if goal else None,
        )

    return SessionResponseModel(
        session_id=session_id,
        state=snapshot.state.value,
        is_ready=snapshot.is_ready,
        files=[FileStateModel(**file_state.public_view()) for file_state in snapshot.files],
        transactions=[TransactionModel(**tx.to_dict()) for tx in snapshot.transactions],
        insights=insights,
        goal_plan=_goal_plan_model(snapshot.goal_plan) if snapshot.goal_plan else None,
        error=snapshot.error,
        warning=snapshot.warning,
    )


def _get_conversion_session(session_id: str) -> ConversionSession | None:
    session = SESSIONS.get(session_id)
    if session is not None:
        SESSIONS.move_to_end(session_id)
    return session


def _register_session(session: ConversionSession) -> None:
    SESSIONS[session.id] = session
    while len(SESSIONS) > MAX_SESSIONS:
        evicted_id, _ = SESSIONS.popitem(last=False)
        logger.info({"event": "session_evicted", "session_id": evicted_id})


def _session_not_found(session_id: str) -> JSONResponse:
    return error_response(404, "session_not_found", f"No conversion session with id '{session_id}'")


def _build_conversion_session() -> ConversionSession:
    return ConversionSession(
        EXTRACTION_PROVIDER,
        ADVISOR_PROVIDER,
        USAGE_GATE,
        max_in_flight=MAX_IN_FLIGHT,
        extraction_context=_provider_call_context(EXTRACTION_PROVIDER_SETTINGS),
        advisor_context=_provider_call_context(ADVISOR_PROVIDER_SETTINGS),
    )


@app.on_event("startup")
def on_startup() -> None:
    """Initialize persistence before serving requests."""
    init_db()


@app.get("/health")
def health_check() -> dict:
    """
    Report Statement Conversion Service readiness; expects no payload.
    Returns a static status document plus the configured provider names.
    """
    return {
        "status": "ok",
        "service": "statement-conversion-service",
        "extraction_provider": EXTRACTION_PROVIDER_SETTINGS.provider_name,
        "advisor_provider": ADVISOR_PROVIDER_SETTINGS.provider_name,
    }


@app.post("/sessions", response_model=SessionResponseModel, status_code=201)
def create_session() -> SessionResponseModel:
    """Open a new idle conversion session."""
    session = _build_conversion_session()
    _register_session(session)
    logger.info({"event": "session_created", "session_id": session.id})
    return _session_response(session.id, session.snapshot)


@app.get("/sessions/{session_id}", response_model=None)
def get_session_state(session_id: str):
    session = _get_conversion_session(session_id)
    if session is None:
        return _session_not_found(session_id)
    return _session_response(session.id, session.snapshot)


@app.post("/sessions/{session_id}/files", response_model=None)
async def upload_files(
    session_id: str,
    files: List[UploadFile] = File(...),
    last_modified: List[int] | None = Form(None),
):
    """
    Accept a batch of statements. Non-PDF uploads are dropped with a warning and
    each PDF is probed for encryption before the response returns.
    Optional `last_modified` form values pair with `files` by position.
    """
    session = _get_conversion_session(session_id)
    if session is None:
        return _session_not_found(session_id)

    stamps = list(last_modified or [])
    uploads: list[UploadedFile] = []
    for index, upload in enumerate(files):
        content = await upload.read()
        stamp = stamps[index] if index < len(stamps) else 0
        uploads.append(UploadedFile(filename=upload.filename or "", content=content, last_modified=stamp))

    try:
        snapshot = await session.select_files(uploads)
    except InvalidTransitionError as exc:
        return error_response(409, "invalid_state", str(exc))
    return _session_response(session.id, snapshot)


@app.put("/sessions/{session_id}/files/{file_id}/password", response_model=None)
def set_file_password(session_id: str, file_id: str, payload: PasswordPayload):
    session = _get_conversion_session(session_id)
    if session is None:
        return _session_not_found(session_id)
    try:
        snapshot = session.set_password(file_id, payload.password)
    except UnknownFileError:
        return error_response(404, "file_not_found", f"No file with id '{file_id}' in this session")
    except SessionStateError as exc:
        return error_response(409, "invalid_state", str(exc))
    return _session_response(session.id, snapshot)


@app.post("/sessions/{session_id}/convert", response_model=None)
async def convert_session(session_id: str, x_user_id: str | None = Header(default=None)):
    """
    Convert every ready file and merge the results.
    Returns the final snapshot; per-file failures are reported on the files and in `error`.
    """
    session = _get_conversion_session(session_id)
    if session is None:
        return _session_not_found(session_id)

    try:
        snapshot = await session.convert(x_user_id or DEFAULT_USER_ID)
    except ConversionNotPermittedError as exc:
        return error_response(402, "conversion_limit_reached", str(exc))
    except ConversionNotReadyError as exc:
        return error_response(409, "not_ready", str(exc))
    except SessionStateError as exc:
        return error_response(409, "invalid_state", str(exc))
    return _session_response(session.id, snapshot)


@app.post("/sessions/{session_id}/goal-plan", response_model=None)
async def create_goal_plan(session_id: str, payload: GoalPayload):
    session = _get_conversion_session(session_id)
    if session is None:
        return _session_not_found(session_id)

    goal = GoalInput(goal_name=payload.goal_name, target_amount=payload.target_amount, years=payload.years)
    try:
        plan = await session.request_goal_plan(goal)
    except SessionStateError as exc:
        return error_response(409, "invalid_state", str(exc))
    except AdvisorError as exc:
        return error_response(502, "goal_plan_failed", str(exc))
    return _goal_plan_model(plan)


@app.post("/sessions/{session_id}/reset", response_model=None)
def reset_session(session_id: str):
    session = _get_conversion_session(session_id)
    if session is None:
        return _session_not_found(session_id)
    try:
        snapshot = session.reset()
    except InvalidTransitionError as exc:
        return error_response(409, "invalid_state", str(exc))
    return _session_response(session.id, snapshot)


@app.delete("/sessions/{session_id}", status_code=204, response_model=None)
def delete_session(session_id: str):
    """Forget a session and every upload it still holds."""
    session = SESSIONS.pop(session_id, None)
    if session is None:
        return _session_not_found(session_id)
    logger.info({"event": "session_deleted", "session_id": session_id, "state": session.state.value})
    return Response(status_code=204)


@app.get("/sessions/{session_id}/export", response_model=None)
def export_transactions(session_id: str, format: str = "csv"):
    """
    Download the merged table as `csv`, copy-friendly `tsv`, or `xlsx`.
    """
    session = _get_conversion_session(session_id)
    if session is None:
        return _session_not_found(session_id)
    if session.state is not SessionState.SUCCESS:
        return error_response(409, "invalid_state", "Nothing to export until a conversion succeeds")

    transactions = list(session.snapshot.transactions)
    normalized = format.strip().lower()
    if normalized == "csv":
        return Response(
            content=transactions_to_csv(transactions),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{CSV_FILENAME}"'},
        )
    if normalized == "tsv":
        return PlainTextResponse(transactions_to_tsv(transactions))
    if normalized == "xlsx":
        return Response(
            content=transactions_to_xlsx(transactions),
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{XLSX_FILENAME}"'},
        )
    return error_response(400, "unsupported_format", f"Unsupported export format '{format}'")


@app.get("/history", response_model=HistoryResponseModel)
def conversion_history(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_session),
) -> HistoryResponseModel:
    """List the caller's past conversions, newest first, with their remaining quota."""
    user_id = x_user_id or DEFAULT_USER_ID
    ledger = ConversionLedger(db, default_limit=read_optional_int_setting("CONVERSION_DEFAULT_LIMIT"))
    records = ledger.list_history(user_id)
    return HistoryResponseModel(
        user_id=user_id,
        remaining_conversions=ledger.remaining_conversions(user_id),
        conversions=[
            ConversionRecordModel(
                id=record.id,
                filename=record.filename,
                transaction_count=record.transaction_count,
                status=record.status,
                created_at=record.created_at.isoformat() if record.created_at else None,
            )
            for record in records
        ],
    )


@app.delete("/history/{record_id}", status_code=204, response_model=None)
def delete_history_record(
    record_id: int,
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_session),
):
    """Remove one of the caller's conversion records; other users' records are invisible."""
    user_id = x_user_id or DEFAULT_USER_ID
    if not ConversionLedger(db).delete_record(user_id, record_id):
        return error_response(404, "record_not_found", f"No conversion record with id {record_id}")
    return Response(status_code=204)
