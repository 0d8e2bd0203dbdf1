"""
Conversion session: the explicit state machine that drives one run from file
selection to results.

    idle -> filesSelected -> processing -> success | error
    filesSelected | success | error -> idle   (reset)

All session data lives in an immutable `SessionSnapshot`; every write swaps
in a new snapshot. Blocking work (PDF probing/rendering, provider calls) runs
in worker threads via `asyncio.to_thread` so the event loop stays responsive,
and per-file conversions pass through a semaphore-bounded pool that defaults
to one statement in flight.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence
from uuid import uuid4

from shared.observability.privacy import fingerprint_filename
from shared.observability.telemetry import traced_stage

from advisor_provider import (
    GOAL_PLAN_ERROR_MESSAGE,
    AdvisorError,
    AdvisorProvider,
    GoalPlanRequest,
    InsightsRequest,
)
from extraction_provider import ExtractionError, ExtractionProvider, ExtractionProviderRequest
from file_intake import (
    UnknownFileError,
    find_file,
    intake_files,
    is_conversion_ready,
    is_convertible,
    update_password,
    update_status,
)
from pdf_service import (
    UNREADABLE_PDF_MESSAGE,
    PdfRenderError,
    ProbeError,
    ProbeNeedsPassword,
    ProbeReady,
    ProbeResult,
    probe_pdf,
    render_pdf_pages,
)
from statement_model import (
    FileState,
    FileStatus,
    FinancialInsights,
    GoalInput,
    GoalPlan,
    SessionState,
    Transaction,
    UploadedFile,
)
from transaction_merge import merge_transactions

logger = logging.getLogger(__name__)

DEFAULT_USER_ID = "anonymous"
UNKNOWN_PROCESSING_ERROR = "An unknown error occurred during processing."
PROCESSING_FAILED_HEADER = "Processing failed for one or more files:"
NO_TRANSACTIONS_MESSAGE = "We successfully processed your document(s), but couldn't find any transactional data."

ALLOWED_TRANSITIONS: Dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.IDLE, SessionState.FILES_SELECTED}),
    SessionState.FILES_SELECTED: frozenset({SessionState.PROCESSING, SessionState.IDLE}),
    SessionState.PROCESSING: frozenset({SessionState.SUCCESS, SessionState.ERROR}),
    SessionState.SUCCESS: frozenset({SessionState.IDLE}),
    SessionState.ERROR: frozenset({SessionState.IDLE}),
}


class SessionStateError(RuntimeError):
    """Raised when an operation is not valid in the session's current state."""


class InvalidTransitionError(SessionStateError):
    def __init__(self, current: SessionState, target: SessionState):
        super().__init__(f"Cannot move conversion session from '{current.value}' to '{target.value}'")
        self.current = current
        self.target = target


class ConversionNotReadyError(SessionStateError):
    """Raised when conversion starts before files are ready or passwords are entered."""


class ConversionNotPermittedError(RuntimeError):
    """Raised when the usage gate refuses the conversion."""


class UsageGate(Protocol):
    """Opaque collaborator that owns quotas and usage accounting."""

    def can_convert(self, user_id: str) -> bool:
        ...

    def record_conversion(self, user_id: str, filenames: Sequence[str], transaction_count: int) -> None:
        ...


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    state: SessionState = SessionState.IDLE
    files: tuple[FileState, ...] = ()
    transactions: tuple[Transaction, ...] = ()
    insights: Optional[FinancialInsights] = None
    goal_plan: Optional[GoalPlan] = None
    error: Optional[str] = None
    warning: Optional[str] = None

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.FILES_SELECTED and is_conversion_ready(self.files)


class ConversionSession:
    """
    One user's conversion run.

    Args:
        extraction_provider: Turns rendered pages into transactions.
        advisor_provider: Produces insights and goal plans.
        usage_gate: Optional quota collaborator; when absent every conversion may proceed.
        max_in_flight: Upper bound on statements converted concurrently.
        extraction_context: Metadata forwarded with every extraction request.
        advisor_context: Metadata forwarded with every insights or goal-plan request.
    """

    def __init__(
        self,
        extraction_provider: ExtractionProvider,
        advisor_provider: AdvisorProvider,
        usage_gate: UsageGate | None = None,
        *,
        max_in_flight: int = 1,
        extraction_context: Dict[str, Any] | None = None,
        advisor_context: Dict[str, Any] | None = None,
        session_id: str | None = None,
    ):
        self.id = session_id or str(uuid4())
        self._extraction_provider = extraction_provider
        self._advisor_provider = advisor_provider
        self._usage_gate = usage_gate
        self._max_in_flight = max(1, max_in_flight)
        self._extraction_context = dict(extraction_context or {})
        self._advisor_context = dict(advisor_context or {})
        self._snapshot = SessionSnapshot()
        # Bumped on every reset so in-flight work can tell it belongs to a discarded run.
        self._generation = 0

    @property
    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    @property
    def state(self) -> SessionState:
        return self._snapshot.state

    async def select_files(self, uploads: Iterable[UploadedFile]) -> SessionSnapshot:
        """
        Accept the PDFs among `uploads` and probe each one for encryption.

        When nothing usable was uploaded the session stays idle and only the
        warning is recorded.
        """
        if self.state is not SessionState.IDLE:
            raise InvalidTransitionError(self.state, SessionState.FILES_SELECTED)

        intake = intake_files(uploads)
        if not intake.files:
            self._snapshot = dataclasses.replace(self._snapshot, warning=intake.warning)
            return self._snapshot

        # Files stay `pending` until their probe lands, which keeps `convert` refused meanwhile.
        self._transition(SessionState.FILES_SELECTED, files=intake.files, warning=intake.warning, error=None)
        generation = self._generation
        await asyncio.gather(*(self._probe_file(file_state, generation) for file_state in intake.files))
        return self._snapshot

    def set_password(self, file_id: str, password: str) -> SessionSnapshot:
        if self.state is not SessionState.FILES_SELECTED:
            raise SessionStateError("Passwords can only be entered before conversion starts")
        self._snapshot = dataclasses.replace(
            self._snapshot, files=update_password(self._snapshot.files, file_id, password)
        )
        return self._snapshot

    async def convert(self, user_id: str = DEFAULT_USER_ID) -> SessionSnapshot:
        """
        Rasterize and extract every convertible file, then merge the results.

        Per-file failures are recorded on the file and never abort the run. The
        session ends in `success` when at least one transaction was extracted
        from any file, otherwise in `error` with an explanatory message.
        """
        if self.state is not SessionState.FILES_SELECTED:
            raise InvalidTransitionError(self.state, SessionState.PROCESSING)
        if any(f.status is FileStatus.PENDING for f in self._snapshot.files):
            raise ConversionNotReadyError("Files are still being checked; try again once every file has a status")
        if not is_conversion_ready(self._snapshot.files):
            raise ConversionNotReadyError("Every password-protected file needs a password before converting")
        if self._usage_gate is not None:
            generation = self._generation
            permitted = await asyncio.to_thread(self._usage_gate.can_convert, user_id)
            if generation != self._generation or self.state is not SessionState.FILES_SELECTED:
                raise SessionStateError("The session changed while the usage check was running")
            if not permitted:
                raise ConversionNotPermittedError("Conversion limit reached for this account")

        self._transition(SessionState.PROCESSING, goal_plan=None, error=None)

        candidates = [file_state for file_state in self._snapshot.files if is_convertible(file_state)]
        semaphore = asyncio.Semaphore(self._max_in_flight)
        results = await asyncio.gather(*(self._convert_file(item, semaphore) for item in candidates))

        # gather preserves argument order, so batches stay in file order.
        transactions = merge_transactions(batch for batch in results if batch is not None)

        if transactions:
            insights = await self._generate_insights(transactions)
            await self._record_usage(user_id, transactions)
            self._transition(
                SessionState.SUCCESS,
                files=_without_contents(self._snapshot.files),
                transactions=tuple(transactions),
                insights=insights,
            )
        else:
            self._transition(
                SessionState.ERROR,
                files=_without_contents(self._snapshot.files),
                transactions=(),
                insights=None,
                error=self._failure_message(),
            )

        logger.info(
            {
                "event": "conversion_finished",
                "session_id": self.id,
                "state": self.state.value,
                "file_count": len(self._snapshot.files),
                "converted_files": sum(1 for f in self._snapshot.files if f.status is FileStatus.SUCCESS),
                "transaction_count": len(self._snapshot.transactions),
            }
        )
        return self._snapshot

    async def request_goal_plan(self, goal: GoalInput) -> GoalPlan:
        """
        Ask the advisor for a savings plan; failures propagate as `AdvisorError`.
        """
        if self.state is not SessionState.SUCCESS:
            raise SessionStateError("A goal plan needs a successful conversion first")

        generation = self._generation
        request = GoalPlanRequest(
            transactions=list(self._snapshot.transactions),
            goal=goal,
            context=dict(self._advisor_context),
        )
        try:
            plan = await asyncio.to_thread(self._advisor_provider.generate_goal_plan, request)
        except AdvisorError:
            raise
        except Exception as exc:
            logger.exception({"event": "goal_plan_failed", "session_id": self.id})
            raise AdvisorError(GOAL_PLAN_ERROR_MESSAGE) from exc

        if generation == self._generation and self.state is SessionState.SUCCESS:
            self._snapshot = dataclasses.replace(self._snapshot, goal_plan=plan)
        else:
            logger.info({"event": "stale_goal_plan_discarded", "session_id": self.id})
        return plan

    def reset(self) -> SessionSnapshot:
        self._transition(SessionState.IDLE)
        self._snapshot = SessionSnapshot()
        self._generation += 1
        return self._snapshot

    def _transition(self, target: SessionState, **changes: Any) -> None:
        current = self._snapshot.state
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(current, target)
        self._snapshot = dataclasses.replace(self._snapshot, state=target, **changes)
        if current is not target:
            logger.info(
                {"event": "session_transition", "session_id": self.id, "from": current.value, "to": target.value}
            )

    def _set_file_status(self, file_id: str, status: FileStatus, error_message: str | None = None) -> None:
        try:
            files = update_status(self._snapshot.files, file_id, status, error_message)
        except UnknownFileError:
            # The session was reset while this file's work was in flight.
            logger.info({"event": "stale_file_update_ignored", "session_id": self.id, "status": status.value})
            return
        self._snapshot = dataclasses.replace(self._snapshot, files=files)

    async def _probe_file(self, file_state: FileState, generation: int) -> None:
        try:
            result: ProbeResult = await asyncio.to_thread(probe_pdf, file_state.content)
        except Exception:
            logger.exception(
                {"event": "pdf_probe_failed", "session_id": self.id, "file": fingerprint_filename(file_state.filename)}
            )
            result = ProbeError(reason=UNREADABLE_PDF_MESSAGE)

        if generation != self._generation:
            logger.info({"event": "stale_probe_ignored", "session_id": self.id})
            return
        if isinstance(result, ProbeReady):
            self._set_file_status(file_state.id, FileStatus.READY)
        elif isinstance(result, ProbeNeedsPassword):
            self._set_file_status(file_state.id, FileStatus.NEEDS_PASSWORD)
        else:
            self._set_file_status(file_state.id, FileStatus.ERROR, result.reason)

    async def _convert_file(self, file_state: FileState, semaphore: asyncio.Semaphore) -> Optional[List[Transaction]]:
        file_tag = fingerprint_filename(file_state.filename)
        async with semaphore:
            self._set_file_status(file_state.id, FileStatus.PROCESSING)
            # Re-read so a password entered after intake is picked up.
            current = find_file(self._snapshot.files, file_state.id)
            try:
                with traced_stage("statement.render", file=file_tag, session_id=self.id):
                    page_images = await asyncio.to_thread(render_pdf_pages, current.content, current.password)
                request = ExtractionProviderRequest(
                    page_images=page_images,
                    source_file=current.filename,
                    context=dict(self._extraction_context),
                )
                with traced_stage("statement.extract", file=file_tag, page_count=len(page_images)):
                    response = await asyncio.to_thread(self._extraction_provider.extract, request)
            except (PdfRenderError, ExtractionError) as exc:
                logger.warning(
                    {
                        "event": "file_conversion_failed",
                        "session_id": self.id,
                        "file": file_tag,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    }
                )
                self._set_file_status(file_state.id, FileStatus.ERROR, str(exc) or UNKNOWN_PROCESSING_ERROR)
                return None
            except Exception:
                logger.exception({"event": "file_conversion_crashed", "session_id": self.id, "file": file_tag})
                self._set_file_status(file_state.id, FileStatus.ERROR, UNKNOWN_PROCESSING_ERROR)
                return None

        self._set_file_status(file_state.id, FileStatus.SUCCESS)
        return list(response.transactions)

    async def _generate_insights(self, transactions: List[Transaction]) -> Optional[FinancialInsights]:
        request = InsightsRequest(transactions=list(transactions), context=dict(self._advisor_context))
        try:
            return await asyncio.to_thread(self._advisor_provider.generate_insights, request)
        except Exception as exc:
            # Insights are optional; the results table is still shown without them.
            logger.error(
                {
                    "event": "insights_skipped",
                    "session_id": self.id,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            return None

    async def _record_usage(self, user_id: str, transactions: Sequence[Transaction]) -> None:
        if self._usage_gate is None:
            return
        filenames = [file_state.filename for file_state in self._snapshot.files]
        try:
            await asyncio.to_thread(self._usage_gate.record_conversion, user_id, filenames, len(transactions))
        except Exception as exc:
            logger.error(
                {
                    "event": "usage_record_failed",
                    "session_id": self.id,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )

    def _failure_message(self) -> str:
        failed = [f for f in self._snapshot.files if f.status is FileStatus.ERROR]
        if failed:
            details = "\n- ".join(f"{f.filename}: {f.error_message or UNKNOWN_PROCESSING_ERROR}" for f in failed)
            return f"{PROCESSING_FAILED_HEADER}\n- {details}"
        return NO_TRANSACTIONS_MESSAGE


def _without_contents(files: Sequence[FileState]) -> tuple[FileState, ...]:
    """Drop the uploaded bytes once a run is finished; only status and names are shown afterwards."""
    return tuple(dataclasses.replace(file_state, content=b"") for file_state in files)
