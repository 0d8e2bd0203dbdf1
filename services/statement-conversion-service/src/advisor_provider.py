"""
Provider abstraction for the financial advisor calls.

One provider answers two kinds of request over the merged transactions: a
fixed-shape insights document, and a savings plan for a user-entered goal.
Deterministic rules are the default; the OpenAI implementation lives in
`providers.openai_advisor` and the mock provider replays a JSON fixture.

Transactions are always handed to providers without their source filename.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from shared.observability.privacy import hash_payload, redact_fields

from generate_insights import generate_goal_plan, generate_insights
from statement_model import (
    FinancialGoal,
    FinancialInsights,
    FinancialSummary,
    GoalInput,
    GoalPlan,
    GoalPlanStep,
    Transaction,
)

logger = logging.getLogger(__name__)

INSIGHTS_ERROR_MESSAGE = "Failed to generate AI insights. Please try again."
GOAL_PLAN_ERROR_MESSAGE = "Failed to generate AI goal plan. Please try again."
SAFE_CONTEXT_KEYS = frozenset({"provider_name", "timeout_seconds", "temperature", "max_output_tokens"})


class AdvisorError(RuntimeError):
    """User-facing advisor failure; the underlying cause is only logged."""


@dataclass(slots=True)
class InsightsRequest:
    transactions: List[Transaction]
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class GoalPlanRequest:
    transactions: List[Transaction]
    goal: GoalInput
    context: Dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class AdvisorProvider(Protocol):
    """Interface for swappable insights/goal-plan generators."""

    name: str

    def generate_insights(self, request: InsightsRequest) -> FinancialInsights:
        ...

    def generate_goal_plan(self, request: GoalPlanRequest) -> GoalPlan:
        ...


class DeterministicAdvisorProvider:
    """
    Default provider backed by the rule-based analysis in `generate_insights`.
    """

    name = "deterministic"

    def generate_insights(self, request: InsightsRequest) -> FinancialInsights:
        insights = generate_insights(request.transactions)
        _log_advisor_output(self.name, "insights", request.transactions, asdict(insights), request.context)
        return insights

    def generate_goal_plan(self, request: GoalPlanRequest) -> GoalPlan:
        try:
            plan = generate_goal_plan(request.transactions, request.goal)
        except ValueError as exc:
            raise AdvisorError(GOAL_PLAN_ERROR_MESSAGE) from exc
        _log_advisor_output(self.name, "goal_plan", request.transactions, asdict(plan), request.context)
        return plan


class MockAdvisorProvider:
    """
    Fixture-driven provider suitable for tests or offline demos.

    The fixture holds an `insights` document and a `goal_plan` document in the
    same camelCase shape the model is asked to produce.
    """

    name = "mock"

    def __init__(self, fixture_path: str | Path | None = None):
        env_override = os.getenv("ADVISOR_PROVIDER_FIXTURE")
        candidate = fixture_path or env_override
        if candidate is None:
            candidate = _default_fixture_path()

        self._fixture_path = Path(candidate)
        if not self._fixture_path.exists():
            raise FileNotFoundError(f"Mock advisor provider fixture not found at {self._fixture_path}")

    def generate_insights(self, request: InsightsRequest) -> FinancialInsights:
        payload = self._load_fixture()
        try:
            insights = parse_insights_payload(payload.get("insights"))
        except (KeyError, TypeError, ValueError) as exc:
            raise AdvisorError(INSIGHTS_ERROR_MESSAGE) from exc
        _log_advisor_output(self.name, "insights", request.transactions, asdict(insights), request.context)
        return insights

    def generate_goal_plan(self, request: GoalPlanRequest) -> GoalPlan:
        payload = self._load_fixture()
        try:
            plan = parse_goal_plan_payload(payload.get("goal_plan"))
        except (KeyError, TypeError, ValueError) as exc:
            raise AdvisorError(GOAL_PLAN_ERROR_MESSAGE) from exc
        _log_advisor_output(self.name, "goal_plan", request.transactions, asdict(plan), request.context)
        return plan

    def _load_fixture(self) -> Dict[str, Any]:
        try:
            return json.loads(self._fixture_path.read_text())
        except json.JSONDecodeError as exc:
            raise ValueError(f"Mock advisor provider fixture is not valid JSON: {self._fixture_path}") from exc


def _default_fixture_path() -> Path:
    service_root = Path(__file__).resolve().parents[1]
    return service_root / "tests" / "fixtures" / "mock_advisor_provider.json"


def build_advisor_provider(
    name: str | None,
    *,
    settings: Optional[Any] = None,
) -> AdvisorProvider:
    """
    Factory that instantiates the requested advisor provider implementation.
    """

    normalized = (name or "").strip().lower()
    if normalized in ("", "deterministic"):
        return DeterministicAdvisorProvider()
    if normalized == "mock":
        return MockAdvisorProvider()
    if normalized == "openai":
        from providers.openai_advisor import OpenAIAdvisorProvider

        return OpenAIAdvisorProvider(settings=settings)

    raise ValueError(f"Unsupported advisor provider '{name}'")


def transactions_for_prompt(transactions: List[Transaction]) -> List[Dict[str, Any]]:
    """Serialize transactions for a model prompt, dropping the source filename."""

    return [tx.to_dict(include_source=False) for tx in transactions]


def parse_insights_payload(payload: Any) -> FinancialInsights:
    """
    Build FinancialInsights from a `{summary, insights, goal}` document.

    Every field the schema marks as required must be present; a document that
    violates the schema is rejected as a whole.
    """

    if not isinstance(payload, dict):
        raise TypeError("insights payload must be an object")

    summary = payload["summary"]
    goal = payload["goal"]
    raw_insights = payload["insights"]
    if not isinstance(raw_insights, list):
        raise TypeError("insights must be a list")

    return FinancialInsights(
        summary=FinancialSummary(
            total_income=float(summary["totalIncome"]),
            total_spending=float(summary["totalSpending"]),
            net_flow=float(summary["netFlow"]),
        ),
        insights=[str(item) for item in raw_insights if str(item).strip()],
        goal=FinancialGoal(title=str(goal["title"]), description=str(goal["description"])),
    )


def parse_goal_plan_payload(payload: Any) -> GoalPlan:
    """
    Build a GoalPlan from a `{goalName, monthlySavingsTarget, suggestions, plan}` document.

    Steps are returned ordered by their `step` number.
    """

    if not isinstance(payload, dict):
        raise TypeError("goal plan payload must be an object")

    raw_suggestions = payload["suggestions"]
    raw_steps = payload["plan"]
    if not isinstance(raw_suggestions, list) or not isinstance(raw_steps, list):
        raise TypeError("suggestions and plan must be lists")

    steps = [
        GoalPlanStep(step=int(item["step"]), action=str(item["action"]), description=str(item["description"]))
        for item in raw_steps
    ]
    return GoalPlan(
        goal_name=str(payload["goalName"]),
        monthly_savings_target=round(float(payload["monthlySavingsTarget"]), 2),
        suggestions=[str(item) for item in raw_suggestions],
        plan=sorted(steps, key=lambda step: step.step),
    )


def _log_advisor_output(
    provider_name: str,
    kind: str,
    transactions: List[Transaction],
    output: Dict[str, Any],
    context: Dict[str, Any],
) -> None:
    logger.info(
        {
            "event": "advisor_provider_output",
            "provider": provider_name,
            "kind": kind,
            "transaction_count": len(transactions),
            "transactions_hash": hash_payload(transactions_for_prompt(transactions)),
            "output_hash": hash_payload(output),
            "context_snapshot": redact_fields(context, SAFE_CONTEXT_KEYS) if context else {},
        }
    )
