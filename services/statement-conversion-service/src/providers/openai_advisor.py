"""
OpenAI-powered financial insights and goal planning.

Both calls send the merged transactions (without source filenames) as JSON and
force a function call whose parameters carry the response schema. Failures are
logged with their cause and re-raised as `AdvisorError`; the session decides
whether that is fatal (goal plan) or silently skipped (insights).
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import TYPE_CHECKING, Any, Callable

from openai import APIError, APITimeoutError, OpenAI
from shared.observability.privacy import hash_payload

from advisor_provider import (
    GOAL_PLAN_ERROR_MESSAGE,
    INSIGHTS_ERROR_MESSAGE,
    AdvisorError,
    _log_advisor_output,
    parse_goal_plan_payload,
    parse_insights_payload,
    transactions_for_prompt,
)
from statement_model import FinancialInsights, GoalPlan

if TYPE_CHECKING:
    from advisor_provider import GoalPlanRequest, InsightsRequest

logger = logging.getLogger(__name__)

INSIGHTS_SCHEMA = {
    "type": "object",
    "properties": {
        "summary": {
            "type": "object",
            "properties": {
                "totalIncome": {"type": "number"},
                "totalSpending": {"type": "number"},
                "netFlow": {"type": "number"},
            },
            "required": ["totalIncome", "totalSpending", "netFlow"],
        },
        "insights": {
            "type": "array",
            "items": {"type": "string"},
        },
        "goal": {
            "type": "object",
            "properties": {
                "title": {"type": "string"},
                "description": {"type": "string"},
            },
            "required": ["title", "description"],
        },
    },
    "required": ["summary", "insights", "goal"],
}

GOAL_PLAN_SCHEMA = {
    "type": "object",
    "properties": {
        "goalName": {"type": "string"},
        "monthlySavingsTarget": {"type": "number"},
        "suggestions": {
            "type": "array",
            "items": {"type": "string"},
        },
        "plan": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "step": {"type": "integer"},
                    "action": {"type": "string"},
                    "description": {"type": "string"},
                },
                "required": ["step", "action", "description"],
            },
        },
    },
    "required": ["goalName", "monthlySavingsTarget", "suggestions", "plan"],
}

INSIGHTS_PROMPT = """You are a helpful and insightful financial assistant. Based on the following JSON array of bank transactions, provide a concise financial summary, 3-4 actionable insights, and a single, achievable savings goal.
- The summary calculates total income (sum of credits), total spending (sum of debits), and the net cash flow (income - spending).
- The insights highlight spending patterns, identify potential recurring subscriptions, or point out unusually large transactions. Be specific and helpful.
- The goal is specific and based on the transaction data (e.g., 'Reduce spending on dining out by 15% this month.').
- Respond strictly through the provided function.

Transactions:
{transactions}"""

GOAL_PLANNER_PROMPT = """You are an expert financial advisor. Create a personalized, actionable savings plan based on the user's financial goal and their transaction history.

**User's Goal:**
- Goal: {goal_name}
- Target Amount: {target_amount}
- Timeframe: {years} years

**User's Transaction History (JSON):**
{transactions}

**Your Task:**
1. **Calculate Monthly Savings Target:** Determine the amount the user needs to save each month to reach their goal.
2. **Analyze Spending:** Review the transaction history to identify top spending categories and areas for potential cutbacks.
3. **Provide Actionable Suggestions:** Give 3-4 specific, data-driven suggestions for how the user can reduce spending to meet their monthly target (e.g., "You spent $250 on restaurants last month. Reducing this by 20% would save you $50.").
4. **Create a Step-by-Step Plan:** Outline a simple, 3-step plan to help the user get started and stay on track.
5. **Respond through the provided function.** Populate every field with helpful, encouraging, and clear advice. Keep the tone positive and empowering."""


class OpenAIAdvisorProvider:
    """
    ChatGPT-backed provider for the insights and goal-plan views.
    """

    name = "openai"

    def __init__(self, settings: Any | None = None):
        self._settings = settings
        if settings and settings.openai:
            self._client = OpenAI(
                api_key=settings.openai.api_key,
                base_url=settings.openai.api_base,
                timeout=settings.timeout_seconds,
                max_retries=0,
            )
            self._model = settings.openai.model
            self._temperature = settings.temperature
            self._max_tokens = settings.max_output_tokens
        else:
            self._client = None
            self._model = None
            self._temperature = 0.3
            self._max_tokens = 2048

    def generate_insights(self, request: InsightsRequest) -> FinancialInsights:
        transactions_json = json.dumps(transactions_for_prompt(request.transactions), indent=2)
        prompt = INSIGHTS_PROMPT.format(transactions=transactions_json)
        insights = self._call(
            kind="insights",
            prompt=prompt,
            function_name="report_financial_insights",
            schema=INSIGHTS_SCHEMA,
            parse=parse_insights_payload,
            error_message=INSIGHTS_ERROR_MESSAGE,
        )
        _log_advisor_output(self.name, "insights", request.transactions, asdict(insights), request.context)
        return insights

    def generate_goal_plan(self, request: GoalPlanRequest) -> GoalPlan:
        goal = request.goal
        prompt = GOAL_PLANNER_PROMPT.format(
            goal_name=goal.goal_name,
            target_amount=_format_number(goal.target_amount),
            years=_format_number(goal.years),
            transactions=json.dumps(transactions_for_prompt(request.transactions), indent=2),
        )
        plan = self._call(
            kind="goal_plan",
            prompt=prompt,
            function_name="create_goal_plan",
            schema=GOAL_PLAN_SCHEMA,
            parse=parse_goal_plan_payload,
            error_message=GOAL_PLAN_ERROR_MESSAGE,
        )
        _log_advisor_output(self.name, "goal_plan", request.transactions, asdict(plan), request.context)
        return plan

    def _call(
        self,
        *,
        kind: str,
        prompt: str,
        function_name: str,
        schema: dict[str, Any],
        parse: Callable[[Any], Any],
        error_message: str,
    ) -> Any:
        if not self._client:
            logger.error({"event": "openai_advisor_not_configured", "provider": self.name, "kind": kind})
            raise AdvisorError(error_message)

        logger.info(
            {
                "event": "openai_advisor_request",
                "provider": self.name,
                "kind": kind,
                "model": self._model,
                "prompt_hash": hash_payload(prompt),
            }
        )

        try:
            response = self._client.chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                tools=[
                    {
                        "type": "function",
                        "function": {
                            "name": function_name,
                            "description": f"Return the {kind.replace('_', ' ')} document.",
                            "parameters": schema,
                        },
                    }
                ],
                tool_choice={"type": "function", "function": {"name": function_name}},
                temperature=self._temperature,
                max_tokens=self._max_tokens,
            )

            tool_calls = response.choices[0].message.tool_calls
            if not tool_calls:
                logger.warning({"event": "openai_no_tool_calls", "provider": self.name, "kind": kind})
                raise AdvisorError(error_message)

            parsed = json.loads(tool_calls[0].function.arguments)
            result = parse(parsed)

        except (APIError, APITimeoutError) as exc:
            logger.error(
                {
                    "event": "openai_advisor_error",
                    "provider": self.name,
                    "kind": kind,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise AdvisorError(error_message) from exc

        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.error(
                {
                    "event": "openai_json_parse_error",
                    "provider": self.name,
                    "kind": kind,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise AdvisorError(error_message) from exc

        logger.info(
            {
                "event": "openai_advisor_response",
                "provider": self.name,
                "kind": kind,
                "response_hash": hash_payload(parsed),
            }
        )
        return result


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)
