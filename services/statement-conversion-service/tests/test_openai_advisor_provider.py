"""
Tests for the OpenAI advisor provider.

These tests mock the OpenAI API to verify prompt construction and response parsing
for both the insights and goal-plan calls without making real API calls.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from httpx import Request, Response
from openai import APIStatusError

from advisor_provider import (
    GOAL_PLAN_ERROR_MESSAGE,
    INSIGHTS_ERROR_MESSAGE,
    AdvisorError,
    GoalPlanRequest,
    InsightsRequest,
)
from providers.openai_advisor import OpenAIAdvisorProvider
from shared.provider_settings import OpenAIConfig, ProviderSettings
from statement_model import GoalInput, Transaction


@pytest.fixture
def mock_settings() -> ProviderSettings:
    return ProviderSettings(
        provider_name="openai",
        timeout_seconds=15.0,
        temperature=0.3,
        max_output_tokens=1024,
        openai=OpenAIConfig(
            api_key="test-api-key",
            model="gpt-4o-mini",
            api_base="https://api.openai.com/v1",
        ),
    )


@pytest.fixture
def transactions() -> list[Transaction]:
    return [
        Transaction("2024-01-01", "Payroll", None, 3000.0, 3000.0, "private-name.pdf"),
        Transaction("2024-01-03", "Groceries", 250.0, None, 2750.0, "private-name.pdf"),
    ]


def _completion(arguments: str) -> MagicMock:
    mock_tool_call = MagicMock()
    mock_tool_call.function.arguments = arguments
    mock_choice = MagicMock()
    mock_choice.message.tool_calls = [mock_tool_call]
    mock_completion = MagicMock()
    mock_completion.choices = [mock_choice]
    return mock_completion


class TestOpenAIAdvisorProvider:
    def test_generates_insights(self, mock_settings, transactions):
        provider = OpenAIAdvisorProvider(settings=mock_settings)
        payload = {
            "summary": {"totalIncome": 3000, "totalSpending": 250, "netFlow": 2750},
            "insights": ["Groceries are your only expense."],
            "goal": {"title": "Invest the surplus", "description": "Automate a monthly transfer."},
        }

        with patch.object(
            provider._client.chat.completions, "create", return_value=_completion(json.dumps(payload))
        ) as create:
            insights = provider.generate_insights(InsightsRequest(transactions=transactions))

        assert insights.summary.total_spending == 250.0
        assert insights.goal.title == "Invest the surplus"

        prompt = create.call_args.kwargs["messages"][0]["content"]
        assert "Groceries" in prompt
        assert "private-name.pdf" not in prompt

    def test_generates_goal_plan(self, mock_settings, transactions):
        provider = OpenAIAdvisorProvider(settings=mock_settings)
        payload = {
            "goalName": "Car",
            "monthlySavingsTarget": 416.67,
            "suggestions": ["Cook at home twice a week."],
            "plan": [
                {"step": 2, "action": "Automate", "description": "Transfer on payday."},
                {"step": 1, "action": "Open account", "description": "High-yield savings."},
            ],
        }

        with patch.object(
            provider._client.chat.completions, "create", return_value=_completion(json.dumps(payload))
        ) as create:
            plan = provider.generate_goal_plan(
                GoalPlanRequest(transactions=transactions, goal=GoalInput("Car", 10000.0, 2))
            )

        assert plan.goal_name == "Car"
        assert [step.action for step in plan.plan] == ["Open account", "Automate"]

        prompt = create.call_args.kwargs["messages"][0]["content"]
        assert "Goal: Car" in prompt
        assert "Timeframe: 2 years" in prompt

    def test_insights_schema_violation_raises(self, mock_settings, transactions):
        provider = OpenAIAdvisorProvider(settings=mock_settings)
        payload = {"summary": {"totalIncome": 1, "totalSpending": 1, "netFlow": 0}, "insights": []}

        with patch.object(provider._client.chat.completions, "create", return_value=_completion(json.dumps(payload))):
            with pytest.raises(AdvisorError) as excinfo:
                provider.generate_insights(InsightsRequest(transactions=transactions))

        assert str(excinfo.value) == INSIGHTS_ERROR_MESSAGE

    def test_goal_plan_api_error_raises(self, mock_settings, transactions):
        provider = OpenAIAdvisorProvider(settings=mock_settings)
        mock_request = Request("POST", "https://api.openai.com/v1/chat/completions")
        mock_response = Response(429, request=mock_request)

        with patch.object(
            provider._client.chat.completions,
            "create",
            side_effect=APIStatusError("Rate limit exceeded", response=mock_response, body=None),
        ):
            with pytest.raises(AdvisorError) as excinfo:
                provider.generate_goal_plan(
                    GoalPlanRequest(transactions=transactions, goal=GoalInput("Car", 10000.0, 2))
                )

        assert str(excinfo.value) == GOAL_PLAN_ERROR_MESSAGE

    def test_invalid_json_raises(self, mock_settings, transactions):
        provider = OpenAIAdvisorProvider(settings=mock_settings)

        with patch.object(provider._client.chat.completions, "create", return_value=_completion("invalid json {{")):
            with pytest.raises(AdvisorError):
                provider.generate_insights(InsightsRequest(transactions=transactions))

    def test_unconfigured_provider_raises(self, transactions):
        provider = OpenAIAdvisorProvider(settings=None)

        with pytest.raises(AdvisorError):
            provider.generate_insights(InsightsRequest(transactions=transactions))
