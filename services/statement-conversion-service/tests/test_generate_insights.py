import pytest

from generate_insights import generate_goal_plan, generate_insights
from spending_analysis import (
    compute_financial_summary,
    find_recurring_merchants,
    months_covered,
    normalize_merchant,
    spending_by_merchant,
)
from statement_model import GoalInput, Transaction


@pytest.fixture
def transactions() -> list[Transaction]:
    return [
        Transaction("2024-01-01", "Payroll ACME", None, 2000.0, 2000.0, "jan.pdf"),
        Transaction("2024-01-03", "Rent January", 900.0, None, 1100.0, "jan.pdf"),
        Transaction("2024-01-05", "COFFEE BAR #12", 4.0, None, 1096.0, "jan.pdf"),
        Transaction("2024-01-19", "Coffee Bar #31", 6.0, None, 1090.0, "jan.pdf"),
        Transaction("2024-01-30", "Grocer 30/01", 120.0, None, 970.0, "jan.pdf"),
    ]


def test_financial_summary(transactions):
    summary = compute_financial_summary(transactions)

    assert summary.total_income == 2000.0
    assert summary.total_spending == 1030.0
    assert summary.net_flow == 970.0


def test_financial_summary_of_empty_list():
    summary = compute_financial_summary([])

    assert (summary.total_income, summary.total_spending, summary.net_flow) == (0.0, 0.0, 0.0)


def test_normalize_merchant_strips_reference_noise():
    assert normalize_merchant("COFFEE BAR #12") == "coffee bar"
    assert normalize_merchant("Grocer 30/01") == "grocer"


def test_spending_by_merchant_largest_first(transactions):
    totals = spending_by_merchant(transactions)

    assert list(totals)[0] == "rent january"
    assert totals["coffee bar"] == 10.0


def test_recurring_merchants(transactions):
    assert find_recurring_merchants(transactions) == [("coffee bar", 2)]


def test_months_covered_has_floor_of_one(transactions):
    assert months_covered(transactions) == 1.0
    assert months_covered([]) == 1.0


def test_insights_include_goal_and_are_capped(transactions):
    insights = generate_insights(transactions)

    assert insights.summary.net_flow == 970.0
    assert 1 <= len(insights.insights) <= 4
    assert insights.goal.title == "Reduce spending on rent january by 15%"


def test_insights_flag_overspending():
    transactions = [
        Transaction("2024-01-01", "Salary", None, 100.0, 100.0, "a.pdf"),
        Transaction("2024-01-02", "Laptop", 500.0, None, -400.0, "a.pdf"),
    ]

    insights = generate_insights(transactions)

    assert insights.insights[0].startswith("You spent $400.00 more")


def test_goal_plan_monthly_target(transactions):
    plan = generate_goal_plan(transactions, GoalInput("Holiday", 1200.0, 1))

    assert plan.monthly_savings_target == 100.0
    assert [step.step for step in plan.plan] == [1, 2, 3]
    assert any("already covers the target" in suggestion for suggestion in plan.suggestions)


@pytest.mark.parametrize(("target", "years"), [(1000.0, 0), (0.0, 2), (-5.0, 1)])
def test_goal_plan_rejects_non_positive_inputs(transactions, target, years):
    with pytest.raises(ValueError):
        generate_goal_plan(transactions, GoalInput("Bad", target, years))
