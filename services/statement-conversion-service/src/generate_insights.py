from __future__ import annotations

from typing import List, Sequence

from spending_analysis import (
    compute_financial_summary,
    find_recurring_merchants,
    largest_debits,
    months_covered,
    spending_by_merchant,
)
from statement_model import (
    FinancialGoal,
    FinancialInsights,
    GoalInput,
    GoalPlan,
    GoalPlanStep,
    Transaction,
)

DEFAULT_REDUCTION_FRACTION = 0.15
MAX_INSIGHTS = 4


def _money(amount: float) -> str:
    return f"${amount:,.2f}"


def generate_insights(transactions: Sequence[Transaction]) -> FinancialInsights:
    """
    Rule-based summary, insights, and one savings goal for the merged transactions.
    """
    summary = compute_financial_summary(transactions)
    insights: List[str] = []

    if summary.net_flow < 0:
        insights.append(
            f"You spent {_money(abs(summary.net_flow))} more than you received over this period."
        )
    elif summary.total_income > 0:
        saved_share = summary.net_flow / summary.total_income
        insights.append(
            f"You kept {_money(summary.net_flow)} ({saved_share:.0%} of income) after spending."
        )

    for merchant, count in find_recurring_merchants(transactions)[:2]:
        insights.append(
            f"'{merchant}' was charged {count} times; it may be a recurring subscription or bill worth reviewing."
        )

    top_debits = largest_debits(transactions, limit=1)
    if top_debits:
        biggest = top_debits[0]
        insights.append(
            f"Your largest expense was {biggest.description} on {biggest.date} ({_money(biggest.debit or 0.0)})."
        )

    merchant_totals = spending_by_merchant(transactions)
    if merchant_totals and summary.total_spending > 0:
        merchant, amount = next(iter(merchant_totals.items()))
        share = amount / summary.total_spending
        insights.append(f"'{merchant}' accounts for {share:.0%} of your spending ({_money(amount)}).")

    return FinancialInsights(
        summary=summary,
        insights=insights[:MAX_INSIGHTS],
        goal=_suggest_goal(merchant_totals, summary.net_flow),
    )


def _suggest_goal(merchant_totals: dict[str, float], net_flow: float) -> FinancialGoal:
    if merchant_totals:
        merchant, amount = next(iter(merchant_totals.items()))
        saving = amount * DEFAULT_REDUCTION_FRACTION
        return FinancialGoal(
            title=f"Reduce spending on {merchant} by {DEFAULT_REDUCTION_FRACTION:.0%}",
            description=(
                f"Trimming your biggest spending line by {DEFAULT_REDUCTION_FRACTION:.0%} "
                f"would free up about {_money(saving)} over a period like this one."
            ),
        )
    if net_flow < 0:
        return FinancialGoal(
            title="Close the spending gap",
            description="Bring spending back under income before setting new savings targets.",
        )
    return FinancialGoal(
        title="Automate your savings",
        description="Move part of each deposit into savings on the day it arrives.",
    )


def generate_goal_plan(transactions: Sequence[Transaction], goal: GoalInput) -> GoalPlan:
    """
    Monthly savings target for `goal` plus spending cuts drawn from the statements.

    The monthly target is `target_amount / (years * 12)`.
    """
    if goal.years <= 0:
        raise ValueError("years must be positive")
    if goal.target_amount <= 0:
        raise ValueError("target_amount must be positive")

    monthly_target = round(goal.target_amount / (goal.years * 12), 2)
    months = months_covered(transactions)
    summary = compute_financial_summary(transactions)
    monthly_net = summary.net_flow / months

    suggestions: List[str] = []
    for merchant, amount in list(spending_by_merchant(transactions).items())[:3]:
        monthly_spend = amount / months
        cut = monthly_spend * DEFAULT_REDUCTION_FRACTION
        if cut < 1:
            continue
        suggestions.append(
            f"You spend about {_money(monthly_spend)} a month on {merchant}. "
            f"Reducing this by {DEFAULT_REDUCTION_FRACTION:.0%} would save {_money(cut)}."
        )
    if monthly_net >= monthly_target:
        suggestions.append(
            f"Your current net inflow of about {_money(monthly_net)} a month already covers the target; "
            "set up an automatic transfer so it is saved before it is spent."
        )
    else:
        gap = monthly_target - max(monthly_net, 0.0)
        suggestions.append(f"Find roughly {_money(gap)} a month between spending cuts and extra income.")

    plan = [
        GoalPlanStep(
            step=1,
            action="Open a dedicated savings account",
            description=f"Keep money for '{goal.goal_name}' separate from everyday spending.",
        ),
        GoalPlanStep(
            step=2,
            action=f"Automate {_money(monthly_target)} per month",
            description="Schedule the transfer for the day after your income arrives.",
        ),
        GoalPlanStep(
            step=3,
            action="Review progress monthly",
            description="Compare each new statement against the plan and adjust the cuts that are not sticking.",
        ),
    ]

    return GoalPlan(
        goal_name=goal.goal_name,
        monthly_savings_target=monthly_target,
        suggestions=suggestions,
        plan=plan,
    )
