import math
import time
from typing import Iterable, List, Optional

import pandas as pd
from pydantic import BaseModel, Field

from mafifulus.dashboard import _prep

HOUSING_KEYWORDS = ("housing", "rent", "mortgage")
GROCERIES_KEYWORDS = ("groceries", "food")

HOUSING_BENCHMARK = 30.0
GROCERIES_BENCHMARK = 15.0
SAVINGS_TARGET = 20.0


class LifeObjective(BaseModel):
    id: str = Field(default_factory=lambda: str(int(time.time() * 1000)))
    title: str
    estimated_cost: float = Field(..., gt=0)


def category_spend(df: pd.DataFrame, keywords: Iterable[str]) -> float:
    """Absolute net amount over categories whose name contains any keyword."""
    if df.empty:
        return 0.0
    lowered = df["Category"].str.lower()
    mask = pd.Series(False, index=df.index)
    for kw in keywords:
        mask |= lowered.str.contains(kw, regex=False)
    return float(abs(df.loc[mask, "Amount"].sum()))


def _pct(value: float, income: float) -> float:
    return round(value / income * 100, 1) if income > 0 else 0.0


def compute_ratios(transactions: Iterable[dict], summary: dict) -> dict:
    """Housing and grocery load as a share of income, next to the savings rate."""
    df = _prep(transactions)
    income = summary["total_income"]

    housing = category_spend(df, HOUSING_KEYWORDS)
    groceries = category_spend(df, GROCERIES_KEYWORDS)
    return {
        "housing_expense": housing,
        "housing_ratio": _pct(housing, income),
        "groceries_expense": groceries,
        "groceries_ratio": _pct(groceries, income),
        "savings_rate": summary["savings_rate"],
    }


def generate_insights(ratios: dict, summary: dict, objectives: Optional[List[LifeObjective]] = None) -> List[str]:
    """
    Generates rule-based financial insights against common benchmarks.
    """
    insights = []
    objectives = objectives or []

    if ratios["housing_ratio"] > HOUSING_BENCHMARK:
        insights.append(
            f"Your housing costs are {ratios['housing_ratio']:.1f}% of income - that's above the recommended 30% benchmark."
        )
    if ratios["groceries_ratio"] > GROCERIES_BENCHMARK:
        insights.append(
            f"Groceries are {ratios['groceries_ratio']:.1f}% of income. Consider cutting spending on groceries to reach the 10-15% target."
        )
    if ratios["savings_rate"] < SAVINGS_TARGET:
        insights.append(
            f"You're saving {ratios['savings_rate']:.1f}% of income. Aim for at least 20% to build wealth faster."
        )
    else:
        insights.append(f"Great job saving {ratios['savings_rate']:.1f}% of your income!")
    if not objectives:
        insights.append("Add your financial objectives to the Goals section so I can help you plan better.")
    if summary["monthly_surplus"] > summary["total_income"] * 0.3:
        insights.append("You have significant room to spend on leisure or invest more aggressively.")

    return insights


def add_objective(objectives: List[LifeObjective], title: str, cost) -> List[LifeObjective]:
    """Return the list with a new goal appended; blank input leaves it unchanged."""
    if not title or not cost:
        return objectives
    try:
        amount = float(cost)
    except (TypeError, ValueError):
        return objectives
    if amount <= 0:
        return objectives
    return [*objectives, LifeObjective(title=title.strip(), estimated_cost=amount)]


def objective_progress(objective: LifeObjective, monthly_surplus: float) -> dict:
    """Twelve-month projected progress towards a goal at the current surplus."""
    pct = min(100.0, max(5.0, (monthly_surplus / objective.estimated_cost) * 100 * 12))
    months = math.ceil(objective.estimated_cost / monthly_surplus) if monthly_surplus > 0 else None
    return {
        "id": objective.id,
        "title": objective.title,
        "estimated_cost": objective.estimated_cost,
        "projected_pct": pct,
        "months_to_goal": months,
        "label": f"{months} Months to Goal" if months is not None else "Increase Savings to Start",
    }


def advice_cards(summary: dict) -> List[dict]:
    yearly_subs = summary["total_monthly_recurring"] * 12
    surplus = summary["monthly_surplus"]

    if surplus > 0:
        trajectory = (
            f"Great pace! With a surplus of AED {surplus:,.0f}/mo, you are well-positioned to fund new goals."
        )
    else:
        trajectory = (
            "Your expenses currently exceed your income. Prioritize reducing high-spend categories like Dining Out."
        )

    return [
        {
            "title": "Savings Insight",
            "body": (
                f"You're currently spending AED {yearly_subs:,.0f}/yr on subscriptions. "
                "Reviewing your \"Entertainment\" category could unlock AED 50/mo in savings."
            ),
        },
        {"title": "Goal Trajectory", "body": trajectory},
    ]
