# dashboard.py: cash-flow numbers and charts for the reviewed statement

from typing import Iterable, List

import pandas as pd
import plotly.express as px
import plotly.graph_objects as go

# Vibrant palette for charts
COLORS = ['#10B981', '#3B82F6', '#F59E0B', '#8B5CF6', '#EF4444', '#EC4899', '#6366F1', '#0EA5E9', '#F97316']

SANKEY_PALETTE = {
    "income": '#8B5CF6',
    "savings_input": '#F59E0B',
    "hub": '#06B6D4',
    "savings_output": '#10B981',
    "expenses": ['#EC4899', '#3B82F6', '#8B5CF6', '#F97316', '#14B8A6', '#EF4444', '#EAB308', '#06B6D4'],
}

SUBSCRIPTION_KEYWORDS = [
    'netflix', 'spotify', 'apple', 'hulu', 'disney', 'prime', 'hbo', 'gym', 'fitness', 'adobe', 'slack',
    'zoom', 'openai', 'claude', 'github', 'linkedin', 'dropbox', 'icloud', 'youtube', 'microsoft',
    'google storage',
]

MAX_PIE_CATEGORIES = 8
TOP_VENDORS = 3


def _prep(transactions: Iterable[dict]) -> pd.DataFrame:
    """
    Prepares the dataframe for dashboarding.
    """
    df = pd.DataFrame(
        [
            {
                "Date": t.get("date"),
                "Description": t.get("description") or "",
                "Amount": t.get("amount"),
                "Category": t.get("category"),
            }
            for t in transactions
        ],
        columns=["Date", "Description", "Amount", "Category"],
    )
    if df.empty:
        return df

    df['Date'] = pd.to_datetime(df['Date'], errors='coerce')
    df['Month'] = df['Date'].dt.to_period('M').astype(str)

    # Ensure Amount is numeric
    df['Amount'] = pd.to_numeric(df['Amount'], errors='coerce').fillna(0)
    df["Category"] = df["Category"].fillna("Uncategorized").replace("", "Uncategorized")
    return df


def clean_transactions(df: pd.DataFrame) -> pd.DataFrame:
    """Transfers move money between own accounts and are not income or spend."""
    if df.empty:
        return df
    return df[df["Category"].str.lower() != "transfer"]


def total_income(df: pd.DataFrame) -> float:
    if df.empty:
        return 0.0
    return float(df.loc[df["Amount"] > 0, "Amount"].sum())


def total_expenses(df: pd.DataFrame) -> float:
    if df.empty:
        return 0.0
    return float(abs(df.loc[df["Amount"] < 0, "Amount"].sum()))


def savings_rate(income: float, surplus: float) -> float:
    return round(surplus / income * 100, 1) if income > 0 else 0.0


def expense_categories(df: pd.DataFrame) -> List[dict]:
    """
    Spend per category, largest first, with the tail folded into 'Other'
    so the donut never has more than nine slices.
    """
    if df.empty:
        return []

    expenses = df[df["Amount"] < 0]
    by_cat = expenses["Amount"].abs().groupby(expenses["Category"], sort=False).sum()
    by_cat = by_cat[by_cat > 0].sort_values(ascending=False, kind="mergesort")

    cats = [{"name": name, "value": float(value)} for name, value in by_cat.items()]
    if len(cats) <= MAX_PIE_CATEGORIES:
        return cats

    top = cats[:MAX_PIE_CATEGORIES]
    other = sum(c["value"] for c in cats[MAX_PIE_CATEGORIES:])
    if other > 0:
        top.append({"name": "Other", "value": other})
    return top


def expense_summary(categories: List[dict], expenses: float) -> List[dict]:
    return [
        {
            "category": c["name"],
            "total": c["value"],
            "percentage": round(c["value"] / expenses * 100, 1) if expenses > 0 else 0.0,
        }
        for c in categories
    ]


def recurring_expenses(df: pd.DataFrame) -> List[dict]:
    """Expenses that look like subscriptions, as positive monthly amounts."""
    if df.empty:
        return []

    expenses = df[df["Amount"] < 0]
    desc = expenses["Description"].str.lower()
    mask = expenses["Category"].str.lower().str.contains("subscription", regex=False)
    for kw in SUBSCRIPTION_KEYWORDS:
        mask |= desc.str.contains(kw, regex=False)

    matched = expenses[mask].assign(Amount=lambda x: x["Amount"].abs())
    matched = matched.sort_values("Amount", ascending=False, kind="mergesort")
    return [
        {
            "date": row["Date"].date().isoformat() if pd.notna(row["Date"]) else None,
            "description": row["Description"],
            "category": row["Category"],
            "amount": float(row["Amount"]),
            "annual": float(row["Amount"] * 12),
        }
        for _, row in matched.iterrows()
    ]


def vendors_by_category(df: pd.DataFrame) -> List[dict]:
    """Top vendors (by description) in each expense category."""
    if df.empty:
        return []

    expenses = df[df["Amount"] < 0].assign(Spend=lambda x: x["Amount"].abs())
    result = []
    for category, group in expenses.groupby("Category", sort=False):
        vendors = (
            group.groupby("Description", sort=False)["Spend"].sum()
            .sort_values(ascending=False, kind="mergesort")
            .head(TOP_VENDORS)
        )
        if vendors.empty:
            continue
        total = float(vendors.sum())
        result.append({
            "category": category,
            "vendors": [
                {
                    "name": name,
                    "amount": float(amount),
                    "percentage": int(round(float(amount) / total * 100)) if total > 0 else 0,
                }
                for name, amount in vendors.items()
            ],
            "total": total,
        })

    result.sort(key=lambda c: c["total"], reverse=True)
    return result


def sankey_data(income: float, surplus: float, categories: List[dict]) -> dict:
    """Nodes and links for income -> cash flow hub -> spending/savings."""
    nodes: List[dict] = []
    links: List[dict] = []

    income_idx = -1
    if income > 0:
        nodes.append({"name": "Income", "color": SANKEY_PALETTE["income"]})
        income_idx = len(nodes) - 1

    reserves_idx = -1
    if surplus < -1:
        nodes.append({"name": "From Savings", "color": SANKEY_PALETTE["savings_input"]})
        reserves_idx = len(nodes) - 1

    nodes.append({"name": "Cash Flow", "color": SANKEY_PALETTE["hub"]})
    hub_idx = len(nodes) - 1

    expense_start = len(nodes)
    palette = SANKEY_PALETTE["expenses"]
    for i, cat in enumerate(categories):
        nodes.append({"name": cat["name"], "color": palette[i % len(palette)]})

    savings_idx = -1
    if surplus > 1:
        nodes.append({"name": "To Savings", "color": SANKEY_PALETTE["savings_output"]})
        savings_idx = len(nodes) - 1

    if income_idx != -1:
        links.append({"source": income_idx, "target": hub_idx, "value": income})
    if reserves_idx != -1:
        links.append({"source": reserves_idx, "target": hub_idx, "value": abs(surplus)})
    for i, cat in enumerate(categories):
        if cat["value"] > 0:
            links.append({"source": hub_idx, "target": expense_start + i, "value": cat["value"]})
    if savings_idx != -1:
        links.append({"source": hub_idx, "target": savings_idx, "value": surplus})

    return {"nodes": nodes, "links": links}


def summarize(transactions: Iterable[dict]) -> dict:
    """Every number the dashboard shows, computed once."""
    df = clean_transactions(_prep(transactions))

    income = total_income(df)
    expenses = total_expenses(df)
    surplus = income - expenses
    categories = expense_categories(df)
    recurring = recurring_expenses(df)

    return {
        "total_income": income,
        "total_expenses": expenses,
        "monthly_surplus": surplus,
        "savings_rate": savings_rate(income, surplus),
        "expense_categories": categories,
        "expense_summary": expense_summary(categories, expenses),
        "recurring_expenses": recurring,
        "total_monthly_recurring": float(sum(r["amount"] for r in recurring)),
        "vendors_by_category": vendors_by_category(df),
        "sankey": sankey_data(income, surplus, categories),
    }


def _rgba(hex_color: str, alpha: float) -> str:
    h = hex_color.lstrip('#')
    r, g, b = (int(h[i:i + 2], 16) for i in (0, 2, 4))
    return f"rgba({r},{g},{b},{alpha})"


def cash_flow_sankey(sankey: dict):
    """
    Sankey diagram of where the money went.
    """
    nodes, links = sankey["nodes"], sankey["links"]
    fig = go.Figure(go.Sankey(
        arrangement="snap",
        node=dict(
            label=[n["name"] for n in nodes],
            color=[n["color"] for n in nodes],
            pad=30,
            thickness=18,
        ),
        link=dict(
            source=[l["source"] for l in links],
            target=[l["target"] for l in links],
            value=[l["value"] for l in links],
            color=[_rgba(nodes[l["target"]]["color"], 0.4) for l in links],
        ),
        valueformat=",.0f",
        valuesuffix=" AED",
    ))
    fig.update_layout(title="Cash Flow", height=450, margin=dict(l=20, r=20, t=50, b=20))
    return fig


def spending_bar(categories: List[dict]):
    """
    Bar chart of spend per category.
    """
    df = pd.DataFrame(categories, columns=["name", "value"])
    fig = px.bar(df, x="name", y="value", color="name", color_discrete_sequence=COLORS,
                 labels={"name": "Category", "value": "AED"}, title="Spending by Category")
    fig.update_layout(showlegend=False, height=400)
    return fig


def cat_spend(categories: List[dict]):
    """
    Donut chart of spending by category.
    """
    df = pd.DataFrame(categories, columns=["name", "value"])
    fig = px.pie(df, values="value", names="name", hole=0.4, title="Expense Breakdown",
                 color_discrete_sequence=COLORS)
    fig.update_traces(textposition='inside', textinfo='percent+label')
    return fig


def income_vs_expense_monthly(transactions: Iterable[dict]):
    """
    Bar chart of Income vs Expenses per month.
    """
    df = clean_transactions(_prep(transactions))
    if df.empty:
        monthly = pd.DataFrame(columns=["Month", "Income", "Expense"])
    else:
        monthly = df.groupby('Month')['Amount'].agg(
            Income=lambda x: x[x > 0].sum(),
            Expense=lambda x: abs(x[x < 0].sum())
        ).reset_index()

    fig = go.Figure()
    fig.add_trace(go.Bar(x=monthly['Month'], y=monthly['Income'], name='Income', marker_color='#10B981'))
    fig.add_trace(go.Bar(x=monthly['Month'], y=monthly['Expense'], name='Expenses', marker_color='#EF4444'))

    fig.update_layout(barmode='group', title="Income vs Expenses Trend", height=400)
    return fig
