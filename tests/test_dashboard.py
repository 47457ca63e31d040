import pytest

from mafifulus.dashboard import (
    cash_flow_sankey,
    cat_spend,
    expense_categories,
    income_vs_expense_monthly,
    sankey_data,
    spending_bar,
    summarize,
    _prep,
)


def test_summary_totals_skip_transfers(transactions):
    summary = summarize(transactions)
    assert summary["total_income"] == 10000
    assert summary["total_expenses"] == 5000
    assert summary["monthly_surplus"] == 5000
    assert summary["savings_rate"] == 50.0


def test_expense_categories_sorted(transactions):
    summary = summarize(transactions)
    assert [c["name"] for c in summary["expense_categories"]] == ["Housing", "Supermarket", "Fuel", "Subscriptions"]
    assert summary["expense_summary"][0] == {"category": "Housing", "total": 4000.0, "percentage": 80.0}


def test_small_categories_fold_into_other():
    txns = [
        {"date": "2024-02-01", "description": f"Shop {i}", "amount": -float(10 - i), "category": f"Cat {i}"}
        for i in range(10)
    ]
    cats = expense_categories(_prep(txns))
    assert len(cats) == 9
    assert cats[-1] == {"name": "Other", "value": 3.0}


def test_recurring_expenses(transactions):
    summary = summarize(transactions)
    assert summary["recurring_expenses"] == [
        {"date": "2024-01-05", "description": "NETFLIX.COM", "category": "Subscriptions", "amount": 45.0, "annual": 540.0}
    ]
    assert summary["total_monthly_recurring"] == 45.0


def test_vendors_by_category():
    txns = [
        {"date": "2024-01-01", "description": "Cafe A", "amount": -30, "category": "Dining Out"},
        {"date": "2024-01-02", "description": "Cafe A", "amount": -45, "category": "Dining Out"},
        {"date": "2024-01-03", "description": "Cafe B", "amount": -25, "category": "Dining Out"},
        {"date": "2024-01-03", "description": "Cinema", "amount": -200, "category": "Entertainment"},
    ]
    vendors = summarize(txns)["vendors_by_category"]
    assert [v["category"] for v in vendors] == ["Entertainment", "Dining Out"]
    dining = vendors[1]
    assert dining["total"] == 100.0
    assert dining["vendors"] == [
        {"name": "Cafe A", "amount": 75.0, "percentage": 75},
        {"name": "Cafe B", "amount": 25.0, "percentage": 25},
    ]


def test_sankey_with_surplus(transactions):
    sankey = summarize(transactions)["sankey"]
    names = [n["name"] for n in sankey["nodes"]]
    assert names == ["Income", "Cash Flow", "Housing", "Supermarket", "Fuel", "Subscriptions", "To Savings"]
    assert sankey["links"][0] == {"source": 0, "target": 1, "value": 10000}
    assert sankey["links"][-1] == {"source": 1, "target": 6, "value": 5000}


def test_sankey_draws_from_savings_on_deficit():
    sankey = sankey_data(100.0, -50.0, [{"name": "Rent", "value": 150.0}])
    names = [n["name"] for n in sankey["nodes"]]
    assert names == ["Income", "From Savings", "Cash Flow", "Rent"]
    assert {"source": 1, "target": 2, "value": 50.0} in sankey["links"]


def test_empty_summary():
    summary = summarize([])
    assert summary["total_income"] == 0
    assert summary["savings_rate"] == 0.0
    assert summary["expense_categories"] == []
    assert summary["sankey"]["links"] == []


def test_figures_build(transactions):
    summary = summarize(transactions)
    assert cash_flow_sankey(summary["sankey"]).data[0].type == "sankey"
    assert spending_bar(summary["expense_categories"]).data
    assert cat_spend(summary["expense_categories"]).data[0].hole == pytest.approx(0.4)

    monthly = income_vs_expense_monthly(transactions)
    assert list(monthly.data[0].y) == [10000]
    assert list(monthly.data[1].y) == [5000]
