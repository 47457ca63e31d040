import pytest


@pytest.fixture()
def transactions():
    return [
        {"id": "t1", "date": "2024-01-01", "description": "Salary Transfer", "amount": 10000.0, "currency": "AED", "category": "Income"},
        {"id": "t2", "date": "2024-01-03", "description": "Rent Payment", "amount": -4000.0, "currency": "AED", "category": "Housing"},
        {"id": "t3", "date": "2024-01-05", "description": "Carrefour", "amount": -800.0, "currency": "AED", "category": "Supermarket"},
        {"id": "t4", "date": "2024-01-05", "description": "NETFLIX.COM", "amount": -45.0, "currency": "AED", "category": "Subscriptions"},
        {"id": "t5", "date": "2024-01-07", "description": "Own account transfer", "amount": -2000.0, "currency": "AED", "category": "Transfer"},
        {"id": "t6", "date": "2024-01-09", "description": "ADNOC Fuel", "amount": -155.0, "currency": "AED", "category": "Fuel"},
    ]
