"""Working copy of extracted transactions while the user reviews them."""

from __future__ import annotations

from typing import Dict, List, Optional

import pandas as pd

CATEGORIES = [
    "Dining Out", "Supermarket", "Fuel", "Housing", "Education",
    "Subscriptions", "Healthcare", "Transportation", "Travel",
    "Shopping", "Utilities", "Income", "Transfer", "Entertainment", "Other",
]

SORT_KEYS = ("date_val", "description", "category", "amount")


def day_label(value) -> str:
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return "Invalid Date"
    return f"{ts:%A, %B} {ts.day}, {ts.year}"


EDITOR_FIELDS = {"Category": "category", "Description": "description", "Amount": "amount"}


def editor_updates(change: dict) -> dict:
    """Map one data_editor row edit to transaction fields; cleared cells are ignored."""
    updates = {}
    for column, field in EDITOR_FIELDS.items():
        value = change.get(column)
        if value is None or pd.isna(value):
            continue
        updates[field] = float(value) if field == "amount" else value
    return updates


class ReviewTable:
    """
    Edits are destructive on ``transactions`` but every one of them first
    pushes a full snapshot onto ``history`` so it can be undone.
    """

    def __init__(self, transactions: List[dict]):
        self.transactions = [dict(t) for t in transactions]
        self.history: List[List[dict]] = []
        self.sort_key = "date_val"
        self.direction = "desc"

    @property
    def can_undo(self) -> bool:
        return bool(self.history)

    def _save_to_history(self):
        self.history.append([dict(t) for t in self.transactions])

    def _find(self, txn_id: str) -> Optional[dict]:
        return next((t for t in self.transactions if t.get("id") == txn_id), None)

    def delete(self, txn_id: str) -> bool:
        if self._find(txn_id) is None:
            return False
        self._save_to_history()
        self.transactions = [t for t in self.transactions if t.get("id") != txn_id]
        return True

    def update(self, txn_id: str, changes: dict) -> bool:
        target = self._find(txn_id)
        if target is None or not changes:
            return False
        self._save_to_history()
        self.transactions = [{**t, **changes} if t is target else t for t in self.transactions]
        return True

    def change_category(self, txn_id: str, category: str) -> bool:
        return self.update(txn_id, {"category": category})

    def undo(self) -> bool:
        if not self.history:
            return False
        self.transactions = self.history.pop()
        return True

    def request_sort(self, key: str):
        if key not in SORT_KEYS:
            raise ValueError(f"Cannot sort by {key!r}")
        direction = "asc"
        if self.sort_key == key and self.direction == "asc":
            direction = "desc"
        self.sort_key, self.direction = key, direction

    def filtered(self, text: str = "", category: str = "All",
                 sort_key: Optional[str] = None, direction: Optional[str] = None) -> List[dict]:
        """Rows matching the search box and category picker, in display order."""
        if not self.transactions:
            return []

        sort_key = sort_key or self.sort_key
        direction = direction or self.direction

        df = pd.DataFrame({
            "description": [str(t.get("description") or "") for t in self.transactions],
            "category": [str(t.get("category") or "") for t in self.transactions],
            "date": [str(t.get("date") or "") for t in self.transactions],
            "amount": [t.get("amount") for t in self.transactions],
        })

        if text:
            lower = text.lower()
            mask = (
                df["description"].str.lower().str.contains(lower, regex=False)
                | df["category"].str.lower().str.contains(lower, regex=False)
                | df["date"].str.contains(lower, regex=False)
            )
            df = df[mask]

        if category != "All":
            df = df[df["category"] == category]

        if sort_key == "date_val":
            key = pd.to_datetime(df["date"], errors="coerce")
        elif sort_key == "amount":
            key = pd.to_numeric(df["amount"], errors="coerce")
        else:
            key = df[sort_key].str.lower()

        order = key.sort_values(ascending=direction == "asc", kind="mergesort", na_position="last").index
        return [self.transactions[i] for i in order]

    def grouped(self, **filters) -> Dict[str, List[dict]]:
        groups: Dict[str, List[dict]] = {}
        for t in self.filtered(**filters):
            groups.setdefault(day_label(t.get("date")), []).append(t)
        return groups
