import csv
import io
import logging
from typing import Iterable

import pandas as pd

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = ["Date", "Description", "Category", "Amount", "Currency"]
COLUMN_WIDTHS = [12, 40, 15, 10, 8]

SHEET_NAME = "Mafifulus Report"
EXCEL_FILENAME = "Mafifulus_Report.xlsx"
EXCEL_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
CSV_FILENAME = "mafifulus_export.csv"
CSV_MEDIA_TYPE = "text/csv; charset=utf-8"


def to_export_frame(transactions: Iterable[dict]) -> pd.DataFrame:
    rows = [
        {
            "Date": t.get("date"),
            "Description": t.get("description"),
            "Category": t.get("category"),
            "Amount": t.get("amount"),
            "Currency": t.get("currency") or "AED",
        }
        for t in transactions
    ]
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def export_excel(transactions: Iterable[dict]) -> bytes:
    df = to_export_frame(transactions)
    logger.info("[Export] Generating Excel for %d transactions...", len(df))

    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="xlsxwriter") as writer:
        df.to_excel(writer, index=False, sheet_name=SHEET_NAME)
        worksheet = writer.sheets[SHEET_NAME]
        for idx, width in enumerate(COLUMN_WIDTHS):
            worksheet.set_column(idx, idx, width)
    return buffer.getvalue()


def export_csv(transactions: Iterable[dict]) -> bytes:
    df = to_export_frame(transactions)
    logger.info("[Export] Generating CSV for %d transactions...", len(df))
    return df.to_csv(index=False, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n").encode("utf-8")
