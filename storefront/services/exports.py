"""
Order export - flattens orders into CSV for administrators.
"""

import csv
import io
from collections.abc import Iterable
from datetime import date

from storefront.models.domain import OrderExportRow

ORDER_EXPORT_HEADERS = (
    "Order ID",
    "Customer Name",
    "Customer Email",
    "Items Count",
    "Total Amount",
    "Payment Method",
    "Status",
    "Order Date",
)


def orders_csv(rows: Iterable[OrderExportRow]) -> str:
    """Render export rows as CSV text, header first."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(ORDER_EXPORT_HEADERS)

    for row in rows:
        writer.writerow(
            [
                str(row.order_id),
                row.customer_name or "N/A",
                row.customer_email or "N/A",
                row.items_count,
                f"{row.total_amount:.2f}",
                row.payment_method,
                row.status,
                row.created_at.date().isoformat(),
            ]
        )

    return output.getvalue()


def export_filename(today: date) -> str:
    return f"orders-export-{today.isoformat()}.csv"
