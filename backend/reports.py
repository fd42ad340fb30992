import csv
import io
import math
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List

EXCLUDED_STATUSES = {"cancelled"}
TOP_PRODUCTS_LIMIT = 5


def safe_float(value, default=0.0):
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return default
    if math.isfinite(numeric):
        return numeric
    return default


def safe_positive_int(value, default=0):
    try:
        numeric = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(default, numeric)


def build_sales_report(orders: Iterable[Dict], start: datetime, end: datetime) -> Dict:
    """Aggregate order documents created in ``[start, end)``.

    Cancelled orders only count towards ``ordersByStatus``.
    """
    total_revenue = 0.0
    total_orders = 0
    products_sold = 0
    daily_revenue: Dict[str, float] = defaultdict(float)
    orders_by_status: Dict[str, int] = defaultdict(int)
    product_totals: Dict[str, Dict] = {}

    for order in orders:
        created_at = order.get("createdAt")
        if not isinstance(created_at, datetime) or not (start <= created_at < end):
            continue

        status = str(order.get("status") or "pending")
        orders_by_status[status] += 1
        if status in EXCLUDED_STATUSES:
            continue

        amount = safe_float(order.get("totalAmount"), 0.0)
        total_orders += 1
        total_revenue += amount
        daily_revenue[created_at.strftime("%Y-%m-%d")] += amount

        for line in order.get("products") or []:
            if not isinstance(line, dict):
                continue
            quantity = safe_positive_int(line.get("quantity"), 0)
            products_sold += quantity
            product_id = str(line.get("product") or "")
            name = str(line.get("name") or "")
            unit_price = safe_float(line.get("price"), 0.0)
            entry = product_totals.setdefault(
                product_id,
                {
                    "product": {
                        "_id": product_id,
                        "name": name,
                        "basePrice": unit_price,
                        "price": unit_price,
                    },
                    "name": name,
                    "quantity": 0,
                    "revenue": 0.0,
                },
            )
            entry["quantity"] += quantity
            entry["revenue"] = round(entry["revenue"] + unit_price * quantity, 2)

    top_products = sorted(
        product_totals.values(),
        key=lambda item: (item["quantity"], item["revenue"]),
        reverse=True,
    )[:TOP_PRODUCTS_LIMIT]

    return {
        "totalRevenue": round(total_revenue, 2),
        "totalOrders": total_orders,
        "productsSold": products_sold,
        "averageOrderValue": round(total_revenue / total_orders, 2)
        if total_orders
        else 0.0,
        "dailyRevenue": {
            day: round(value, 2) for day, value in sorted(daily_revenue.items())
        },
        "topProducts": top_products,
        "ordersByStatus": dict(orders_by_status),
    }


def apply_catalog_details(report: Dict, catalog: Dict[str, Dict]) -> Dict:
    """Refresh ``topProducts[].product`` from current product documents.

    ``catalog`` maps product id strings to product documents. Products that
    no longer exist keep the name and price recorded on the order lines.
    """
    for item in report.get("topProducts") or []:
        product_document = catalog.get(item["product"]["_id"])
        if not product_document:
            continue
        name = str(product_document.get("name") or item["product"]["name"])
        price = safe_float(product_document.get("price"), item["product"]["price"])
        item["product"].update({"name": name, "basePrice": price, "price": price})
        item["name"] = name
    return report


def render_sales_csv(report: Dict) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer)

    writer.writerow(["Sales report", report.get("startDate", ""), report.get("endDate", "")])
    writer.writerow([])
    writer.writerow(["Metric", "Value"])
    for label, key in (
        ("Total revenue", "totalRevenue"),
        ("Total orders", "totalOrders"),
        ("Products sold", "productsSold"),
        ("Average order value", "averageOrderValue"),
    ):
        writer.writerow([label, report.get(key, 0)])

    writer.writerow([])
    writer.writerow(["Date", "Revenue"])
    for day, revenue in (report.get("dailyRevenue") or {}).items():
        writer.writerow([day, f"{revenue:.2f}"])

    writer.writerow([])
    writer.writerow(["Product", "Name", "Quantity", "Revenue"])
    top_products: List[Dict] = report.get("topProducts") or []
    for item in top_products:
        writer.writerow(
            [
                item["product"]["_id"],
                item["name"],
                item["quantity"],
                f"{item['revenue']:.2f}",
            ]
        )

    writer.writerow([])
    writer.writerow(["Status", "Orders"])
    for status, count in (report.get("ordersByStatus") or {}).items():
        writer.writerow([status, count])

    return buffer.getvalue()
