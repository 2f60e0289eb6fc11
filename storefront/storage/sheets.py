"""Google Sheets persistence for orders and products.

Layout:
- Orders: one row per order, columns located by header name
- OrderItems: one row per line item (orderId, productId, productName,
  quantity, price)
- Products: read-only, Products!A2:G (id, name, description, price,
  category, imageUrl, stock)

Missing header rows are created with the default columns on first write.
All googleapiclient calls are blocking and run in a worker thread.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import threading
from typing import Any

from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build

from storefront.errors import OrderNotFound, ProductNotFound
from storefront.models import Order, OrderStatus, Product

logger = logging.getLogger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

ORDERS_SHEET = "Orders"
ORDER_ITEMS_SHEET = "OrderItems"
PRODUCTS_RANGE = "Products!A2:G"

ORDER_HEADERS = [
    "orderId", "userId", "orderDate", "status", "totalAmount", "paymentMethod",
    "customerName", "customerEmail", "customerPhone", "shippingAddress", "state",
    "lga", "town", "zip", "additionalInfo", "city", "shippingFee",
]
ORDER_ITEM_HEADERS = ["orderId", "productId", "productName", "quantity", "price"]


def load_credentials(credentials_b64: str) -> Credentials:
    """Service-account credentials from base64-encoded JSON key material."""
    info = json.loads(base64.b64decode(credentials_b64).decode("utf-8"))
    return Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)


def build_sheets_service(credentials_b64: str) -> Any:
    creds = load_credentials(credentials_b64)
    return build("sheets", "v4", credentials=creds, cache_discovery=False)


def _a1(sheet: str, cells: str) -> str:
    return f"{sheet}!{cells}"


def _col_to_letter(n: int) -> str:
    # 1 -> A
    letters = ""
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


class SheetClient:
    """Header-mapped access to one spreadsheet (blocking)."""

    def __init__(self, service: Any, spreadsheet_id: str):
        self._svc = service
        self.sid = spreadsheet_id
        # googleapiclient's http object is not thread-safe
        self._lock = threading.Lock()

    def get_values(self, range_a1: str) -> list[list[Any]]:
        with self._lock:
            resp = self._svc.spreadsheets().values().get(
                spreadsheetId=self.sid,
                range=range_a1,
                valueRenderOption="UNFORMATTED_VALUE",
            ).execute()
        return resp.get("values", [])

    def append_values(self, sheet: str, values: list[list[Any]]) -> None:
        with self._lock:
            self._svc.spreadsheets().values().append(
                spreadsheetId=self.sid,
                range=_a1(sheet, "A:ZZ"),
                valueInputOption="RAW",
                insertDataOption="INSERT_ROWS",
                body={"values": values},
            ).execute()

    def update_values(self, range_a1: str, values: list[list[Any]]) -> None:
        with self._lock:
            self._svc.spreadsheets().values().update(
                spreadsheetId=self.sid,
                range=range_a1,
                valueInputOption="RAW",
                body={"values": values},
            ).execute()

    def header_map(self, sheet: str, defaults: list[str] | None = None) -> dict[str, int]:
        """Column index by header name. Writes ``defaults`` when the header row is empty."""
        rows = self.get_values(_a1(sheet, "1:1"))
        header = rows[0] if rows else []
        if not header and defaults:
            logger.info("Creating header row for sheet %s", sheet)
            self.update_values(_a1(sheet, "A1"), [defaults])
            header = defaults
        return {str(name).strip(): idx for idx, name in enumerate(header) if str(name).strip()}

    def append_by_header(
        self, sheet: str, rows: list[dict[str, Any]], defaults: list[str] | None = None
    ) -> None:
        hm = self.header_map(sheet, defaults)
        width = max(hm.values()) + 1 if hm else 0
        values = []
        for row_dict in rows:
            row = [""] * width
            for key, value in row_dict.items():
                if key in hm:
                    row[hm[key]] = _cell(value)
            values.append(row)
        if values:
            self.append_values(sheet, values)

    def read_records(self, sheet: str) -> list[dict[str, Any]]:
        """Every data row as a dict keyed by header name."""
        rows = self.get_values(sheet)
        if not rows:
            return []
        header = [str(h).strip() for h in rows[0]]
        return [
            {name: (row[i] if i < len(row) else "") for i, name in enumerate(header) if name}
            for row in rows[1:]
        ]

    def find_row_index(self, sheet: str, key_col: str, key_value: str) -> int | None:
        """First 1-based row whose ``key_col`` equals ``key_value``."""
        hm = self.header_map(sheet)
        if key_col not in hm:
            return None
        letter = _col_to_letter(hm[key_col] + 1)
        for i, row in enumerate(self.get_values(_a1(sheet, f"{letter}2:{letter}"))):
            if row and str(row[0]).strip() == str(key_value).strip():
                return 2 + i
        return None

    def update_cells_by_header(self, sheet: str, row_index: int, updates: dict[str, Any]) -> None:
        hm = self.header_map(sheet)
        data = []
        for key, value in updates.items():
            if key not in hm:
                continue
            letter = _col_to_letter(hm[key] + 1)
            data.append({
                "range": _a1(sheet, f"{letter}{row_index}:{letter}{row_index}"),
                "values": [[_cell(value)]],
            })
        if not data:
            return
        with self._lock:
            self._svc.spreadsheets().values().batchUpdate(
                spreadsheetId=self.sid,
                body={"valueInputOption": "RAW", "data": data},
            ).execute()


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


def order_to_row(order: Order) -> dict[str, Any]:
    s = order.shipping
    return {
        "orderId": order.order_id,
        "userId": order.user_id,
        "orderDate": order.created_at,
        "status": order.status.value,
        "totalAmount": order.total,
        "paymentMethod": order.payment_method.value,
        "customerName": s.full_name,
        "customerEmail": s.email,
        "customerPhone": s.phone,
        "shippingAddress": s.address,
        "state": s.state,
        "lga": s.lga,
        "town": s.town,
        "zip": s.zip,
        "additionalInfo": s.additional_info,
        "city": s.city,
        "shippingFee": order.shipping_fee,
    }


def row_to_order(row: dict[str, Any], items: list[dict[str, Any]]) -> Order:
    return Order.from_dict({
        "orderId": row.get("orderId"),
        "userId": row.get("userId") or "guest",
        "orderDate": _cell(row.get("orderDate")),
        "status": row.get("status") or "pending",
        "total": row.get("totalAmount") or 0,
        "shippingFee": row.get("shippingFee") or 0,
        "paymentMethod": row.get("paymentMethod") or "pay_on_delivery",
        "shippingDetails": {
            "fullName": row.get("customerName"),
            "email": row.get("customerEmail"),
            "phone": row.get("customerPhone"),
            "address": row.get("shippingAddress"),
            "city": row.get("city"),
            "state": row.get("state"),
            "lga": row.get("lga"),
            "town": row.get("town"),
            "zip": row.get("zip"),
            "additionalInfo": row.get("additionalInfo"),
        },
        "items": [
            {
                "productId": item.get("productId"),
                "name": item.get("productName"),
                "quantity": item.get("quantity") or 1,
                "price": item.get("price") or 0,
            }
            for item in items
        ],
    })


class SheetsOrderRepository:
    """OrderStore backed by the Orders and OrderItems tabs."""

    def __init__(self, client: SheetClient):
        self._client = client

    @classmethod
    def from_credentials(cls, spreadsheet_id: str, credentials_b64: str) -> SheetsOrderRepository:
        return cls(SheetClient(build_sheets_service(credentials_b64), spreadsheet_id))

    async def add(self, order: Order) -> Order:
        await asyncio.to_thread(self._add, order)
        logger.info("Order %s written to sheet", order.order_id)
        return order

    def _add(self, order: Order) -> None:
        self._client.append_by_header(ORDERS_SHEET, [order_to_row(order)], ORDER_HEADERS)
        self._client.append_by_header(
            ORDER_ITEMS_SHEET,
            [
                {
                    "orderId": order.order_id,
                    "productId": item.product_id,
                    "productName": item.name,
                    "quantity": item.quantity,
                    "price": item.price,
                }
                for item in order.items
            ],
            ORDER_ITEM_HEADERS,
        )

    async def get(self, order_id: str) -> Order:
        orders = await asyncio.to_thread(self._load, "orderId", order_id)
        if not orders:
            raise OrderNotFound(f"Order {order_id} not found")
        return orders[0]

    async def list_for_user(self, user_id: str) -> list[Order]:
        orders = await asyncio.to_thread(self._load, "userId", user_id)
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    def _load(self, column: str, value: str) -> list[Order]:
        rows = [
            r for r in self._client.read_records(ORDERS_SHEET) if str(r.get(column)) == value
        ]
        if not rows:
            return []
        wanted = {str(r.get("orderId")) for r in rows}
        items: dict[str, list[dict[str, Any]]] = {}
        for item in self._client.read_records(ORDER_ITEMS_SHEET):
            oid = str(item.get("orderId"))
            if oid in wanted:
                items.setdefault(oid, []).append(item)
        return [row_to_order(r, items.get(str(r.get("orderId")), [])) for r in rows]

    async def update_status(self, order_id: str, status: OrderStatus) -> Order:
        row_index = await asyncio.to_thread(
            self._client.find_row_index, ORDERS_SHEET, "orderId", order_id
        )
        if row_index is None:
            raise OrderNotFound(f"Order {order_id} not found")
        await asyncio.to_thread(
            self._client.update_cells_by_header,
            ORDERS_SHEET,
            row_index,
            {"status": status.value},
        )
        logger.info("Order %s status -> %s", order_id, status.value)
        return await self.get(order_id)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


class SheetsProductCatalog:
    """ProductCatalog read from the Products tab."""

    def __init__(self, client: SheetClient):
        self._client = client

    @classmethod
    def from_credentials(cls, spreadsheet_id: str, credentials_b64: str) -> SheetsProductCatalog:
        return cls(SheetClient(build_sheets_service(credentials_b64), spreadsheet_id))

    async def list_products(self) -> list[Product]:
        rows = await asyncio.to_thread(self._client.get_values, PRODUCTS_RANGE)
        return [Product.from_row(row) for row in rows if row and str(row[0]).strip()]

    async def get_product(self, product_id: str) -> Product:
        for product in await self.list_products():
            if product.id == product_id:
                return product
        raise ProductNotFound(f"Product {product_id} not found")
