"""
Customer Service - SQL クエリ

すべてのクエリは text() + バインドパラメータで発行する (SQL インジェクション対策)。
顧客の読み取りは Customers ⟕ Addresses ⟕ Orders ⟕ OrderItems を 1 回の
往復で取得し、列名の衝突を避けるため各テーブルの id に別名を付ける。
結果は reader.py が期待する列名 (customer_id, address_id, ...) の行になる。
"""

import json
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .models import CustomerInput

FLATTENED_CUSTOMER_SQL = """
    SELECT
        c.id AS customer_id, c.first_name, c.last_name, c.email, c.phone,
        c.created_at, c.status, c.date_of_birth,
        a.id AS address_id, a.street, a.city, a.state, a.zip_code, a.country,
        a.region, a.is_primary, a.address_type,
        o.id AS order_id, o.order_date, o.status AS order_status, o.total AS order_total,
        oi.id AS order_item_id, oi.product_id, oi.product_name, oi.quantity, oi.price
    FROM customers c
    LEFT JOIN addresses a ON c.id = a.customer_id
    LEFT JOIN orders o ON c.id = o.customer_id
    LEFT JOIN order_items oi ON o.id = oi.order_id
"""


# ── 読み取り ─────────────────────────────────────


async def fetch_customer_rows(
    session: AsyncSession,
    customer_id: int | None = None,
) -> list[Mapping[str, Any]]:
    """JOIN 結果の行 (1 行 = 1 明細) を返す。customer_id 指定時はその顧客のみ。"""
    sql = FLATTENED_CUSTOMER_SQL
    params: dict[str, Any] = {}
    if customer_id is not None:
        sql += " WHERE c.id = :customer_id"
        params["customer_id"] = customer_id
    sql += " ORDER BY c.id, a.id, o.id, oi.id"

    result = await session.execute(text(sql), params)
    return list(result.mappings().all())


async def fetch_orders_between(
    session: AsyncSession,
    start: datetime,
    end: datetime,
) -> list[Mapping[str, Any]]:
    result = await session.execute(
        text("""
            SELECT id AS order_id, customer_id, order_date, status AS order_status,
                   total AS order_total
            FROM orders
            WHERE order_date >= :start AND order_date <= :end
            ORDER BY order_date ASC
        """),
        {"start": start, "end": end},
    )
    return list(result.mappings().all())


async def find_customer_id_by_email(session: AsyncSession, email: str) -> int | None:
    result = await session.execute(
        text("SELECT id FROM customers WHERE LOWER(email) = LOWER(:email)"),
        {"email": email},
    )
    return result.scalar_one_or_none()


async def fetch_audit_logs(
    session: AsyncSession,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    action_type: str | None = None,
    limit: int | None = None,
) -> list[Mapping[str, Any]]:
    """監査ログを新しい順に返す。条件は指定されたものだけ適用する。"""
    sql = """
        SELECT id, customer_id, action_type, timestamp, user_id, user_name,
               old_values, new_values
        FROM customer_audit_log
        WHERE 1 = 1
    """
    params: dict[str, Any] = {}
    if customer_id is not None:
        sql += " AND customer_id = :customer_id"
        params["customer_id"] = customer_id
    if start is not None:
        sql += " AND timestamp >= :start"
        params["start"] = start
    if end is not None:
        sql += " AND timestamp <= :end"
        params["end"] = end
    if action_type:
        sql += " AND action_type = :action_type"
        params["action_type"] = action_type
    sql += " ORDER BY timestamp DESC, id DESC"
    if limit is not None:
        sql += " LIMIT :limit"
        params["limit"] = limit

    result = await session.execute(text(sql), params)
    return list(result.mappings().all())


# ── 書き込み ─────────────────────────────────────


async def insert_customer(
    session: AsyncSession,
    data: CustomerInput,
    created_at: datetime,
) -> int:
    result = await session.execute(
        text("""
            INSERT INTO customers
                (first_name, last_name, email, phone, date_of_birth, status, created_at)
            VALUES
                (:first_name, :last_name, :email, :phone, :date_of_birth, :status, :created_at)
            RETURNING id
        """),
        {
            "first_name": data.first_name,
            "last_name": data.last_name,
            "email": data.email,
            "phone": data.phone,
            "date_of_birth": data.date_of_birth,
            "status": data.status.value,
            "created_at": created_at,
        },
    )
    return result.scalar_one()


async def insert_address(session: AsyncSession, customer_id: int, data: CustomerInput) -> int:
    """入力の住所をその顧客の主住所 (Home) として登録する。"""
    result = await session.execute(
        text("""
            INSERT INTO addresses
                (customer_id, street, city, state, zip_code, country, is_primary, address_type)
            VALUES
                (:customer_id, :street, :city, :state, :zip_code, :country, TRUE, 'Home')
            RETURNING id
        """),
        {
            "customer_id": customer_id,
            "street": data.street,
            "city": data.city,
            "state": data.state,
            "zip_code": data.zip_code or "",
            "country": data.country or "USA",
        },
    )
    return result.scalar_one()


async def update_customer(session: AsyncSession, customer_id: int, data: CustomerInput) -> None:
    await session.execute(
        text("""
            UPDATE customers
            SET first_name = :first_name, last_name = :last_name, email = :email,
                phone = :phone, date_of_birth = :date_of_birth, status = :status
            WHERE id = :id
        """),
        {
            "id": customer_id,
            "first_name": data.first_name,
            "last_name": data.last_name,
            "email": data.email,
            "phone": data.phone,
            "date_of_birth": data.date_of_birth,
            "status": data.status.value,
        },
    )


async def delete_customer(session: AsyncSession, customer_id: int) -> bool:
    """住所・注文は FK の ON DELETE CASCADE で削除される。"""
    result = await session.execute(
        text("DELETE FROM customers WHERE id = :id"),
        {"id": customer_id},
    )
    return result.rowcount > 0


async def insert_audit_log(
    session: AsyncSession,
    customer_id: int,
    action_type: str,
    timestamp: datetime,
    user_id: str | None,
    user_name: str | None,
    old_values: dict | None,
    new_values: dict | None,
) -> int:
    result = await session.execute(
        text("""
            INSERT INTO customer_audit_log
                (customer_id, action_type, timestamp, user_id, user_name, old_values, new_values)
            VALUES
                (:customer_id, :action_type, :timestamp, :user_id, :user_name, :old_values, :new_values)
            RETURNING id
        """),
        {
            "customer_id": customer_id,
            "action_type": action_type,
            "timestamp": timestamp,
            "user_id": user_id,
            "user_name": user_name,
            "old_values": json.dumps(old_values, default=str) if old_values is not None else None,
            "new_values": json.dumps(new_values, default=str) if new_values is not None else None,
        },
    )
    return result.scalar_one()
