"""
Customer Service - 監査ログ

作成・更新・削除のたびに、変更前後の値を JSON として
customer_audit_log に記録する。書き込みはコマンドと同じトランザクション内で行う。
"""

import json
import logging
from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, Field

from .models import Customer, CustomerInput
from .store import CustomerStore

logger = logging.getLogger(__name__)

CREATE = "Create"
UPDATE = "Update"
DELETE = "Delete"


class AuditActor(BaseModel):
    """操作したユーザー"""
    user_id: str | None = None
    user_name: str | None = None


class ValueChange(BaseModel):
    field: str
    old_value: Any = None
    new_value: Any = None


class AuditLogEntry(BaseModel):
    id: int
    customer_id: int
    action_type: str
    timestamp: datetime
    user_id: str | None
    user_name: str | None
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    changes: list[ValueChange] = Field(default_factory=list)


def audit_values(customer: Customer | CustomerInput) -> dict[str, Any]:
    """監査ログに残す顧客フィールドのスナップショット"""
    return {
        "first_name": customer.first_name,
        "last_name": customer.last_name,
        "email": customer.email,
        "phone": customer.phone,
        "status": customer.status.value,
        "date_of_birth": customer.date_of_birth.isoformat() if customer.date_of_birth else None,
    }


async def record(
    store: CustomerStore,
    customer_id: int,
    action_type: str,
    actor: AuditActor,
    timestamp: datetime,
    old_values: dict | None = None,
    new_values: dict | None = None,
) -> int:
    return await store.insert_audit_log(
        customer_id, action_type, timestamp,
        actor.user_id, actor.user_name, old_values, new_values,
    )


# ── 読み取り ─────────────────────────────────────


def _parse_values(raw: Any, entry_id: int, label: str) -> dict | None:
    if raw is None or raw == "":
        return None
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Malformed %s in audit log %s", label, entry_id)
        return None
    if not isinstance(parsed, dict):
        logger.warning("Unexpected %s shape in audit log %s", label, entry_id)
        return None
    return parsed


def diff_values(old: dict | None, new: dict | None) -> list[ValueChange]:
    """値が変わったフィールドだけを返す (キーは出現順)"""
    old = old or {}
    new = new or {}
    fields = list(dict.fromkeys([*old.keys(), *new.keys()]))
    return [
        ValueChange(field=name, old_value=old.get(name), new_value=new.get(name))
        for name in fields
        if old.get(name) != new.get(name)
    ]


def to_entry(row: Mapping[str, Any]) -> AuditLogEntry:
    old_values = _parse_values(row["old_values"], row["id"], "old_values")
    new_values = _parse_values(row["new_values"], row["id"], "new_values")
    return AuditLogEntry(
        id=row["id"],
        customer_id=row["customer_id"],
        action_type=row["action_type"],
        timestamp=row["timestamp"],
        user_id=row["user_id"],
        user_name=row["user_name"],
        old_values=old_values,
        new_values=new_values,
        changes=diff_values(old_values, new_values),
    )


async def get_customer_audit_history(
    store: CustomerStore,
    customer_id: int,
    start: datetime | None = None,
    end: datetime | None = None,
    action_type: str | None = None,
) -> list[AuditLogEntry]:
    logger.info("Getting audit history for customer %s", customer_id)
    rows = await store.fetch_audit_logs(
        customer_id=customer_id, start=start, end=end, action_type=action_type
    )
    return [to_entry(row) for row in rows]


async def get_recent_audit_activity(store: CustomerStore, count: int = 50) -> list[AuditLogEntry]:
    rows = await store.fetch_audit_logs(limit=count)
    return [to_entry(row) for row in rows]
