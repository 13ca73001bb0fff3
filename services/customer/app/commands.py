"""
Customer Service - コマンドハンドラ (Write 側)

作成・更新・削除。各コマンドは:
  1. 入力を検証 (ValidationError)
  2. email の重複を確認 (DuplicateCustomerError)
  3. 顧客・住所・監査ログを 1 トランザクションで書き込む
     失敗時はロールバックして例外をそのまま呼び出し元へ伝播する (リトライしない)

事前の重複確認と INSERT の間に別リクエストが同じ email を登録した場合は、
ux_customers_email 一意インデックス違反 (IntegrityError) を同じく
DuplicateCustomerError に変換する。

注意: 書き込み後に検索結果のキャッシュは無効化しない。
TTL が切れるまでは古い検索結果が返る可能性がある。
"""

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import AsyncIterator

from sqlalchemy.exc import IntegrityError

from . import audit
from .audit import AuditActor, audit_values
from .errors import DuplicateCustomerError, ValidationError
from .models import CustomerInput
from .reader import read_customer
from .store import CustomerStore
from .validation import CustomerValidator

logger = logging.getLogger(__name__)

validator = CustomerValidator()


def _validate(data: CustomerInput, today: date | None) -> None:
    result = validator.validate(data, today)
    if not result.is_valid:
        raise ValidationError(result.failures)


EMAIL_UNIQUE_INDEX = "ux_customers_email"


@asynccontextmanager
async def _email_conflicts(email: str) -> AsyncIterator[None]:
    """email の一意インデックス違反を DuplicateCustomerError として送出する (ロールバック後)"""
    try:
        yield
    except IntegrityError as e:
        if EMAIL_UNIQUE_INDEX not in str(e):
            raise
        logger.warning("Unique email index rejected %s", email)
        raise DuplicateCustomerError(email) from e


async def create_customer(
    store: CustomerStore,
    data: CustomerInput,
    actor: AuditActor,
    today: date | None = None,
) -> int:
    """顧客を作成し、新しい ID を返す。住所が揃っていれば主住所も登録する。"""
    _validate(data, today)

    if await store.find_customer_id_by_email(data.email) is not None:
        raise DuplicateCustomerError(data.email)

    now = datetime.now(timezone.utc)
    async with _email_conflicts(data.email), store.transaction():
        customer_id = await store.insert_customer(data, now)
        if data.has_address:
            await store.insert_address(customer_id, data)
        await audit.record(
            store, customer_id, audit.CREATE, actor, now,
            new_values=audit_values(data),
        )

    logger.info("Created customer %s", customer_id)
    return customer_id


async def update_customer(
    store: CustomerStore,
    customer_id: int,
    data: CustomerInput,
    actor: AuditActor,
    today: date | None = None,
) -> bool:
    """更新できたら True、顧客が存在しなければ False。"""
    _validate(data, today)

    existing = read_customer(await store.fetch_customer_rows(customer_id), customer_id)
    if existing is None:
        logger.warning("Update skipped: customer %s not found", customer_id)
        return False

    owner_id = await store.find_customer_id_by_email(data.email)
    if owner_id is not None and owner_id != customer_id:
        raise DuplicateCustomerError(data.email)

    now = datetime.now(timezone.utc)
    async with _email_conflicts(data.email), store.transaction():
        await store.update_customer(customer_id, data)
        await audit.record(
            store, customer_id, audit.UPDATE, actor, now,
            old_values=audit_values(existing),
            new_values=audit_values(data),
        )

    logger.info("Updated customer %s", customer_id)
    return True


async def delete_customer(store: CustomerStore, customer_id: int, actor: AuditActor) -> bool:
    """削除できたら True、顧客が存在しなければ False。"""
    existing = read_customer(await store.fetch_customer_rows(customer_id), customer_id)
    if existing is None:
        logger.warning("Delete skipped: customer %s not found", customer_id)
        return False

    now = datetime.now(timezone.utc)
    async with store.transaction():
        await audit.record(
            store, customer_id, audit.DELETE, actor, now,
            old_values={"id": customer_id, **audit_values(existing)},
        )
        deleted = await store.delete_customer(customer_id)

    logger.info("Deleted customer %s", customer_id)
    return deleted
