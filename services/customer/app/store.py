"""
Customer Service - データストア境界

コア (reader / search / service) は CustomerStore プロトコルだけを知っている。
本番実装は SqlCustomerStore (SQLAlchemy AsyncSession)、テストでは
インメモリの実装に差し替える。

セッションはリクエストをまたいで共有しない。store_scope() が
論理操作ごとに新しいセッションを開き、終了時に閉じる。
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncContextManager, AsyncIterator, Callable, Mapping, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from . import queries
from .models import CustomerInput

StoreScope = Callable[[], AsyncContextManager["CustomerStore"]]


class CustomerStore(Protocol):
    async def fetch_customer_rows(self, customer_id: int | None = None) -> list[Mapping[str, Any]]: ...

    async def fetch_orders_between(self, start: datetime, end: datetime) -> list[Mapping[str, Any]]: ...

    async def find_customer_id_by_email(self, email: str) -> int | None: ...

    async def insert_customer(self, data: CustomerInput, created_at: datetime) -> int: ...

    async def insert_address(self, customer_id: int, data: CustomerInput) -> int: ...

    async def update_customer(self, customer_id: int, data: CustomerInput) -> None: ...

    async def delete_customer(self, customer_id: int) -> bool: ...

    async def insert_audit_log(
        self,
        customer_id: int,
        action_type: str,
        timestamp: datetime,
        user_id: str | None,
        user_name: str | None,
        old_values: dict | None,
        new_values: dict | None,
    ) -> int: ...

    async def fetch_audit_logs(
        self,
        customer_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        action_type: str | None = None,
        limit: int | None = None,
    ) -> list[Mapping[str, Any]]: ...

    def transaction(self) -> AsyncContextManager[None]: ...


class SqlCustomerStore:
    """AsyncSession 上の CustomerStore 実装"""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def fetch_customer_rows(self, customer_id: int | None = None) -> list[Mapping[str, Any]]:
        return await queries.fetch_customer_rows(self.session, customer_id)

    async def fetch_orders_between(self, start: datetime, end: datetime) -> list[Mapping[str, Any]]:
        return await queries.fetch_orders_between(self.session, start, end)

    async def find_customer_id_by_email(self, email: str) -> int | None:
        return await queries.find_customer_id_by_email(self.session, email)

    async def insert_customer(self, data: CustomerInput, created_at: datetime) -> int:
        return await queries.insert_customer(self.session, data, created_at)

    async def insert_address(self, customer_id: int, data: CustomerInput) -> int:
        return await queries.insert_address(self.session, customer_id, data)

    async def update_customer(self, customer_id: int, data: CustomerInput) -> None:
        await queries.update_customer(self.session, customer_id, data)

    async def delete_customer(self, customer_id: int) -> bool:
        return await queries.delete_customer(self.session, customer_id)

    async def insert_audit_log(
        self,
        customer_id: int,
        action_type: str,
        timestamp: datetime,
        user_id: str | None,
        user_name: str | None,
        old_values: dict | None,
        new_values: dict | None,
    ) -> int:
        return await queries.insert_audit_log(
            self.session, customer_id, action_type, timestamp,
            user_id, user_name, old_values, new_values,
        )

    async def fetch_audit_logs(
        self,
        customer_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        action_type: str | None = None,
        limit: int | None = None,
    ) -> list[Mapping[str, Any]]:
        return await queries.fetch_audit_logs(
            self.session, customer_id, start, end, action_type, limit
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        複数の書き込みを 1 トランザクションにまとめる。
        ブロック内で例外 (キャンセルを含む) が起きたらロールバックして再送出する。
        """
        try:
            yield
        except BaseException:
            await self.session.rollback()
            raise
        await self.session.commit()


def store_scope(session_factory: Callable[[], AsyncSession]) -> StoreScope:
    """論理操作ごとに新しいセッションで SqlCustomerStore を作るファクトリを返す。"""

    @asynccontextmanager
    async def scope() -> AsyncIterator[SqlCustomerStore]:
        async with session_factory() as session:
            yield SqlCustomerStore(session)

    return scope
