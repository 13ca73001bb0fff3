"""
Customer Service - 結果キャッシュ (Redis)

同じ検索条件のクエリを TTL の間は再計算しない。

  caller ──▶ fingerprint ──▶ Redis GET ──hit──▶ 返す
                                 │
                                miss
                                 ▼
                 DB から行を取得 → Reader → 検索/集計
                                 │
                                 ▼
                         Redis SET (EX=ttl) ──▶ 返す

- 値は pydantic の JSON として保存する。読み出すたびに新しいオブジェクトが
  生成されるので、呼び出し元が結果を書き換えても他の呼び出し元には影響しない。
- 書き込み系コマンドはキャッシュを無効化しない。TTL が切れるまでは
  古い結果が返りうる (read-after-write の整合性より負荷軽減を優先)。
- 同じキーを複数の呼び出し元が同時に再計算することがある (single-flight なし)。
  計算は読み取り専用で冪等なので、最後に書いた値が残るだけ。
- 計算が例外 (キャンセルを含む) で終わった場合は何も書き込まない。
"""

import hashlib
import json
import logging
import os
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import redis.asyncio as aioredis
from pydantic import TypeAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")

KEY_PREFIX = "customers"

SEARCH_TTL = int(os.environ.get("SEARCH_CACHE_TTL", 300))
DETAILS_TTL = int(os.environ.get("DETAILS_CACHE_TTL", 900))
TOP_CUSTOMERS_TTL = int(os.environ.get("TOP_CUSTOMERS_CACHE_TTL", 600))
SUMMARIES_TTL = int(os.environ.get("SUMMARIES_CACHE_TTL", 600))
ANALYTICS_TTL = int(os.environ.get("ANALYTICS_CACHE_TTL", 3600))


def _canonical(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def fingerprint(namespace: str, **params: Any) -> str:
    """
    結果に影響するすべてのパラメータから決定的なキーを作る。
    引数の順序には依存しない。
    """
    canonical = json.dumps(
        {name: _canonical(value) for name, value in params.items()},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()
    return f"{KEY_PREFIX}:{namespace}:{digest}"


class ResultCache:
    """get / set-with-TTL だけを使う薄いラッパー"""

    def __init__(self, redis: aioredis.Redis) -> None:
        self.redis = redis
        self._adapters: dict[Any, TypeAdapter] = {}

    def _adapter(self, type_: Any) -> TypeAdapter:
        adapter = self._adapters.get(type_)
        if adapter is None:
            adapter = self._adapters[type_] = TypeAdapter(type_)
        return adapter

    async def get(self, key: str, type_: type[T]) -> T | None:
        raw = await self.redis.get(key)
        if raw is None:
            logger.debug("Cache miss: %s", key)
            return None
        logger.info("Cache hit: %s", key)
        return self._adapter(type_).validate_json(raw)

    async def set(self, key: str, value: T, type_: type[T], ttl: int) -> None:
        payload = self._adapter(type_).dump_json(value)
        await self.redis.set(key, payload, ex=ttl)

    async def get_or_compute(
        self,
        key: str,
        type_: type[T],
        ttl: int,
        compute: Callable[[], Awaitable[T]],
    ) -> T:
        """
        キャッシュにあればそれを返し、なければ compute() の結果を保存して返す。
        compute() が None を返した場合 (= 見つからない) はキャッシュしない。
        """
        cached = await self.get(key, type_)
        if cached is not None:
            return cached

        value = await compute()
        if value is not None:
            await self.set(key, value, type_, ttl)
        return value
