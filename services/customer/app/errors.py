"""
Customer Service - ドメイン例外

エラーの分類:
  - ValidationError      ユーザー入力の検証エラー (フィールド名とメッセージを持つ)
  - DuplicateCustomerError  ビジネスキー (email) の重複 = 競合
  - DataIntegrityError   JOIN 結果の行が壊れている (必須列が NULL など)

「見つからない」は例外ではなく None / False で返す。
インフラ障害 (DB・Redis) はロールバック後にそのまま呼び出し元へ伝播させる。
"""

from typing import Any, Mapping

from pydantic import BaseModel


class ValidationFailure(BaseModel):
    """1 件の検証エラー"""
    field: str
    message: str


class CustomerServiceError(Exception):
    """Customer Service の全例外の基底クラス"""


class ValidationError(CustomerServiceError):
    def __init__(self, failures: list[ValidationFailure]) -> None:
        super().__init__("Validation failed. See failures for details.")
        self.failures = failures


class DuplicateCustomerError(CustomerServiceError):
    def __init__(self, email: str) -> None:
        super().__init__(f"A customer with email '{email}' already exists")
        self.email = email


class DataIntegrityError(CustomerServiceError):
    def __init__(self, message: str, row: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.row = dict(row) if row is not None else None
