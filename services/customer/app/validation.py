"""
Customer Service - 入力検証

検証エラーは例外ではなく ValidationResult (フィールド名 + メッセージのリスト) として返す。
コマンド側で is_valid を見て ValidationError を送出するか、
CSV インポートのように行単位のエラーとして記録するかを決める。

年齢の境界 (生年月日と today の暦日で比較):
  ちょうど 18 歳 0 日 → OK / 17 歳 364 日 → NG
  ちょうど 120 歳     → OK / 120 歳 + 1 日 → NG
"""

import re
from datetime import date

from pydantic import BaseModel, Field

from .errors import ValidationFailure
from .models import CustomerInput
from .search import MAX_PAGE_SIZE

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_AGE = 18
MAX_AGE = 120


class ValidationResult(BaseModel):
    failures: list[ValidationFailure] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.failures

    @property
    def messages(self) -> list[str]:
        return [f.message for f in self.failures]


def years_before(today: date, years: int) -> date:
    """today の years 年前の同じ日付。2/29 は平年なら 2/28 にする。"""
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        return today.replace(year=today.year - years, day=28)


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


class CustomerValidator:
    def validate(self, data: CustomerInput, today: date | None = None) -> ValidationResult:
        today = today or date.today()
        failures: list[ValidationFailure] = []

        if not data.first_name.strip():
            failures.append(ValidationFailure(field="first_name", message="First name is required"))
        if not data.last_name.strip():
            failures.append(ValidationFailure(field="last_name", message="Last name is required"))

        if not data.email.strip():
            failures.append(ValidationFailure(field="email", message="Email is required"))
        elif not is_valid_email(data.email):
            failures.append(ValidationFailure(field="email", message="Email format is invalid"))

        if data.date_of_birth is not None:
            failure = self._check_date_of_birth(data.date_of_birth, today)
            if failure:
                failures.append(failure)

        return ValidationResult(failures=failures)

    @staticmethod
    def _check_date_of_birth(dob: date, today: date) -> ValidationFailure | None:
        if dob > today:
            return ValidationFailure(field="date_of_birth", message="Date of birth cannot be in the future")
        if dob > years_before(today, MIN_AGE):
            return ValidationFailure(
                field="date_of_birth", message=f"Customer must be at least {MIN_AGE} years old"
            )
        if dob < years_before(today, MAX_AGE):
            return ValidationFailure(field="date_of_birth", message=f"Age cannot exceed {MAX_AGE} years")
        return None


def validate_page_parameters(page_number: int, page_size: int) -> ValidationResult:
    """API 層用。検索層は丸めるが、HTTP では範囲外を 400 として返す。"""
    failures = []
    if page_number < 1:
        failures.append(
            ValidationFailure(field="page_number", message="Page number must be greater than 0")
        )
    if page_size < 1 or page_size > MAX_PAGE_SIZE:
        failures.append(
            ValidationFailure(
                field="page_size", message=f"Page size must be between 1 and {MAX_PAGE_SIZE}"
            )
        )
    return ValidationResult(failures=failures)
