"""
Customer Service - CSV インポート / エクスポート

列: FirstName, LastName, Email, Phone, Status, Street, City, State,
    ZipCode, Country, DateOfBirth

インポートは 1 行 = 1 トランザクション。ある行が失敗しても
エラー (行番号・メッセージ・元データ) を記録して次の行へ進む。
行番号は CSV の物理行 (ヘッダーが 1 行目)。
DB に到達できないなどのインフラ障害は行エラーにせず、そのまま伝播させる。
"""

import csv
import io
import logging
from datetime import date
from typing import Iterable

from pydantic import BaseModel, Field

from . import commands
from .audit import AuditActor
from .errors import CustomerServiceError, DuplicateCustomerError, ValidationError
from .models import Customer, CustomerInput, CustomerStatus
from .store import CustomerStore

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "FirstName", "LastName", "Email", "Phone", "Status",
    "Street", "City", "State", "ZipCode", "Country", "DateOfBirth",
]


class ImportRowError(BaseModel):
    line_number: int
    message: str
    raw_data: str


class ImportResult(BaseModel):
    total_records: int = 0
    success_count: int = 0
    failure_count: int = 0
    errors: list[ImportRowError] = Field(default_factory=list)
    imported_ids: list[int] = Field(default_factory=list)

    def record_failure(self, line_number: int, message: str, raw_data: str) -> None:
        self.failure_count += 1
        self.errors.append(
            ImportRowError(line_number=line_number, message=message, raw_data=raw_data)
        )
        logger.warning("Import line %d rejected: %s", line_number, message)


# ── エクスポート ─────────────────────────────────


def export_customers_csv(customers: Iterable[Customer]) -> str:
    """主住所 (なければ最初の住所) を付けて CSV 文字列を返す。"""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for customer in customers:
        address = customer.primary_address
        writer.writerow({
            "FirstName": customer.first_name,
            "LastName": customer.last_name,
            "Email": customer.email,
            "Phone": customer.phone or "",
            "Status": customer.status.value,
            "Street": address.street if address else "",
            "City": address.city if address else "",
            "State": address.state if address else "",
            "ZipCode": address.zip_code if address else "",
            "Country": address.country if address else "",
            "DateOfBirth": customer.date_of_birth.isoformat() if customer.date_of_birth else "",
        })
    return buffer.getvalue()


# ── インポート ───────────────────────────────────


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_record(record: dict[str, str | None]) -> tuple[CustomerInput | None, list[str]]:
    """CSV の 1 レコードを CustomerInput に変換する。変換できない値はエラーにする。"""
    errors = []

    status = CustomerStatus.ACTIVE
    raw_status = _blank_to_none(record.get("Status"))
    if raw_status is not None:
        try:
            status = CustomerStatus(raw_status)
        except ValueError:
            errors.append(f"Status '{raw_status}' is not one of Active, Inactive")

    date_of_birth = None
    raw_dob = _blank_to_none(record.get("DateOfBirth"))
    if raw_dob is not None:
        try:
            date_of_birth = date.fromisoformat(raw_dob)
        except ValueError:
            errors.append(f"Date of birth '{raw_dob}' is not a valid date")

    if errors:
        return None, errors

    data = CustomerInput(
        first_name=(record.get("FirstName") or "").strip(),
        last_name=(record.get("LastName") or "").strip(),
        email=(record.get("Email") or "").strip(),
        phone=_blank_to_none(record.get("Phone")),
        status=status,
        date_of_birth=date_of_birth,
        street=_blank_to_none(record.get("Street")),
        city=_blank_to_none(record.get("City")),
        state=_blank_to_none(record.get("State")),
        zip_code=_blank_to_none(record.get("ZipCode")),
        country=_blank_to_none(record.get("Country")) or "USA",
    )
    return data, []


def _raw(record: dict) -> str:
    values = [record.get(column) or "" for column in CSV_COLUMNS]
    values.extend(record.get(None) or [])
    return ",".join(values)


async def import_customers_csv(
    store: CustomerStore,
    content: str,
    actor: AuditActor,
    today: date | None = None,
) -> ImportResult:
    result = ImportResult()
    reader = csv.DictReader(io.StringIO(content))
    seen_emails: set[str] = set()

    logger.info("Starting customer import from CSV")

    for record in reader:
        result.total_records += 1
        line_number = reader.line_num
        raw = _raw(record)

        if record.get(None):
            result.record_failure(line_number, "Invalid CSV format: too many fields", raw)
            continue

        data, parse_errors = parse_record(record)
        if data is None:
            result.record_failure(line_number, "; ".join(parse_errors), raw)
            continue

        email_key = data.email.lower()
        if email_key and email_key in seen_emails:
            message = f"A customer with email '{data.email}' appears earlier in the file"
            result.record_failure(line_number, message, raw)
            continue

        try:
            customer_id = await commands.create_customer(store, data, actor, today)
        except ValidationError as e:
            result.record_failure(line_number, "; ".join(f.message for f in e.failures), raw)
            continue
        except DuplicateCustomerError as e:
            result.record_failure(line_number, str(e), raw)
            continue
        except CustomerServiceError as e:
            result.record_failure(line_number, f"Error processing record: {e}", raw)
            continue

        seen_emails.add(email_key)
        result.success_count += 1
        result.imported_ids.append(customer_id)

    logger.info(
        "Customer import completed. Success: %d, Failures: %d",
        result.success_count, result.failure_count,
    )
    return result
