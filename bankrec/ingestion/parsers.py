"""
Statement content parsers.

Converts raw CSV or JSON statement content into the dictionary shape accepted by
StatementImportPipeline. Values that cannot be normalized are passed through
unchanged so that row validation reports them as per-row errors.
"""

import csv
import io
import json
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Union

import structlog

from ..errors import InvalidFileFormatError
from ..models.schemas import StatementImportOptions

logger = structlog.get_logger()

SUPPORTED_FORMATS = ("csv", "json")

# Source header -> transaction field, used when no column mapping is given
DEFAULT_COLUMN_ALIASES: Dict[str, str] = {
    "date": "date",
    "transaction date": "date",
    "posting date": "date",
    "value date": "value_date",
    "description": "description",
    "details": "description",
    "memo": "description",
    "narrative": "description",
    "reference": "reference",
    "ref": "reference",
    "amount": "amount",
    "debit": "debit",
    "withdrawal": "debit",
    "credit": "credit",
    "deposit": "credit",
    "type": "type",
    "category": "category",
    "check number": "check_number",
    "cheque number": "check_number",
    "counterparty": "counterparty",
    "payee": "counterparty",
}

DATE_FIELDS = ("date", "value_date")


@dataclass
class ParsedStatement:
    """Statement fields and raw transaction rows extracted from content."""
    statement: Dict[str, Any]
    transactions: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def as_statement_data(self) -> Dict[str, Any]:
        data = dict(self.statement)
        data["transactions"] = self.transactions
        return data


class StatementContentParser:
    """
    Parser for statement files delivered as CSV or JSON.

    CSV content carries only transaction rows; statement-level fields
    (number, date, balances) come from the caller. JSON content may be either
    a full statement object with a "transactions" array or a bare row array.
    """

    AMOUNT_CLEANUP = re.compile(r"[^\d,.\-]")

    def __init__(self, options: Optional[StatementImportOptions] = None):
        self.options = options or StatementImportOptions()

    def parse(
        self,
        content: Union[str, bytes],
        statement_fields: Optional[Dict[str, Any]] = None,
    ) -> ParsedStatement:
        file_format = self.options.file_format
        if file_format not in SUPPORTED_FORMATS:
            raise InvalidFileFormatError(
                f"Unsupported statement file format: {file_format}",
                details={"supported": list(SUPPORTED_FORMATS)},
            )

        if isinstance(content, bytes):
            try:
                content = content.decode(self.options.encoding)
            except (UnicodeDecodeError, LookupError) as e:
                raise InvalidFileFormatError(f"Cannot decode statement content: {e}")

        if file_format == "csv":
            parsed = self._parse_csv(content)
        else:
            parsed = self._parse_json(content)

        if statement_fields:
            parsed.statement.update(statement_fields)

        logger.info(
            "Statement content parsed",
            file_format=file_format,
            rows=len(parsed.transactions),
            warnings=len(parsed.warnings),
        )
        return parsed

    # ---- CSV ----

    def _parse_csv(self, content: str) -> ParsedStatement:
        lines = content.splitlines()
        header_row = self.options.header_row or 0
        if header_row >= len(lines):
            raise InvalidFileFormatError("CSV content has no header row")

        body = "\n".join(lines[header_row:])
        delimiter = self.options.delimiter or self._sniff_delimiter(body)
        reader = csv.DictReader(io.StringIO(body), delimiter=delimiter)
        if not reader.fieldnames:
            raise InvalidFileFormatError("CSV content has no header row")

        mapping = self._build_mapping(reader.fieldnames)
        warnings = []
        unmapped = [name for name in reader.fieldnames if name not in mapping]
        if unmapped:
            warnings.append(f"Ignored columns: {', '.join(unmapped)}")

        rows = []
        for record in reader:
            if not any((value or "").strip() for value in record.values() if isinstance(value, str)):
                continue
            rows.append(self._normalize_row(record, mapping))

        return ParsedStatement(statement={}, transactions=rows, warnings=warnings)

    @staticmethod
    def _sniff_delimiter(body: str) -> str:
        sample = body[:2048]
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            return ","

    def _build_mapping(self, fieldnames: List[str]) -> Dict[str, str]:
        if self.options.column_mapping:
            return {
                source: target
                for source, target in self.options.column_mapping.items()
                if source in fieldnames
            }
        mapping = {}
        for name in fieldnames:
            target = DEFAULT_COLUMN_ALIASES.get((name or "").strip().lower())
            if target:
                mapping[name] = target
        return mapping

    # ---- JSON ----

    def _parse_json(self, content: str) -> ParsedStatement:
        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            raise InvalidFileFormatError(f"Invalid JSON statement content: {e.msg}")

        if isinstance(payload, list):
            statement, raw_rows = {}, payload
        elif isinstance(payload, dict):
            statement = {k: v for k, v in payload.items() if k != "transactions"}
            raw_rows = payload.get("transactions") or []
        else:
            raise InvalidFileFormatError("JSON statement must be an object or an array")

        if not isinstance(raw_rows, list):
            raise InvalidFileFormatError("JSON statement transactions must be an array")

        mapping = self.options.column_mapping or {}
        rows = []
        for raw in raw_rows:
            if not isinstance(raw, dict):
                # Left for row validation to reject
                rows.append({"raw": raw})
                continue
            if mapping:
                raw = {mapping.get(key, key): value for key, value in raw.items()}
            rows.append(self._normalize_row(raw, {key: key for key in raw}))

        return ParsedStatement(statement=statement, transactions=rows)

    # ---- Value normalization ----

    def _normalize_row(self, record: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        for source, target in mapping.items():
            value = record.get(source)
            if isinstance(value, str):
                value = value.strip()
                if value == "":
                    continue
            row[target] = value

        debit = row.pop("debit", None)
        credit = row.pop("credit", None)
        if "amount" not in row and (debit is not None or credit is not None):
            debit_value = self._parse_amount(debit) if debit is not None else Decimal("0")
            credit_value = self._parse_amount(credit) if credit is not None else Decimal("0")
            if isinstance(debit_value, Decimal) and isinstance(credit_value, Decimal):
                row["amount"] = credit_value - abs(debit_value)
            else:
                row["amount"] = debit if not isinstance(debit_value, Decimal) else credit

        if "amount" in row:
            row["amount"] = self._parse_amount(row["amount"])

        for name in DATE_FIELDS:
            if name in row:
                row[name] = self._parse_date(row[name])
        return row

    def _parse_amount(self, value: Any) -> Any:
        if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
            return Decimal(str(value))
        if not isinstance(value, str):
            return value

        text = value.strip()
        negative = text.startswith("(") and text.endswith(")")
        text = self.AMOUNT_CLEANUP.sub("", text)
        if self.options.amount_format == "comma_decimal":
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return value
        return -abs(amount) if negative else amount

    def _parse_date(self, value: Any) -> Any:
        if not isinstance(value, str) or not self.options.date_format:
            return value
        try:
            return datetime.strptime(value, self.options.date_format).date()
        except ValueError:
            return value


def parse_statement_content(
    content: Union[str, bytes],
    options: Optional[StatementImportOptions] = None,
    statement_fields: Optional[Dict[str, Any]] = None,
) -> ParsedStatement:
    """Parse CSV or JSON statement content. Other formats raise InvalidFileFormatError."""
    return StatementContentParser(options).parse(content, statement_fields)
