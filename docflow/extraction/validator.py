"""Validates raw parsed JSON from the extraction provider against domain rules."""

import re
from typing import Any

from docflow.database.models import Counterparty, DocumentCategory
from docflow.extraction.exceptions import ExtractionValidationError
from docflow.extraction.models import ExtractionResult

MONETARY_CATEGORIES = frozenset(
    {
        DocumentCategory.ACCOUNTS_PAYABLE,
        DocumentCategory.ACCOUNTS_RECEIVABLE,
        DocumentCategory.TREASURY,
        DocumentCategory.TAX_COMPLIANCE,
        DocumentCategory.PAYROLL,
    }
)

_MAX_COUNTERPARTIES = 20
_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_AMOUNT_FIELDS = ("subtotal", "tax_amount", "total_amount")


def validate_and_build(data: dict[str, Any]) -> ExtractionResult:
    """Validate raw parsed JSON and build an ExtractionResult.

    Raises:
        ExtractionValidationError: on any validation failure.
    """
    category = _build_category(data.get("category"))
    currency = _build_currency(data.get("currency"))
    amounts = {name: _build_amount(name, data.get(name)) for name in _AMOUNT_FIELDS}
    counterparties = _build_counterparties(data.get("counterparties", []))

    if category in MONETARY_CATEGORIES:
        if currency is None:
            raise ExtractionValidationError(f"'{category.value}' documents require a currency")
        if amounts["total_amount"] is None:
            raise ExtractionValidationError(f"'{category.value}' documents require a total_amount")
    if category is DocumentCategory.CONTRACTS and not counterparties:
        raise ExtractionValidationError("'contracts' documents require at least one counterparty")

    return ExtractionResult(
        category=category,
        document_number=_optional_string("document_number", data.get("document_number")),
        document_date=_build_date(data.get("document_date")),
        currency=currency,
        subtotal=amounts["subtotal"],
        tax_amount=amounts["tax_amount"],
        total_amount=amounts["total_amount"],
        counterparties=counterparties,
    )


def _build_category(raw: Any) -> DocumentCategory:
    if not isinstance(raw, str):
        raise ExtractionValidationError("'category' must be a string")
    try:
        return DocumentCategory(raw.lower())
    except ValueError as exc:
        raise ExtractionValidationError(f"Unknown category: {raw}") from exc


def _build_currency(raw: Any) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str) or not _CURRENCY_RE.match(raw.upper()):
        raise ExtractionValidationError("'currency' must be a 3-letter ISO code or null")
    return raw.upper()


def _build_amount(name: str, raw: Any) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, int | float):
        raise ExtractionValidationError(f"'{name}' must be a number or null")
    return float(raw)


def _build_date(raw: Any) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str) or not _DATE_RE.match(raw):
        raise ExtractionValidationError("'document_date' must be YYYY-MM-DD or null")
    return raw


def _optional_string(name: str, raw: Any) -> str | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ExtractionValidationError(f"'{name}' must be a string or null")
    return raw.strip() or None


def _build_counterparties(raw: Any) -> list[Counterparty]:
    if not isinstance(raw, list):
        raise ExtractionValidationError("'counterparties' must be a list")
    if len(raw) > _MAX_COUNTERPARTIES:
        raise ExtractionValidationError(
            f"Too many counterparties: {len(raw)} (max {_MAX_COUNTERPARTIES})"
        )
    counterparties = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ExtractionValidationError(f"counterparties[{i}] must be an object")
        name = item.get("name")
        if not name or not isinstance(name, str):
            raise ExtractionValidationError(f"counterparties[{i}].name must be a non-empty string")
        role = item.get("role") or ""
        if not isinstance(role, str):
            raise ExtractionValidationError(f"counterparties[{i}].role must be a string")
        tax_id = _optional_string(f"counterparties[{i}].tax_id", item.get("tax_id"))
        counterparties.append(Counterparty(name=name.strip(), role=role, tax_id=tax_id))
    return counterparties
