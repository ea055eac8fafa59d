"""Business-rule validation and normalization of AI-parsed invoices.

Every rule is checked and every violation collected, so one pass reports all
problems. Totals that do not reconcile are reported, never corrected.
"""

import logging
import re
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

TOTALS_TOLERANCE = 0.01
TAX_ID_LENGTH = 14
MERCHANT_NAME_MIN_LENGTH = 3

STATE_CODE_PATTERN = re.compile(r"^[A-Z]{2}$")
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}(T\d{2}:\d{2}:\d{2})?$")
ISO_DATETIME_PREFIX_PATTERN = re.compile(r"^(\d{4}-\d{2}-\d{2})[T ](\d{2}:\d{2}:\d{2})")
BR_DATE_PATTERN = re.compile(r"^(\d{2})/(\d{2})/(\d{4})(?:\s+(\d{2}):(\d{2})(?::(\d{2}))?)?$")
YMD_SLASH_DATE_PATTERN = re.compile(r"^(\d{4})/(\d{2})/(\d{2})$")
NON_DIGIT_PATTERN = re.compile(r"\D")

ITEM_NUMERIC_FIELDS = {
    "quantity": "quantity",
    "unitPrice": "unit price",
    "totalPrice": "total price",
}
TOTALS_FIELDS = {
    "subtotal": "Subtotal",
    "discount": "Discount",
    "tax": "Tax",
    "total": "Total",
}


class ValidationResult(BaseModel):
    """Outcome of a validation pass."""

    is_valid: bool
    errors: list[str] = Field(default_factory=list)


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


class ValidatorService:
    """Validates and normalizes invoice data in the AI response shape."""

    def validate(self, data: dict[str, Any]) -> ValidationResult:
        """Check every business rule.

        Args:
            data: Invoice dict with merchant, invoice, items and totals sections

        Returns:
            ValidationResult listing every violated rule
        """
        errors: list[str] = []

        merchant = data.get("merchant") or {}
        invoice = data.get("invoice") or {}
        items = data.get("items") or []
        totals = data.get("totals") or {}

        self._validate_merchant(merchant, errors)
        self._validate_invoice(invoice, errors)
        self._validate_items(items, errors)
        self._validate_totals(totals, errors)

        if items and not self.verify_totals(items, totals):
            errors.append("Total amount does not match sum of item prices")

        if errors:
            logger.warning(
                f"Invoice {invoice.get('number') or 'unknown'} failed validation: "
                f"{len(errors)} error(s)"
            )
        else:
            logger.info(f"Invoice {invoice.get('number')} passed validation")

        return ValidationResult(is_valid=not errors, errors=errors)

    def validate_and_normalize(
        self, data: dict[str, Any]
    ) -> tuple[ValidationResult, dict[str, Any]]:
        """Normalize representations, then validate the normalized copy.

        CNPJ is reduced to digits, state codes upper-cased, dates converted to
        ISO 8601 and currency strings to numbers. The input is not mutated.

        Item price strings and a missing quantity (defaulted to 1) only occur
        for direct callers: the AI pipeline rejects them earlier, in
        AIParserService.validate_response.

        Returns:
            Tuple of (validation result, normalized data)
        """
        normalized = self._normalize(data)
        return self.validate(normalized), normalized

    def normalize_currency(self, value: str | int | float) -> float:
        """Convert a currency value to a float.

        Accepts Brazilian ("R$ 1.234,56") and plain ("1234.56") formats; numbers
        are returned unchanged, so the conversion is idempotent. Unparseable
        input yields 0.0.
        """
        if _is_number(value):
            return float(value)

        cleaned = re.sub(r"\s", "", str(value).replace("R$", ""))
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")

        try:
            return float(cleaned)
        except ValueError:
            return 0.0

    def validate_tax_id(self, tax_id: str) -> bool:
        """Check that a CNPJ has exactly 14 digits once formatting is removed."""
        if not tax_id:
            return False
        return len(self.normalize_tax_id(tax_id)) == TAX_ID_LENGTH

    def normalize_tax_id(self, tax_id: str) -> str:
        """Strip every non-digit ("12.345.678/0001-90" -> "12345678000190")."""
        return NON_DIGIT_PATTERN.sub("", tax_id)

    def validate_date(self, value: str) -> bool:
        """Check for YYYY-MM-DD or YYYY-MM-DDTHH:mm:ss naming a real date."""
        if not value or not ISO_DATE_PATTERN.match(value):
            return False
        try:
            if "T" in value:
                datetime.strptime(value, "%Y-%m-%dT%H:%M:%S")
            else:
                date.fromisoformat(value)
        except ValueError:
            return False
        return True

    def normalize_date(self, value: str) -> str:
        """Convert common portal date formats to ISO 8601.

        Handles DD/MM/YYYY with optional HH:MM[:SS], YYYY/MM/DD, and ISO
        date-times carrying fractions or a UTC offset. Anything else is
        returned unchanged.
        """
        if not value:
            return ""

        value = value.strip()
        if ISO_DATE_PATTERN.match(value):
            return value

        match = ISO_DATETIME_PREFIX_PATTERN.match(value)
        if match:
            return f"{match.group(1)}T{match.group(2)}"

        match = BR_DATE_PATTERN.match(value)
        if match:
            day, month, year, hour, minute, second = match.groups()
            if hour is None:
                return f"{year}-{month}-{day}"
            return f"{year}-{month}-{day}T{hour}:{minute}:{second or '00'}"

        match = YMD_SLASH_DATE_PATTERN.match(value)
        if match:
            year, month, day = match.groups()
            return f"{year}-{month}-{day}"

        return value

    def verify_totals(self, items: list[dict[str, Any]], totals: dict[str, Any]) -> bool:
        """Reconcile declared totals with the items.

        subtotal must equal the sum of item totals, and total must equal
        subtotal - discount + tax, both within 0.01.
        """
        prices = [item.get("totalPrice") for item in items]
        if not all(_is_number(price) for price in prices):
            return False

        subtotal = totals.get("subtotal")
        total = totals.get("total")
        discount = totals.get("discount") or 0
        tax = totals.get("tax") or 0
        if not all(_is_number(value) for value in (subtotal, total, discount, tax)):
            return False

        items_sum = sum(prices)
        subtotal_matches = abs(items_sum - subtotal) <= TOTALS_TOLERANCE
        total_matches = abs(subtotal - discount + tax - total) <= TOTALS_TOLERANCE
        return subtotal_matches and total_matches

    def _validate_merchant(self, merchant: dict[str, Any], errors: list[str]) -> None:
        tax_id = merchant.get("cnpj")
        if not tax_id:
            errors.append("Merchant CNPJ is required")
        elif not isinstance(tax_id, str) or not self.validate_tax_id(tax_id):
            errors.append("Merchant CNPJ is invalid (must be 14 digits)")

        name = merchant.get("name")
        if not name:
            errors.append("Merchant name is required")
        elif len(str(name).strip()) < MERCHANT_NAME_MIN_LENGTH:
            errors.append(f"Merchant name must be at least {MERCHANT_NAME_MIN_LENGTH} characters")

        state = merchant.get("state")
        if state and not (isinstance(state, str) and STATE_CODE_PATTERN.match(state)):
            errors.append("Merchant state must be 2 uppercase letters (e.g., SP, RJ)")

    def _validate_invoice(self, invoice: dict[str, Any], errors: list[str]) -> None:
        if not invoice.get("number"):
            errors.append("Invoice number is required")
        if not invoice.get("series"):
            errors.append("Invoice series is required")

        issue_date = invoice.get("issueDate")
        if not issue_date:
            errors.append("Invoice issue date is required")
        elif not isinstance(issue_date, str) or not self.validate_date(issue_date):
            errors.append(
                "Invoice issue date must be in ISO 8601 format "
                "(YYYY-MM-DD or YYYY-MM-DDTHH:mm:ss)"
            )

    def _validate_items(self, items: list[dict[str, Any]], errors: list[str]) -> None:
        if not items:
            errors.append("Invoice must have at least 1 item(s)")
            return

        for position, item in enumerate(items, start=1):
            prefix = f"Item {position}"
            description = item.get("description")
            if not isinstance(description, str) or not description.strip():
                errors.append(f"{prefix}: description is required")

            for field, label in ITEM_NUMERIC_FIELDS.items():
                value = item.get(field)
                if value is None:
                    errors.append(f"{prefix}: {label} is required")
                elif not _is_number(value):
                    errors.append(f"{prefix}: {label} must be a number")
                elif value < 0:
                    errors.append(f"{prefix}: {label} must be at least 0")

            discount = item.get("discountAmount")
            if discount is not None and not _is_number(discount):
                errors.append(f"{prefix}: discount amount must be a number")
            elif discount is not None and discount < 0:
                errors.append(f"{prefix}: discount amount must be at least 0")

    def _validate_totals(self, totals: dict[str, Any], errors: list[str]) -> None:
        if totals.get("total") is None:
            errors.append("Total amount is required")

        for field, label in TOTALS_FIELDS.items():
            value = totals.get(field)
            if value is None:
                continue
            if not _is_number(value):
                errors.append(f"{label} must be a number")
            elif value < 0:
                errors.append(f"{label} must be at least 0")

    def _normalize(self, data: dict[str, Any]) -> dict[str, Any]:
        merchant = dict(data.get("merchant") or {})
        if isinstance(merchant.get("cnpj"), str):
            merchant["cnpj"] = self.normalize_tax_id(merchant["cnpj"])
        if isinstance(merchant.get("state"), str):
            merchant["state"] = merchant["state"].strip().upper()
        if not merchant.get("tradeName"):
            merchant["tradeName"] = None

        invoice = dict(data.get("invoice") or {})
        for field in ("number", "series"):
            if _is_number(invoice.get(field)):
                invoice[field] = str(invoice[field])
        if isinstance(invoice.get("issueDate"), str):
            invoice["issueDate"] = self.normalize_date(invoice["issueDate"])

        items = []
        for raw_item in data.get("items") or []:
            item = dict(raw_item)
            for field in ("quantity", "unitPrice", "totalPrice", "discountAmount"):
                if isinstance(item.get(field), str):
                    item[field] = self.normalize_currency(item[field])
            if item.get("quantity") is None:
                item["quantity"] = 1
            if item.get("discountAmount") is None:
                item["discountAmount"] = 0
            if _is_number(item.get("productCode")):
                item["productCode"] = str(item["productCode"])
            if isinstance(item.get("description"), str):
                item["description"] = item["description"].strip()
            items.append(item)

        totals = dict(data.get("totals") or {})
        for field in ("subtotal", "discount", "tax", "total"):
            if isinstance(totals.get(field), str):
                totals[field] = self.normalize_currency(totals[field])
            elif totals.get(field) is None and field in ("discount", "tax"):
                totals[field] = 0

        return {**data, "merchant": merchant, "invoice": invoice, "items": items, "totals": totals}
