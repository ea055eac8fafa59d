"""Parsed invoice models and the orchestrator response envelope.

Based on Pydantic v2 models:
https://docs.pydantic.dev/latest/concepts/models/
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from nfe_crawler.shared.errors import ErrorCode, InvoiceParserError


class InvoiceCategory(str, Enum):
    """Merchant category inferred from merchant names."""

    PHARMACY = "pharmacy"
    GROCERIES = "groceries"
    SUPERMARKET = "supermarket"
    RESTAURANT = "restaurant"
    FUEL = "fuel"
    RETAIL = "retail"
    SERVICES = "services"
    OTHER = "other"


class MerchantInfo(BaseModel):
    """Issuing merchant as read from the invoice header."""

    model_config = ConfigDict(frozen=True)

    tax_id: str = Field(..., description="CNPJ, 14 digits")
    legal_name: str = Field(..., description="Razao social")
    trade_name: str | None = Field(None, description="Nome fantasia")
    address: str = ""
    city: str = ""
    state_code: str | None = Field(None, description="Two-letter state code")


class InvoiceItem(BaseModel):
    """One invoice line."""

    model_config = ConfigDict(frozen=True)

    description: str
    product_code: str | None = None
    quantity: float = Field(1, ge=0)
    unit_price: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0)


class InvoiceTotals(BaseModel):
    """Declared totals; total == subtotal - discount + tax within 0.01."""

    model_config = ConfigDict(frozen=True)

    subtotal: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    tax: float = Field(0, ge=0)
    total: float = Field(..., ge=0)


class InvoiceMetadata(BaseModel):
    """How and when the invoice was parsed."""

    model_config = ConfigDict(frozen=True)

    parsed_at: datetime
    parsing_method: str = "ai"


class ParsedInvoice(BaseModel):
    """Validated invoice, immutable once built."""

    model_config = ConfigDict(frozen=True)

    invoice_key: str = Field(..., pattern=r"^\d{44}$")
    invoice_number: str
    series: str
    issue_date: str = Field(..., description="ISO 8601 date or date-time")
    merchant: MerchantInfo
    items: tuple[InvoiceItem, ...]
    totals: InvoiceTotals
    html: str = Field(..., repr=False, description="Original portal HTML kept for audit")
    category: InvoiceCategory = InvoiceCategory.OTHER
    metadata: InvoiceMetadata

    @classmethod
    def from_ai_response(
        cls,
        data: dict[str, Any],
        invoice_key: str,
        html: str,
        category: InvoiceCategory = InvoiceCategory.OTHER,
        parsed_at: datetime | None = None,
    ) -> "ParsedInvoice":
        """Build from a validated, normalized AI response dict."""
        merchant = data["merchant"]
        invoice = data["invoice"]
        totals = data["totals"]

        return cls(
            invoice_key=invoice_key,
            invoice_number=invoice["number"],
            series=invoice["series"],
            issue_date=invoice["issueDate"],
            merchant=MerchantInfo(
                tax_id=merchant["cnpj"],
                legal_name=merchant["name"],
                trade_name=merchant.get("tradeName") or None,
                address=merchant.get("address") or "",
                city=merchant.get("city") or "",
                state_code=merchant.get("state") or None,
            ),
            items=tuple(
                InvoiceItem(
                    description=item["description"],
                    product_code=item.get("productCode") or None,
                    quantity=item.get("quantity", 1),
                    unit_price=item["unitPrice"],
                    total_price=item["totalPrice"],
                    discount_amount=item.get("discountAmount") or 0,
                )
                for item in data["items"]
            ),
            totals=InvoiceTotals(
                subtotal=totals["subtotal"],
                discount=totals.get("discount") or 0,
                tax=totals.get("tax") or 0,
                total=totals["total"],
            ),
            html=html,
            category=category,
            metadata=InvoiceMetadata(parsed_at=parsed_at or datetime.now(UTC)),
        )


class CacheMetadata(BaseModel):
    """Whether the result came from cache, and when it was cached."""

    from_cache: bool
    cached_at: datetime | None = None


class SuccessResponse(BaseModel):
    """Successful pipeline run."""

    success: Literal[True] = True
    data: ParsedInvoice
    metadata: CacheMetadata


class ErrorResponse(BaseModel):
    """Failed pipeline run with a machine-readable code."""

    success: Literal[False] = False
    error: str
    code: ErrorCode
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error: InvoiceParserError) -> "ErrorResponse":
        return cls(error=error.message, code=error.code, details=error.details)


ServiceResponse = SuccessResponse | ErrorResponse
