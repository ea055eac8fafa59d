"""Error taxonomy for the invoice extraction pipeline.

Every failure that crosses a component boundary is one of these types, so the
orchestrator can always report a machine-readable code alongside the message.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error kinds returned to callers."""

    INVOICE_KEY_NOT_FOUND = "INVOICE_KEY_NOT_FOUND"
    HTML_FETCH_ERROR = "HTML_FETCH_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"
    AI_PARSE_ERROR = "AI_PARSE_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_INVOICE = "DUPLICATE_INVOICE"
    INVALID_FORMAT = "INVALID_FORMAT"
    PARSE_ERROR = "PARSE_ERROR"


class InvoiceParserError(Exception):
    """Base error for invoice parsing operations.

    Attributes:
        message: Human-readable description
        code: Error kind
        details: Small, log-safe context bag (never raw HTML or AI output)
    """

    code: ErrorCode = ErrorCode.PARSE_ERROR

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: dict[str, Any] = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {"error": self.message, "code": self.code.value, "details": self.details}


class InvoiceKeyNotFoundError(InvoiceParserError):
    """No 44-digit invoice key could be derived from the input."""

    code = ErrorCode.INVOICE_KEY_NOT_FOUND

    def __init__(self, source: str, **details: Any) -> None:
        super().__init__(
            "Could not extract invoice key",
            details={"source": source, "step": "key_extraction", **details},
        )


class HTMLFetchError(InvoiceParserError):
    """Portal answered with a non-2xx status or an oversized body."""

    code = ErrorCode.HTML_FETCH_ERROR

    def __init__(self, url: str, reason: str, **details: Any) -> None:
        super().__init__(
            f"Failed to fetch HTML from URL: {reason}",
            details={"url": url, "step": "html_fetch", "reason": reason, **details},
        )


class NetworkError(InvoiceParserError):
    """Transport-level failure talking to the portal."""

    code = ErrorCode.NETWORK_ERROR

    def __init__(self, url: str, reason: str, **details: Any) -> None:
        super().__init__(
            f"Network error: {reason}",
            details={"url": url, "step": "html_fetch", "reason": reason, **details},
        )


class RequestTimeoutError(NetworkError):
    """Portal request exceeded its timeout budget."""

    code = ErrorCode.TIMEOUT_ERROR

    def __init__(self, url: str, timeout: float, **details: Any) -> None:
        super().__init__(url, f"Request timeout after {timeout:g}s", timeout=timeout, **details)


class AIParseError(InvoiceParserError):
    """Provider call failed, or its output was not shape-correct JSON."""

    code = ErrorCode.AI_PARSE_ERROR

    def __init__(self, reason: str, **details: Any) -> None:
        super().__init__(
            f"AI parsing failed: {reason}",
            details={"step": "ai_parse", "reason": reason, **details},
        )


class InvoiceValidationError(InvoiceParserError):
    """Parsed invoice broke one or more business rules."""

    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, validation_errors: list[str], **details: Any) -> None:
        super().__init__(
            f"Validation failed: {', '.join(validation_errors)}",
            details={"step": "validation", "validation_errors": validation_errors, **details},
        )
        self.validation_errors = validation_errors


class DuplicateInvoiceError(InvoiceParserError):
    """Invoice key was already imported by the same owner."""

    code = ErrorCode.DUPLICATE_INVOICE

    def __init__(self, invoice_key: str, **details: Any) -> None:
        super().__init__(
            "Invoice already imported",
            details={"invoice_key": invoice_key, "step": "duplicate_check", **details},
        )


class InvalidFormatError(InvoiceParserError):
    """Input is neither a portal URL, a QR payload nor an invoice key."""

    code = ErrorCode.INVALID_FORMAT

    def __init__(self, expected_format: str, **details: Any) -> None:
        super().__init__(
            f"Invalid format: expected {expected_format}",
            details={"expected_format": expected_format, **details},
        )


def to_invoice_parser_error(
    error: BaseException, default_code: ErrorCode = ErrorCode.PARSE_ERROR
) -> InvoiceParserError:
    """Convert any exception into an InvoiceParserError.

    Recognized pipeline errors are returned unchanged; anything else keeps only
    its message and type name.
    """
    if isinstance(error, InvoiceParserError):
        return error
    return InvoiceParserError(
        str(error) or error.__class__.__name__,
        default_code,
        {"original_error": error.__class__.__name__},
    )
