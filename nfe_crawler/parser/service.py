"""End-to-end invoice parsing pipeline.

Resolves a portal URL or QR payload to an invoice key, serves cached results,
and otherwise runs fetch, structural extraction, AI parsing and validation in
a fixed order, stopping at the first failure. Callers always receive a
ServiceResponse; exceptions never escape.
"""

import logging
import time
from dataclasses import dataclass

from nfe_crawler.ai.service import AIParserService
from nfe_crawler.cache.base import CacheBackend
from nfe_crawler.cache.service import CacheManager
from nfe_crawler.crawler.service import WebCrawlerService, sanitize_url
from nfe_crawler.extraction.structural import StructuralExtractor, strip_items_table
from nfe_crawler.parser.category import detect_category
from nfe_crawler.parser.duplicates import DuplicateChecker
from nfe_crawler.parser.schema import (
    CacheMetadata,
    ErrorResponse,
    ParsedInvoice,
    ServiceResponse,
    SuccessResponse,
)
from nfe_crawler.shared import metrics
from nfe_crawler.shared.config import Settings, get_settings
from nfe_crawler.shared.errors import (
    AIParseError,
    DuplicateInvoiceError,
    InvalidFormatError,
    InvoiceKeyNotFoundError,
    InvoiceParserError,
    InvoiceValidationError,
    to_invoice_parser_error,
)
from nfe_crawler.validation.service import ValidatorService

logger = logging.getLogger(__name__)

EXPECTED_INPUT_FORMAT = "government portal URL or 44-digit invoice key"


@dataclass
class _ResolvedInput:
    invoice_key: str
    url: str
    html: str | None = None


class _Deadline:
    """Overall request budget; remaining() feeds per-call timeouts."""

    def __init__(self, timeout: float | None) -> None:
        self._expires_at = None if timeout is None else time.monotonic() + timeout

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return self._expires_at - time.monotonic()


class InvoiceParserService:
    """Orchestrates cache, crawler, extractor, AI parser and validator."""

    def __init__(
        self,
        settings: Settings,
        crawler: WebCrawlerService,
        extractor: StructuralExtractor,
        ai_parser: AIParserService,
        validator: ValidatorService,
        cache: CacheBackend,
        duplicate_checker: DuplicateChecker | None = None,
    ) -> None:
        """Initialize pipeline with its collaborators.

        Args:
            settings: Application settings
            crawler: Portal fetcher and key extractor
            extractor: Structural item scraper
            ai_parser: AI item and metadata parser
            validator: Business-rule validator
            cache: Parsed-invoice cache
            duplicate_checker: Existing-import lookup (skipped when None)
        """
        self.settings = settings
        self.crawler = crawler
        self.extractor = extractor
        self.ai_parser = ai_parser
        self.validator = validator
        self.cache = cache
        self.duplicate_checker = duplicate_checker

    def parse_from_url(
        self,
        url: str,
        force_refresh: bool = False,
        owner_id: str | None = None,
        timeout: float | None = None,
    ) -> ServiceResponse:
        """Parse an invoice from a government portal URL.

        Args:
            url: Portal URL (a bare 44-digit key is accepted as well)
            force_refresh: Skip the cache lookup and re-parse
            owner_id: Caller identity for the duplicate-import check
            timeout: Overall deadline in seconds for the whole pipeline

        Returns:
            SuccessResponse with cache metadata, or ErrorResponse
        """
        return self._run(url, force_refresh, owner_id, timeout)

    def parse_from_qr_code(
        self,
        qr_data: str,
        force_refresh: bool = False,
        owner_id: str | None = None,
        timeout: float | None = None,
    ) -> ServiceResponse:
        """Parse an invoice from QR code content (portal URL or raw key).

        Args:
            qr_data: Decoded QR payload
            force_refresh: Skip the cache lookup and re-parse
            owner_id: Caller identity for the duplicate-import check
            timeout: Overall deadline in seconds for the whole pipeline

        Returns:
            SuccessResponse with cache metadata, or ErrorResponse
        """
        return self._run(qr_data, force_refresh, owner_id, timeout)

    def validate_invoice_format(self, data: str) -> bool:
        """Check that input is an allow-listed portal URL or contains a key."""
        data = data.strip()
        if data.startswith("http"):
            return self.crawler.is_known_portal(data)
        return self.crawler.extract_key_from_html(data) is not None

    def extract_invoice_key(self, data: str, timeout: float | None = None) -> str:
        """Resolve a URL or QR payload to its 44-digit invoice key.

        Raises:
            InvalidFormatError: Input is neither a known portal URL nor a key
            InvoiceKeyNotFoundError: Portal page carries no key
        """
        return self._resolve(data, timeout).invoice_key

    def close(self) -> None:
        """Release the crawler's pooled connections."""
        self.crawler.close()

    def _resolve(self, data: str, timeout: float | None) -> _ResolvedInput:
        data = data.strip()
        if not self.validate_invoice_format(data):
            if data.startswith("http"):
                raise InvalidFormatError(EXPECTED_INPUT_FORMAT, url=sanitize_url(data))
            raise InvalidFormatError(EXPECTED_INPUT_FORMAT, input_length=len(data))

        if data.startswith("http"):
            invoice_key, html = self.crawler.resolve_invoice_key(data, timeout=timeout)
            return _ResolvedInput(invoice_key=invoice_key, url=data, html=html)

        invoice_key = self.crawler.extract_key_from_html(data)
        if invoice_key is None:
            raise InvoiceKeyNotFoundError("qr_data")
        return _ResolvedInput(
            invoice_key=invoice_key, url=self.crawler.build_url_from_key(invoice_key)
        )

    def _run(
        self,
        data: str,
        force_refresh: bool,
        owner_id: str | None,
        timeout: float | None,
    ) -> ServiceResponse:
        start_time = time.time()
        deadline = _Deadline(timeout)
        step = "key_extraction"
        resolved: _ResolvedInput | None = None

        try:
            resolved = self._resolve(data, deadline.remaining())
            invoice_key = resolved.invoice_key
            logger.info(f"Parsing invoice {invoice_key} (force_refresh={force_refresh})")

            step = "cache_lookup"
            if not force_refresh:
                cached = self.cache.get_with_metadata(invoice_key)
                if cached.from_cache:
                    logger.info(f"Returning cached invoice {invoice_key}")
                    metrics.invoice_parse_requests_total.labels(status="cache_hit").inc()
                    return SuccessResponse(
                        data=cached.data,
                        metadata=CacheMetadata(from_cache=True, cached_at=cached.cached_at),
                    )

            step = "duplicate_check"
            if (
                owner_id
                and self.duplicate_checker is not None
                and self.duplicate_checker.exists(owner_id, invoice_key)
            ):
                raise DuplicateInvoiceError(invoice_key)

            step = "html_fetch"
            html = resolved.html
            if html is None:
                html = self.crawler.fetch_html(resolved.url, timeout=deadline.remaining())

            step = "structural_extraction"
            raw_items = self.extractor.extract_raw_items(html)

            step = "ai_parse"
            items = self.ai_parser.parse_items(raw_items, timeout=deadline.remaining())
            metadata = self.ai_parser.parse_metadata(
                strip_items_table(html), timeout=deadline.remaining()
            )
            response = {**metadata, "items": items}
            if not self.ai_parser.validate_response(response):
                raise AIParseError(
                    "AI response does not match expected schema",
                    raw_item_count=len(raw_items),
                    item_count=len(items),
                )

            step = "validation"
            result, normalized = self.validator.validate_and_normalize(response)
            if not result.is_valid:
                raise InvoiceValidationError(result.errors)

            invoice = ParsedInvoice.from_ai_response(normalized, invoice_key, html)
            invoice = invoice.model_copy(update={"category": detect_category(invoice.merchant)})

            step = "cache_store"
            stored = self.cache.set_and_get_metadata(
                invoice_key, invoice, ttl=self.settings.cache_ttl
            )

            logger.info(
                f"Invoice {invoice_key} parsed: {len(invoice.items)} items, "
                f"total {invoice.totals.total:.2f}, category {invoice.category.value}"
            )
            metrics.invoice_parse_requests_total.labels(status="success").inc()
            return SuccessResponse(
                data=invoice,
                metadata=CacheMetadata(from_cache=False, cached_at=stored.cached_at),
            )

        except InvoiceParserError as e:
            error = e
        except Exception as e:
            logger.exception(f"Unexpected error during {step}")
            error = to_invoice_parser_error(e)

        finally:
            metrics.invoice_parse_duration_seconds.observe(time.time() - start_time)

        error.details.setdefault("step", step)
        if resolved is not None:
            error.details.setdefault("invoice_key", resolved.invoice_key)
            error.details.setdefault("url", sanitize_url(resolved.url))

        logger.error(f"Invoice parse failed at {step}: [{error.code.value}] {error.message}")
        metrics.invoice_parse_requests_total.labels(status=error.code.value).inc()
        return ErrorResponse.from_error(error)


def create_invoice_parser_service(settings: Settings | None = None) -> InvoiceParserService:
    """Wire the pipeline with default collaborators.

    Args:
        settings: Application settings (loaded from environment when None)

    Returns:
        Ready-to-use InvoiceParserService without a duplicate checker
    """
    settings = settings or get_settings()
    return InvoiceParserService(
        settings=settings,
        crawler=WebCrawlerService(settings),
        extractor=StructuralExtractor(),
        ai_parser=AIParserService(settings),
        validator=ValidatorService(),
        cache=CacheManager.from_settings(settings),
    )

