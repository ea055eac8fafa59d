"""Unit tests for the invoice parsing pipeline.

Runs the real crawler, extractor, validator and cache against a mocked portal
(httpx.MockTransport) and a scripted AI provider.
"""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from nfe_crawler.ai.base import AIProvider, GenerationResult, PromptParts
from nfe_crawler.ai.prompts import ITEMS_BATCH_INSTRUCTIONS
from nfe_crawler.ai.service import AIParserService
from nfe_crawler.cache.service import CacheManager
from nfe_crawler.crawler.service import WebCrawlerService
from nfe_crawler.extraction.structural import StructuralExtractor
from nfe_crawler.parser.duplicates import InMemoryDuplicateChecker
from nfe_crawler.parser.schema import ErrorResponse, InvoiceCategory, SuccessResponse
from nfe_crawler.parser.service import InvoiceParserService, create_invoice_parser_service
from nfe_crawler.shared.config import Settings
from nfe_crawler.shared.errors import ErrorCode
from nfe_crawler.validation.service import ValidatorService

ENCRYPTED_URL = "https://sat.sef.sc.gov.br/nfce/consulta?p=ENCRYPTED|2|1|1|ABCDEF"


class ScriptedProvider(AIProvider):
    """Answers item prompts and metadata prompts with fixed JSON."""

    def __init__(self, settings: Settings, items: list[dict], metadata: dict) -> None:
        super().__init__(settings)
        self.items_text = json.dumps(items)
        self.metadata_text = json.dumps(metadata)
        self.prompts: list[PromptParts] = []

    def generate(self, prompt: PromptParts, timeout: float | None = None) -> GenerationResult:
        self.prompts.append(prompt)
        if prompt.static == ITEMS_BATCH_INSTRUCTIONS:
            return GenerationResult(text=self.items_text)
        return GenerationResult(text=self.metadata_text)

    def is_available(self) -> bool:
        return True

    @property
    def provider_name(self) -> str:
        return "scripted"


class FakePortal:
    """MockTransport handler serving one page and recording requests."""

    def __init__(self, html: str, status_code: int = 200) -> None:
        self.html = html
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, text=self.html)


@pytest.fixture
def settings() -> Settings:
    """Create pipeline settings."""
    return Settings(crawler_retry_attempts=0, ai_max_retries=0)


@pytest.fixture
def portal(sample_invoice_html: str) -> FakePortal:
    """Portal serving the sample page."""
    return FakePortal(sample_invoice_html)


@pytest.fixture
def provider(
    settings: Settings, sample_ai_items: list[dict], sample_ai_metadata: dict
) -> ScriptedProvider:
    """Provider answering with the sample page's data."""
    return ScriptedProvider(settings, sample_ai_items, sample_ai_metadata)


@pytest.fixture
def duplicate_checker() -> InMemoryDuplicateChecker:
    """Create empty duplicate checker."""
    return InMemoryDuplicateChecker()


@pytest.fixture
def service(
    settings: Settings,
    portal: FakePortal,
    provider: ScriptedProvider,
    duplicate_checker: InMemoryDuplicateChecker,
) -> InvoiceParserService:
    """Create pipeline wired to the fake portal and provider."""
    client = httpx.Client(transport=httpx.MockTransport(portal))
    return InvoiceParserService(
        settings=settings,
        crawler=WebCrawlerService(settings, client=client, sleep=lambda seconds: None),
        extractor=StructuralExtractor(),
        ai_parser=AIParserService(settings, provider=provider, sleep=lambda seconds: None),
        validator=ValidatorService(),
        cache=CacheManager(max_size=10, default_ttl=60),
        duplicate_checker=duplicate_checker,
    )


@pytest.fixture
def key_url(invoice_key: str) -> str:
    """Portal URL carrying the key in its query string."""
    return f"https://sat.sef.sc.gov.br/nfce/consulta?p={invoice_key}|2|1|1|HASH"


class TestSuccessfulParse:
    """Test the happy path and caching."""

    def test_parses_invoice(
        self, service: InvoiceParserService, key_url: str, invoice_key: str
    ) -> None:
        response = service.parse_from_url(key_url)

        assert isinstance(response, SuccessResponse)
        invoice = response.data
        assert invoice.invoice_key == invoice_key
        assert invoice.merchant.tax_id == "12345678000190"
        assert invoice.issue_date == "2024-01-15T14:30:00"
        assert [item.description for item in invoice.items] == [
            "ARROZ TIPO 1 5KG",
            "REFRIGERANTE COLA 2L",
        ]
        assert invoice.totals.total == 40.90
        assert invoice.category == InvoiceCategory.SUPERMARKET
        assert "tabResult" in invoice.html
        assert response.metadata.from_cache is False
        assert response.metadata.cached_at is not None

    def test_second_call_served_from_cache(
        self,
        service: InvoiceParserService,
        portal: FakePortal,
        provider: ScriptedProvider,
        key_url: str,
    ) -> None:
        first = service.parse_from_url(key_url)
        second = service.parse_from_url(key_url)

        assert isinstance(second, SuccessResponse)
        assert second.metadata.from_cache is True
        assert second.metadata.cached_at == first.metadata.cached_at
        assert second.data == first.data
        assert len(portal.requests) == 1
        assert len(provider.prompts) == 2

    def test_force_refresh_reparses(
        self, service: InvoiceParserService, portal: FakePortal, key_url: str
    ) -> None:
        service.parse_from_url(key_url)
        response = service.parse_from_url(key_url, force_refresh=True)

        assert isinstance(response, SuccessResponse)
        assert response.metadata.from_cache is False
        assert len(portal.requests) == 2

    def test_metadata_prompt_excludes_items(
        self, service: InvoiceParserService, provider: ScriptedProvider, key_url: str
    ) -> None:
        service.parse_from_url(key_url)

        items_prompt, metadata_prompt = provider.prompts
        assert "ARROZ TIPO 1 5KG" in items_prompt.variable
        assert "ARROZ TIPO 1 5KG" not in metadata_prompt.variable
        assert "SUPERMERCADO BOM PRECO LTDA" in metadata_prompt.variable

    def test_encrypted_url_fetched_once(
        self, service: InvoiceParserService, portal: FakePortal, invoice_key: str
    ) -> None:
        """HTML fetched to find the key is reused for extraction."""
        response = service.parse_from_url(ENCRYPTED_URL)

        assert isinstance(response, SuccessResponse)
        assert response.data.invoice_key == invoice_key
        assert len(portal.requests) == 1

    def test_bare_key_from_qr_code(
        self, service: InvoiceParserService, portal: FakePortal, invoice_key: str
    ) -> None:
        response = service.parse_from_qr_code(f"  {invoice_key}\n")

        assert isinstance(response, SuccessResponse)
        assert str(portal.requests[0].url).startswith(
            "https://sat.sef.sc.gov.br/nfce/consulta?p="
        )


class TestFailures:
    """Test error envelopes for each failing step."""

    def test_unknown_host(self, service: InvoiceParserService, portal: FakePortal) -> None:
        response = service.parse_from_url("https://evil.example.com/nfce?p=1")

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.INVALID_FORMAT
        assert response.details["url"] == "https://evil.example.com/nfce"
        assert portal.requests == []

    def test_garbage_qr_code(self, service: InvoiceParserService) -> None:
        response = service.parse_from_qr_code("hello world")

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.INVALID_FORMAT
        assert response.details["step"] == "key_extraction"

    def test_key_not_found(self, service: InvoiceParserService, portal: FakePortal) -> None:
        portal.html = "<html>Consulta indisponivel</html>"

        response = service.parse_from_url(ENCRYPTED_URL)

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.INVOICE_KEY_NOT_FOUND

    def test_duplicate_invoice(
        self,
        service: InvoiceParserService,
        portal: FakePortal,
        duplicate_checker: InMemoryDuplicateChecker,
        key_url: str,
        invoice_key: str,
    ) -> None:
        duplicate_checker.record("user-1", invoice_key)

        response = service.parse_from_url(key_url, owner_id="user-1")

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.DUPLICATE_INVOICE
        assert response.details["invoice_key"] == invoice_key
        assert portal.requests == []

    def test_duplicate_check_skipped_without_owner(
        self,
        service: InvoiceParserService,
        duplicate_checker: InMemoryDuplicateChecker,
        key_url: str,
        invoice_key: str,
    ) -> None:
        duplicate_checker.record("user-1", invoice_key)

        assert isinstance(service.parse_from_url(key_url), SuccessResponse)

    def test_portal_error(
        self, service: InvoiceParserService, portal: FakePortal, key_url: str, invoice_key: str
    ) -> None:
        portal.status_code = 500

        response = service.parse_from_url(key_url)

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.HTML_FETCH_ERROR
        assert response.details["step"] == "html_fetch"
        assert response.details["invoice_key"] == invoice_key
        assert response.details["url"] == "https://sat.sef.sc.gov.br/nfce/consulta"

    def test_validation_error_is_not_cached(
        self,
        service: InvoiceParserService,
        provider: ScriptedProvider,
        sample_ai_metadata: dict,
        key_url: str,
        invoice_key: str,
    ) -> None:
        provider.metadata_text = json.dumps(
            {**sample_ai_metadata, "totals": {**sample_ai_metadata["totals"], "total": 99.0}}
        )

        response = service.parse_from_url(key_url)

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.VALIDATION_ERROR
        assert response.details["validation_errors"] == [
            "Total amount does not match sum of item prices"
        ]
        assert service.cache.has(invoice_key) is False

    def test_unparseable_ai_output(
        self, service: InvoiceParserService, provider: ScriptedProvider, key_url: str
    ) -> None:
        provider.metadata_text = "Sorry, I cannot help with that."

        response = service.parse_from_url(key_url)

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.AI_PARSE_ERROR
        assert response.details["step"] == "ai_parse"

    def test_ai_response_with_wrong_shape(
        self, service: InvoiceParserService, provider: ScriptedProvider, key_url: str
    ) -> None:
        provider.items_text = "[]"

        response = service.parse_from_url(key_url)

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.AI_PARSE_ERROR

    def test_unexpected_error_becomes_parse_error(
        self, service: InvoiceParserService, key_url: str
    ) -> None:
        service.extractor = MagicMock()
        service.extractor.extract_raw_items.side_effect = RuntimeError("boom")

        response = service.parse_from_url(key_url)

        assert isinstance(response, ErrorResponse)
        assert response.code == ErrorCode.PARSE_ERROR
        assert response.error == "boom"
        assert response.details["step"] == "structural_extraction"
        assert response.details["original_error"] == "RuntimeError"


class TestInputHelpers:
    """Test input validation helpers."""

    def test_validate_invoice_format(
        self, service: InvoiceParserService, key_url: str, invoice_key: str
    ) -> None:
        assert service.validate_invoice_format(key_url) is True
        assert service.validate_invoice_format(invoice_key) is True
        assert service.validate_invoice_format("https://example.com/x") is False
        assert service.validate_invoice_format("12345") is False

    def test_extract_invoice_key(
        self, service: InvoiceParserService, key_url: str, invoice_key: str
    ) -> None:
        assert service.extract_invoice_key(key_url) == invoice_key
        assert service.extract_invoice_key(invoice_key) == invoice_key


def test_create_invoice_parser_service() -> None:
    """Factory wires default collaborators."""
    service = create_invoice_parser_service(Settings(ai_api_key="test-key"))

    assert isinstance(service.cache, CacheManager)
    assert service.duplicate_checker is None
    service.close()
