"""Unit tests for the government portal crawler.

Tests cover:
- Request headers and successful fetches
- Retry policy for network errors and timeouts
- Terminal HTTP status and size failures
- Invoice key extraction from URLs and HTML layouts
- URL helpers
"""

from collections.abc import Callable, Iterator

import httpx
import pytest

from nfe_crawler.crawler.service import WebCrawlerService, is_invoice_key, sanitize_url
from nfe_crawler.shared.config import Settings
from nfe_crawler.shared.errors import (
    HTMLFetchError,
    InvalidFormatError,
    InvoiceKeyNotFoundError,
    NetworkError,
    RequestTimeoutError,
)

PORTAL_URL = "https://sat.sef.sc.gov.br/nfce/consulta?p=ENCRYPTED|2|1|1|ABCDEF"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def settings() -> Settings:
    """Create crawler settings with fast retries."""
    return Settings(
        crawler_retry_attempts=1,
        crawler_retry_delay=0.5,
        max_html_size=1024,
        default_portal_url="https://sat.sef.sc.gov.br/",
    )


@pytest.fixture
def sleeps() -> list[float]:
    """Recorded retry delays."""
    return []


def make_crawler(
    settings: Settings,
    handler: Callable[[httpx.Request], httpx.Response],
    sleeps: list[float],
) -> WebCrawlerService:
    """Create a crawler backed by a MockTransport."""
    client = httpx.Client(transport=httpx.MockTransport(handler), follow_redirects=True)
    return WebCrawlerService(settings, client=client, sleep=sleeps.append)


class TestFetchHtml:
    """Test fetch_html success paths."""

    def test_returns_body(self, settings: Settings, sleeps: list[float]) -> None:
        """Should return decoded HTML on 200."""
        crawler = make_crawler(
            settings, lambda request: httpx.Response(200, text="<html>ok</html>"), sleeps
        )

        assert crawler.fetch_html(PORTAL_URL) == "<html>ok</html>"
        assert sleeps == []

    def test_sends_browser_headers(self, settings: Settings, sleeps: list[float]) -> None:
        """Should send configured User-Agent and pt-BR language."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="<html></html>")

        make_crawler(settings, handler, sleeps).fetch_html(PORTAL_URL)

        assert seen[0].headers["User-Agent"] == settings.crawler_user_agent
        assert seen[0].headers["Accept-Language"].startswith("pt-BR")
        assert "text/html" in seen[0].headers["Accept"]

    def test_decodes_declared_charset(self, settings: Settings, sleeps: list[float]) -> None:
        """Should honour the response charset."""
        body = "<html>AÇÚCAR</html>".encode("latin-1")
        crawler = make_crawler(
            settings,
            lambda request: httpx.Response(
                200, content=body, headers={"content-type": "text/html; charset=iso-8859-1"}
            ),
            sleeps,
        )

        assert crawler.fetch_html(PORTAL_URL) == "<html>AÇÚCAR</html>"


class TestFetchHtmlFailures:
    """Test terminal failures and retries."""

    def test_non_2xx_is_not_retried(self, settings: Settings, sleeps: list[float]) -> None:
        """HTTP status errors are terminal."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        crawler = make_crawler(settings, handler, sleeps)

        with pytest.raises(HTMLFetchError) as exc_info:
            crawler.fetch_html(PORTAL_URL)

        assert len(calls) == 1
        assert exc_info.value.details["status_code"] == 404
        assert "HTTP 404" in exc_info.value.message

    def test_error_details_hide_query_string(
        self, settings: Settings, sleeps: list[float]
    ) -> None:
        """Encrypted query parameters must not leak into errors."""
        crawler = make_crawler(settings, lambda request: httpx.Response(500), sleeps)

        with pytest.raises(HTMLFetchError) as exc_info:
            crawler.fetch_html(PORTAL_URL)

        assert exc_info.value.details["url"] == "https://sat.sef.sc.gov.br/nfce/consulta"

    def test_timeout_retried_once_then_raised(
        self, settings: Settings, sleeps: list[float]
    ) -> None:
        """Timeouts get one retry (2 attempts total) with a 0.5s delay."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        crawler = make_crawler(settings, handler, sleeps)

        with pytest.raises(RequestTimeoutError):
            crawler.fetch_html(PORTAL_URL)

        assert len(calls) == 2
        assert sleeps == [0.5]

    def test_network_error_recovers_on_retry(
        self, settings: Settings, sleeps: list[float]
    ) -> None:
        """A transient connection error followed by success returns the body."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, text="<html>second</html>")

        crawler = make_crawler(settings, handler, sleeps)

        assert crawler.fetch_html(PORTAL_URL) == "<html>second</html>"
        assert len(calls) == 2

    def test_retry_delay_grows_linearly(self, sleeps: list[float]) -> None:
        """Delay is retry_delay multiplied by the attempt number."""
        settings = Settings(crawler_retry_attempts=3, crawler_retry_delay=0.5)

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        crawler = make_crawler(settings, handler, sleeps)

        with pytest.raises(NetworkError):
            crawler.fetch_html(PORTAL_URL)

        assert sleeps == [0.5, 1.0, 1.5]

    def test_exhausted_caller_budget(self, settings: Settings, sleeps: list[float]) -> None:
        """No request is made once the caller deadline has passed."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, text="<html></html>")

        crawler = make_crawler(settings, handler, sleeps)

        with pytest.raises(RequestTimeoutError):
            crawler.fetch_html(PORTAL_URL, timeout=0)

        assert calls == []

    def test_retry_gets_only_remaining_budget(
        self, settings: Settings, sleeps: list[float]
    ) -> None:
        """Each attempt's timeout shrinks by the time earlier attempts used."""
        clock = FakeClock()
        timeouts = []

        def handler(request: httpx.Request) -> httpx.Response:
            timeouts.append(request.extensions["timeout"]["read"])
            clock.now += 0.3
            raise httpx.ReadTimeout("timed out", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        crawler = WebCrawlerService(settings, client=client, sleep=sleeps.append, clock=clock)

        with pytest.raises(RequestTimeoutError):
            crawler.fetch_html(PORTAL_URL, timeout=0.5)

        assert timeouts == [pytest.approx(0.5), pytest.approx(0.2)]
        assert sleeps == [pytest.approx(0.2)]

    def test_no_retry_after_budget_spent(self, sleeps: list[float]) -> None:
        """A slow first attempt that uses the whole budget is not retried."""
        settings = Settings(crawler_retry_attempts=3, crawler_retry_delay=0.5)
        clock = FakeClock()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            clock.now += 0.6
            raise httpx.ReadTimeout("timed out", request=request)

        client = httpx.Client(transport=httpx.MockTransport(handler))
        crawler = WebCrawlerService(settings, client=client, sleep=sleeps.append, clock=clock)

        with pytest.raises(RequestTimeoutError):
            crawler.fetch_html(PORTAL_URL, timeout=0.5)

        assert len(calls) == 1
        assert sleeps == []

    def test_too_large_by_header(self, settings: Settings, sleeps: list[float]) -> None:
        """Declared Content-Length above the limit is rejected."""
        crawler = make_crawler(
            settings, lambda request: httpx.Response(200, content=b"x" * 2048), sleeps
        )

        with pytest.raises(HTMLFetchError) as exc_info:
            crawler.fetch_html(PORTAL_URL)

        assert exc_info.value.details["content_length"] == 2048
        assert sleeps == []

    def test_too_large_while_streaming(self, settings: Settings, sleeps: list[float]) -> None:
        """Chunked bodies without Content-Length are cut off at the limit."""

        def chunks() -> Iterator[bytes]:
            for _ in range(8):
                yield b"x" * 512

        crawler = make_crawler(
            settings, lambda request: httpx.Response(200, content=chunks()), sleeps
        )

        with pytest.raises(HTMLFetchError) as exc_info:
            crawler.fetch_html(PORTAL_URL)

        assert "too large" in exc_info.value.message


class TestKeyExtraction:
    """Test invoice key extraction from text."""

    @pytest.fixture
    def crawler(self, settings: Settings, sleeps: list[float]) -> WebCrawlerService:
        return make_crawler(settings, lambda request: httpx.Response(500), sleeps)

    def test_consecutive_digits(self, crawler: WebCrawlerService, invoice_key: str) -> None:
        url = f"https://www.sefaz.rs.gov.br/NFCE/NFCE-COM.aspx?p={invoice_key}|2|1|1|HASH"

        assert crawler.extract_key_from_html(url) == invoice_key

    def test_spaced_groups(self, crawler: WebCrawlerService, invoice_key: str) -> None:
        spaced = " ".join(invoice_key[i : i + 4] for i in range(0, 44, 4))

        assert crawler.extract_key_from_html(f"<p>Chave: {spaced}</p>") == invoice_key

    def test_chave_element(self, crawler: WebCrawlerService, invoice_key: str) -> None:
        """Irregular spacing inside the chave element is tolerated."""
        html = f'<span class="chave">{invoice_key[:20]}  {invoice_key[20:]}</span>'

        assert crawler.extract_key_from_html(html) == invoice_key

    def test_sample_page(
        self, crawler: WebCrawlerService, invoice_key: str, sample_invoice_html: str
    ) -> None:
        assert crawler.extract_key_from_html(sample_invoice_html) == invoice_key

    def test_longer_digit_run_is_not_a_key(self, crawler: WebCrawlerService) -> None:
        assert crawler.extract_key_from_html("1" * 45) is None

    def test_no_key(self, crawler: WebCrawlerService) -> None:
        assert crawler.extract_key_from_html("<html>no key here 12345</html>") is None

    def test_empty(self, crawler: WebCrawlerService) -> None:
        assert crawler.extract_key_from_html("") is None


class TestResolveInvoiceKey:
    """Test key resolution for portal URLs."""

    def test_key_in_url_skips_fetch(
        self, settings: Settings, sleeps: list[float], invoice_key: str
    ) -> None:
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, text="")

        crawler = make_crawler(settings, handler, sleeps)

        key, html = crawler.resolve_invoice_key(
            f"https://sat.sef.sc.gov.br/nfce/consulta?p={invoice_key}"
        )

        assert key == invoice_key
        assert html is None
        assert calls == []

    def test_encrypted_url_fetches_page(
        self,
        settings: Settings,
        sleeps: list[float],
        invoice_key: str,
    ) -> None:
        page = f'<span class="chave">{invoice_key}</span>'
        crawler = make_crawler(settings, lambda request: httpx.Response(200, text=page), sleeps)

        key, html = crawler.resolve_invoice_key(PORTAL_URL)

        assert key == invoice_key
        assert html == page
        assert crawler.extract_invoice_key(PORTAL_URL) == invoice_key

    def test_page_without_key(self, settings: Settings, sleeps: list[float]) -> None:
        crawler = make_crawler(
            settings, lambda request: httpx.Response(200, text="<html></html>"), sleeps
        )

        with pytest.raises(InvoiceKeyNotFoundError) as exc_info:
            crawler.resolve_invoice_key(PORTAL_URL)

        assert exc_info.value.details["source"] == "https://sat.sef.sc.gov.br/nfce/consulta"


class TestUrlHelpers:
    """Test portal allow-list and URL building."""

    @pytest.fixture
    def crawler(self, settings: Settings, sleeps: list[float]) -> WebCrawlerService:
        return make_crawler(settings, lambda request: httpx.Response(500), sleeps)

    def test_known_portal(self, crawler: WebCrawlerService) -> None:
        assert crawler.is_known_portal(PORTAL_URL) is True
        assert crawler.is_known_portal("https://WWW.SEFAZ.RS.GOV.BR/nfce") is True

    def test_unknown_portal(self, crawler: WebCrawlerService) -> None:
        assert crawler.is_known_portal("https://evil.example.com/sat.sef.sc.gov.br") is False
        assert crawler.is_known_portal("not a url") is False

    def test_build_url_from_key(self, crawler: WebCrawlerService, invoice_key: str) -> None:
        assert crawler.build_url_from_key(invoice_key) == (
            f"https://sat.sef.sc.gov.br/nfce/consulta?p={invoice_key}"
        )

    def test_build_url_rejects_bad_key(self, crawler: WebCrawlerService) -> None:
        with pytest.raises(InvalidFormatError):
            crawler.build_url_from_key("123")


def test_is_invoice_key(invoice_key: str) -> None:
    """Test strict 44-digit check."""
    assert is_invoice_key(invoice_key) is True
    assert is_invoice_key(invoice_key[:-1]) is False
    assert is_invoice_key("a" * 44) is False
    assert is_invoice_key("٤" * 44) is False


def test_sanitize_url() -> None:
    """Test query and fragment removal."""
    assert sanitize_url(PORTAL_URL) == "https://sat.sef.sc.gov.br/nfce/consulta"
    assert sanitize_url("garbage") == "[URL]"
