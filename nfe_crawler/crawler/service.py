"""Government portal crawler for NFe/NFC-e invoice pages.

Fetches invoice HTML with:
- Per-request timeout and bounded redirects (httpx)
- Linear-backoff retries for transport errors and timeouts (tenacity)
- Maximum response size enforced on the header and while streaming the body

Also extracts the 44-digit access key from URLs and HTML pages.

Based on httpx documentation:
https://www.python-httpx.org/advanced/
"""

import logging
import re
import time
from collections.abc import Callable
from urllib.parse import urlparse

import httpx
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from nfe_crawler.shared.config import Settings
from nfe_crawler.shared.errors import (
    HTMLFetchError,
    InvalidFormatError,
    InvoiceKeyNotFoundError,
    NetworkError,
    RequestTimeoutError,
)

logger = logging.getLogger(__name__)

INVOICE_KEY_LENGTH = 44

# Hostnames of state and national NFe/NFC-e consultation portals
GOVERNMENT_PORTAL_HOSTS = frozenset(
    {
        "sat.sef.sc.gov.br",
        "www.sefaz.rs.gov.br",
        "www.nfe.fazenda.gov.br",
        "nfe.fazenda.sp.gov.br",
        "www.fazenda.pr.gov.br",
        "www.sefaz.ba.gov.br",
        "www.sefaz.pe.gov.br",
        "www.sefaz.ce.gov.br",
    }
)

CONSECUTIVE_KEY_PATTERN = re.compile(r"(?<!\d)\d{44}(?!\d)")
# Portals commonly render the key as eleven groups of four digits
SPACED_KEY_PATTERN = re.compile(r"(?<!\d)(?:\d{4}\s+){10}\d{4}(?!\d)")
CHAVE_ELEMENT_PATTERN = re.compile(r"""class=["']chave["'][^>]*>([\d\s]+)<""")


def is_invoice_key(value: str) -> bool:
    """Check that a string is exactly 44 ASCII digits."""
    return len(value) == INVOICE_KEY_LENGTH and value.isascii() and value.isdigit()


class WebCrawlerService:
    """HTTP fetcher for government invoice portals."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize crawler.

        Args:
            settings: Application settings with crawler configuration
            client: Preconfigured httpx client (tests inject a MockTransport)
            sleep: Sleep function used between retries
            clock: Monotonic clock used for the caller deadline
        """
        self.settings = settings
        self._client = client or httpx.Client(
            follow_redirects=True,
            max_redirects=settings.crawler_max_redirects,
            timeout=settings.crawler_timeout,
        )
        self._sleep = sleep
        self._clock = clock
        self._headers = {
            "User-Agent": settings.crawler_user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "pt-BR,pt;q=0.9,en;q=0.8",
        }

    def close(self) -> None:
        """Release pooled connections."""
        self._client.close()

    def fetch_html(self, url: str, timeout: float | None = None) -> str:
        """Fetch invoice page HTML with timeout and retry policy.

        Only NetworkError and RequestTimeoutError are retried, with a delay of
        retry_delay * attempt between attempts. HTTP status and size failures
        are terminal. The caller budget covers every attempt and the pauses
        between them: each attempt gets only the time left, and no retry is
        made once it is spent.

        Args:
            url: Portal URL
            timeout: Caller budget in seconds for the whole fetch, retries included

        Returns:
            Decoded HTML body

        Raises:
            HTMLFetchError: Non-2xx status or body above max_html_size
            RequestTimeoutError: Every attempt timed out
            NetworkError: Transport failure on the last attempt
        """
        delay = self.settings.crawler_retry_delay
        deadline = None if timeout is None else self._clock() + timeout
        backoff = wait_incrementing(start=delay, increment=delay)

        def deadline_passed(retry_state: RetryCallState) -> bool:
            return deadline is not None and deadline - self._clock() <= 0

        def wait(retry_state: RetryCallState) -> float:
            pause = backoff(retry_state)
            if deadline is None:
                return pause
            return max(0.0, min(pause, deadline - self._clock()))

        retrying = Retrying(
            retry=retry_if_exception_type(NetworkError),
            stop=stop_after_attempt(self.settings.crawler_retry_attempts + 1) | deadline_passed,
            wait=wait,
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )

        logger.info(f"Fetching invoice HTML: {sanitize_url(url)}")
        html: str = retrying(self._fetch_once, url, deadline)
        logger.info(f"Fetched invoice HTML ({len(html)} chars)")
        return html

    def _fetch_once(self, url: str, deadline: float | None) -> str:
        safe_url = sanitize_url(url)
        effective_timeout = self.settings.crawler_timeout
        if deadline is not None:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise RequestTimeoutError(safe_url, 0)
            effective_timeout = min(effective_timeout, remaining)

        max_size = self.settings.max_html_size

        try:
            with self._client.stream(
                "GET", url, headers=self._headers, timeout=effective_timeout
            ) as response:
                if not response.is_success:
                    raise HTMLFetchError(
                        safe_url,
                        f"HTTP {response.status_code}: {response.reason_phrase}",
                        status_code=response.status_code,
                    )

                content_length = response.headers.get("content-length", "")
                if content_length.isdigit() and int(content_length) > max_size:
                    raise HTMLFetchError(
                        safe_url,
                        f"Content too large: {content_length} bytes",
                        content_length=int(content_length),
                        max_size=max_size,
                    )

                body = bytearray()
                for chunk in response.iter_bytes():
                    body.extend(chunk)
                    if len(body) > max_size:
                        raise HTMLFetchError(
                            safe_url,
                            f"HTML content too large: more than {max_size} bytes",
                            max_size=max_size,
                        )

                encoding = response.charset_encoding or "utf-8"
                return body.decode(encoding, errors="replace")

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(safe_url, effective_timeout) from e
        except httpx.TooManyRedirects as e:
            raise NetworkError(
                safe_url,
                f"Exceeded {self.settings.crawler_max_redirects} redirects",
                original_error=type(e).__name__,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                safe_url, str(e) or type(e).__name__, original_error=type(e).__name__
            ) from e

    def _log_retry(self, retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"Portal request failed (attempt {retry_state.attempt_number}), "
            f"retrying in {wait:g}s: {error}"
        )

    def extract_key_from_html(self, html: str) -> str | None:
        """Extract the 44-digit invoice key from HTML or any text.

        Tries, in order: 44 consecutive digits, eleven space-separated groups
        of four digits, and the digits inside a ``chave`` element. The first
        pattern that yields exactly 44 digits wins.

        Args:
            html: Page HTML or arbitrary text

        Returns:
            Invoice key, or None when no pattern matches
        """
        if not html:
            return None

        match = CONSECUTIVE_KEY_PATTERN.search(html)
        if match:
            return match.group(0)

        match = SPACED_KEY_PATTERN.search(html)
        if match:
            key = re.sub(r"\s", "", match.group(0))
            if len(key) == INVOICE_KEY_LENGTH:
                return key

        match = CHAVE_ELEMENT_PATTERN.search(html)
        if match:
            key = re.sub(r"\s", "", match.group(1))
            if len(key) == INVOICE_KEY_LENGTH:
                return key

        return None

    def extract_invoice_key(self, url: str, timeout: float | None = None) -> str:
        """Resolve the invoice key for a portal URL.

        Keys embedded in the URL are used directly; otherwise the page is
        fetched and searched.

        Raises:
            InvoiceKeyNotFoundError: No key in the URL or page
        """
        key, _ = self.resolve_invoice_key(url, timeout=timeout)
        return key

    def resolve_invoice_key(
        self, url: str, timeout: float | None = None
    ) -> tuple[str, str | None]:
        """Resolve the invoice key, returning any HTML fetched on the way.

        Encrypted portal URLs (e.g. Santa Catarina) carry no key, so the page
        must be fetched; callers reuse that HTML instead of fetching twice.

        Returns:
            Tuple of (invoice key, fetched HTML or None when the URL had the key)

        Raises:
            InvoiceKeyNotFoundError: No key in the URL or page
        """
        key = self.extract_key_from_html(url)
        if key:
            return key, None

        html = self.fetch_html(url, timeout=timeout)
        key = self.extract_key_from_html(html)
        if key is None:
            logger.error(f"Invoice key not found in HTML: {sanitize_url(url)}")
            raise InvoiceKeyNotFoundError(sanitize_url(url), reason="No 44-digit key in HTML")

        return key, html

    def is_known_portal(self, url: str) -> bool:
        """Check whether the URL points at an allow-listed government portal."""
        try:
            hostname = urlparse(url).hostname
        except ValueError:
            return False
        return hostname is not None and hostname.lower() in GOVERNMENT_PORTAL_HOSTS

    def build_url_from_key(self, invoice_key: str) -> str:
        """Build the consultation URL for a bare invoice key.

        Raises:
            InvalidFormatError: Key is not 44 digits
        """
        if not is_invoice_key(invoice_key):
            raise InvalidFormatError("44-digit invoice key", length=len(invoice_key))

        base = self.settings.default_portal_url.rstrip("/")
        return f"{base}/nfce/consulta?p={invoice_key}"


def sanitize_url(url: str) -> str:
    """Drop query string and fragment (they may carry encrypted keys)."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "[URL]"
    if not parsed.scheme or not parsed.netloc:
        return "[URL]"
    return f"{parsed.scheme}://{parsed.netloc}{parsed.path}"
