"""AI parsing of invoice items and metadata.

Two passes over one invoice:
- Items: raw rows are chunked into fixed-size batches, each sent as an
  independent call, results concatenated in batch order
- Metadata: HTML without the items table, compacted to save tokens

Provider overloads are retried with exponential backoff (tenacity); every
other failure becomes an AIParseError. Each call logs token usage and an
estimated cost.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from nfe_crawler.ai import prompts
from nfe_crawler.ai.base import (
    AIProvider,
    GenerationResult,
    PromptParts,
    ProviderError,
    ProviderOverloadedError,
)
from nfe_crawler.ai.factory import create_ai_provider
from nfe_crawler.ai.json_parsing import parse_ai_json
from nfe_crawler.ai.pricing import estimate_cost, estimate_tokens
from nfe_crawler.extraction.schema import RawItem
from nfe_crawler.extraction.structural import compact_html
from nfe_crawler.shared import metrics
from nfe_crawler.shared.config import Settings
from nfe_crawler.shared.errors import AIParseError

logger = logging.getLogger(__name__)

NUMERIC_ITEM_FIELDS = ("quantity", "unitPrice", "totalPrice")


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_filled_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def merge_items(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Coalesce items sharing description and unit price.

    Quantities, totals and discounts are summed into the first occurrence;
    order of first occurrences is kept and the first non-empty product code
    wins. Items without a string description or numeric unit price are passed
    through untouched.
    """
    merged: list[dict[str, Any]] = []
    index: dict[tuple[str, float], dict[str, Any]] = {}

    for item in items:
        description = item.get("description")
        unit_price = item.get("unitPrice")
        if not isinstance(description, str) or not _is_number(unit_price):
            merged.append(dict(item))
            continue

        key = (description.strip(), float(unit_price))
        existing = index.get(key)
        if existing is None:
            copy = dict(item)
            index[key] = copy
            merged.append(copy)
            continue

        for field, digits in (("quantity", 4), ("totalPrice", 2), ("discountAmount", 2)):
            if _is_number(item.get(field)) and _is_number(existing.get(field)):
                existing[field] = round(existing[field] + item[field], digits)
        if not existing.get("productCode") and item.get("productCode"):
            existing["productCode"] = item["productCode"]

    return merged


class AIParserService:
    """Builds prompts, calls the configured provider and parses its JSON."""

    def __init__(
        self,
        settings: Settings,
        provider: AIProvider | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize AI parser.

        Args:
            settings: Application settings with AI configuration
            provider: AI provider (created from settings.ai_provider when None)
            sleep: Sleep function used between overload retries
        """
        self.settings = settings
        self.provider = provider or create_ai_provider(settings)
        self._sleep = sleep

    def build_prompt(self, html: str) -> PromptParts:
        """Build the metadata prompt (static instructions first, HTML last)."""
        return prompts.build_metadata_prompt(compact_html(html))

    def build_items_batch_prompt(self, batch: list[RawItem]) -> PromptParts:
        """Build the prompt for one batch of raw item rows."""
        return prompts.build_items_batch_prompt(batch)

    def parse_metadata(
        self, html_without_items: str, timeout: float | None = None
    ) -> dict[str, Any]:
        """Extract merchant, invoice and totals sections.

        Args:
            html_without_items: Invoice HTML with the items table stripped
            timeout: Remaining caller budget in seconds

        Returns:
            Dict with merchant, invoice and totals keys as returned by the model

        Raises:
            AIParseError: Provider failure or response is not a JSON object
        """
        logger.info(f"Parsing invoice metadata ({len(html_without_items)} chars of HTML)")
        parsed = parse_ai_json(self._generate(self.build_prompt(html_without_items), timeout))
        if not isinstance(parsed, dict):
            raise AIParseError("Metadata response is not a JSON object", kind=type(parsed).__name__)
        return parsed

    def parse_items(
        self, raw_items: list[RawItem], timeout: float | None = None
    ) -> list[dict[str, Any]]:
        """Structure raw rows in sequential batches.

        Args:
            raw_items: Rows from the structural extractor
            timeout: Remaining caller budget in seconds for all batches

        Returns:
            Items in batch order, identical items merged across batches
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        batch_size = self.settings.ai_batch_size
        total_batches = -(-len(raw_items) // batch_size)
        items: list[dict[str, Any]] = []

        for number, start in enumerate(range(0, len(raw_items), batch_size), start=1):
            batch = raw_items[start : start + batch_size]
            logger.info(f"Processing item batch {number}/{total_batches} ({len(batch)} rows)")
            remaining = None if deadline is None else deadline - time.monotonic()
            items.extend(self.parse_items_batch(batch, timeout=remaining))

        merged = merge_items(items)
        if len(merged) != len(items):
            logger.info(f"Merged {len(items)} items into {len(merged)}")
        return merged

    def parse_items_batch(
        self, batch: list[RawItem], timeout: float | None = None
    ) -> list[dict[str, Any]]:
        """Structure one batch of raw rows.

        Accepts either a JSON array or an object with an ``items`` array.

        Raises:
            AIParseError: Provider failure or unexpected response shape
        """
        parsed = parse_ai_json(self._generate(self.build_items_batch_prompt(batch), timeout))

        if isinstance(parsed, dict) and isinstance(parsed.get("items"), list):
            parsed = parsed["items"]
        if not isinstance(parsed, list):
            raise AIParseError("Items response is not a JSON array", kind=type(parsed).__name__)

        return [item for item in parsed if isinstance(item, dict)]

    @staticmethod
    def validate_response(response: Any) -> bool:
        """Shape check of a merged AI response.

        Business rules (totals reconciliation, tax ID format) are left to the
        validator.
        """
        if not isinstance(response, dict):
            return False

        merchant = response.get("merchant")
        if not isinstance(merchant, dict):
            return False
        if not all(_is_filled_string(merchant.get(field)) for field in ("cnpj", "name")):
            return False

        invoice = response.get("invoice")
        if not isinstance(invoice, dict):
            return False
        invoice_fields = ("number", "series", "issueDate")
        if not all(_is_filled_string(invoice.get(field)) for field in invoice_fields):
            return False

        items = response.get("items")
        if not isinstance(items, list) or not items:
            return False
        for item in items:
            if not isinstance(item, dict) or not isinstance(item.get("description"), str):
                return False
            if not all(_is_number(item.get(field)) for field in NUMERIC_ITEM_FIELDS):
                return False

        totals = response.get("totals")
        return isinstance(totals, dict) and _is_number(totals.get("total"))

    def _generate(self, prompt: PromptParts, timeout: float | None) -> str:
        deadline = None if timeout is None else time.monotonic() + timeout
        provider_name = self.provider.provider_name

        def attempt() -> GenerationResult:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise AIParseError("Deadline exceeded before AI call", provider=provider_name)
            return self.provider.generate(prompt, timeout=remaining)

        retrying = Retrying(
            retry=retry_if_exception_type(ProviderOverloadedError),
            stop=stop_after_attempt(self.settings.ai_max_retries + 1),
            wait=wait_exponential(multiplier=self.settings.ai_retry_base_delay),
            sleep=self._sleep,
            before_sleep=self._log_overload,
            reraise=True,
        )

        try:
            result: GenerationResult = retrying(attempt)
        except ProviderOverloadedError as e:
            metrics.ai_requests_total.labels(provider=provider_name, status="overloaded").inc()
            logger.error(f"{provider_name} still overloaded after retries: {e}")
            raise AIParseError(
                f"{provider_name} API overloaded after {self.settings.ai_max_retries} retries",
                provider=provider_name,
                max_retries=self.settings.ai_max_retries,
            ) from e
        except AIParseError:
            metrics.ai_requests_total.labels(provider=provider_name, status="failed").inc()
            raise
        except ProviderError as e:
            metrics.ai_requests_total.labels(provider=provider_name, status="failed").inc()
            logger.error(f"{provider_name} call failed: {e}")
            raise AIParseError(
                str(e), provider=provider_name, original_error=type(e).__name__
            ) from e
        except Exception as e:
            metrics.ai_requests_total.labels(provider=provider_name, status="failed").inc()
            logger.error(f"Unexpected {provider_name} error: {type(e).__name__}: {e}")
            raise AIParseError(
                f"{provider_name} call failed: {e}",
                provider=provider_name,
                original_error=type(e).__name__,
            ) from e

        self._record_usage(prompt, result)

        if result.truncated:
            metrics.ai_requests_total.labels(provider=provider_name, status="failed").inc()
            logger.error(
                f"{provider_name} response truncated at max tokens ({self.settings.ai_max_tokens})"
            )
            raise AIParseError(
                "Response was truncated due to max token limit. "
                "Increase ai_max_tokens or reduce input size.",
                provider=provider_name,
                max_tokens=self.settings.ai_max_tokens,
                output_tokens=result.output_tokens,
            )

        metrics.ai_requests_total.labels(provider=provider_name, status="success").inc()
        return result.text

    def _record_usage(self, prompt: PromptParts, result: GenerationResult) -> None:
        model = self.settings.ai_model
        input_tokens = result.input_tokens
        if input_tokens is None:
            input_tokens = estimate_tokens(prompt.render())
        output_tokens = result.output_tokens
        if output_tokens is None:
            output_tokens = estimate_tokens(result.text)
        cached_tokens = result.cached_tokens or 0
        cost = estimate_cost(model, input_tokens, output_tokens)

        logger.info(
            f"AI token usage [{model}]: input={input_tokens} output={output_tokens} "
            f"cached={cached_tokens} estimated_cost=${cost:.6f}"
        )

        metrics.ai_tokens_total.labels(model=model, kind="input").inc(input_tokens)
        metrics.ai_tokens_total.labels(model=model, kind="output").inc(output_tokens)
        metrics.ai_tokens_total.labels(model=model, kind="cached").inc(cached_tokens)
        metrics.ai_estimated_cost_usd_total.labels(model=model).inc(cost)

    def _log_overload(self, retry_state: RetryCallState) -> None:
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{self.provider.provider_name} overloaded (attempt {retry_state.attempt_number}/"
            f"{self.settings.ai_max_retries + 1}), retrying in {wait:g}s"
        )
