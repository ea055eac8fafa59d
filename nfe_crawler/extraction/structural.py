"""Deterministic item scraping from NFC-e portal HTML.

Best-effort extraction with BeautifulSoup:
- Primary strategy targets the reference portal layout (table#tabResult)
- Fallback keeps any table row containing a currency-like value
- Malformed markup yields fewer items, never an exception

Based on BeautifulSoup documentation:
https://www.crummy.com/software/BeautifulSoup/bs4/doc/
"""

import logging
import re

from bs4 import BeautifulSoup, Comment, Tag

from nfe_crawler.extraction.schema import RawItem

logger = logging.getLogger(__name__)

# Optional "R$", digits with "." thousands groups and "," decimals
CURRENCY_PATTERN = re.compile(r"(?:R\$\s*)?\d+(?:\.\d{3})*(?:,\d+)?")

WHITESPACE_PATTERN = re.compile(r"\s+")


def _collapse(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text).strip()


def _select_text(row: Tag, selector: str) -> str:
    element = row.select_one(selector)
    return element.get_text().strip() if element else ""


class StructuralExtractor:
    """Scrapes raw item rows from invoice HTML without any AI involvement."""

    def extract_raw_items(self, html: str) -> list[RawItem]:
        """Extract candidate item rows.

        Args:
            html: Invoice page HTML

        Returns:
            Raw items in page order (empty when nothing looks like an item)
        """
        if not html or not html.strip():
            return []

        soup = BeautifulSoup(html, "html.parser")

        items = self._extract_from_result_table(soup)
        if items:
            logger.info(f"Extracted {len(items)} raw items from result table")
            return items

        items = self._extract_from_any_row(soup)
        logger.info(f"Result table not found, fallback scan found {len(items)} rows")
        return items

    def _extract_from_result_table(self, soup: BeautifulSoup) -> list[RawItem]:
        items = []
        for row in soup.select("table#tabResult tr"):
            if row.find("th") is not None:
                continue

            description = _select_text(row, ".txtTit")
            if not description:
                first_cell = row.find("td")
                description = first_cell.get_text().strip() if first_cell else ""
            if not description:
                continue

            items.append(
                RawItem(
                    raw_description=description,
                    raw_quantity=_select_text(row, ".Rqtd"),
                    raw_unit_price=_select_text(row, ".RvlUnit"),
                    raw_total_price=_select_text(row, ".valor"),
                    raw_unit=_select_text(row, ".Runid"),
                    full_text=_collapse(row.get_text(" ")),
                )
            )
        return items

    def _extract_from_any_row(self, soup: BeautifulSoup) -> list[RawItem]:
        items = []
        for row in soup.find_all("tr"):
            text = _collapse(row.get_text(" "))
            if text and CURRENCY_PATTERN.search(text):
                items.append(RawItem(full_text=text))
        return items


def strip_items_table(html: str) -> str:
    """Remove the item tables so the metadata pass only sees header and footer.

    Drops ``#tabResult`` and any other table containing ``.txtTit`` cells.
    """
    soup = BeautifulSoup(html, "html.parser")

    for element in soup.select("#tabResult"):
        element.decompose()

    for table in soup.find_all("table"):
        # Nested tables die with their parent
        if table.decomposed:
            continue
        if table.select_one(".txtTit") is not None:
            table.decompose()

    return str(soup)


def compact_html(html: str) -> str:
    """Shrink HTML before it is sent to the AI provider.

    Removes comments, scripts, styles, inline style and class attributes, and
    collapses whitespace. Element ids are kept since they carry structure.
    """
    soup = BeautifulSoup(html, "html.parser")

    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()

    for element in soup(["script", "style"]):
        element.decompose()

    for element in soup.find_all(True):
        for attribute in ("style", "class"):
            element.attrs.pop(attribute, None)

    compacted = WHITESPACE_PATTERN.sub(" ", str(soup))
    return re.sub(r">\s+<", "><", compacted).strip()
