"""Keyword-based merchant category detection."""

import re

from nfe_crawler.parser.schema import InvoiceCategory, MerchantInfo

# Checked in declaration order; first match wins
CATEGORY_KEYWORDS: dict[InvoiceCategory, tuple[str, ...]] = {
    InvoiceCategory.PHARMACY: (
        "farmacia",
        "farmácia",
        "drogaria",
        "farma",
        "droga",
        "medicamento",
    ),
    InvoiceCategory.GROCERIES: (
        "hortifruti",
        "hortifrutti",
        "sacolao",
        "sacolão",
        "feira",
        "verdura",
        "fruta",
    ),
    InvoiceCategory.SUPERMARKET: (
        "supermercado",
        "mercado",
        "super",
        "hipermercado",
        "atacadao",
        "atacadão",
        "atacado",
    ),
    InvoiceCategory.RESTAURANT: (
        "restaurante",
        "lanchonete",
        "bar",
        "cafe",
        "café",
        "pizzaria",
        "hamburgueria",
        "padaria",
        "confeitaria",
        "sorveteria",
    ),
    InvoiceCategory.FUEL: (
        "posto",
        "combustivel",
        "combustível",
        "gasolina",
        "etanol",
        "diesel",
        "gnv",
    ),
    InvoiceCategory.RETAIL: ("loja", "magazine", "varejo", "comercio", "comércio"),
    InvoiceCategory.SERVICES: (
        "servico",
        "serviço",
        "manutencao",
        "manutenção",
        "conserto",
        "reparo",
    ),
}

_CATEGORY_PATTERNS = {
    category: re.compile(r"\b(?:" + "|".join(map(re.escape, keywords)) + ")")
    for category, keywords in CATEGORY_KEYWORDS.items()
}


def detect_category(merchant: MerchantInfo) -> InvoiceCategory:
    """Guess the category from legal and trade names (keywords match at word start)."""
    names = f"{merchant.legal_name} {merchant.trade_name or ''}".casefold()
    for category, pattern in _CATEGORY_PATTERNS.items():
        if pattern.search(names):
            return category
    return InvoiceCategory.OTHER
