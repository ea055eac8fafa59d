"""Prompt templates for the two AI passes.

Static sections (instructions, output schema, worked example) are constants so
every call shares an identical prefix; variable content is always appended
last.
"""

import json

from nfe_crawler.ai.base import PromptParts
from nfe_crawler.extraction.schema import RawItem

METADATA_INSTRUCTIONS = """You are an expert at extracting structured data from Brazilian fiscal invoices (NFe/NFC-e).
Extract the invoice metadata (merchant, invoice details, totals) from the HTML below.
The items table has been removed, so focus only on the header and footer information.

REQUIRED OUTPUT FORMAT (JSON):
{
  "merchant": {
    "cnpj": "<string: 14 digits only>",
    "name": "<string: legal name (razao social)>",
    "tradeName": "<string or null>",
    "address": "<string>",
    "city": "<string>",
    "state": "<string: 2 uppercase letters>"
  },
  "invoice": {
    "number": "<string>",
    "series": "<string>",
    "issueDate": "<string: ISO 8601 YYYY-MM-DDTHH:mm:ss>"
  },
  "totals": {
    "subtotal": <number: sum of item totals before discount>,
    "discount": <number: default 0>,
    "tax": <number: default 0>,
    "total": <number: amount paid>
  }
}

EXAMPLE:
Input fragments: "SUPERMERCADO BOM PRECO LTDA" "CNPJ: 12.345.678/0001-90" \
"Rua das Flores, 100, Centro, Florianopolis, SC" "Numero: 4521 Serie: 1 Emissao: 05/03/2024 14:22:10" \
"Valor total R$: 45,90" "Descontos R$: 5,00" "Valor a pagar R$: 40,90"
Output: {"merchant": {"cnpj": "12345678000190", "name": "SUPERMERCADO BOM PRECO LTDA", \
"tradeName": null, "address": "Rua das Flores, 100, Centro", "city": "Florianopolis", "state": "SC"}, \
"invoice": {"number": "4521", "series": "1", "issueDate": "2024-03-05T14:22:10"}, \
"totals": {"subtotal": 45.90, "discount": 5.00, "tax": 0, "total": 40.90}}

RULES:
1. Extract all fields accurately.
2. Convert dates to ISO 8601.
3. Remove formatting from CNPJ.
4. Convert Brazilian numbers ("1.234,56") to plain numbers (1234.56).
5. Return ONLY the JSON object."""

ITEMS_BATCH_INSTRUCTIONS = """You are an expert at extracting structured data from Brazilian fiscal invoices.
Process the raw item rows extracted from an invoice (given after these instructions) and return a JSON array of structured items.

REQUIRED OUTPUT FORMAT (JSON array):
[
  {
    "description": "<string: cleaned product name>",
    "productCode": "<string or null: EAN/GTIN or product code if found>",
    "quantity": <number>,
    "unitPrice": <number>,
    "totalPrice": <number>,
    "discountAmount": <number: default 0>
  }
]

EXAMPLE:
Input: [{"rawDescription": "ARROZ TIPO 1 5KG", "rawQuantity": "Qtde.:1", "rawUnitPrice": "Vl. Unit.: 25,90", \
"rawTotalPrice": "25,90", "rawUnit": "UN: UN", "fullText": "ARROZ TIPO 1 5KG (Codigo: 7891234) Qtde.:1 UN: UN Vl. Unit.: 25,90 25,90"}]
Output: [{"description": "ARROZ TIPO 1 5KG", "productCode": "7891234", "quantity": 1, \
"unitPrice": 25.90, "totalPrice": 25.90, "discountAmount": 0}]

RULES:
1. Extract numeric values correctly (convert "1.234,56" to 1234.56).
2. If quantity is missing, infer it from total/unit price or default to 1.
3. Clean up descriptions (remove codes or prefixes that are not part of the name).
4. GROUP IDENTICAL ITEMS: if several rows have the exact same description and unit price, combine them into a single item, summing quantities and total prices.
5. Return ONLY the JSON array."""


def build_metadata_prompt(html: str) -> PromptParts:
    """Build the metadata prompt for HTML whose items table was removed."""
    return PromptParts(static=METADATA_INSTRUCTIONS, variable=f"HTML CONTENT:\n{html}")


def build_items_batch_prompt(batch: list[RawItem]) -> PromptParts:
    """Build the prompt for one batch of raw item rows."""
    payload = [item.model_dump(by_alias=True, exclude_defaults=True) for item in batch]
    return PromptParts(
        static=ITEMS_BATCH_INSTRUCTIONS,
        variable=f"INPUT DATA (JSON):\n{json.dumps(payload, ensure_ascii=False, indent=2)}",
    )
