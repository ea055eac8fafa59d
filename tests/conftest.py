"""Shared fixtures: a portal page shaped like the Santa Catarina NFC-e layout."""

import pytest

INVOICE_KEY = "42240112345678000190650010000012341000012345"
SPACED_INVOICE_KEY = " ".join(INVOICE_KEY[i : i + 4] for i in range(0, 44, 4))

SAMPLE_INVOICE_HTML = f"""
<html>
<head>
  <style>.txtTit {{ font-weight: bold; }}</style>
  <script>var tracking = 1;</script>
</head>
<body>
<!-- consulta publica -->
<div id="conteudo">
  <div class="txtCenter">
    <div id="u20" class="txtTopo">SUPERMERCADO BOM PRECO LTDA</div>
    <div class="text">CNPJ: 12.345.678/0001-90</div>
    <div class="text">RUA DAS FLORES, 100, CENTRO, FLORIANOPOLIS, SC</div>
  </div>
  <table id="tabResult">
    <tr id="Item + 1">
      <td>
        <span class="txtTit">ARROZ TIPO 1 5KG</span>
        <span class="Rqtd"><strong>Qtde.:</strong>1</span>
        <span class="Runid"><strong>UN: </strong>UN</span>
        <span class="RvlUnit"><strong>Vl. Unit.:</strong> 25,90</span>
      </td>
      <td class="noWrap">Vl. Total<br><span class="valor">25,90</span></td>
    </tr>
    <tr id="Item + 2">
      <td>
        <span class="txtTit">REFRIGERANTE COLA 2L</span>
        <span class="Rqtd"><strong>Qtde.:</strong>2</span>
        <span class="Runid"><strong>UN: </strong>UN</span>
        <span class="RvlUnit"><strong>Vl. Unit.:</strong> 7,50</span>
      </td>
      <td class="noWrap">Vl. Total<br><span class="valor">15,00</span></td>
    </tr>
  </table>
  <div id="totalNota">
    <div id="linhaTotal"><label>Qtd. total de itens:</label><span class="totalNumb">2</span></div>
    <div id="linhaTotal"><label>Valor a pagar R$:</label><span class="totalNumb">40,90</span></div>
    <div id="linhaTotal"><label>Cartao de Debito</label><span class="totalNumb">40,90</span></div>
  </div>
  <div id="infos">
    <li><strong>Numero: </strong>123<strong> Serie: </strong>1
      <strong> Emissao: </strong>15/01/2024 14:30:00</li>
    <li><strong>Chave de acesso:</strong><span class="chave">{SPACED_INVOICE_KEY}</span></li>
  </div>
</div>
</body>
</html>
"""


@pytest.fixture
def invoice_key() -> str:
    """44-digit key printed on the sample page."""
    return INVOICE_KEY


@pytest.fixture
def sample_invoice_html() -> str:
    """Portal page with two items totalling R$ 40,90."""
    return SAMPLE_INVOICE_HTML


@pytest.fixture
def sample_ai_metadata() -> dict:
    """Metadata pass output matching the sample page."""
    return {
        "merchant": {
            "cnpj": "12.345.678/0001-90",
            "name": "SUPERMERCADO BOM PRECO LTDA",
            "tradeName": None,
            "address": "RUA DAS FLORES, 100, CENTRO",
            "city": "FLORIANOPOLIS",
            "state": "SC",
        },
        "invoice": {
            "number": "123",
            "series": "1",
            "issueDate": "15/01/2024 14:30:00",
        },
        "totals": {"subtotal": 40.90, "discount": 0, "tax": 0, "total": 40.90},
    }


@pytest.fixture
def sample_ai_items() -> list[dict]:
    """Items pass output matching the sample page."""
    return [
        {
            "description": "ARROZ TIPO 1 5KG",
            "productCode": None,
            "quantity": 1,
            "unit": "UN",
            "unitPrice": 25.90,
            "totalPrice": 25.90,
        },
        {
            "description": "REFRIGERANTE COLA 2L",
            "productCode": None,
            "quantity": 2,
            "unit": "UN",
            "unitPrice": 7.50,
            "totalPrice": 15.00,
        },
    ]
