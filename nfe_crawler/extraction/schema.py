"""Raw item records scraped from invoice HTML.

Values are kept as the unparsed text shown on the portal; numeric conversion
is left to the AI item pass.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class RawItem(BaseModel):
    """Unparsed text fragments of one item row.

    Serialized with camelCase aliases (rawDescription, fullText, ...) when sent
    to the AI provider.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    raw_description: str = Field("", description="Product name as printed")
    raw_quantity: str = Field("", description="Quantity text, e.g. 'Qtde.:2'")
    raw_unit_price: str = Field("", description="Unit price text, e.g. 'Vl. Unit.: 7,50'")
    raw_total_price: str = Field("", description="Line total text, e.g. '15,00'")
    raw_unit: str = Field("", description="Unit of measure text, e.g. 'UN: UN'")
    full_text: str = Field("", description="Whitespace-collapsed text of the whole row")
