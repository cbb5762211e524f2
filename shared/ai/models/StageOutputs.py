"""Structured replies expected from the AI stages.

The JSON schema of each model is sent along with the prompt, so field names
here are what the model is asked to produce.
"""

from pydantic import BaseModel, Field

from shared.models.invoice import LineItem


class ExtractionOutput(BaseModel):
    vendor: str | None = Field(default=None, description="The name of the vendor that issued the invoice.")
    date: str | None = Field(default=None, description="The invoice date as printed on the document.")
    total: float | None = Field(default=None, description="The total amount due.")
    line_items: list[LineItem] = Field(default_factory=list, description="The individual line items.")


class SummaryOutput(BaseModel):
    summary: str | None = Field(default=None, description="A concise summary of the invoice.")


class CategoriesOutput(BaseModel):
    categories: list[str] | None = Field(
        default=None,
        description='1 to 3 business expense categories, e.g. "Software Subscription", "Office Supplies", "Utilities".',
    )


class RecurrenceOutput(BaseModel):
    is_likely_recurring: bool | None = Field(default=None, description="True if the invoice is likely a recurring monthly expense.")
    reasoning: str | None = Field(default=None, description="Brief reason when recurring, empty otherwise.")
