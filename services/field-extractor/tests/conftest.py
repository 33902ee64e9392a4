"""Shared test fixtures for field extractor tests."""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

# Add parent directory to path so we can import the modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from models import Document, FormatOptions, Template, TemplateField


INVOICE_TEXT = (
    "ACME Supplies Pte Ltd\n"
    "Invoice No: INV-2024-0042\n"
    "Invoice Date: 15/03/2024\n"
    "Bill To: Globex Corporation\n"
    "Total Amount Due: S$267.35\n"
)


@pytest.fixture
def invoice_template() -> Template:
    """Invoice template with a required decimal currency field."""
    return Template(
        id="template-invoice",
        name="Invoices",
        description="Supplier invoices",
        document_type="invoice",
        fields=[
            TemplateField(
                id="field-1",
                name="Invoice Number",
                key="invoiceNumber",
                description="The invoice reference number",
                type="text",
                required=True,
            ),
            TemplateField(
                id="field-2",
                name="Invoice Date",
                key="invoiceDate",
                description="Date the invoice was issued",
                type="date",
                format_options=FormatOptions(date_format="YYYY-MM-DD"),
            ),
            TemplateField(
                id="field-3",
                name="Amount",
                key="amount",
                description="Total amount due",
                type="currency",
                required=True,
                format_options=FormatOptions(currency_format="decimal"),
            ),
            TemplateField(
                id="field-4",
                name="Notes",
                key="notes",
                description="Free-text notes",
                enabled=False,
            ),
        ],
    )


@pytest.fixture
def invoice_document() -> Document:
    return Document(file_name="inv-42.pdf", text=INVOICE_TEXT)


@pytest.fixture
def valid_invoice_response() -> str:
    """Mock classifier response confirming an invoice."""
    return json.dumps({
        "isValid": True,
        "detectedType": "invoice",
        "confidence": 95,
        "reason": "",
    })


@pytest.fixture
def invoice_extraction_response() -> str:
    """Mock extraction response for the invoice template."""
    return json.dumps({
        "invoiceNumber": "INV-2024-0042",
        "invoiceDate": "2024-03-15",
        "amount": "267.35",
    })


@pytest.fixture
def mock_markdown_response() -> str:
    """Mock extraction response wrapped in a markdown code fence."""
    return '```json\n{"invoiceNumber": "INV-2024-0042", "invoiceDate": "2024-03-15", "amount": "267.35"}\n```'


@pytest.fixture
def llm() -> AsyncMock:
    """Model client double; set ``complete.side_effect`` per test."""
    client = AsyncMock()
    client.complete = AsyncMock()
    client.health = AsyncMock(return_value={"status": "healthy", "model": "test-model"})
    return client
