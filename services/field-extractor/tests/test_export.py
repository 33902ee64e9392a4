"""Tests for CSV export of batch results."""

import csv
import io
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import FieldExtractorError, NothingToExportError
from export import export_columns, results_to_csv
from models import ExtractionResult, Template


def _success(file_name: str, data: dict[str, str]) -> ExtractionResult:
    return ExtractionResult(file_name=file_name, status="success", data=data)


@pytest.fixture
def results() -> list[ExtractionResult]:
    return [
        _success("a.pdf", {"invoiceNumber": "INV-1", "invoiceDate": "2024-03-15", "amount": "10.00"}),
        ExtractionResult(file_name="b.pdf", status="error", error="Model call failed"),
        _success("c.pdf", {"invoiceNumber": 'INV-"3"', "invoiceDate": "", "amount": "1,234.50"}),
    ]


class TestExportColumns:
    def test_enabled_fields_in_template_order(self, invoice_template: Template):
        assert [f.key for f in export_columns(invoice_template)] == ["invoiceNumber", "invoiceDate", "amount"]

    def test_custom_order(self, invoice_template: Template):
        columns = export_columns(invoice_template, ["amount", "invoiceNumber"])
        assert [f.key for f in columns] == ["amount", "invoiceNumber"]

    def test_unknown_key(self, invoice_template: Template):
        with pytest.raises(FieldExtractorError, match="Unknown field key"):
            export_columns(invoice_template, ["vendor"])


class TestResultsToCsv:
    def test_successful_rows_only(self, results, invoice_template: Template):
        content = results_to_csv(results, invoice_template)
        assert content.splitlines()[0] == '"INV-1","2024-03-15","10.00"'
        assert len(content.splitlines()) == 2

    def test_every_cell_quoted_and_escaped(self, results, invoice_template: Template):
        content = results_to_csv(results, invoice_template, selected=[2])
        assert content == '"INV-""3""","","1,234.50"\n'

    def test_headers_and_filename(self, results, invoice_template: Template):
        content = results_to_csv(results, invoice_template, include_headers=True, include_filename=True)
        rows = list(csv.reader(io.StringIO(content)))
        assert rows[0] == ["Filename", "Invoice Number", "Invoice Date", "Amount"]
        assert rows[1] == ["a.pdf", "INV-1", "2024-03-15", "10.00"]
        assert rows[2][0] == "c.pdf"

    def test_field_order(self, results, invoice_template: Template):
        content = results_to_csv(results, invoice_template, field_order=["amount", "invoiceNumber"], include_headers=True)
        rows = list(csv.reader(io.StringIO(content)))
        assert rows[0] == ["Amount", "Invoice Number"]
        assert rows[1] == ["10.00", "INV-1"]

    def test_missing_value_is_empty(self, invoice_template: Template):
        content = results_to_csv([_success("a.pdf", {"invoiceNumber": "INV-1"})], invoice_template)
        assert content == '"INV-1","",""\n'

    def test_nothing_selected(self, results, invoice_template: Template):
        with pytest.raises(NothingToExportError):
            results_to_csv(results, invoice_template, selected=[1])
