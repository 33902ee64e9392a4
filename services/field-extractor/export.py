"""CSV export of batch extraction results.

Rows are successful results only, columns follow the template's field order
(or a caller-chosen key order), and every cell is quoted.
"""

import csv
import io
import logging

from errors import FieldExtractorError, NothingToExportError
from models import ExtractionResult, Template, TemplateField

logger = logging.getLogger(__name__)

FILENAME_HEADER = "Filename"


def export_columns(template: Template, field_order: list[str] | None = None) -> list[TemplateField]:
    """Columns to export: enabled template fields, or the fields named by ``field_order``."""
    if field_order is None:
        return [f for f in template.fields if f.enabled]

    columns = []
    for key in field_order:
        field = template.field_by_key(key)
        if field is None:
            raise FieldExtractorError(f"Unknown field key: {key}")
        columns.append(field)
    return columns


def results_to_csv(
    results: list[ExtractionResult],
    template: Template,
    field_order: list[str] | None = None,
    selected: list[int] | None = None,
    include_headers: bool = False,
    include_filename: bool = False,
) -> str:
    """Render the selected successful results as CSV text.

    ``selected`` holds indices into ``results``; None selects every row.
    Raises NothingToExportError when no successful row is selected.
    """
    chosen = set(selected) if selected is not None else None
    rows = [
        r for index, r in enumerate(results)
        if (chosen is None or index in chosen) and r.status == "success" and r.data is not None
    ]
    if not rows:
        raise NothingToExportError()

    columns = export_columns(template, field_order)

    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    if include_headers:
        writer.writerow(([FILENAME_HEADER] if include_filename else []) + [f.name for f in columns])
    for result in rows:
        writer.writerow(
            ([result.file_name] if include_filename else [])
            + [result.data.get(f.key) or "" for f in columns]
        )

    logger.info("Exported %d rows x %d columns", len(rows), len(columns))
    return buf.getvalue()
