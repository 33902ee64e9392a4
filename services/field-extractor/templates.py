"""Template and field management.

``generate_field_key`` is the one place a display name becomes a JSON key.
Manual edits, discovery and merge all go through it so the same name always
maps to the same key.
"""

import logging
import re
import time
import uuid

from errors import NoActiveFieldsError
from models import DiscoveredField, FieldType, FormatOptions, Template, TemplateField

logger = logging.getLogger(__name__)

_WORD_BREAK = re.compile(r"[^a-z0-9]+(.)")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")

FALLBACK_KEY = "field"


def generate_field_key(name: str) -> str:
    """Convert a display name to a camelCase key, e.g. "Invoice NO." -> "invoiceNo"."""
    lowered = name.strip().lower()
    camel = _WORD_BREAK.sub(lambda m: m.group(1).upper(), lowered)
    return _NON_ALNUM.sub("", camel)


def unique_field_key(name: str, taken: set[str]) -> str:
    """Derive a key for ``name`` that is not in ``taken`` by appending 2, 3, ..."""
    base = generate_field_key(name) or FALLBACK_KEY
    key = base
    suffix = 2
    while key in taken:
        key = f"{base}{suffix}"
        suffix += 1
    return key


def default_format_options(field_type: str) -> FormatOptions:
    if field_type == "date":
        return FormatOptions(date_format="YYYY-MM-DD")
    if field_type == "currency":
        return FormatOptions(currency_format="decimal")
    if field_type == "number":
        return FormatOptions(number_format="plain")
    return FormatOptions()


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def create_template(name: str, description: str = "", document_type: str = "document") -> Template:
    now = time.time()
    return Template(
        id=_new_id("template"),
        name=name,
        description=description,
        document_type=document_type,
        fields=[],
        created_at=now,
        updated_at=now,
    )


def duplicate_template(template: Template) -> Template:
    now = time.time()
    return template.model_copy(
        update={
            "id": _new_id("template"),
            "name": f"{template.name} (Copy)",
            "fields": [f.model_copy(deep=True) for f in template.fields],
            "created_at": now,
            "updated_at": now,
        }
    )


def add_field(
    template: Template,
    name: str,
    description: str = "",
    field_type: FieldType = "text",
    required: bool = False,
    format_options: FormatOptions | None = None,
) -> TemplateField:
    """Append a field to ``template`` and return it."""
    taken = {f.key for f in template.fields}
    field = TemplateField(
        id=_new_id("field"),
        name=name,
        key=unique_field_key(name, taken),
        description=description,
        type=field_type,
        required=required,
        format_options=format_options or default_format_options(field_type),
    )
    template.fields.append(field)
    template.updated_at = time.time()
    return field


def update_field(template: Template, field_id: str, **changes) -> TemplateField:
    """Apply ``changes`` to one field; a new name re-derives the key.

    ``key`` itself is not accepted as a change.
    """
    if "key" in changes:
        raise ValueError("Field keys are derived from the field name")

    for index, field in enumerate(template.fields):
        if field.id != field_id:
            continue
        if "name" in changes and changes["name"] != field.name:
            taken = {f.key for f in template.fields if f.id != field_id}
            changes["key"] = unique_field_key(changes["name"], taken)
        updated = field.model_copy(update=changes)
        template.fields[index] = updated
        template.updated_at = time.time()
        return updated

    raise KeyError(field_id)


def rename_field(template: Template, field_id: str, name: str) -> TemplateField:
    return update_field(template, field_id, name=name)


def remove_field(template: Template, field_id: str) -> None:
    before = len(template.fields)
    template.fields = [f for f in template.fields if f.id != field_id]
    if len(template.fields) == before:
        raise KeyError(field_id)
    template.updated_at = time.time()


def _with_hint(description: str, hint: str) -> str:
    hint = hint.strip()
    return f"{description} {hint}" if hint else description


def build_template_from_discovery(
    discovered: list[DiscoveredField],
    sample_count: int,
    user_intent: str = "",
    existing: Template | None = None,
) -> Template:
    """Promote reviewed discovery results to a template.

    All fields are kept, disabled ones included. A field is required when it
    was found in every sample. In edit mode the existing template's identity
    and field ids are preserved. A reviewer's extraction hint is appended to
    the field description.
    """
    enabled = [f for f in discovered if f.enabled]
    if not enabled:
        raise NoActiveFieldsError("Please enable at least one field")

    now = time.time()
    taken: set[str] = set()
    fields: list[TemplateField] = []
    for found in discovered:
        key = found.key if found.key and found.key not in taken else unique_field_key(found.name, taken)
        taken.add(key)
        fields.append(TemplateField(
            id=found.field_id or _new_id("field"),
            name=found.name,
            key=key,
            description=_with_hint(found.description, found.extraction_hint),
            type=found.type,
            required=sample_count > 0 and found.found_in_samples == sample_count,
            enabled=found.enabled,
            format_options=found.format_options,
        ))

    if existing is not None:
        return existing.model_copy(update={"fields": fields, "updated_at": now})

    description = (
        f"Discovered {len(discovered)} fields ({len(enabled)} enabled) "
        f"from {sample_count} samples"
    )
    logger.info("Built template from discovery: %d fields, %d enabled", len(fields), len(enabled))
    return Template(
        id=_new_id("profile"),
        name=user_intent.strip()[:50] or "Custom Extraction",
        description=description,
        document_type="document",
        fields=fields,
        created_at=now,
        updated_at=now,
    )
