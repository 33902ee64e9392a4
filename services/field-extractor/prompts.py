"""Prompt compilation for extraction, document validation and field discovery.

All builders are pure: identical inputs produce byte-identical prompts, which
is what makes the content-derived prompt version usable for history tracking.
"""

import hashlib
import json
from dataclasses import dataclass
from typing import Iterable

from errors import NoActiveFieldsError
from models import ExtractionOptions, SampleText, TemplateField

DEFAULT_DATE_FORMAT = "YYYY-MM-DD"
DEFAULT_CURRENCY_SYMBOL = "$"

# Closed label set the classifier must choose from
DOCUMENT_TYPES: tuple[str, ...] = (
    "invoice", "receipt", "statement", "bill", "contract", "article", "letter", "other",
)

DISCOVERY_MIN_FIELDS = 5
DISCOVERY_MAX_FIELDS = 15

TRUNCATION_MARKER = "...(truncated)"

_EXTRACTION_RULES = """CRITICAL RULES:
- For currency/amount fields: Return ONLY the decimal number (e.g., "267.35" not "S$267.35", "USD 267.35", or "SGD 267.35")
- For date fields: Use YYYY-MM-DD format
- For number fields: Extract numeric value only
- If a field cannot be found, use an empty string ""
- Be precise and extract exact values from the document
- Focus on accuracy over speed"""

_STRICT_RULE = "\n- If unsure, return empty string rather than guessing"

_TYPE_CHOICES = "|".join(DOCUMENT_TYPES)


@dataclass(frozen=True)
class CompiledPrompt:
    prompt: str
    version: str
    field_keys: tuple[str, ...]


def active_fields(
    fields: Iterable[TemplateField],
    enabled_fields: Iterable[str] | None = None,
) -> list[TemplateField]:
    """Fields that go into the prompt: enabled, and in the caller's subset if given."""
    subset = set(enabled_fields) if enabled_fields is not None else None
    return [
        f for f in fields
        if f.enabled and (subset is None or f.key in subset)
    ]


def type_hint(field: TemplateField) -> str:
    """Type-specific formatting instruction appended to a field line."""
    opts = field.format_options
    if field.type == "date":
        return f" (format as {opts.date_format or DEFAULT_DATE_FORMAT})"
    if field.type == "currency":
        currency_format = opts.currency_format or "decimal"
        if currency_format == "with-symbol":
            symbol = opts.currency_symbol or DEFAULT_CURRENCY_SYMBOL
            return f" (include currency symbol: {symbol}267.35)"
        if currency_format == "with-code":
            return " (include currency code: USD 267.35 or SGD 267.35)"
        return (
            " (IMPORTANT: Extract ONLY the numeric decimal value, NO currency symbols."
            " Example: '267.35' not 'S$267.35')"
        )
    if field.type == "number":
        if opts.number_format == "with-commas":
            return " (format with commas: 1,234.56)"
        return " (extract as numeric value only)"
    return ""


def json_skeleton(fields: list[TemplateField]) -> str:
    """Expected response shape: field keys mapped to placeholder text."""
    structure = {f.key: f"extracted {f.name.lower()}" for f in fields}
    return json.dumps(structure, indent=2, ensure_ascii=False)


def prompt_version(prompt: str, field_count: int) -> str:
    digest = hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:12]
    return f"v{digest}-{field_count}f"


def compile_extraction_prompt(
    fields: list[TemplateField],
    document_text: str,
    document_type: str,
    options: ExtractionOptions | None = None,
) -> CompiledPrompt:
    """Build the extraction prompt for the active subset of ``fields``.

    Raises NoActiveFieldsError when nothing is left to extract.
    """
    options = options or ExtractionOptions()
    selected = active_fields(fields, options.enabled_fields)
    if not selected:
        raise NoActiveFieldsError()

    overrides = options.custom_instructions or {}
    lines = []
    for index, field in enumerate(selected, start=1):
        description = overrides.get(field.key) or field.description
        required_mark = " [REQUIRED]" if field.required else ""
        lines.append(f"{index}. {field.name}{required_mark}: {description}{type_hint(field)}")

    field_lines = "\n".join(lines)
    rules = _EXTRACTION_RULES + (_STRICT_RULE if options.strict_mode else "")

    prompt = f"""You are an expert document data extractor. Analyze the following {document_type} text and extract these specific fields:

{field_lines}

Document text:
{document_text}

Please respond ONLY with a valid JSON object in this exact format (no additional text or markdown):
{json_skeleton(selected)}

{rules}"""

    return CompiledPrompt(
        prompt=prompt,
        version=prompt_version(prompt, len(selected)),
        field_keys=tuple(f.key for f in selected),
    )


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def compile_validation_prompt(document_text: str, expected_type: str, char_limit: int = 2000) -> str:
    """Build the classification prompt over a bounded prefix of the document."""
    return f"""You are a document classifier. Analyze the following text and determine:

1. Is this a valid {expected_type}?
2. What type of document is this?
3. Confidence level (0-100)

Document text:
{truncate(document_text, char_limit)}

Respond ONLY with valid JSON:
{{
  "isValid": true or false,
  "detectedType": "{_TYPE_CHOICES}",
  "confidence": 0-100,
  "reason": "brief explanation if not valid"
}}"""


def compile_discovery_prompt(user_intent: str, samples: list[SampleText], char_limit: int = 3000) -> str:
    """Build the field discovery prompt embedding every sample's text prefix."""
    sample_blocks = "\n".join(
        f"\nSample {i} ({s.file_name}):\n{truncate(s.text, char_limit)}\n"
        for i, s in enumerate(samples, start=1)
    )

    return f"""You are an expert document analyzer. The user wants to: "{user_intent.strip()}"

Analyze these {len(samples)} sample documents and discover ALL common data fields that should be extracted.
{sample_blocks}
For each field you discover:
1. Suggest a clear, descriptive field name
2. Identify the data type (text, number, date, or currency)
3. Count how many samples contain this field
4. Extract one example value from each sample, in sample order
5. Provide a description of what this field represents
6. Estimate confidence (0-100)

Respond ONLY with valid JSON array:
[
  {{
    "suggestedName": "Booking Number",
    "suggestedType": "text",
    "foundInSamples": 3,
    "sampleValues": ["123456", "789012", "345678"],
    "suggestedDescription": "The booking or reservation reference number",
    "confidence": 95
  }}
]

Discover ALL fields that appear in the documents. Include:
- IDs and reference numbers
- Dates
- Names (people, companies, locations)
- Amounts and prices
- Any other relevant data points

Return {DISCOVERY_MIN_FIELDS}-{DISCOVERY_MAX_FIELDS} fields maximum. Focus on fields that appear in multiple samples."""
