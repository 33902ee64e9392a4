"""Pydantic models for templates, extraction results and discovery."""

import time
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from errors import InvalidStatusTransition

FieldType = Literal["text", "number", "date", "currency"]
DateFormat = Literal["YYYY-MM-DD", "DD/MM/YYYY", "MM/DD/YYYY", "YYYY/MM/DD"]
CurrencyFormat = Literal["decimal", "with-symbol", "with-code"]
NumberFormat = Literal["plain", "with-commas"]
ProcessingStatus = Literal["pending", "processing", "success", "error"]
ValidationStatus = Literal["validated", "degraded"]

FIELD_TYPES: tuple[str, ...] = ("text", "number", "date", "currency")

# Forward-only lifecycle of a per-document result
_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"processing"},
    "processing": {"success", "error"},
    "success": set(),
    "error": set(),
}


class FormatOptions(BaseModel):
    date_format: DateFormat | None = None
    currency_format: CurrencyFormat | None = None
    currency_symbol: str | None = None
    number_format: NumberFormat | None = None


class TemplateField(BaseModel):
    id: str
    name: str
    key: str
    description: str = ""
    type: FieldType = "text"
    required: bool = False
    enabled: bool = True
    format_options: FormatOptions = Field(default_factory=FormatOptions)


class Template(BaseModel):
    id: str
    name: str
    description: str = ""
    document_type: str = "document"
    fields: list[TemplateField] = []
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)

    @model_validator(mode="after")
    def _keys_unique(self) -> "Template":
        seen: set[str] = set()
        for field in self.fields:
            if field.key in seen:
                raise ValueError(f"Duplicate field key in template: {field.key}")
            seen.add(field.key)
        return self

    def field_by_key(self, key: str) -> TemplateField | None:
        return next((f for f in self.fields if f.key == key), None)


class Document(BaseModel):
    """One uploaded document. ``text`` wins over ``content`` when both are set."""

    file_name: str
    text: str | None = None
    content: bytes | None = None


class ExtractionOptions(BaseModel):
    enabled_fields: list[str] | None = None
    custom_instructions: dict[str, str] | None = None
    strict_mode: bool = False
    validate_document_type: bool = True


class ValidationOutcome(BaseModel):
    status: ValidationStatus
    is_valid: bool
    confidence: float
    expected_type: str
    detected_type: str | None = None
    reason: str | None = None
    warnings: list[str] = []

    @property
    def degraded(self) -> bool:
        return self.status == "degraded"


class ExtractionOutcome(BaseModel):
    file_name: str
    data: dict[str, str]
    validation: ValidationOutcome | None = None
    warnings: list[str] = []
    # field key -> surrounding document text, for review
    sources: dict[str, str] = {}
    prompt_version: str
    processing_time_ms: int
    # compiled prompt, kept for history; never serialised
    prompt: str = Field(default="", exclude=True, repr=False)


class ExtractionResult(BaseModel):
    file_name: str
    status: ProcessingStatus = "pending"
    data: dict[str, str] | None = None
    error: str | None = None
    validation: ValidationOutcome | None = None
    warnings: list[str] = []

    def _advance(self, target: str) -> None:
        if target not in _TRANSITIONS[self.status]:
            raise InvalidStatusTransition(self.file_name, self.status, target)
        self.status = target  # type: ignore[assignment]

    def mark_processing(self) -> None:
        self._advance("processing")

    def mark_success(self, outcome: ExtractionOutcome) -> None:
        self._advance("success")
        self.data = outcome.data
        self.validation = outcome.validation
        self.warnings = list(outcome.warnings)

    def mark_error(self, message: str) -> None:
        self._advance("error")
        self.error = message

    @property
    def settled(self) -> bool:
        return self.status in ("success", "error")


class BatchProgress(BaseModel):
    completed: int
    total: int


class SampleText(BaseModel):
    file_name: str
    text: str


class SampleValue(BaseModel):
    file_name: str
    value: str = ""


class DiscoveredField(BaseModel):
    # Set only when the entry stands for a field that already exists in a template
    field_id: str | None = None
    name: str
    key: str
    description: str = ""
    type: FieldType = "text"
    enabled: bool = True
    format_options: FormatOptions = Field(default_factory=FormatOptions)
    found_in_samples: int = 0
    sample_values: list[SampleValue] = []
    confidence: float = 50
    # reviewer note on where to look, appended to the description on save
    extraction_hint: str = ""


class PromptVersion(BaseModel):
    version: str
    timestamp: float = Field(default_factory=time.time)
    template_id: str
    prompt: str
    enabled_fields: list[str]
    custom_instructions: dict[str, str] | None = None
