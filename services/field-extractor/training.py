"""Template training: score extraction accuracy against user corrections."""

from pydantic import BaseModel

from models import Template

SUCCESS_RATE_THRESHOLD = 70.0
MIN_SAMPLES_FOR_SUGGESTION = 2


class FieldExtraction(BaseModel):
    value: str
    confidence: float = 0
    source: str | None = None


class TrainingSample(BaseModel):
    file_name: str
    extracted_fields: dict[str, FieldExtraction] = {}
    # field key -> corrected value
    user_corrections: dict[str, str] = {}
    overall_confidence: float = 0


class FieldRate(BaseModel):
    success: int = 0
    total: int = 0

    @property
    def percent(self) -> float:
        return self.success / self.total * 100 if self.total else 0.0


class TemplateSuggestion(BaseModel):
    field_key: str
    field_name: str
    type: str
    suggestion: str
    reason: str


class TrainingResults(BaseModel):
    field_success_rates: dict[str, FieldRate]
    suggestions: list[TemplateSuggestion]
    average_confidence: float


def calculate_training_results(samples: list[TrainingSample], template: Template) -> TrainingResults:
    """Per-field success rates over reviewed samples, with suggestions for weak fields.

    An extraction counts as a success when it is non-empty and either the
    user left it uncorrected or the correction equals the extracted value.
    """
    rates = {field.key: FieldRate() for field in template.fields}

    for sample in samples:
        for field in template.fields:
            rate = rates[field.key]
            rate.total += 1
            extracted = sample.extracted_fields.get(field.key)
            corrected = sample.user_corrections.get(field.key)
            if extracted is None or not extracted.value.strip():
                continue
            if not corrected or corrected == extracted.value:
                rate.success += 1

    suggestions = []
    for field in template.fields:
        rate = rates[field.key]
        if rate.total >= MIN_SAMPLES_FOR_SUGGESTION and rate.percent < SUCCESS_RATE_THRESHOLD:
            suggestions.append(TemplateSuggestion(
                field_key=field.key,
                field_name=field.name,
                type="description",
                suggestion="Try adding more details about where this field appears in the document",
                reason=f"Only {rate.percent:.0f}% success rate ({rate.success}/{rate.total} samples)",
            ))

    average = sum(s.overall_confidence for s in samples) / max(len(samples), 1)
    return TrainingResults(
        field_success_rates=rates,
        suggestions=suggestions,
        average_confidence=average,
    )


def find_text_context(full_text: str, value: str, context_chars: int = 50) -> str | None:
    """Snippet of ``full_text`` around the first case-insensitive match of ``value``."""
    if not value or not full_text:
        return None

    index = full_text.lower().find(value.lower())
    if index == -1:
        return None

    start = max(0, index - context_chars)
    end = min(len(full_text), index + len(value) + context_chars)
    context = full_text[start:end]
    if start > 0:
        context = "..." + context
    if end < len(full_text):
        context += "..."
    return context
