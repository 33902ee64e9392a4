"""Extraction orchestrator: validate document type, compile prompt, call model, parse.

One document in, one ExtractionOutcome out. Failures raise; the batch
runner decides what a failure means for the rest of the batch.
"""

import asyncio
import logging
import math
import time
from typing import Any, Callable

from config import settings
from errors import (
    DocumentTypeMismatchError,
    EmptyDocumentError,
    ExtractionFailedError,
    ResponseParseError,
)
from llm_client import LLMClient
from models import Document, ExtractionOptions, ExtractionOutcome, Template, ValidationOutcome
from parsing import coerce_field_values, parse_response
from pdf_text import extract_text
from prompts import compile_extraction_prompt, compile_validation_prompt
from training import find_text_context

logger = logging.getLogger(__name__)

EXTRACTION_TEMPERATURE = 0.1
EXTRACTION_MAX_TOKENS = 1000
VALIDATION_TEMPERATURE = 0.1
VALIDATION_MAX_TOKENS = 200

# Confidence assumed when the classifier gives none or cannot be reached
NEUTRAL_CONFIDENCE = 50.0

TextExtractor = Callable[[bytes], str]


async def resolve_text(document: Document, text_extractor: TextExtractor | None = None) -> str:
    """Return the document's text, running the text extractor off the event loop if needed."""
    if document.text is not None:
        return document.text
    if document.content is None:
        return ""
    extractor = text_extractor or extract_text
    return await asyncio.to_thread(extractor, document.content)


def _as_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return NEUTRAL_CONFIDENCE
    if not math.isfinite(confidence):
        return NEUTRAL_CONFIDENCE
    return min(max(confidence, 0.0), 100.0)


def _as_bool(value: Any, default: bool = True) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("false", "no", "0"):
            return False
        if lowered in ("true", "yes", "1"):
            return True
    return default


def _degraded(expected_type: str, warning: str) -> ValidationOutcome:
    return ValidationOutcome(
        status="degraded",
        is_valid=True,
        confidence=NEUTRAL_CONFIDENCE,
        expected_type=expected_type,
        warnings=[warning],
    )


async def validate_document(
    text: str,
    expected_type: str,
    llm: LLMClient,
    char_limit: int | None = None,
) -> ValidationOutcome:
    """Classify the document against ``expected_type``.

    Fails open: if the model call or its parsing fails, the outcome is
    ``degraded`` (treated as valid, confidence 50) with a warning.
    """
    limit = char_limit if char_limit is not None else settings.VALIDATION_CHAR_LIMIT
    prompt = compile_validation_prompt(text, expected_type, limit)

    try:
        raw = await llm.complete(
            prompt,
            temperature=VALIDATION_TEMPERATURE,
            max_output_tokens=VALIDATION_MAX_TOKENS,
        )
        payload = parse_response(raw)
    except ResponseParseError as e:
        logger.warning("Document validation response unparseable: %s", e.reason)
        return _degraded(expected_type, "Document type validation unavailable: unreadable classifier response")
    except Exception as e:
        logger.warning("Document validation call failed: %s", e)
        return _degraded(expected_type, f"Document type validation unavailable: {e}")

    is_valid = _as_bool(payload.get("isValid"))
    confidence = _as_confidence(payload.get("confidence", NEUTRAL_CONFIDENCE))
    detected = payload.get("detectedType")
    reason = payload.get("reason")

    warnings = []
    if not is_valid:
        warnings.append(
            f"Document may not be a {expected_type}"
            + (f" (detected: {detected})" if detected else "")
        )

    return ValidationOutcome(
        status="validated",
        is_valid=is_valid,
        confidence=confidence,
        expected_type=expected_type,
        detected_type=str(detected) if detected else None,
        reason=str(reason) if reason else None,
        warnings=warnings,
    )


def required_field_warnings(template: Template, data: dict[str, str], keys: tuple[str, ...]) -> list[str]:
    """One warning per requested required field whose value is absent or blank."""
    warnings = []
    for field in template.fields:
        if not field.required or field.key not in keys:
            continue
        value = data.get(field.key)
        if value is None or not value.strip():
            warnings.append(f'Required field "{field.name}" was not found in the document')
    return warnings


async def extract_document(
    document: Document,
    template: Template,
    llm: LLMClient,
    options: ExtractionOptions | None = None,
    text_extractor: TextExtractor | None = None,
) -> ExtractionOutcome:
    """Run the extraction pipeline for one document against a read-only template."""
    start = time.monotonic()
    options = options or ExtractionOptions()

    text = await resolve_text(document, text_extractor)
    if not text.strip():
        raise EmptyDocumentError(document.file_name)

    compiled = compile_extraction_prompt(template.fields, text, template.document_type, options)

    validation = None
    warnings: list[str] = []
    if options.validate_document_type:
        validation = await validate_document(text, template.document_type, llm)
        if (
            not validation.is_valid
            and validation.confidence > settings.MISMATCH_CONFIDENCE_THRESHOLD
        ):
            logger.info(
                "Rejected %s: expected %s, detected %s (%.0f%%)",
                document.file_name,
                template.document_type,
                validation.detected_type,
                validation.confidence,
            )
            raise DocumentTypeMismatchError(
                expected_type=template.document_type,
                detected_type=validation.detected_type or "",
                confidence=validation.confidence,
                reason=validation.reason or "",
            )
        warnings.extend(validation.warnings)

    raw_text = None
    try:
        raw_text = await llm.complete(
            compiled.prompt,
            temperature=EXTRACTION_TEMPERATURE,
            max_output_tokens=EXTRACTION_MAX_TOKENS,
        )
        payload = parse_response(raw_text)
    except ResponseParseError as e:
        logger.error("Failed to parse extraction response for %s", document.file_name)
        raise ExtractionFailedError(
            f"Failed to parse extracted data for {document.file_name}",
            cause=e,
            raw_text=e.raw_text,
        ) from e
    except Exception as e:
        logger.error("Model call failed for %s: %s", document.file_name, e)
        raise ExtractionFailedError(
            f"Model call failed for {document.file_name}: {e}",
            cause=e,
            raw_text=raw_text,
        ) from e

    data = coerce_field_values(payload, compiled.field_keys)
    warnings.extend(required_field_warnings(template, data, compiled.field_keys))
    sources = {
        key: snippet
        for key, value in data.items()
        if (snippet := find_text_context(text, value.strip())) is not None
    }

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Extracted %d fields from %s in %dms (%d warnings)",
        len(data), document.file_name, elapsed_ms, len(warnings),
    )

    return ExtractionOutcome(
        file_name=document.file_name,
        data=data,
        validation=validation,
        warnings=warnings,
        sources=sources,
        prompt_version=compiled.version,
        processing_time_ms=elapsed_ms,
        prompt=compiled.prompt,
    )
