"""Field discovery from sample documents, and merging rediscovered fields into a template."""

import logging
import math
from typing import Any

from config import settings
from errors import (
    ExtractionFailedError,
    FieldExtractorError,
    InsufficientSamplesError,
    TextExtractionError,
)
from extraction import TextExtractor, resolve_text
from llm_client import LLMClient
from models import FIELD_TYPES, DiscoveredField, Document, SampleText, SampleValue, Template
from parsing import coerce_value, parse_array_response
from prompts import DISCOVERY_MAX_FIELDS, DISCOVERY_MIN_FIELDS, compile_discovery_prompt
from templates import default_format_options, unique_field_key

logger = logging.getLogger(__name__)

DISCOVERY_TEMPERATURE = 0.2
DISCOVERY_MAX_TOKENS = 2000

DEFAULT_CONFIDENCE = 50.0
UNMATCHED_CONFIDENCE = 50.0


async def load_samples(
    documents: list[Document],
    text_extractor: TextExtractor | None = None,
    max_samples: int | None = None,
) -> list[SampleText]:
    """Collect up to ``max_samples`` documents that yield non-empty text.

    Unreadable documents are skipped and logged.
    """
    limit = max_samples if max_samples is not None else settings.DISCOVERY_MAX_SAMPLES
    samples: list[SampleText] = []
    for document in documents:
        if len(samples) >= limit:
            break
        try:
            text = await resolve_text(document, text_extractor)
        except TextExtractionError as e:
            logger.warning("Skipping sample %s: %s", document.file_name, e.message)
            continue
        if not text.strip():
            logger.warning("Skipping sample %s: no text", document.file_name)
            continue
        samples.append(SampleText(file_name=document.file_name, text=text.strip()))
    return samples


def _as_float(value: Any, default: float) -> float:
    """Untrusted JSON number as a finite float; NaN and infinities give ``default``."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _as_int(value: Any, default: int) -> int:
    return int(_as_float(value, default))


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def build_discovered_fields(raw_fields: list[Any], samples: list[SampleText]) -> list[DiscoveredField]:
    """Turn the model's proposed fields into DiscoveredFields, in emission order."""
    sample_count = len(samples)
    taken: set[str] = set()
    fields: list[DiscoveredField] = []

    for item in raw_fields:
        if not isinstance(item, dict):
            logger.warning("Ignoring non-object entry in discovery response")
            continue

        name = str(item.get("suggestedName") or "").strip() or "Unknown Field"
        key = unique_field_key(name, taken)
        taken.add(key)

        field_type = item.get("suggestedType")
        if field_type not in FIELD_TYPES:
            field_type = "text"

        raw_values = item.get("sampleValues")
        if not isinstance(raw_values, list):
            raw_values = []
        sample_values = [
            SampleValue(
                file_name=sample.file_name,
                value=coerce_value(raw_values[i]) if i < len(raw_values) else "",
            )
            for i, sample in enumerate(samples)
        ]

        found = _as_int(item.get("foundInSamples"), 1)
        confidence = _as_float(item.get("confidence"), DEFAULT_CONFIDENCE)

        fields.append(DiscoveredField(
            name=name,
            key=key,
            description=str(item.get("suggestedDescription") or ""),
            type=field_type,
            enabled=True,
            format_options=default_format_options(field_type),
            found_in_samples=int(_clamp(found, 0, sample_count)),
            sample_values=sample_values,
            confidence=_clamp(confidence, 0.0, 100.0),
        ))

    return fields


async def propose_fields(
    samples: list[SampleText],
    user_intent: str,
    llm: LLMClient,
) -> list[DiscoveredField]:
    """Ask the model for candidate fields over already-loaded samples."""
    prompt = compile_discovery_prompt(user_intent, samples, settings.DISCOVERY_SAMPLE_CHARS)

    try:
        raw = await llm.complete(
            prompt,
            temperature=DISCOVERY_TEMPERATURE,
            max_output_tokens=DISCOVERY_MAX_TOKENS,
        )
    except Exception as e:
        logger.error("Discovery model call failed: %s", e)
        raise ExtractionFailedError(f"Field discovery failed: {e}", cause=e) from e

    fields = build_discovered_fields(parse_array_response(raw), samples)

    if not DISCOVERY_MIN_FIELDS <= len(fields) <= DISCOVERY_MAX_FIELDS:
        logger.warning(
            "Model proposed %d fields, outside the requested %d-%d",
            len(fields), DISCOVERY_MIN_FIELDS, DISCOVERY_MAX_FIELDS,
        )
    logger.info("Discovered %d fields from %d samples", len(fields), len(samples))
    return fields


def check_samples(samples: list[SampleText], user_intent: str) -> None:
    if not user_intent or not user_intent.strip():
        raise FieldExtractorError("Please provide a description of what you want to extract")
    if len(samples) < settings.DISCOVERY_MIN_SAMPLES:
        raise InsufficientSamplesError(len(samples), settings.DISCOVERY_MIN_SAMPLES)


async def discover_fields(
    documents: list[Document],
    user_intent: str,
    llm: LLMClient,
    text_extractor: TextExtractor | None = None,
) -> list[DiscoveredField]:
    """Infer candidate fields from sample documents and a free-text intent.

    Raises InsufficientSamplesError before any model call when fewer than
    the minimum number of samples have extractable text.
    """
    samples = await load_samples(documents, text_extractor)
    check_samples(samples, user_intent)
    return await propose_fields(samples, user_intent, llm)


def _find_match(
    existing_key: str,
    existing_name: str,
    candidates: list[DiscoveredField],
    used: set[int],
) -> int | None:
    for index, candidate in enumerate(candidates):
        if index not in used and candidate.key == existing_key:
            return index
    for index, candidate in enumerate(candidates):
        if index not in used and candidate.name == existing_name:
            return index
    return None


def merge_discovered_fields(
    existing: Template,
    rediscovered: list[DiscoveredField],
    add_new_fields: bool = False,
) -> list[DiscoveredField]:
    """Reconcile a rediscovery run with the fields a template already has.

    Every existing field is kept with its identity and settings; only the
    discovery metadata (found count, sample values, confidence) comes from
    the new run. Unmatched existing fields get zeroed metadata. Rediscovered
    fields that match nothing are dropped unless ``add_new_fields`` is set,
    in which case they are appended in model order.
    """
    used: set[int] = set()
    merged: list[DiscoveredField] = []

    for field in existing.fields:
        match = _find_match(field.key, field.name, rediscovered, used)
        if match is not None:
            used.add(match)
            found = rediscovered[match]
            found_in_samples = found.found_in_samples
            sample_values = [v.model_copy() for v in found.sample_values]
            confidence = found.confidence
        else:
            found_in_samples = 0
            sample_values = []
            confidence = UNMATCHED_CONFIDENCE

        merged.append(DiscoveredField(
            field_id=field.id,
            name=field.name,
            key=field.key,
            description=field.description,
            type=field.type,
            enabled=field.enabled,
            format_options=field.format_options.model_copy(),
            found_in_samples=found_in_samples,
            sample_values=sample_values,
            confidence=confidence,
        ))

    unmatched = [f for i, f in enumerate(rediscovered) if i not in used]
    if not add_new_fields:
        if unmatched:
            logger.info("Edit mode: %d newly discovered fields not added", len(unmatched))
        return merged

    taken = {f.key for f in merged}
    for found in unmatched:
        key = found.key if found.key not in taken else unique_field_key(found.name, taken)
        taken.add(key)
        merged.append(found.model_copy(update={"key": key, "field_id": None}, deep=True))
    return merged
