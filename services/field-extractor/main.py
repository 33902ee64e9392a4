"""FastAPI field extractor service: template-driven document extraction and field discovery.

Uploaded files are processed in memory only; document text is never
logged or persisted.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from batch import BatchRunner
from config import settings
from discovery import check_samples, load_samples, merge_discovered_fields, propose_fields
from errors import (
    DocumentTypeMismatchError,
    EmptyDocumentError,
    ExtractionFailedError,
    FieldExtractorError,
    InsufficientSamplesError,
    NoActiveFieldsError,
    NothingToExportError,
    ResponseParseError,
    TextExtractionError,
)
from export import results_to_csv
from extraction import extract_document
from llm_client import create_llm_client
from models import (
    BatchProgress,
    DiscoveredField,
    Document,
    ExtractionOptions,
    ExtractionOutcome,
    ExtractionResult,
    PromptVersion,
    SampleText,
    Template,
)
from pdf_text import extract_text
from storage import TemplateStore, create_template_store
from templates import build_template_from_discovery
from training import TrainingResults, TrainingSample, calculate_training_results

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_llm_client = None
_store: TemplateStore | None = None

_STATUS_CODES: dict[type, int] = {
    NoActiveFieldsError: 400,
    EmptyDocumentError: 400,
    TextExtractionError: 400,
    InsufficientSamplesError: 400,
    NothingToExportError: 400,
    DocumentTypeMismatchError: 422,
    ExtractionFailedError: 502,
    ResponseParseError: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the model client and template store on startup."""
    global _llm_client, _store

    _store = create_template_store()
    _llm_client = create_llm_client()
    if _llm_client is None:
        logger.info("No model backend configured, extraction and discovery disabled")
    else:
        health = await _llm_client.health()
        logger.info("Model backend health: %s", health)

    yield

    if _llm_client is not None and hasattr(_llm_client, "aclose"):
        await _llm_client.aclose()


app = FastAPI(title="Field Extractor", version="1.0.0", lifespan=lifespan)


@app.exception_handler(FieldExtractorError)
async def field_extractor_error_handler(request: Request, exc: FieldExtractorError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)),
        400,
    )
    content: dict = {"detail": exc.message, "error": type(exc).__name__}

    if isinstance(exc, DocumentTypeMismatchError):
        content.update(
            expected_type=exc.expected_type,
            detected_type=exc.detected_type,
            confidence=exc.confidence,
            reason=exc.reason,
        )

    raw_text = getattr(exc, "raw_text", None)
    if raw_text:
        content["details"] = raw_text
        logger.error("%s on %s: raw model output %s", type(exc).__name__, request.url.path, raw_text[:500])
    else:
        logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)

    return JSONResponse(status_code=status_code, content=content)


def _llm_unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"detail": "AI extraction is not available - no model backend configured"},
    )


def _get_store() -> TemplateStore:
    global _store
    if _store is None:
        _store = create_template_store()
    return _store


def _resolve_template(template_id: str | None, template_json: str | None) -> Template | JSONResponse:
    if template_id:
        template = _get_store().get(template_id)
        if template is None:
            return JSONResponse(status_code=404, content={"detail": f"Template not found: {template_id}"})
        return template

    if not template_json:
        return JSONResponse(status_code=400, content={"detail": "Provide template_id or template"})

    try:
        return Template.model_validate_json(template_json)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"detail": f"Invalid template: {e.errors()[0]['msg']}"})


def _parse_options(
    template: Template,
    enabled_fields: str | None,
    custom_instructions: str | None,
    validate: bool,
    strict: bool,
) -> ExtractionOptions:
    """Build request options; stored trained instructions underlie request overrides.

    ``enabled_fields`` and ``custom_instructions`` arrive as JSON-encoded form values.
    """
    options = ExtractionOptions(
        enabled_fields=json.loads(enabled_fields) if enabled_fields else None,
        custom_instructions=json.loads(custom_instructions) if custom_instructions else None,
        validate_document_type=validate,
        strict_mode=strict,
    )
    trained = _get_store().get_trained_instructions(template.id)
    if trained:
        options.custom_instructions = {**trained, **(options.custom_instructions or {})}
    return options


class BatchResponse(BaseModel):
    results: list[ExtractionResult]
    progress: BatchProgress


class DiscoveryResponse(BaseModel):
    fields: list[DiscoveredField]
    samples_analyzed: int
    user_intent: str
    sample_texts: list[SampleText]
    template: Template | None = None


@app.post("/api/v1/extract", response_model=ExtractionOutcome)
async def extract(
    file: UploadFile = File(...),
    template_id: str | None = Form(None),
    template: str | None = Form(None),
    enabled_fields: str | None = Form(None),
    custom_instructions: str | None = Form(None),
    validate: bool = Form(True),
    strict: bool = Form(False),
):
    """Extract the template's fields from one PDF."""
    if _llm_client is None:
        return _llm_unavailable()

    resolved = _resolve_template(template_id, template)
    if isinstance(resolved, JSONResponse):
        return resolved

    try:
        options = _parse_options(resolved, enabled_fields, custom_instructions, validate, strict)
    except (json.JSONDecodeError, ValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid enabled_fields or custom_instructions"})

    data = await file.read()
    if not data:
        return JSONResponse(status_code=400, content={"detail": "Empty file uploaded"})

    # log byte count only, never document content
    logger.info("Processing extraction: template=%s size=%d bytes", resolved.id, len(data))

    text = await asyncio.to_thread(extract_text, data)
    document = Document(file_name=file.filename or "document.pdf", text=text)
    outcome = await extract_document(document, resolved, _llm_client, options)

    _get_store().record_prompt_version(PromptVersion(
        version=outcome.prompt_version,
        template_id=resolved.id,
        prompt=outcome.prompt,
        enabled_fields=list(outcome.data),
        custom_instructions=options.custom_instructions,
    ))
    return outcome


@app.post("/api/v1/extract/batch", response_model=BatchResponse)
async def extract_batch(
    files: list[UploadFile] = File(...),
    template_id: str | None = Form(None),
    template: str | None = Form(None),
    validate: bool = Form(True),
):
    """Extract the template's fields from many PDFs with bounded concurrency."""
    if _llm_client is None:
        return _llm_unavailable()

    resolved = _resolve_template(template_id, template)
    if isinstance(resolved, JSONResponse):
        return resolved

    documents = [
        Document(file_name=f.filename or f"document-{i}.pdf", content=await f.read())
        for i, f in enumerate(files, start=1)
    ]
    logger.info("Processing batch: template=%s files=%d", resolved.id, len(documents))

    options = _parse_options(resolved, None, None, validate, False)
    runner = BatchRunner(_llm_client)
    results = await runner.run(documents, resolved, options)
    settled = sum(1 for r in results if r.settled)
    return BatchResponse(results=results, progress=BatchProgress(completed=settled, total=len(results)))


class CsvExportRequest(BaseModel):
    results: list[ExtractionResult]
    template_id: str | None = None
    template: Template | None = None
    # field keys in column order; defaults to the template's enabled fields
    field_order: list[str] | None = None
    # indices into results; None exports every successful row
    selected: list[int] | None = None
    include_headers: bool = False
    include_filename: bool = False


@app.post("/api/v1/extract/batch/csv")
async def export_batch_csv(body: CsvExportRequest):
    """Download batch results as CSV, one row per selected successful document."""
    template = body.template
    if template is None:
        if not body.template_id:
            return JSONResponse(status_code=400, content={"detail": "Provide template_id or template"})
        template = _get_store().get(body.template_id)
        if template is None:
            return JSONResponse(status_code=404, content={"detail": f"Template not found: {body.template_id}"})

    content = results_to_csv(
        body.results,
        template,
        field_order=body.field_order,
        selected=body.selected,
        include_headers=body.include_headers,
        include_filename=body.include_filename,
    )
    filename = f"extraction_batch_{int(time.time())}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@app.post("/api/v1/discover", response_model=DiscoveryResponse)
async def discover(
    files: list[UploadFile] = File(...),
    user_intent: str = Form(""),
    template_id: str | None = Form(None),
    add_new_fields: bool = Form(False),
):
    """Propose fields from sample PDFs; with template_id, merge into that template."""
    if _llm_client is None:
        return _llm_unavailable()

    if len(files) > settings.DISCOVERY_MAX_UPLOADS:
        return JSONResponse(
            status_code=400,
            content={"detail": f"Maximum {settings.DISCOVERY_MAX_UPLOADS} files allowed"},
        )

    existing = None
    if template_id:
        existing = _get_store().get(template_id)
        if existing is None:
            return JSONResponse(status_code=404, content={"detail": f"Template not found: {template_id}"})
        user_intent = user_intent or existing.name or existing.description

    documents = [
        Document(file_name=f.filename or f"sample-{i}.pdf", content=await f.read())
        for i, f in enumerate(files, start=1)
    ]
    samples = await load_samples(documents)
    check_samples(samples, user_intent)

    fields = await propose_fields(samples, user_intent, _llm_client)
    merged_template = None
    if existing is not None:
        fields = merge_discovered_fields(existing, fields, add_new_fields=add_new_fields)
        merged_template = build_template_from_discovery(fields, len(samples), user_intent, existing=existing)

    return DiscoveryResponse(
        fields=fields,
        samples_analyzed=len(samples),
        user_intent=user_intent,
        sample_texts=samples,
        template=merged_template,
    )


class TemplateFromDiscovery(BaseModel):
    fields: list[DiscoveredField]
    sample_count: int
    user_intent: str = ""
    template_id: str | None = None


@app.post("/api/v1/templates/from-discovery", response_model=Template)
async def save_discovered_template(body: TemplateFromDiscovery):
    """Promote reviewed discovery results to a stored template."""
    existing = _get_store().get(body.template_id) if body.template_id else None
    template = build_template_from_discovery(body.fields, body.sample_count, body.user_intent, existing)
    _get_store().save(template)
    return template


@app.get("/api/v1/templates", response_model=list[Template])
async def list_templates():
    return _get_store().load()


@app.post("/api/v1/templates", response_model=Template)
async def save_template(template: Template):
    _get_store().save(template)
    return _get_store().get(template.id)


@app.delete("/api/v1/templates/{template_id}")
async def delete_template(template_id: str):
    if _get_store().get(template_id) is None:
        return JSONResponse(status_code=404, content={"detail": f"Template not found: {template_id}"})
    _get_store().delete(template_id)
    return {"deleted": template_id}


@app.get("/api/v1/templates/active")
async def get_active_template():
    return {"active_id": _get_store().get_active_id()}


@app.put("/api/v1/templates/active/{template_id}")
async def set_active_template(template_id: str):
    if _get_store().get(template_id) is None:
        return JSONResponse(status_code=404, content={"detail": f"Template not found: {template_id}"})
    _get_store().set_active_id(template_id)
    return {"active_id": template_id}


@app.get("/api/v1/templates/{template_id}/prompts", response_model=list[PromptVersion])
async def get_prompt_history(template_id: str):
    return _get_store().prompt_history(template_id)


@app.put("/api/v1/templates/{template_id}/instructions")
async def save_instructions(template_id: str, instructions: dict[str, str]):
    if _get_store().get(template_id) is None:
        return JSONResponse(status_code=404, content={"detail": f"Template not found: {template_id}"})
    _get_store().save_trained_instructions(template_id, instructions)
    return instructions


@app.post("/api/v1/templates/{template_id}/training", response_model=TrainingResults)
async def training_results(template_id: str, samples: list[TrainingSample]):
    template = _get_store().get(template_id)
    if template is None:
        return JSONResponse(status_code=404, content={"detail": f"Template not found: {template_id}"})
    return calculate_training_results(samples, template)


@app.get("/health")
async def health():
    """Return service status and model backend health."""
    base = {
        "status": "healthy",
        "llm_available": _llm_client is not None,
        "llm_provider": settings.LLM_PROVIDER,
    }

    if _llm_client is not None:
        base["llm_health"] = await _llm_client.health()

    return base


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
