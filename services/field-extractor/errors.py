"""Error taxonomy for template-driven extraction and discovery.

Every error carries a human-readable ``message`` that callers may show to
end users verbatim. Diagnostic payloads (raw model text, wrapped causes)
live on separate attributes and belong in logs only.
"""


class FieldExtractorError(Exception):
    """Base class for all field extractor errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NoActiveFieldsError(FieldExtractorError):
    """No enabled fields remain after filtering the template."""

    def __init__(self, message: str = "No fields enabled for extraction"):
        super().__init__(message)


class EmptyDocumentError(FieldExtractorError):
    """Document text is empty or whitespace only."""

    def __init__(self, file_name: str = ""):
        self.file_name = file_name
        label = f" {file_name}" if file_name else ""
        super().__init__(f"Could not extract any text from document{label}")


class TextExtractionError(FieldExtractorError):
    """The text extraction step could not produce text from the uploaded bytes."""


class ResponseParseError(FieldExtractorError):
    """Model output was not valid JSON of the expected shape."""

    def __init__(self, raw_text: str, reason: str = "Model response is not valid JSON"):
        self.raw_text = raw_text
        self.reason = reason
        super().__init__(f"Failed to parse model response: {reason}")


class DocumentTypeMismatchError(FieldExtractorError):
    """The classifier is confident the document is not of the expected type."""

    def __init__(
        self,
        expected_type: str,
        detected_type: str,
        confidence: float,
        reason: str = "",
    ):
        self.expected_type = expected_type
        self.detected_type = detected_type
        self.confidence = confidence
        self.reason = reason
        message = (
            f"This document does not appear to be a {expected_type}"
            f" (detected: {detected_type or 'unknown'}, confidence {confidence:.0f}%)"
        )
        if reason:
            message += f": {reason}"
        super().__init__(message)


class ExtractionFailedError(FieldExtractorError):
    """Model invocation or response parsing failed for one document."""

    def __init__(self, message: str, cause: Exception | None = None, raw_text: str | None = None):
        self.cause = cause
        self.raw_text = raw_text
        super().__init__(message)


class InsufficientSamplesError(FieldExtractorError):
    """Discovery needs more readable sample documents."""

    def __init__(self, found: int, required: int = 2):
        self.found = found
        self.required = required
        super().__init__(
            f"Please upload at least {required} sample documents with extractable text "
            f"(got {found})"
        )


class InvalidStatusTransition(FieldExtractorError):
    """An ExtractionResult was moved against its forward-only lifecycle."""

    def __init__(self, file_name: str, current: str, target: str):
        self.file_name = file_name
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {file_name} from {current} to {target}")


class NothingToExportError(FieldExtractorError):
    """No successful results were selected for export."""

    def __init__(self, message: str = "No selected rows to export"):
        super().__init__(message)
