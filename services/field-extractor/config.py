"""Environment-based configuration for the field extractor service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Field extractor settings, loaded from environment variables."""

    # Server
    PORT: int = 8092

    # Model backend: "gateway" (OpenAI-compatible chat completions) or "ollama"
    LLM_PROVIDER: str = "gateway"

    # Gateway connection (empty = model unavailable, local dev default)
    LLM_BASE_URL: str = ""
    LLM_API_KEY: str = ""
    LLM_MODEL: str = "qwen/qwen-plus"

    # Ollama connection
    OLLAMA_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = ""

    # Model call timeouts and retry (transport-level only)
    LLM_TIMEOUT_SECONDS: int = 60
    LLM_CONNECT_TIMEOUT: int = 10
    LLM_RETRY_ATTEMPTS: int = 3
    LLM_RETRY_DELAY: float = 1.0
    LLM_RETRY_BACKOFF: float = 2.0

    # Extraction
    BATCH_CONCURRENCY: int = 5
    VALIDATION_CHAR_LIMIT: int = 2000
    MISMATCH_CONFIDENCE_THRESHOLD: int = 70

    # Discovery
    DISCOVERY_MIN_SAMPLES: int = 2
    DISCOVERY_MAX_SAMPLES: int = 10
    DISCOVERY_MAX_UPLOADS: int = 100
    DISCOVERY_SAMPLE_CHARS: int = 3000

    # Template persistence (empty = in-memory store)
    TEMPLATE_STORE_PATH: str = ""
    PROMPT_HISTORY_LIMIT: int = 20

    model_config = {"env_prefix": "", "case_sensitive": True}


settings = Settings()
