from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    db_host: str = "host.docker.internal"
    db_port: int = 5432
    db_database: str = "docflow"
    db_username: str = "docflow"
    db_password: str = "secret"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10
    db_pool_open_timeout_seconds: float = 10.0

    max_job_attempts: int = 3
    job_poll_interval_seconds: int = 5
    retry_base_delay_seconds: float = 1.0
    retry_backoff_multiplier: float = 4.0
    retry_max_delay_seconds: float = 60.0
    max_cas_retries: int = 5

    max_file_size_bytes: int = 50 * 1024 * 1024
    allowed_mime_types: list[str] = [
        "application/pdf",
        "image/png",
        "image/jpeg",
        "image/tiff",
    ]
    pdf_uploads_are_containers: bool = True

    idempotency_ttl_hours: int = 24
    idempotency_claim_lease_seconds: int = 60
    idempotency_wait_seconds: float = 10.0
    idempotency_poll_interval_seconds: float = 0.2
    idempotency_purge_interval_seconds: int = 300

    duplicate_scope_company: bool = False
    duplicate_reclassify_policy: str = "annotation_only"

    render_engine: str = "pymupdf"
    render_dpi: int = 200
    native_text_min_chars: int = 50
    split_per_page: bool = True
    ocr_provider: str = "external"

    storage_backend: str = "local"
    storage_local_root: str = "./storage"
    s3_bucket: str = ""
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    storage_url_expiry_seconds: int = 900

    extraction_provider: str = "openai"
    extraction_max_pages: int = 20
    extraction_openai_api_key: str = ""
    extraction_openai_model_name: str = "gpt-4o-mini"
    extraction_openai_timeout_seconds: int = 60
    extraction_openai_temperature: float = 0.0
    extraction_openai_compatible_base_url: str = ""
    extraction_openai_compatible_api_key: str = ""
    extraction_openai_compatible_model_name: str = ""
    extraction_openai_compatible_timeout_seconds: int = 60
    extraction_openrouter_api_key: str = ""
    extraction_openrouter_model_name: str = ""
    extraction_openrouter_timeout_seconds: int = 60
    extraction_groq_api_key: str = ""
    extraction_groq_model_name: str = ""
    extraction_groq_timeout_seconds: int = 60
    extraction_ollama_api_key: str = ""
    extraction_ollama_model_name: str = ""
    extraction_ollama_timeout_seconds: int = 120
