import pytest
from pydantic import ValidationError

from docflow.config.settings import Settings


def _settings() -> Settings:
    return Settings(_env_file=None)


class TestSettingsDefaults:
    def test_default_app_env(self) -> None:
        assert _settings().app_env == "dev"

    def test_default_db_port(self) -> None:
        assert _settings().db_port == 5432

    def test_default_pool_size(self) -> None:
        s = _settings()
        assert (s.db_pool_min_size, s.db_pool_max_size) == (1, 10)

    def test_default_max_job_attempts(self) -> None:
        assert _settings().max_job_attempts == 3

    def test_default_job_poll_interval(self) -> None:
        assert _settings().job_poll_interval_seconds == 5

    def test_default_retry_backoff(self) -> None:
        s = _settings()
        assert (s.retry_base_delay_seconds, s.retry_backoff_multiplier) == (1.0, 4.0)
        assert s.retry_max_delay_seconds == 60.0

    def test_default_render_engine(self) -> None:
        assert _settings().render_engine == "pymupdf"

    def test_default_storage_backend(self) -> None:
        assert _settings().storage_backend == "local"

    def test_pdf_uploads_are_containers(self) -> None:
        assert _settings().pdf_uploads_are_containers is True

    def test_default_allowed_mime_types(self) -> None:
        assert "application/pdf" in _settings().allowed_mime_types

    def test_duplicates_are_tenant_wide(self) -> None:
        s = _settings()
        assert s.duplicate_scope_company is False
        assert s.duplicate_reclassify_policy == "annotation_only"

    def test_idempotency_window(self) -> None:
        assert _settings().idempotency_ttl_hours == 24

    def test_default_extraction_provider(self) -> None:
        s = _settings()
        assert s.extraction_provider == "openai"
        assert s.extraction_openai_timeout_seconds == 60


class TestSettingsFromEnv:
    def test_loads_app_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("APP_ENV", "production")
        assert _settings().app_env == "production"

    def test_loads_log_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        assert _settings().log_level == "DEBUG"

    def test_loads_db_host(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_HOST", "db.example.com")
        assert _settings().db_host == "db.example.com"

    def test_loads_db_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PORT", "5433")
        assert _settings().db_port == 5433

    def test_loads_max_job_attempts(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_JOB_ATTEMPTS", "5")
        assert _settings().max_job_attempts == 5

    def test_loads_storage_backend(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STORAGE_BACKEND", "s3")
        monkeypatch.setenv("S3_BUCKET", "docflow-prod")
        s = _settings()
        assert (s.storage_backend, s.s3_bucket) == ("s3", "docflow-prod")

    def test_loads_mime_type_list_as_json(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ALLOWED_MIME_TYPES", '["application/pdf"]')
        assert _settings().allowed_mime_types == ["application/pdf"]

    def test_loads_boolean_flags(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PDF_UPLOADS_ARE_CONTAINERS", "false")
        monkeypatch.setenv("DUPLICATE_SCOPE_COMPANY", "true")
        s = _settings()
        assert s.pdf_uploads_are_containers is False
        assert s.duplicate_scope_company is True


class TestSettingsValidation:
    def test_invalid_db_port_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DB_PORT", "not_a_number")
        with pytest.raises(ValidationError):
            _settings()

    def test_invalid_max_attempts_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_JOB_ATTEMPTS", "abc")
        with pytest.raises(ValidationError):
            _settings()

    def test_invalid_boolean_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SPLIT_PER_PAGE", "sometimes")
        with pytest.raises(ValidationError):
            _settings()
