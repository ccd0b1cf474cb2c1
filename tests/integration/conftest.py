import os
import uuid
from collections.abc import Generator
from typing import Any

import psycopg
import pytest
from records import make_document, make_processing_document

from docflow.config.settings import Settings
from docflow.database.connection import apply_schema, close_pool, get_connection, init_pool
from docflow.database.models import Document, ProcessingDocument
from docflow.database.repositories.document_repository import DocumentRepository
from docflow.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)

# Children reference their parent, so they are removed first.
_CLEANUP_STATEMENTS = (
    """
    DELETE FROM pipeline_jobs WHERE processing_document_id IN
        (SELECT id FROM processing_documents WHERE tenant_id = %(tenant)s)
    """,
    """
    DELETE FROM processing_state_events WHERE processing_document_id IN
        (SELECT id FROM processing_documents WHERE tenant_id = %(tenant)s)
    """,
    """
    DELETE FROM document_pages WHERE processing_document_id IN
        (SELECT id FROM processing_documents WHERE tenant_id = %(tenant)s)
    """,
    """
    DELETE FROM document_revisions WHERE processing_document_id IN
        (SELECT id FROM processing_documents WHERE tenant_id = %(tenant)s)
    """,
    """
    DELETE FROM duplicate_decisions WHERE processing_document_id IN
        (SELECT id FROM processing_documents WHERE tenant_id = %(tenant)s)
    """,
    "DELETE FROM document_links WHERE tenant_id = %(tenant)s",
    "DELETE FROM processing_documents WHERE tenant_id = %(tenant)s AND parent_id IS NOT NULL",
    "DELETE FROM processing_documents WHERE tenant_id = %(tenant)s",
    "DELETE FROM documents WHERE tenant_id = %(tenant)s",
    "DELETE FROM idempotency_records WHERE tenant_id = %(tenant)s",
)


def _test_settings() -> Settings:
    os.environ.setdefault("DB_DATABASE", "docflow_test")
    return Settings()


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    return _test_settings()


@pytest.fixture(scope="session")
def integration_pool(test_settings: Settings) -> Generator[None, None, None]:
    try:
        init_pool(test_settings)
        apply_schema()
    except Exception as e:
        close_pool()
        pytest.skip(
            f"PostgreSQL test DB not available: {e}. "
            "Set DB_* env to point at a disposable database"
        )
    try:
        yield
    finally:
        close_pool()


@pytest.fixture
def db_conn(integration_pool: None) -> Generator[psycopg.Connection[Any], None, None]:
    with get_connection() as conn:
        yield conn


@pytest.fixture
def tenant_id(integration_pool: None) -> Generator[str, None, None]:
    """A fresh tenant per test. Everything it owns is deleted afterwards."""
    tenant = f"test-{uuid.uuid4()}"
    yield tenant
    with get_connection() as conn:
        with conn.cursor() as cur:
            for statement in _CLEANUP_STATEMENTS:
                cur.execute(statement, {"tenant": tenant})
        conn.commit()


@pytest.fixture
def other_tenant_id(integration_pool: None) -> Generator[str, None, None]:
    tenant = f"test-{uuid.uuid4()}"
    yield tenant
    with get_connection() as conn:
        with conn.cursor() as cur:
            for statement in _CLEANUP_STATEMENTS:
                cur.execute(statement, {"tenant": tenant})
        conn.commit()


@pytest.fixture
def seed_document(tenant_id: str) -> Document:
    return DocumentRepository().create(make_document(tenant_id))


@pytest.fixture
def seed_processing_document(seed_document: Document) -> ProcessingDocument:
    return ProcessingDocumentRepository().create(
        make_processing_document(seed_document), trigger="upload"
    )
