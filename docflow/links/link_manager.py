from uuid import uuid4

from docflow.database.models import DocumentLink, LinkType, ProcessingDocument
from docflow.database.repositories.link_repository import LinkRepository
from docflow.database.repositories.processing_document_repository import (
    ProcessingDocumentRepository,
)
from docflow.exceptions import (
    DuplicateLinkError,
    InvalidRequestError,
    LinkNotFoundError,
    PermissionDeniedError,
    ProcessingDocumentNotFoundError,
)
from docflow.logging.logger import Log


class LinkManager:
    """Typed relations between processed documents of one tenant.

    Links are plain graph edges. They never touch pipeline state.
    """

    def __init__(
        self,
        link_repo: LinkRepository,
        processing_repo: ProcessingDocumentRepository,
    ) -> None:
        self._link_repo = link_repo
        self._processing_repo = processing_repo

    def create_link(
        self,
        tenant_id: str,
        source_id: str,
        target_id: str,
        link_type: LinkType,
        note: str | None = None,
    ) -> DocumentLink:
        if source_id == target_id:
            raise InvalidRequestError("A document cannot be linked to itself")
        self._require_owned(tenant_id, source_id)
        self._require_owned(tenant_id, target_id)
        if self._link_repo.find_between(source_id, target_id, link_type) is not None:
            raise DuplicateLinkError(f"A {link_type.value} link already joins these documents")

        link = self._link_repo.create(
            DocumentLink(
                id=str(uuid4()),
                tenant_id=tenant_id,
                source_id=source_id,
                target_id=target_id,
                link_type=link_type,
                note=note,
            )
        )
        Log.info(
            f"Linked documents as {link_type.value}",
            tenant=tenant_id,
            source=source_id,
            target=target_id,
        )
        return link

    def update_link(
        self,
        tenant_id: str,
        link_id: str,
        link_type: LinkType | None = None,
        note: str | None = None,
    ) -> DocumentLink:
        """Change the type and/or note. Omitted fields keep their value."""
        link = self._get_owned(tenant_id, link_id)
        new_type = link_type or link.link_type
        if new_type is not link.link_type:
            clash = self._link_repo.find_between(link.source_id, link.target_id, new_type)
            if clash is not None and clash.id != link.id:
                raise DuplicateLinkError(
                    f"A {new_type.value} link already joins these documents"
                )
        return self._link_repo.update(
            link.id, new_type, note if note is not None else link.note
        )

    def delete_link(self, tenant_id: str, link_id: str) -> None:
        link = self._get_owned(tenant_id, link_id)
        self._link_repo.delete(link.id)
        Log.info("Link deleted", tenant=tenant_id, link=link.id)

    def list_links(self, tenant_id: str, processing_document_id: str) -> list[DocumentLink]:
        self._require_owned(tenant_id, processing_document_id)
        return [
            link
            for link in self._link_repo.list_for_document(processing_document_id)
            if link.tenant_id == tenant_id
        ]

    def _require_owned(self, tenant_id: str, processing_document_id: str) -> ProcessingDocument:
        document = self._processing_repo.find_by_id(processing_document_id)
        if document is None:
            raise ProcessingDocumentNotFoundError(
                f"Processing document {processing_document_id} not found"
            )
        if document.tenant_id != tenant_id:
            raise PermissionDeniedError()
        return document

    def _get_owned(self, tenant_id: str, link_id: str) -> DocumentLink:
        link = self._link_repo.find_by_id(link_id)
        # Another tenant's link is reported as missing.
        if link is None or link.tenant_id != tenant_id:
            raise LinkNotFoundError(f"Link {link_id} not found")
        return link
