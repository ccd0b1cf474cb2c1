from docflow.exceptions import InvalidRequestError, TransientPipelineError


class StorageError(TransientPipelineError):
    """Raised when the blob store cannot complete an operation."""


class BlobNotFoundError(StorageError):
    """Raised when a blob does not exist under the requested key."""


class InvalidStorageKeyError(InvalidRequestError):
    """Raised when a key is empty or escapes the store root."""
