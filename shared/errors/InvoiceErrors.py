"""Exception taxonomy for the invoice pipeline, retrieval and storage layers.

Every error carries a sanitized ``user_message`` that can be shown to the
caller as-is. The technical detail goes into the regular exception message
and the logs.
"""


class InvoiceInsightsError(Exception):
    """Base class for all errors surfaced to callers of the services."""

    default_user_message = "An unexpected error occurred while processing the invoice."

    def __init__(self, message: str | None = None, user_message: str | None = None):
        # the technical message may carry hostnames or credentials and never becomes the user message
        self.user_message = user_message or self.default_user_message
        super().__init__(message or self.user_message)


class InvalidInputError(InvoiceInsightsError):
    """Malformed tenant/record identifiers, unsupported file type or size.

    Raised before any remote call is made.
    """

    default_user_message = "The request contains invalid input."


class NotFoundError(InvoiceInsightsError):
    default_user_message = "Invoice not found."


class MissingEmbeddingError(InvoiceInsightsError):
    """The source invoice of a similarity search has no stored embedding."""

    default_user_message = "This invoice has no embedding, similar invoices cannot be searched."


class FatalPipelineError(InvoiceInsightsError):
    """A mandatory ingestion stage failed. No record has been created."""

    default_user_message = "The AI service could not process this invoice. Please try again later."

    def __init__(self, stage: str, message: str | None = None, user_message: str | None = None):
        self.stage = stage
        super().__init__(message=message, user_message=user_message)


class StorageError(InvoiceInsightsError):
    """Insert, update or find against the document store failed."""

    default_user_message = "Failed to save invoice to the database."


class BlobStorageError(StorageError):
    """Upload of the original file to blob storage failed."""

    default_user_message = "Could not store the original invoice file. Please try again later."
