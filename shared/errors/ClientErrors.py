class ClientRequestError(Exception):
    """Raised when a request to a remote backend returns a non-2xx status.

    Attributes:
        url (str): The requested URL.
        status_code (int): The HTTP status returned by the backend.
        body (str): The first 500 characters of the response body.
    """

    def __init__(self, url: str, status_code: int, body: str = ""):
        self.url = url
        self.status_code = status_code
        self.body = body[:500]
        super().__init__(f"Request to {url} failed with status {status_code}: {self.body}")


class DocStoreError(Exception):
    """Raised when the document store driver fails, e.g. an unreachable server or a rejected command.

    Wraps the driver's own exception so that callers do not depend on a specific engine.
    """

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Document store {operation} failed: {cause}")
