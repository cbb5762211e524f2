from abc import abstractmethod

import httpx
from shared.clients.HttpClientInterface import HttpClientInterface
from shared.errors.ClientErrors import ClientRequestError
from shared.errors.InvoiceErrors import BlobStorageError
from shared.helper.HelperConfig import HelperConfig


class BlobClientInterface(HttpClientInterface):
    def __init__(self, helper_config: HelperConfig):
        super().__init__(helper_config=helper_config)

    ##########################################
    ################ GETTER ##################
    ##########################################

    ################ GENERAL ##################
    def _get_client_type(self) -> str:
        return "blob"

    @abstractmethod
    def build_uri(self, path: str) -> str:
        """
        Returns the canonical URI of a stored object (e.g. "gs://bucket/path").
        """
        pass

    ################ ENDPOINTS ##################
    @abstractmethod
    def _get_endpoint_upload(self) -> str:
        """
        Returns the endpoint path for object uploads.
        """
        pass

    ################ PAYLOAD BUILDER ##################
    @abstractmethod
    def get_upload_params(self, path: str) -> dict:
        """
        Returns the query parameters for uploading an object to the given path.
        """
        pass

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_upload(self, content: bytes, path: str, content_type: str) -> str:
        """Upload raw bytes as a single object.

        Args:
            content (bytes): The file content.
            path (str): Destination path inside the bucket (e.g. "invoices/<tenant>/<file>").
            content_type (str): MIME type stored with the object.

        Returns:
            str: The URI of the uploaded object.

        Raises:
            BlobStorageError: If the upload fails for any reason.
        """
        try:
            await self.do_request(
                method="POST",
                content=content,
                params=self.get_upload_params(path),
                endpoint=self._get_endpoint_upload(),
                additional_headers={"Content-Type": content_type},
                raise_on_error=True,
            )
        except (httpx.HTTPError, ClientRequestError) as e:
            self.logging.error("Failed to upload file to %s: %s (%s)", self.get_engine_name(), path, e)
            raise BlobStorageError(f"Blob upload error: could not upload {path}. {e}")
        uri = self.build_uri(path)
        self.logging.info("Uploaded %s to %s.", path, uri)
        return uri
