from abc import abstractmethod

import httpx
from httpx._types import QueryParamTypes, RequestContent

from shared.clients.ClientInterface import ClientInterface
from shared.errors.ClientErrors import ClientRequestError


class HttpClientInterface(ClientInterface):
    """A collaborator reached over HTTP through one pooled httpx.AsyncClient."""

    _client: httpx.AsyncClient | None

    ##########################################
    ############## ENDPOINTS #################
    ##########################################

    @abstractmethod
    def _get_auth_header(self) -> dict:
        """Headers that authenticate against the backend; empty when no credential is configured."""
        pass

    @abstractmethod
    def _get_base_url(self) -> str:
        pass

    @abstractmethod
    def _get_endpoint_healthcheck(self) -> str:
        pass

    ##########################################
    ############## LIFECYCLE #################
    ##########################################

    async def boot(self) -> None:
        self._client = httpx.AsyncClient(timeout=self.timeout)
        self._last_alive_at = None

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        self._last_alive_at = None

    async def do_healthcheck(self) -> httpx.Response:
        return await self.do_request(method="GET", endpoint=self._get_endpoint_healthcheck(), raise_on_error=True)

    def _get_liveness_errors(self) -> tuple[type[Exception], ...]:
        return (httpx.HTTPError, ClientRequestError)

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def do_request(
        self,
        method: str = "GET",
        endpoint: str = "",
        json: dict | None = None,
        content: RequestContent | None = None,
        params: QueryParamTypes | None = None,
        additional_headers: dict | None = None,
        raise_on_error: bool = False,
    ) -> httpx.Response:
        """Send one request to the backend.

        Either json or content is sent as the body. For raw content the caller
        supplies the Content-Type through additional_headers.

        Raises:
            RuntimeError: If boot() has not been called.
            ClientRequestError: On a non-2xx status when raise_on_error is set.
        """
        if self._client is None:
            raise RuntimeError(f"{self.describe()} is not booted. Call boot() or ensure_ready() first.")

        path = endpoint.strip()
        url = self._get_base_url().rstrip("/") + ("/" + path.lstrip("/") if path else "")
        headers = {**self._get_auth_header(), **(additional_headers or {})}

        if content is not None:
            response = await self._client.request(method, url, headers=headers, params=params, content=content)
        else:
            response = await self._client.request(method, url, headers=headers, params=params, json=json)

        if raise_on_error and response.status_code >= 300:
            self.logging.error("Request to %s failed with status %d: %s", url, response.status_code, response.text[:200])
            raise ClientRequestError(url=url, status_code=response.status_code, body=response.text)
        return response
