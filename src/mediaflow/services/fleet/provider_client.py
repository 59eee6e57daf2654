"""Fleet provider HTTP client for starting and stopping rented GPU capacity."""

import httpx

from mediaflow.services.exceptions import (
    FleetProviderError,
    FleetProviderPermanentError,
    FleetProviderTransientError,
)


class FleetProviderClient:
    """Client for the GPU fleet provider API.

    Endpoints (bearer-token authenticated):
    - POST {endpoint}/start
    - POST {endpoint}/stop
    - GET  {endpoint}/healthz
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize fleet provider client.

        Args:
            endpoint: Base URL of the provider API (FLEET_PROVIDER_ENDPOINT)
            api_key: Bearer token (FLEET_PROVIDER_API_KEY)
            timeout_seconds: Per-request timeout
            transport: Optional httpx transport override
        """
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.api_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport)

    async def _post(self, path: str) -> None:
        if not self.is_configured:
            raise FleetProviderPermanentError("Fleet provider endpoint or API key not configured")

        try:
            async with self._client() as client:
                response = await client.post(f"{self.endpoint}{path}", headers=self.headers)
        except httpx.TimeoutException as e:
            raise FleetProviderTransientError(
                f"Request timeout after {self.timeout_seconds}s: {str(e)}"
            )
        except httpx.HTTPError as e:
            raise FleetProviderTransientError(f"Network error: {str(e)}")

        # Error classification
        if response.is_success:
            return
        if response.status_code == 429:
            raise FleetProviderTransientError(f"Rate limit exceeded: {response.text}")
        elif response.status_code >= 500:
            raise FleetProviderTransientError(
                f"Provider unavailable ({response.status_code}): {response.text}"
            )
        elif response.status_code in (401, 403):
            raise FleetProviderPermanentError(
                f"Unauthorized ({response.status_code}): check FLEET_PROVIDER_API_KEY"
            )
        raise FleetProviderError(f"Unexpected response ({response.status_code}): {response.text}")

    async def start(self) -> None:
        """Request fleet start. Any 2xx means the provider accepted the request.

        Raises:
            FleetProviderTransientError: Timeout, rate limit or 5xx
            FleetProviderPermanentError: Missing configuration or 401/403
            FleetProviderError: Any other non-2xx response
        """
        await self._post("/start")

    async def stop(self) -> None:
        """Request fleet stop.

        Raises:
            FleetProviderError: On any failure (callers treat stop as best-effort)
        """
        await self._post("/stop")

    async def healthcheck(self) -> bool:
        """Probe the fleet healthcheck endpoint.

        Returns:
            True on a 2xx response, False on any other response or network error
        """
        if not self.endpoint:
            return False
        try:
            async with self._client() as client:
                response = await client.get(f"{self.endpoint}/healthz", headers=self.headers)
        except httpx.HTTPError:
            return False
        return response.is_success
