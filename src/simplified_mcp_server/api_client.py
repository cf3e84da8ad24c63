"""HTTP client for the Simplified REST API."""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from .errors import AppError, ErrorType

logger = logging.getLogger(__name__)

USER_AGENT = "simplified-mcp-server/1.0.0"


class APIResponse(BaseModel):
    """Decoded response from the API."""

    status: int
    status_text: str = ""
    data: Any = None


def error_type_for_status(status: int) -> ErrorType:
    if status in (401, 403):
        return ErrorType.AUTH_ERROR
    if 400 <= status < 500:
        return ErrorType.VALIDATION_ERROR
    return ErrorType.API_ERROR


class SimplifiedAPIClient:
    """Authenticated async client with retry and exponential backoff.

    Client errors (4xx) are raised immediately. Server errors and transport
    failures are retried ``retry_attempts`` times, waiting
    ``retry_delay * 2 ** attempt`` milliseconds between attempts.
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = "https://api.simplified.com",
        timeout: int = 30000,
        retry_attempts: int = 3,
        retry_delay: int = 1000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout / 1000.0,
            headers={
                "User-Agent": USER_AGENT,
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "SimplifiedAPIClient":
        return cls(
            api_token=config.api_token,
            base_url=config.api_base_url,
            timeout=config.timeout,
            retry_attempts=config.retry_attempts,
            retry_delay=config.retry_delay,
            **kwargs,
        )

    async def __aenter__(self) -> "SimplifiedAPIClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def update_token(self, token: str) -> None:
        self.api_token = token

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Api-Key {self.api_token}"}

    async def request(
        self,
        method: str,
        path: str,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> APIResponse:
        """Make an authenticated request, retrying transient failures."""
        method = method.upper()
        request_headers = {**self._auth_headers(), **(headers or {})}
        kwargs: Dict[str, Any] = {"headers": request_headers}
        if params:
            kwargs["params"] = {k: v for k, v in params.items() if v is not None}
        if data is not None and method in ("POST", "PUT", "PATCH"):
            kwargs["json"] = data
        if timeout is not None:
            kwargs["timeout"] = timeout / 1000.0

        last_error: Optional[Exception] = None
        total_attempts = self.retry_attempts + 1

        for attempt in range(total_attempts):
            try:
                logger.debug(f"{method} {path} (attempt {attempt + 1}/{total_attempts})")
                response = await self._client.request(method, path, **kwargs)
                return self._handle_response(response, method, path)
            except AppError as e:
                if e.status is not None and e.status < 500:
                    raise
                last_error = e
            except httpx.TransportError as e:
                last_error = e

            logger.warning(f"{method} {path} failed: {last_error}")
            if attempt < total_attempts - 1:
                await asyncio.sleep(self.retry_delay * (2**attempt) / 1000.0)

        message = f"Request failed after {total_attempts} attempts: {last_error}"
        if isinstance(last_error, AppError):
            raise AppError(
                last_error.type,
                message,
                {**last_error.details, "url": path, "method": method},
                last_error.status,
            ) from last_error
        raise AppError(
            ErrorType.NETWORK_ERROR,
            message,
            {"originalError": str(last_error), "url": path, "method": method},
        ) from last_error

    def _handle_response(
        self, response: httpx.Response, method: str, path: str
    ) -> APIResponse:
        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            try:
                data = response.json()
            except ValueError:
                data = response.text
        else:
            data = response.text

        if response.is_success:
            return APIResponse(
                status=response.status_code,
                status_text=response.reason_phrase,
                data=data,
            )

        status = response.status_code
        if status >= 400:
            logger.debug(f"Response body for {method} {path}: {response.text}")
        raise AppError(
            error_type_for_status(status),
            f"API request failed: {status} {response.reason_phrase}",
            {
                "status": status,
                "statusText": response.reason_phrase,
                "data": data,
                "url": path,
                "method": method,
            },
            status,
        )

    async def get(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> APIResponse:
        return await self.request(
            "GET", path, params=params, headers=headers, timeout=timeout
        )

    async def post(
        self,
        path: str,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> APIResponse:
        return await self.request(
            "POST", path, data=data, headers=headers, timeout=timeout
        )

    async def put(
        self,
        path: str,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> APIResponse:
        return await self.request(
            "PUT", path, data=data, headers=headers, timeout=timeout
        )

    async def patch(
        self,
        path: str,
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> APIResponse:
        return await self.request(
            "PATCH", path, data=data, headers=headers, timeout=timeout
        )

    async def delete(
        self,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
    ) -> APIResponse:
        return await self.request("DELETE", path, headers=headers, timeout=timeout)

    async def test_connection(self) -> bool:
        """Return True when the API health endpoint answers successfully."""
        try:
            await self.get("/health")
            return True
        except AppError as e:
            logger.debug(f"Connection test failed: {e}")
            return False
