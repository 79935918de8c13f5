"""
HTTP request helper shared by the network-backed providers.

Classifies responses into the provider error taxonomy and retries the
transient ones with exponential backoff.
"""

from typing import Any, Dict, Optional
import logging

import httpx

from core.exceptions import (
    AuthenticationError,
    NetworkError,
    ProviderError,
    RateLimitError,
    ResponseFormatError,
    RetryableError
)
from sync.retry import retry_async

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response):
    value = response.headers.get("Retry-After")
    if value and value.isdigit():
        return int(value)
    return None


async def send_once(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    **kwargs
) -> Any:
    """
    Send one request and decode the JSON body.

    Raises:
        NetworkError: Timeouts, transport failures and 5xx responses
        RateLimitError: HTTP 429
        AuthenticationError: HTTP 401/403
        ProviderError: Other 4xx responses
        ResponseFormatError: Body is not JSON
    """
    context: Dict[str, Any] = {"provider": provider, "url": url}
    try:
        response = await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise NetworkError(f"Request timeout for {url}", context=context, original_exception=e)
    except httpx.RequestError as e:
        raise NetworkError(f"Network error for {url}", context=context, original_exception=e)

    context["status_code"] = response.status_code
    if response.status_code in (401, 403):
        raise AuthenticationError(f"Authentication failed for {url}", context=context)
    if response.status_code == 429:
        raise RateLimitError(f"Rate limit exceeded for {url}", context=context, retry_after=_retry_after(response))
    if response.status_code >= 500:
        raise NetworkError(f"Server error {response.status_code} for {url}", context=context)
    if response.status_code >= 400:
        raise ProviderError(f"Request failed with {response.status_code} for {url}", context=context)

    try:
        return response.json()
    except ValueError as e:
        raise ResponseFormatError(f"Invalid JSON from {url}", context=context, original_exception=e)


async def request_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    provider: str,
    max_attempts: Optional[int] = None,
    **kwargs
) -> Any:
    """
    send_once with the retry budget applied to retryable failures.

    max_attempts=1 leaves retrying to the caller.
    """
    async def attempt():
        return await send_once(client, method, url, provider, **kwargs)

    return await retry_async(
        attempt,
        f"{provider} {method} {url}",
        max_attempts=max_attempts,
        retry_on=(RetryableError,)
    )
