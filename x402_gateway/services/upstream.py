# x402_gateway/services/upstream.py
import logging
from typing import Dict, Mapping, Optional, Tuple
from urllib.parse import urljoin

import requests
from requests.exceptions import RequestException

from x402_gateway.core.config import settings

logger = logging.getLogger(__name__)

# Headers that apply to a single connection and must not be forwarded
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
    "content-encoding",
}


def filter_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Drop hop-by-hop headers before forwarding a request or response."""
    return {
        name: value for name, value in headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS
    }


def forward_request(
    method: str,
    path: str,
    query: Optional[str] = None,
    headers: Optional[Mapping[str, str]] = None,
    body: Optional[bytes] = None
) -> Tuple[int, Dict[str, str], bytes]:
    """
    Forwards a request to the configured upstream API.

    Args:
        method: HTTP method
        path: Request path, joined onto UPSTREAM_API_URL
        query: Raw query string (without '?')
        headers: Request headers to forward
        body: Raw request body

    Returns:
        Tuple of (status_code, response headers, response body)

    Raises:
        RequestException: If the upstream cannot be reached
    """
    api_url = urljoin(str(settings.UPSTREAM_API_URL).rstrip("/") + "/", path.lstrip("/"))
    if query:
        api_url = f"{api_url}?{query}"

    try:
        response = requests.request(
            method,
            api_url,
            headers=filter_headers(headers or {}),
            data=body or None,
            timeout=settings.UPSTREAM_TIMEOUT_SECONDS
        )
    except RequestException as e:
        logger.error(f"Error forwarding {method} request to upstream ({api_url}): {e}")
        raise

    logger.info(f"Upstream {method} {path} returned {response.status_code}")
    return response.status_code, filter_headers(response.headers), response.content
