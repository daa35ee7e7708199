# x402_gateway/api/endpoints/proxy.py
import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool
from requests.exceptions import RequestException

from x402_gateway.services.upstream import forward_request
from x402_gateway.x402.middleware import mark_resource_unavailable

logger = logging.getLogger(__name__)
router = APIRouter()

PROXIED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


@router.api_route("/{path:path}", methods=PROXIED_METHODS, include_in_schema=False)
async def proxy(path: str, request: Request) -> Response:
    """
    Forward a request to the upstream API.

    Metered routes only reach this endpoint after the x402 middleware
    verified the payment; the carried X-Payment-* headers are forwarded
    to the upstream along with the client's headers. A payment is settled
    for any upstream status; when the upstream cannot be reached the request
    is marked so the payment is not settled.

    Raises:
        HTTPException: 502 if the upstream cannot be reached
    """
    body = await request.body()
    try:
        status_code, headers, content = await run_in_threadpool(
            forward_request,
            method=request.method,
            path=request.url.path,
            query=request.url.query,
            headers=request.headers,
            body=body
        )
    except RequestException as e:
        logger.error(f"Failed to reach upstream for {request.url.path}: {e}")
        mark_resource_unavailable(request)
        raise HTTPException(status_code=502, detail="Upstream service unavailable")

    return Response(content=content, status_code=status_code, headers=headers)
