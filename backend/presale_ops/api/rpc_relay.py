"""
JSON-RPC relay.

Forwards POST bodies verbatim to a fixed upstream per network and returns the
upstream status and body unchanged, with permissive CORS headers. No retries,
no rewriting.
"""

import logging

import httpx
from fastapi import APIRouter, Request, Response, status

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/rpc", tags=["rpc"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}


def _unknown_network() -> Response:
    return Response(
        content="Unknown network",
        status_code=status.HTTP_404_NOT_FOUND,
        media_type="text/plain",
    )


@router.options("/{network}", include_in_schema=False)
async def relay_preflight(network: str, request: Request) -> Response:
    if network not in request.app.state.settings.rpc_upstreams:
        return _unknown_network()
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)


@router.post("/{network}", summary="Relay a JSON-RPC request")
async def relay(network: str, request: Request) -> Response:
    target = request.app.state.settings.rpc_upstreams.get(network)
    if not target:
        return _unknown_network()

    body = await request.body()
    client: httpx.AsyncClient = request.app.state.http_client
    try:
        upstream = await client.post(
            target,
            content=body,
            headers={"Content-Type": "application/json"},
        )
    except httpx.HTTPError as e:
        logger.error(f"rpc relay: {network} upstream unreachable: {e}")
        return Response(
            content="Upstream unavailable",
            status_code=status.HTTP_502_BAD_GATEWAY,
            media_type="text/plain",
            headers=CORS_HEADERS,
        )

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        headers={"Content-Type": "application/json", **CORS_HEADERS},
    )
