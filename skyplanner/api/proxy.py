"""Reverse proxy route: ``/api/app/{path}`` -> ``{BACKEND_API_URL}/api/{path}``."""

from fastapi import APIRouter, Depends, Request, Response

from skyplanner.api.deps import get_backend_proxy, get_request_context
from skyplanner.core.request_utils import RequestContext
from skyplanner.services.proxy import BODYLESS_METHODS, BackendProxy

router = APIRouter(prefix="/api/app", tags=["proxy"])


@router.api_route(
    "/{path:path}",
    methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def proxy_to_backend(
    path: str,
    request: Request,
    ctx: RequestContext = Depends(get_request_context),
    proxy: BackendProxy = Depends(get_backend_proxy),
) -> Response:
    body = None if ctx.method in BODYLESS_METHODS else await request.body()
    upstream = await proxy.forward(
        method=ctx.method,
        path=path,
        query=request.url.query,
        headers=ctx.headers,
        body=body,
        client_ip=ctx.client_ip,
    )

    response = Response(content=upstream.body, status_code=upstream.status_code)
    for name, value in upstream.headers:
        response.headers.append(name, value)
    return response
