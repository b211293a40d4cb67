"""
API gateway: forwards /api/* to the service that owns the path.

Admin-only paths are checked against the account service (GET /api/users/me)
before anything is forwarded.
"""
import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Depends, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from errors import install_error_handlers

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

ACCOUNT_SERVICE_URL = os.getenv("ACCOUNT_SERVICE_URL", "http://account-service:3001")
PRODUCT_SERVICE_URL = os.getenv("PRODUCT_SERVICE_URL", "http://product-service:3002")
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", "10"))

ROUTES = (
    ("admin/orders", ACCOUNT_SERVICE_URL),
    ("admin/coupons", PRODUCT_SERVICE_URL),
    ("auth", ACCOUNT_SERVICE_URL),
    ("users", ACCOUNT_SERVICE_URL),
    ("cart", ACCOUNT_SERVICE_URL),
    ("orders", ACCOUNT_SERVICE_URL),
    ("payments", ACCOUNT_SERVICE_URL),
    ("products", PRODUCT_SERVICE_URL),
    ("categories", PRODUCT_SERVICE_URL),
    ("coupons", PRODUCT_SERVICE_URL),
)

# Catalog paths where anything but a read needs an admin
ADMIN_WRITE_PREFIXES = ("products", "categories")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # one pooled client for every proxied call
    app.state.http_client = httpx.AsyncClient(timeout=GATEWAY_TIMEOUT)
    try:
        yield
    finally:
        await app.state.http_client.aclose()


app = FastAPI(title="API Gateway", version="1.0.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


def _matches(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def resolve_service(path: str) -> Optional[str]:
    for prefix, base_url in ROUTES:
        if _matches(path, prefix):
            return base_url
    return None


def requires_admin(method: str, path: str) -> bool:
    if path.startswith("admin/") or path == "users":
        return True
    if method != "GET":
        return any(_matches(path, prefix) for prefix in ADMIN_WRITE_PREFIXES)
    return False


async def check_admin(client: httpx.AsyncClient, authorization: Optional[str]) -> None:
    if not authorization:
        raise HTTPException(status_code=401, detail="No authorization header")
    try:
        resp = await client.get(f"{ACCOUNT_SERVICE_URL}/api/users/me", headers={"Authorization": authorization})
    except httpx.HTTPError as e:
        logger.error("Admin check failed: %s", e)
        raise HTTPException(status_code=403, detail="Access denied")
    if resp.status_code != 200:
        logger.info("Admin check rejected with %s", resp.status_code)
        raise HTTPException(status_code=403, detail="Access denied")
    try:
        user = resp.json()
    except ValueError:
        logger.info("Admin check returned a non-JSON body")
        raise HTTPException(status_code=403, detail="Access denied")
    if not isinstance(user, dict) or user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin access required")


def _relay(resp: httpx.Response) -> Response:
    if resp.headers.get("content-type", "").startswith("application/json"):
        return JSONResponse(status_code=resp.status_code, content=resp.json())
    return Response(content=resp.content, status_code=resp.status_code,
                    media_type=resp.headers.get("content-type"))


@app.get("/")
def root():
    return {"message": "API gateway running"}

@app.get("/health")
def health():
    return {"status": "ok", "service": "api-gateway"}

@app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def proxy(path: str, request: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    path = path.strip("/")
    base_url = resolve_service(path)
    if base_url is None:
        raise HTTPException(status_code=404, detail="Route not found")

    authorization = request.headers.get("authorization")
    if requires_admin(request.method, path):
        await check_admin(client, authorization)

    headers = {}
    if authorization:
        headers["Authorization"] = authorization
    content_type = request.headers.get("content-type")
    if content_type:
        headers["Content-Type"] = content_type

    url = f"{base_url}/api/{path}"
    logger.info("Proxying %s %s to %s", request.method, request.url.path, base_url)
    try:
        resp = await client.request(
            request.method,
            url,
            params=list(request.query_params.multi_items()),
            content=await request.body(),
            headers=headers,
        )
    except httpx.TimeoutException as e:
        logger.error("Timed out proxying %s: %s", url, e)
        raise HTTPException(status_code=504, detail="Upstream timeout")
    except httpx.HTTPError as e:
        logger.error("Error proxying %s: %s", url, e)
        raise HTTPException(status_code=502, detail="Proxy error")
    return _relay(resp)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
