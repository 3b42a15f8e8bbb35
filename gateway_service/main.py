import logging

import httpx
from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from pos_common.config import (
    HTTP_TIMEOUT, NOTIFICATION_SERVICE_URL, ORDER_SERVICE_URL, TABLE_SERVICE_URL,
    USER_SERVICE_URL, configure_logging,
)
from pos_common.envelope import failure
from pos_common.errors import install_error_handlers

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="gateway_service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)

# httpx has already decoded the body, these would lie about it
HOP_HEADERS = {"content-length", "content-encoding", "transfer-encoding", "connection"}

ALL_METHODS = ["GET", "POST", "PUT", "DELETE"]


async def get_http_client():
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
        yield client


# --- PROXY ---
async def forward_request(service_url: str, path: str, request: Request, client: httpx.AsyncClient):
    headers = dict(request.headers)
    headers.pop("host", None)
    headers.pop("content-length", None)
    params = dict(request.query_params)

    try:
        body = await request.body()
        response = await client.request(
            method=request.method,
            url=f"{service_url}/{path}",
            headers=headers,
            params=params,
            content=body,
        )
    except (httpx.ConnectError, httpx.TimeoutException) as e:
        logger.error("%s %s -> %s unreachable: %s", request.method, path, service_url, e)
        return JSONResponse(
            status_code=503,
            content=failure("unavailable", f"Service Unavailable: {service_url}", retryable=True),
        )

    return Response(
        content=response.content,
        status_code=response.status_code,
        headers={k: v for k, v in response.headers.items() if k.lower() not in HOP_HEADERS},
    )


# ==========================================
# ROUTES
# ==========================================

# 1. ACCOUNTS (USER SERVICE)
@app.api_route("/login", methods=["POST"])
async def login(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(USER_SERVICE_URL, "login", req, client)


@app.api_route("/bootstrap", methods=["POST"])
async def bootstrap(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(USER_SERVICE_URL, "bootstrap", req, client)


@app.api_route("/verify", methods=["GET"])
async def verify(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(USER_SERVICE_URL, "verify", req, client)


@app.api_route("/accounts", methods=["GET", "POST"])
async def accounts_root(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(USER_SERVICE_URL, "accounts", req, client)


@app.api_route("/accounts/{path:path}", methods=ALL_METHODS)
async def accounts_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(USER_SERVICE_URL, f"accounts/{path}", req, client)


# 2. ORDER SERVICE
@app.api_route("/orders", methods=["GET", "POST"])
async def orders_root(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, "orders", req, client)


@app.api_route("/orders/{path:path}", methods=ALL_METHODS)
async def orders_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, f"orders/{path}", req, client)


@app.api_route("/order-items/{path:path}", methods=ALL_METHODS)
async def order_items_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, f"order-items/{path}", req, client)


@app.api_route("/bills/{path:path}", methods=["GET", "POST"])
async def bills_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, f"bills/{path}", req, client)


@app.api_route("/kitchen/{path:path}", methods=["GET", "POST"])
async def kitchen_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, f"kitchen/{path}", req, client)


@app.api_route("/customers", methods=["GET", "POST"])
async def customers_root(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, "customers", req, client)


@app.api_route("/customers/{path:path}", methods=ALL_METHODS)
async def customers_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, f"customers/{path}", req, client)


@app.api_route("/reports/{path:path}", methods=["GET"])
async def reports_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, f"reports/{path}", req, client)


# Reconciliation lives in the order service; must stay above /tables/{path}
@app.api_route("/tables/reconcile", methods=["POST"])
async def tables_reconcile(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(ORDER_SERVICE_URL, "tables/reconcile", req, client)


# 3. TABLE SERVICE
@app.api_route("/halls", methods=["GET", "POST"])
async def halls_root(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(TABLE_SERVICE_URL, "halls", req, client)


@app.api_route("/halls/{path:path}", methods=ALL_METHODS)
async def halls_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(TABLE_SERVICE_URL, f"halls/{path}", req, client)


@app.api_route("/tables", methods=["GET", "POST"])
async def tables_root(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(TABLE_SERVICE_URL, "tables", req, client)


@app.api_route("/tables/{path:path}", methods=ALL_METHODS)
async def tables_path(path: str, req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(TABLE_SERVICE_URL, f"tables/{path}", req, client)


# 4. NOTIFICATION
@app.api_route("/notify", methods=["POST"])
async def notify(req: Request, client: httpx.AsyncClient = Depends(get_http_client)):
    return await forward_request(NOTIFICATION_SERVICE_URL, "notify", req, client)


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
