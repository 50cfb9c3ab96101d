"""Order Service Server."""

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from .auth import Actor
from .config import Settings
from .container import ServiceContainer
from .errors import OrderServiceError, ServerError
from .logger import logger
from .schemas import CreateOrderRequest, UpdatePaymentStatusRequest, UpdateStatusRequest
from .webhook import SIGNATURE_HEADER

API_PREFIX = "/api/v1"

router = APIRouter()
orders_router = APIRouter(prefix="/orders", tags=["orders"])
notifications_router = APIRouter(prefix="/notifications", tags=["notifications"])
webhooks_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def envelope(data: Any = None, success: bool = True, errors: Optional[list[str]] = None) -> dict:
    """Wrap a payload in the ``{success, data, errors}`` response envelope."""
    return {"success": success, "data": data, "errors": errors or []}


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_role: Optional[str] = Header(None),
) -> Actor:
    """Resolve the caller from the headers set by the authentication layer."""
    return Actor.from_headers(x_user_id, x_user_role)


@router.get("/health")
def health_check(container: ServiceContainer = Depends(get_container)):
    """Check the health status of the service.

    Returns:
        dict: Liveness status and whether order events are enabled.
    """
    return {"status": "healthy", "kafka": container.events.enabled}


@router.get("/health/ready")
def readiness_check(container: ServiceContainer = Depends(get_container)):
    """Check if the service is ready to accept traffic.

    Returns:
        dict: Service readiness status and datastore connection status.
    """
    database_ok = container.repositories.ping()
    return {"status": "ready" if database_ok else "not_ready", "database": database_ok}


@orders_router.post("", status_code=201)
def create_order(
    body: CreateOrderRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
):
    """Place an order for a single product."""
    logger.info(f"Received new order from {actor.user_id} for product {body.product_id}")
    engine = container.engine
    order = engine.create_order(
        actor.user_id,
        body.product_id,
        body.quantity,
        body.shipping_address,
        body.payment_method,
    )
    return envelope({"order": engine.present(order)})


@orders_router.get("/my-orders")
def list_my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
):
    return envelope(container.engine.list_buyer_orders(actor, page, limit, status))


@orders_router.get("/shop")
def list_shop_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
):
    return envelope(container.engine.list_shop_orders(actor, page, limit, status))


@orders_router.get("/statuses")
def list_order_statuses(container: ServiceContainer = Depends(get_container)):
    """Describe every fulfillment status and its possible next statuses."""
    return envelope({"statuses": container.engine.describe_statuses()})


@orders_router.get("/{order_id}")
def get_order(order_id: str, actor: Actor = Depends(get_actor), container: ServiceContainer = Depends(get_container)):
    engine = container.engine
    return envelope({"order": engine.present(engine.get_order(order_id, actor))})


@orders_router.patch("/{order_id}/status")
def update_order_status(
    order_id: str,
    body: UpdateStatusRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
):
    """Move an order to its next fulfillment status."""
    engine = container.engine
    order = engine.update_order_status(order_id, actor, body.status)
    return envelope({"order": engine.present(order)})


@orders_router.get("/{order_id}/payment-status")
def check_payment_status(
    order_id: str,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
):
    """Query the payment gateway for the state of the caller's payment."""
    result = container.engine.check_payment_status(order_id, actor)
    return envelope({"orderId": order_id, "paymentStatus": result})


@orders_router.patch("/{order_id}/payment-status")
def update_payment_status(
    order_id: str,
    body: UpdatePaymentStatusRequest,
    actor: Actor = Depends(get_actor),
    container: ServiceContainer = Depends(get_container),
):
    """Administratively correct an order's payment status."""
    engine = container.engine
    order = engine.update_payment_status(
        order_id, actor, body.payment_status, body.transaction_id, body.payment_details
    )
    return envelope({"order": engine.present(order)})


@notifications_router.get("")
def list_notifications(actor: Actor = Depends(get_actor), container: ServiceContainer = Depends(get_container)):
    notifications = container.engine.dispatcher.list_for(actor.user_id)
    return envelope({"notifications": [n.model_dump(by_alias=True, mode="json") for n in notifications]})


@webhooks_router.post("/zenopay")
async def zenopay_webhook(request: Request, container: ServiceContainer = Depends(get_container)):
    """Receive a ZenoPay payment callback."""
    raw_body = await request.body()
    result = await run_in_threadpool(container.reconciler.handle, raw_body, request.headers.get(SIGNATURE_HEADER))
    return JSONResponse(status_code=result.status_code, content=result.body)


@webhooks_router.get("/zenopay")
def zenopay_webhook_check():
    return {"message": "Zenopay webhook endpoint is working"}


def handle_service_error(request: Request, exc: OrderServiceError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=int(exc.status_code), content=envelope(success=False, errors=[exc.message]))


def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())[1:])
        errors.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(status_code=400, content=envelope(success=False, errors=errors))


def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.opt(exception=exc).error(f"Unhandled error on {request.method} {request.url.path}")
    error = ServerError()
    return JSONResponse(status_code=int(error.status_code), content=envelope(success=False, errors=[error.message]))


def create_app(container: Optional[ServiceContainer] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        container: Pre-built collaborators; built from the environment when omitted

    Returns:
        FastAPI: The configured application
    """
    if container is None:
        container = ServiceContainer.build(Settings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down order service...")
        container.events.flush()

    app = FastAPI(title="Order Service", lifespan=lifespan)
    app.state.container = container

    app.add_exception_handler(OrderServiceError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(router)
    app.include_router(orders_router, prefix=API_PREFIX)
    app.include_router(notifications_router, prefix=API_PREFIX)
    app.include_router(webhooks_router, prefix=API_PREFIX)
    logger.info("API router mounted.")
    return app
