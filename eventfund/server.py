from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import httpx
import orjson

from .config import Settings
from .errors import (
    AppError, ConfigurationError, InvalidRequest,
    app_error_handler, error_response, store_error_handler,
)
from .gateway import (
    Cashfree, InvalidSignature, PaymentGateway, SUCCESS,
    build_order, parse_contribution_id,
)
from .helpers import (
    is_non_blank, is_positive_number, now_ts, parse_amount, parse_iso_date,
)
from .infra.changefeed import ChangeFeed, new_feed
from .infra.sql import make_async_engine
from .model.orm import Base, METHODS, ITEM_TYPES
from .model.contributions import ContributionStore
from .model.events import EventStore
from .model.planning import PlanningStore, summarize
from .policy import AccessPolicy

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import (
    HTMLResponse, ORJSONResponse, PlainTextResponse, Response,
)
from fastapi.templating import Jinja2Templates

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

FORM_ERROR = "Please enter a valid name and a positive amount."

router = APIRouter()


# ----------------------------
# Dependencies (everything hangs off app.state)
# ----------------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_policy(request: Request) -> AccessPolicy:
    return request.app.state.policy


async def get_db(request: Request) -> AsyncSession:
    async with request.app.state.SessionAsync() as session:
        yield session


async def contributions(
    request: Request, db: AsyncSession = Depends(get_db)
) -> ContributionStore:
    st = request.app.state
    return ContributionStore(db=db, gated=st.gated, feed=st.changes)


async def events(
    request: Request, db: AsyncSession = Depends(get_db)
) -> EventStore:
    st = request.app.state
    return EventStore(db=db, gated=st.gated, feed=st.changes)


async def planning(
    request: Request, db: AsyncSession = Depends(get_db)
) -> PlanningStore:
    st = request.app.state
    return PlanningStore(db=db, gated=st.gated, feed=st.changes)


def current_identity(request: Request) -> Optional[str]:
    # set by the auth layer in front of us
    return request.headers.get(request.app.state.settings.identity_header)


def require_admin(
    identity: Optional[str] = Depends(current_identity),
    policy: AccessPolicy = Depends(get_policy),
) -> str:
    if not policy.is_admin(identity):
        raise HTTPException(status_code=403, detail="admin role required")
    return identity


# ----------------------------
# Order Request Handler
# ----------------------------
@router.options("/functions/create-cashfree-order")
@router.options("/functions/create-cashfree-webhook")
async def functions_preflight():
    return PlainTextResponse("ok")


@router.post("/functions/create-cashfree-order")
async def create_cashfree_order(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_gateway),
):
    try:
        missing = settings.missing_gateway_config()
        if missing:
            logger.error("Server configuration error: missing %s",
                         ", ".join(missing))
            raise ConfigurationError("Server configuration error.")

        try:
            body = orjson.loads(await request.body())
        except orjson.JSONDecodeError:
            raise InvalidRequest("Invalid JSON in request body.")
        if not isinstance(body, dict):
            raise InvalidRequest("Request body must be a JSON object.")

        amount = body.get("amount")
        contributor = body.get("contributor")
        contribution_id = body.get("contribution_id")

        if not is_positive_number(amount):
            raise InvalidRequest(
                'Invalid or missing "amount". '
                'It must be a positive number.'
            )
        if not is_non_blank(contributor):
            raise InvalidRequest(
                'Invalid or missing "contributor". '
                'It must be a non-empty string.'
            )
        if not is_non_blank(contribution_id):
            raise InvalidRequest(
                'Invalid or missing "contribution_id". '
                'It must be a non-empty string.'
            )

        order = build_order(
            contribution_id=contribution_id,
            contributor=contributor,
            amount=amount,
            currency=settings.order_currency,
            return_url=settings.return_url,
            phone=settings.placeholder_phone,
        )
        upstream = await gateway.create_order(order)
        logger.info("gateway order %s created", order["order_id"])

        # forwarded verbatim: carries payment_session_id for checkout
        return Response(
            content=upstream, status_code=200, media_type="application/json"
        )
    except AppError as e:
        return error_response(e)
    except Exception:
        logger.exception("Unhandled order handler error")
        return ORJSONResponse(
            {"error": "An unexpected internal server error occurred."},
            status_code=500,
        )


# ----------------------------
# Payment Webhook Handler
# ----------------------------
def ack(note: str) -> PlainTextResponse:
    # always 200: the gateway's only recourse is a blind retry
    return PlainTextResponse(note, status_code=200)


@router.post("/functions/create-cashfree-webhook")
async def cashfree_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
    gateway: PaymentGateway = Depends(get_gateway),
    store: ContributionStore = Depends(contributions),
):
    try:
        raw = await request.body()

        if not settings.cashfree_secret_key:
            logger.error("webhook rejected: CASHFREE_SECRET_KEY not set")
            return ack("Server configuration error")
        try:
            gateway.verify_webhook(raw, request.headers)
        except InvalidSignature as e:
            logger.warning("webhook rejected: %s", e)
            return ack("Invalid signature")

        try:
            event = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            logger.error("Invalid JSON: %s", e)
            return ack("Invalid JSON")

        logger.debug("webhook payload: %s", event)

        if gateway.is_test_event(event):
            logger.info("test webhook received and acknowledged")
            return ORJSONResponse({"status": "acknowledged"})

        order_id, payment_status = gateway.event_ids(event)
        if not order_id or not payment_status:
            logger.warning("webhook missing order_id or payment_status")
            return ack("Invalid webhook structure")

        logger.info("received status %s for order %s",
                    payment_status, order_id)

        contribution_id = parse_contribution_id(order_id)
        if contribution_id is None:
            logger.warning("could not extract contribution_id from %r",
                           order_id)
            return ack("Invalid order_id format")

        if payment_status == SUCCESS:
            try:
                found = await store.mark_success(contribution_id)
            except SQLAlchemyError as e:
                logger.error("ledger update failed for %s: %r",
                             contribution_id, e)
                return ack("Database update failed")
            if not found:
                logger.warning("no contribution %s for order %s",
                               contribution_id, order_id)
                return ack("Contribution not found")
            logger.info("contribution %s marked as success",
                        contribution_id)

        return ack("Webhook processed")
    except Exception:
        logger.exception("Unhandled webhook error")
        return ack("Webhook processing failed")


# ----------------------------
# API: contributions ledger
# ----------------------------
@router.get("/api/contributions")
async def list_contributions(
    limit: int = 500,
    store: ContributionStore = Depends(contributions),
):
    items = await store.list(limit=max(1, min(limit, 1000)))
    total = await store.success_total()
    return {"items": items, "total": total}


@router.post("/api/contributions", status_code=201)
async def add_contribution(
    payload: dict,
    store: ContributionStore = Depends(contributions),
):
    contributor = payload.get("contributor")
    amount = parse_amount(payload.get("amount"))
    method = payload.get("method")
    if not is_non_blank(contributor) or amount is None:
        raise InvalidRequest(FORM_ERROR)
    if method not in METHODS:
        raise InvalidRequest('"method" must be one of: cash, online.')
    # status is derived from method, never taken from the client
    return await store.insert(contributor.strip(), amount, method)


@router.post("/api/contributions/expire-pending")
async def expire_pending_contributions(
    older_than_seconds: Optional[int] = None,
    _: str = Depends(require_admin),
    settings: Settings = Depends(get_settings),
    store: ContributionStore = Depends(contributions),
):
    age = settings.pending_expiry_seconds
    if older_than_seconds is not None:
        age = max(0, older_than_seconds)
    ids = await store.expire_pending(now_ts() - age)
    if ids:
        logger.info("expired %d stale pending contributions", len(ids))
    return {"expired": ids}


@router.get("/api/contributions/{contribution_id}")
async def get_contribution(
    contribution_id: int,
    store: ContributionStore = Depends(contributions),
):
    row = await store.get(contribution_id)
    if not row:
        raise HTTPException(404, detail="contribution not found")
    return row


@router.delete("/api/contributions/{contribution_id}", status_code=204)
async def delete_contribution(
    contribution_id: int,
    store: ContributionStore = Depends(contributions),
):
    if not await store.delete(contribution_id):
        raise HTTPException(404, detail="contribution not found")
    return Response(status_code=204)


# ----------------------------
# API: payment status (polled after checkout)
# ----------------------------
async def _status_for(order_id: str, store: ContributionStore) -> dict:
    cid = parse_contribution_id(order_id or "")
    row = await store.get(cid) if cid is not None else None
    return {
        "order_id": order_id,
        "contribution_id": cid,
        "status": row["status"] if row else "unknown",
        "contribution": row,
    }


@router.get("/api/payment-status")
async def api_payment_status(
    order_id: str,
    store: ContributionStore = Depends(contributions),
):
    return await _status_for(order_id, store)


# ----------------------------
# API: events
# ----------------------------
@router.get("/api/events")
async def list_events(store: EventStore = Depends(events)):
    return {"items": await store.list()}


@router.post("/api/events", status_code=201)
async def add_event(payload: dict, store: EventStore = Depends(events)):
    title = payload.get("title")
    on = parse_iso_date(payload.get("date"))
    if not is_non_blank(title) or on is None:
        raise InvalidRequest("An event needs a title and a valid date.")
    description = payload.get("description")
    if not is_non_blank(description):
        description = None
    return await store.insert(title.strip(), on, description)


@router.delete("/api/events/{event_id}", status_code=204)
async def delete_event(event_id: int, store: EventStore = Depends(events)):
    if not await store.delete(event_id):
        raise HTTPException(404, detail="event not found")
    return Response(status_code=204)


# ----------------------------
# API: budget planning (writes are admin only)
# ----------------------------
@router.get("/api/planning")
async def list_planning(store: PlanningStore = Depends(planning)):
    items = await store.list()
    return {"items": items, **summarize(items)}


@router.post("/api/planning", status_code=201)
async def add_planning_item(
    payload: dict,
    _: str = Depends(require_admin),
    store: PlanningStore = Depends(planning),
):
    name = payload.get("name")
    amount = parse_amount(payload.get("amount"))
    kind = payload.get("type", "expense")
    if not is_non_blank(name) or amount is None:
        raise InvalidRequest(FORM_ERROR)
    if kind not in ITEM_TYPES:
        raise InvalidRequest('"type" must be one of: expense, income.')
    return await store.insert(name.strip(), amount, kind)


@router.delete("/api/planning/{item_id}", status_code=204)
async def delete_planning_item(
    item_id: int,
    _: str = Depends(require_admin),
    store: PlanningStore = Depends(planning),
):
    if not await store.delete(item_id):
        raise HTTPException(404, detail="planning item not found")
    return Response(status_code=204)


# ----------------------------
# Pages: checkout handoff and return-URL target
# ----------------------------
@router.get("/checkout/{payment_session_id}", response_class=HTMLResponse)
async def checkout_page(
    request: Request,
    payment_session_id: str,
    settings: Settings = Depends(get_settings),
):
    return templates.TemplateResponse(request, "checkout.html", {
        "payment_session_id": payment_session_id,
        "mode": settings.cashfree_mode,
    })


@router.get("/payment-status", response_class=HTMLResponse)
async def payment_status_page(
    request: Request,
    order_id: str = "",
    store: ContributionStore = Depends(contributions),
):
    return templates.TemplateResponse(
        request, "payment_status.html", await _status_for(order_id, store)
    )


@router.get("/health")
async def health(settings: Settings = Depends(get_settings)):
    return {
        "status": "ok",
        "gateway_configured": not settings.missing_gateway_config(),
    }


# ----------------------------
# App factory
# ----------------------------
def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("eventfund").setLevel(level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    st = app.state
    logger.info("eventfund is starting up...")
    logger.info("   - database: %s", st.engine.url.render_as_string())
    logger.info("   - change feed: %s",
                "redis" if st.changes.enabled else "disabled")
    logger.info("   - admins: %d", len(st.policy))
    async with st.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    if st.owns_http:
        await st.http.aclose()
    await st.changes.close()
    await st.engine.dispose()


def create_app(
    settings: Optional[Settings] = None,
    *,
    http: Optional[httpx.AsyncClient] = None,
    gateway: Optional[PaymentGateway] = None,
    changes: Optional[ChangeFeed] = None,
    policy: Optional[AccessPolicy] = None,
) -> FastAPI:
    """Build the app. Nothing is constructed at import time; serve with

        uvicorn --factory eventfund.server:create_app
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="eventfund",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=[
            "authorization", "content-type", "x-client-info", "apikey",
            settings.identity_header,
        ],
    )
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)

    engine, SessionAsync, gated = make_async_engine(settings.database_url)

    st = app.state
    st.settings = settings
    st.engine = engine
    st.SessionAsync = SessionAsync
    st.gated = gated
    st.owns_http = http is None
    st.http = http or httpx.AsyncClient(
        timeout=settings.gateway_timeout_seconds,
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=16),
    )
    st.gateway = gateway if gateway is not None else Cashfree(
        http=st.http,
        app_id=settings.cashfree_app_id,
        secret_key=settings.cashfree_secret_key,
        api_url=settings.cashfree_api_url,
        api_version=settings.cashfree_api_version,
    )
    st.changes = (
        changes if changes is not None else new_feed(settings.redis_url)
    )
    st.policy = policy if policy is not None else AccessPolicy.load(
        settings.admin_identities, settings.access_policy_file
    )

    app.include_router(router)
    return app

