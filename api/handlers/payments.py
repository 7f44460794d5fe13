"""Payment endpoints: checkout, verification, gateway webhook."""
import logging

from aiohttp import web

from api.handlers import get_session, parse_body
from api.middlewares.auth import require_admin, require_auth
from core.dto import InitializePaymentDTO
from services.payment import PaymentService

logger = logging.getLogger(__name__)


def _service(request: web.Request, session) -> PaymentService:
    return PaymentService(
        session,
        gateway=request.app["gateway"],
        notifier=request.app["notifier"],
    )


@require_auth
async def initialize_payment(request: web.Request):
    """POST /payments/initialize"""
    principal = request["principal"]
    data = await parse_body(request, InitializePaymentDTO)
    async with get_session(request) as session:
        result = await _service(request, session).initialize_payment(principal.id, principal.email, data)
    return web.json_response(result, status=201)


@require_auth
async def verify_payment(request: web.Request):
    """GET /payments/verify/{reference}"""
    principal = request["principal"]
    reference = request.match_info["reference"]
    async with get_session(request) as session:
        result = await _service(request, session).verify_payment(reference, principal.id)
    return web.json_response(result)


async def paystack_webhook(request: web.Request):
    """POST /payments/webhook - authenticated by HMAC signature, not bearer."""
    raw_body = await request.read()
    signature = request.headers.get("x-paystack-signature")
    async with get_session(request) as session:
        result = await _service(request, session).process_webhook(raw_body, signature)
    return web.json_response(result)


@require_auth
async def payment_status(request: web.Request):
    """GET /payments/status"""
    async with get_session(request) as session:
        result = await _service(request, session).get_status(request["principal"].id)
    return web.json_response(result)


@require_admin
async def list_payments(request: web.Request):
    """GET /payments/admin"""
    async with get_session(request) as session:
        result = await _service(request, session).list_recent(limit=200)
    return web.json_response({"payments": result})


def setup_routes(app: web.Application):
    """Register payment routes."""
    app.router.add_post('/payments/initialize', initialize_payment)
    app.router.add_get('/payments/verify/{reference}', verify_payment)
    app.router.add_post('/payments/webhook', paystack_webhook)
    app.router.add_get('/payments/status', payment_status)
    app.router.add_get('/payments/admin', list_payments)
