"""Referral endpoints: invitations, referrer dashboard, payouts, admin views."""
import logging

from aiohttp import web

from api.handlers import get_session, parse_body
from api.middlewares.auth import require_admin, require_auth
from core.dto import CreateReferralDTO, PayoutRequestDTO, UpdateReferralSettingsDTO
from core.exceptions import ValidationError
from services.payout import PayoutService
from services.referral import ReferralService

logger = logging.getLogger(__name__)


async def create_referral(request: web.Request):
    """POST /referrals - called by the signup flow."""
    data = await parse_body(request, CreateReferralDTO)
    async with get_session(request) as session:
        result = await ReferralService(session).create_referral(data.referrer_id, data.referred_email)
    return web.json_response(result, status=201)


@require_auth
async def get_dashboard(request: web.Request):
    """GET /referrals/me/dashboard"""
    async with get_session(request) as session:
        result = await ReferralService(session).get_dashboard(request["principal"].id)
    return web.json_response(result)


@require_auth
async def get_settings(request: web.Request):
    """GET /referrals/me/settings"""
    async with get_session(request) as session:
        result = await ReferralService(session).get_settings(request["principal"].id)
    return web.json_response(result)


@require_auth
async def update_settings(request: web.Request):
    """PUT /referrals/me/settings"""
    data = await parse_body(request, UpdateReferralSettingsDTO)
    async with get_session(request) as session:
        result = await ReferralService(session).update_settings(request["principal"].id, data)
    return web.json_response(result)


@require_auth
async def get_transactions(request: web.Request):
    """GET /referrals/me/transactions"""
    async with get_session(request) as session:
        result = await ReferralService(session).get_transactions(request["principal"].id, limit=200)
    return web.json_response({"transactions": result})


@require_auth
async def request_payout(request: web.Request):
    """POST /referrals/me/payout"""
    principal = request["principal"]
    data = await parse_body(request, PayoutRequestDTO)
    async with get_session(request) as session:
        result = await PayoutService(session, request.app["notifier"]).process_payout(
            principal.id, notes=data.notes
        )
    return web.json_response(result)


@require_admin
async def admin_overview(request: web.Request):
    """GET /referrals/admin/overview"""
    async with get_session(request) as session:
        result = await ReferralService(session).get_admin_overview()
    return web.json_response(result)


@require_admin
async def admin_payout(request: web.Request):
    """POST /referrals/admin/payout/{user_id}"""
    try:
        user_id = int(request.match_info["user_id"])
    except ValueError as e:
        raise ValidationError("invalid user_id") from e
    data = await parse_body(request, PayoutRequestDTO)
    async with get_session(request) as session:
        result = await PayoutService(session, request.app["notifier"]).process_payout(
            user_id, notes=data.notes, requested_by_admin=True
        )
    logger.info(
        f"Admin {request['principal'].id} paid out referrer {user_id}",
        extra={"referrer_id": user_id, "batch_id": result["batch_id"]},
    )
    return web.json_response(result)


@require_admin
async def referral_stats(request: web.Request):
    """GET /referrals/stats"""
    async with get_session(request) as session:
        result = await ReferralService(session).get_stats()
    return web.json_response(result)


def setup_routes(app: web.Application):
    """Register referral routes."""
    app.router.add_post('/referrals', create_referral)
    app.router.add_get('/referrals/me/dashboard', get_dashboard)
    app.router.add_get('/referrals/me/settings', get_settings)
    app.router.add_put('/referrals/me/settings', update_settings)
    app.router.add_get('/referrals/me/transactions', get_transactions)
    app.router.add_post('/referrals/me/payout', request_payout)
    app.router.add_get('/referrals/admin/overview', admin_overview)
    app.router.add_post('/referrals/admin/payout/{user_id}', admin_payout)
    app.router.add_get('/referrals/stats', referral_stats)
