import hmac
import json
import logging
from typing import Optional

from fastapi import FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import db
from app.errors import ConfigurationError, NotFoundError, WebhookVerificationError
from app.runtime import Services, build_services
from app.services.reconciler import parse_telnyx_event
from app.utils import phone
from app.utils.sms import verify_webhook
from config import configure_logging, settings

configure_logging()
_LOGGER = logging.getLogger(__name__)

app = FastAPI(title="Appointment SMS Reminders")


@app.on_event("shutdown")
async def shutdown_event():
    await db.dispose_engine()


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    _LOGGER.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse({"error": "Server configuration error"}, status_code=500)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse({"error": str(exc)}, status_code=404)


# --------------------------------------------
# Dependencies
# --------------------------------------------

def get_services(request: Request) -> Services:
    """Built on first use so missing carrier config fails the request, not startup."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        services = build_services()
        request.app.state.services = services
    return services


def _bearer_ok(request: Request) -> bool:
    secret = settings.CRON_SECRET
    if not secret:
        _LOGGER.warning("CRON_SECRET not configured; accepting unauthenticated %s", request.url.path)
        return True
    header = request.headers.get("authorization", "")
    return hmac.compare_digest(header, f"Bearer {secret}")


def _unauthorized() -> JSONResponse:
    return JSONResponse({"error": "Unauthorized"}, status_code=status.HTTP_401_UNAUTHORIZED)


# --------------------------------------------
# Request bodies
# --------------------------------------------

class TestSMSRequest(BaseModel):
    tenant_id: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1, max_length=32)


class PhoneValidateRequest(BaseModel):
    phone_number: str = Field(..., max_length=32)


class ProfileUpdate(BaseModel):
    clinic_name: Optional[str] = Field(None, max_length=200)
    clinic_phone: Optional[str] = Field(None, max_length=32)


# --------------------------------------------
# Endpoints
# --------------------------------------------

@app.get("/health")
def health():
    return {"ok": True}


@app.get("/v1/cron/send-reminders")
async def send_reminders(request: Request):
    if not _bearer_ok(request):
        _LOGGER.warning("Unauthorized cron request")
        return _unauthorized()

    _LOGGER.info("[CRON] send-reminders: job started")
    try:
        services = get_services(request)
        result = await services.engine.run()
    except Exception as exc:
        _LOGGER.exception("[CRON] send-reminders: job failed")
        return JSONResponse({"error": str(exc) or "Cron job failed"}, status_code=500)

    return {"success": True, **result.to_dict()}


@app.post("/v1/webhooks/telnyx")
async def telnyx_status_webhook(request: Request):
    if not settings.TELNYX_PUBLIC_KEY:
        _LOGGER.error("TELNYX_PUBLIC_KEY not configured")
        return JSONResponse({"error": "Server configuration error"}, status_code=500)

    raw_body = await request.body()
    sig = request.headers.get("telnyx-signature-ed25519")
    ts = request.headers.get("telnyx-timestamp")
    if not sig or not ts:
        _LOGGER.error("Missing Telnyx signature headers")
        return JSONResponse({"error": "Missing signature"}, status_code=400)

    try:
        verify_webhook(raw_body, sig, ts, settings.TELNYX_PUBLIC_KEY)
    except WebhookVerificationError as exc:
        _LOGGER.error("Invalid Telnyx signature: %s", exc)
        return JSONResponse({"error": "Invalid signature"}, status_code=403)

    try:
        event = json.loads(raw_body)
    except ValueError:
        return JSONResponse({"error": "Malformed body"}, status_code=400)
    if not isinstance(event, dict):
        return JSONResponse({"error": "Malformed body"}, status_code=400)

    event_type = (event.get("data") or {}).get("event_type", "")
    if not event_type.startswith("message."):
        return {"received": True, "ignored": event_type or "unknown"}

    callback = parse_telnyx_event(event)
    if not callback.message_id or not callback.status:
        _LOGGER.error("Missing required fields: id=%s status=%s", callback.message_id, callback.status)
        return JSONResponse({"error": "Missing required fields"}, status_code=400)

    # Non-2xx makes Telnyx redeliver; processing errors are acknowledged.
    try:
        services = get_services(request)
        outcome = await services.reconciler.on_carrier_callback(
            callback.message_id,
            callback.status,
            error_code=callback.error_code,
            error_message=callback.error_message,
        )
    except Exception:
        _LOGGER.exception("Telnyx webhook processing error")
        return {"received": True, "error": "Processing error"}

    return {"received": True, "status": callback.status, "outcome": outcome.value}


@app.post("/v1/sms/test")
async def send_test_sms(payload: TestSMSRequest, request: Request):
    if not _bearer_ok(request):
        return _unauthorized()

    rejection = phone.rejection_message(payload.phone_number)
    if rejection:
        return JSONResponse({"error": rejection}, status_code=400)

    services = get_services(request)
    result = await services.engine.send_test(payload.tenant_id, payload.phone_number)
    if result.denied is not None:
        return JSONResponse(
            {"success": False, "error": result.denied.reason, "action": result.denied.action.value},
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
        )
    if not result.success:
        return JSONResponse({"success": False, "error": result.error}, status_code=502)
    return {"success": True, "message": "Test SMS sent successfully!", "message_id": result.message_id}


@app.post("/v1/phone/validate")
def validate_phone(payload: PhoneValidateRequest):
    normalized = phone.normalize(payload.phone_number)
    return {
        "valid": normalized is not None,
        "phone_number": normalized,
        "error": phone.rejection_message(payload.phone_number),
    }


@app.post("/v1/tenants/{tenant_id}/templates/defaults")
async def seed_default_templates(tenant_id: str, request: Request):
    if not _bearer_ok(request):
        return _unauthorized()
    services = get_services(request)
    if await services.tenants.get(tenant_id) is None:
        raise NotFoundError(f"Tenant {tenant_id} not found")
    created = await services.templates.ensure_defaults(tenant_id)
    return {"created": created}


@app.patch("/v1/tenants/{tenant_id}/profile")
async def update_tenant_profile(tenant_id: str, payload: ProfileUpdate, request: Request):
    if not _bearer_ok(request):
        return _unauthorized()
    services = get_services(request)
    if await services.tenants.get(tenant_id) is None:
        raise NotFoundError(f"Tenant {tenant_id} not found")
    await services.tenants.update_profile(
        tenant_id, clinic_name=payload.clinic_name, clinic_phone=payload.clinic_phone
    )
    tenant = await services.tenants.get(tenant_id)
    return {"tenant_id": tenant.id, "clinic_name": tenant.clinic_name, "clinic_phone": tenant.clinic_phone}


@app.get("/v1/tenants/{tenant_id}/stats")
async def tenant_send_stats(tenant_id: str, request: Request, limit: int = Query(20, ge=1, le=100)):
    """Send counters plus the most recent send records for a dashboard."""
    if not _bearer_ok(request):
        return _unauthorized()
    services = get_services(request)
    tenant = await services.tenants.get(tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant {tenant_id} not found")
    stats = await services.send_log.stats_for_tenant(tenant_id)
    recent = await services.send_log.list_for_tenant(tenant_id, limit=limit)
    return {
        "tenant_id": tenant_id,
        "credits_remaining": tenant.credits_remaining,
        "stats": stats,
        "recent": [r.model_dump(mode="json") for r in recent],
    }
