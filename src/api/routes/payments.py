"""Payment provider integration routes: webhook, checkout return and status poll."""

import json
import logging
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import RedirectResponse

from src.api.deps import PaymentServiceDep
from src.schemas.order import PaymentInfoSchema, PaymentStatusResponse, WebhookAck, to_order_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


async def _read_payload(request: Request) -> dict[str, Any]:
    """Merge a JSON body with query params.

    Mercado Pago sends webhooks as JSON, IPN-style notifications as
    ``?topic=payment&id=...`` and ``?type=payment&data.id=...`` query strings.
    """
    payload: dict[str, Any] = {}
    body = await request.body()
    if body:
        try:
            parsed = json.loads(body)
        except ValueError:
            logger.warning("Webhook body is not valid JSON (%d bytes)", len(body))
        else:
            if isinstance(parsed, dict):
                payload.update(parsed)

    query = request.query_params
    for key in ("type", "topic", "id"):
        if key in query and key not in payload:
            payload[key] = query[key]
    if "data.id" in query and not (payload.get("data") or {}).get("id"):
        payload["data"] = {"id": query["data.id"]}
    return payload


@router.post(
    "/webhook",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    summary="Handle Mercado Pago webhooks",
    description="Always acknowledges receipt. Processing failures are logged, never returned.",
)
async def payment_webhook(request: Request, payments: PaymentServiceDep) -> WebhookAck:
    """Handle a payment provider notification.

    The provider retries every notification that is not acknowledged with a
    2xx, so this endpoint always returns 200.
    """
    try:
        payload = await _read_payload(request)
    except Exception:
        logger.exception("Could not read webhook request")
        return WebhookAck()

    logger.info("Received webhook type=%s", payload.get("type") or payload.get("topic"))
    await payments.handle_webhook(payload, headers={k.lower(): v for k, v in request.headers.items()})
    return WebhookAck()


@router.api_route(
    "/return",
    methods=["GET", "POST"],
    status_code=status.HTTP_302_FOUND,
    summary="Checkout return",
    description="Browser return from the hosted checkout. Redirects to the storefront order page.",
)
async def payment_return(request: Request, payments: PaymentServiceDep) -> RedirectResponse:
    params: dict[str, Any] = dict(request.query_params)
    if request.method == "POST":
        try:
            form = await request.form()
            params.update({k: v for k, v in form.items() if isinstance(v, str)})
        except Exception:
            logger.warning("Could not parse payment return form body")

    url = await payments.handle_payment_return(params)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get(
    "/status/{order_id}",
    response_model=PaymentStatusResponse,
    summary="Payment status",
    description="Order with live payment info, falling back to the stored status when the provider is unavailable.",
)
async def payment_status(order_id: str, payments: PaymentServiceDep) -> PaymentStatusResponse:
    result = await payments.get_payment_status(order_id)
    payment = result["payment"]
    return PaymentStatusResponse(
        order=to_order_response(result["order"]),
        payment=PaymentInfoSchema(**payment.to_dict()) if payment else None,
        source=result["source"],
    )
