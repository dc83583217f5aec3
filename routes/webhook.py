# routes/webhook.py
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from core.container import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


# ==================================================================
#  ✅ STRIPE WEBHOOK (raw body, signature verified before anything else)
# ==================================================================
@router.post("/stripe")
async def stripe_webhook(request: Request, services: Services = Depends(get_services)):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    # handlers use blocking DB / provider calls
    outcome = await run_in_threadpool(services.webhooks.handle_request, payload, sig_header)
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_dict())
