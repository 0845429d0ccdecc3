"""Calendar push notification endpoint (no auth; the provider calls it)."""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from watch_channels.webhook import WebhookRejected


router = APIRouter()


@router.post("/webhook")
async def calendar_webhook(request: Request) -> JSONResponse:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        return JSONResponse({"status": "disabled"}, status_code=200)
    try:
        ack = dispatcher.handle(request.headers)
    except WebhookRejected as e:
        return JSONResponse({"error": str(e)}, status_code=400)
    return JSONResponse({"status": ack.value}, status_code=200)
