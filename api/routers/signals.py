import json

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_broker_registry, get_position_manager, get_settings, get_telegram_client
from api.schemas.responses import HealthStatus, SignalResponse, SignalsHealthResponse
from core.config.settings import Settings
from core.logging import get_api_logger_safe
from services.broker_fanout import BrokerRegistry
from services.notifications import TelegramClient
from services.position_manager import PositionManager

router = APIRouter(prefix="/signals", tags=["Signals"])
logger = get_api_logger_safe("api.routers.signals")


def extract_alert_text(body: bytes, content_type: str, text_field: str = "messageText") -> str:
    """Alert text from a webhook body.

    JSON bodies carry the text in `text_field`; any other JSON value is
    serialized back to text and parsed as-is. Everything else is plain text.
    """
    raw = body.decode("utf-8", errors="replace")
    if "json" not in content_type.lower():
        return raw
    try:
        payload = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(payload, dict) and isinstance(payload.get(text_field), str):
        return payload[text_field]
    if isinstance(payload, str):
        return payload
    return json.dumps(payload)


@router.post("", response_model=SignalResponse)
async def receive_signal(
    request: Request,
    position_manager: PositionManager = Depends(get_position_manager),
    settings: Settings = Depends(get_settings),
):
    """Process one trading alert.

    Returns 200 with the per-account results once legs are computed, even if
    every order placement failed. Parse, lifecycle and strike computation
    failures are mapped to 4xx by the error handlers.
    """
    text = extract_alert_text(
        await request.body(),
        request.headers.get("content-type", ""),
        settings.api.alert_text_field,
    )
    logger.info("Alert received", length=len(text))
    outcome = await position_manager.process_alert(text)
    return SignalResponse(
        status="processed",
        message=f"{outcome.kind} signal processed",
        data=outcome,
    )


@router.get("/health", response_model=SignalsHealthResponse)
async def signals_health(
    settings: Settings = Depends(get_settings),
    registry: BrokerRegistry = Depends(get_broker_registry),
    telegram: TelegramClient = Depends(get_telegram_client),
):
    return SignalsHealthResponse(
        status=HealthStatus.HEALTHY,
        strategy=settings.strategy.name,
        target_delta=settings.strategy.target_delta,
        same_direction_policy=settings.position.same_direction_policy,
        brokers=registry.brokers,
        telegram_configured=telegram.configured,
    )
