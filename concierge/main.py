"""
FastAPI Application Entry Point

Delivery Concierge - chat-driven food ordering over WhatsApp.
Supports both Mock collaborators (development) and Real APIs (production).

Endpoints:
    - POST /api/chat: Chat message from the front-end
    - POST /api/poll: Next pending chat notification for a session
    - POST /webhook/whatsapp: Evolution API webhook (restaurant replies)
    - POST /api/restaurants/search: Run restaurant discovery directly
    - GET /api/sessions/{session_id}: Session, discovery and order state
    - GET /health: System health check

Version: 1.0.0
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from concierge.core.config import get_settings, setup_logging
from concierge.core.exceptions import GenerationError
from concierge.schemas import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    EvolutionWebhookPayload,
    HealthResponse,
    PollRequest,
    PollResponse,
    RestaurantOut,
    RestaurantSearchRequest,
    RestaurantSearchResponse,
    WebhookAck,
)
from concierge.services.orchestrator import Orchestrator, get_orchestrator

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Validate production config before any real adapter is built
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    orchestrator = app.dependency_overrides.get(get_orchestrator, get_orchestrator)()
    logger.info(f"✅ Text Generator: {orchestrator.engine.generator.provider_name}")
    logger.info(f"✅ Search Service: {orchestrator.discovery.search.provider_name}")
    logger.info(f"✅ Messaging Service: {orchestrator.messaging.provider_name}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await orchestrator.shutdown()
    for collaborator in (
        orchestrator.engine.generator,
        orchestrator.discovery.search,
        orchestrator.messaging,
    ):
        await collaborator.aclose()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Food-delivery concierge: collects an order in chat, finds a restaurant, "
        "places the order over WhatsApp and relays the negotiation."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


async def read_json(request: Request) -> Any:
    """Request body as JSON, or None when it is missing or malformed."""
    body = await request.body()
    if not body:
        return None
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍕 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(orchestrator: Orchestrator = Depends(get_orchestrator)) -> HealthResponse:
    """Report collaborators in use and in-memory state sizes."""
    return HealthResponse(
        status="operational",
        environment=settings.env_mode.value,
        text_generator=orchestrator.engine.generator.provider_name,
        search=orchestrator.discovery.search.provider_name,
        messaging=orchestrator.messaging.provider_name,
        sessions=len(orchestrator.sessions),
        orders=len(orchestrator.orders),
        pending_tasks=orchestrator.supervisor.pending(),
        timestamp=datetime.now(),
    )


# =============================================================================
# CHAT ENDPOINTS
# =============================================================================

@app.options("/api/chat", include_in_schema=False)
@app.options("/api/poll", include_in_schema=False)
@app.options("/webhook/whatsapp", include_in_schema=False)
@app.options("/api/restaurants/search", include_in_schema=False)
async def preflight() -> Response:
    """Preflight without CORS request headers; the middleware answers the rest."""
    return Response(status_code=200)


@app.post(
    "/api/chat",
    response_model=ChatResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Chat"],
    summary="Send Chat Message",
)
async def chat(
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Process a chat message and return the concierge's reply.

    Once the order fields are complete, restaurant discovery starts in the
    background; its results arrive through ``/api/poll``.
    """
    try:
        payload = ChatRequest.model_validate(await read_json(request) or {})
    except ValidationError as e:
        logger.warning(f"Invalid chat payload: {e}")
        return error_response(400, "SessionId e message são obrigatórios")

    if not payload.session_id or not payload.message or not payload.message.strip():
        return error_response(400, "SessionId e message são obrigatórios")

    history = [item.model_dump() for item in payload.messages]
    try:
        reply = await orchestrator.handle_chat(payload.session_id, payload.message.strip(), history)
    except GenerationError as e:
        logger.error(f"Chat reply failed for {payload.session_id}: {e}")
        return error_response(500, "Erro interno do servidor")

    return ChatResponse(message=reply, session_id=payload.session_id)


@app.post(
    "/api/poll",
    response_model=PollResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}},
    tags=["Chat"],
    summary="Poll Pending Notification",
)
async def poll(
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Deliver (and remove) the next pending notification for a session."""
    try:
        payload = PollRequest.model_validate(await read_json(request) or {})
    except ValidationError:
        payload = PollRequest()

    if not payload.session_id:
        return error_response(400, "SessionId é obrigatório")

    message = await orchestrator.poll(payload.session_id)
    if message is None:
        return PollResponse(has_new_message=False)

    logger.info(f"[POLL] Message delivered to {payload.session_id}")
    return PollResponse(
        has_new_message=True,
        message=message.text,
        timestamp=message.timestamp,
        restaurants=message.restaurants,
    )


# =============================================================================
# WHATSAPP WEBHOOK
# =============================================================================

@app.post(
    "/webhook/whatsapp",
    response_model=WebhookAck,
    tags=["Webhook"],
    summary="Evolution API Webhook",
)
async def whatsapp_webhook(
    request: Request,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> WebhookAck:
    """
    Handle messages posted by the Evolution API.

    Always acknowledges: the provider must never get a reason to redeliver.
    """
    try:
        payload_dict = await read_json(request)
        if not isinstance(payload_dict, dict):
            logger.warning("Webhook ignored: body is not a JSON object")
            return WebhookAck()

        payload = EvolutionWebhookPayload.model_validate(payload_dict)
        logger.info(f"Webhook received: {payload.event or 'unknown'}")

        if payload.is_inbound_text:
            await orchestrator.handle_restaurant_message(payload.data.key.remote_jid, payload.text.strip())

    except Exception as e:
        logger.exception(f"Error processing WhatsApp webhook: {e}")

    return WebhookAck()


# =============================================================================
# RESTAURANT & SESSION ENDPOINTS
# =============================================================================

@app.post(
    "/api/restaurants/search",
    response_model=RestaurantSearchResponse,
    tags=["Restaurants"],
    summary="Search Restaurants",
)
async def search_restaurants(
    payload: RestaurantSearchRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> RestaurantSearchResponse:
    """Run restaurant discovery for a food description and an address."""
    candidates = await orchestrator.search_restaurants(payload.food, payload.address)
    return RestaurantSearchResponse(
        restaurants=[RestaurantOut.model_validate(c.to_dict()) for c in candidates],
    )


@app.get(
    "/api/sessions/{session_id}",
    tags=["Sessions"],
    summary="Get Session State",
)
async def get_session(
    session_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Stage, extracted order fields, discovery outcome and order status."""
    state = orchestrator.describe_session(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
    return state


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("concierge.main:app", host=settings.api_host, port=settings.api_port)
