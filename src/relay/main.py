"""FastAPI application entry point for the Jules relay.

This module provides the main FastAPI application. It receives Slack
commands and events and task webhooks, starts Jules sessions through the
shared orchestrator and runs each poll loop as a background task.

Endpoints:
- POST /slack/commands: /jules-token and /jules-repo
- POST /slack/events: Events API (url_verification, app_mention, DMs)
- POST /webhooks/tasks, /webhooks/tasks/token, /webhooks/tasks/repo
- GET /health, /ready, /metrics
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Coroutine, Optional, Set
from urllib.parse import parse_qs

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST

from src.relay.config import RelaySettings, get_settings
from src.relay.events.emitter import EventSinkType, create_event_emitter
from src.relay.events.metrics import generate_metrics_output
from src.relay.jules.client import JulesClient
from src.relay.session.orchestrator import SessionOrchestrator
from src.relay.slack.client import SlackClient
from src.relay.slack.handler import SlackEventHandler
from src.relay.slack.models import SlackEnvelope
from src.relay.slack.verification import InvalidSignatureError, verify_slack_signature
from src.relay.store.memory import InMemoryCredentialStore
from src.relay.store.models import CredentialStore
from src.relay.store.repository import PostgresCredentialStore
from src.relay.webhook.handler import TaskWebhookHandler
from src.relay.webhook.models import WebhookResponse

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SLACK_RETRY_HEADER = "X-Slack-Retry-Num"
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
SLACK_SIGNATURE_HEADER = "X-Slack-Signature"

# Global instances, initialized during lifespan startup
settings: Optional[RelaySettings] = None
store: Optional[CredentialStore] = None
jules_client: Optional[JulesClient] = None
slack_client: Optional[SlackClient] = None
orchestrator: Optional[SessionOrchestrator] = None
slack_handler: Optional[SlackEventHandler] = None
webhook_handler: Optional[TaskWebhookHandler] = None

# Strong references to running poll loops
_background_tasks: Set[asyncio.Task] = set()


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if not value:
        return "<unset>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(cfg: RelaySettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Relay configuration:")
    logger.info(f"  Jules API Base URL: {cfg.jules_api_base_url}")
    logger.info(f"  Jules Timeout Seconds: {cfg.jules_timeout_seconds}")
    logger.info(f"  Default Starting Branch: {cfg.default_starting_branch}")
    logger.info(f"  Poll Interval Seconds: {cfg.poll_interval_seconds}")
    logger.info(f"  Max Poll Attempts: {cfg.max_poll_attempts}")
    logger.info(f"  Slack API Base URL: {cfg.slack_api_base_url}")
    logger.info(f"  Slack Bot Token: {_redact_secret(cfg.slack_bot_token)}")
    logger.info(f"  Slack Signing Secret: {_redact_secret(cfg.slack_signing_secret)}")
    logger.info(f"  Slack Bot User ID: {cfg.slack_bot_user_id or '<unset>'}")
    logger.info(f"  Database URL: {_redact_secret(cfg.database_url)}")
    logger.info(f"  Host: {cfg.host}")
    logger.info(f"  Port: {cfg.port}")
    logger.info(f"  Log Level: {cfg.log_level}")


def _spawn(coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
    """Run a coroutine in the background, keeping it referenced until done."""
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def _create_store(cfg: RelaySettings) -> CredentialStore:
    """Create the credential store for the configured database."""
    if cfg.database_url is None:
        logger.warning(
            "No database configured; credentials are kept in memory and lost on restart"
        )
        return InMemoryCredentialStore()

    pg_store = PostgresCredentialStore(cfg.database_url)
    await pg_store.connect()
    return pg_store


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Logging configuration (with secrets redacted)
    - Dependency wiring for the orchestrator and both surfaces
    - Graceful shutdown and cleanup
    """
    global settings, store, jules_client, slack_client
    global orchestrator, slack_handler, webhook_handler

    logger.info("Jules relay starting up...")

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level)
    _log_configuration(settings)

    store = await _create_store(settings)
    jules_client = JulesClient(
        base_url=settings.jules_api_base_url,
        starting_branch=settings.default_starting_branch,
        timeout=settings.jules_timeout_seconds,
    )
    slack_client = SlackClient(
        token=settings.slack_bot_token,
        base_url=settings.slack_api_base_url,
    )
    orchestrator = SessionOrchestrator(
        store=store,
        jules_client=jules_client,
        event_emitter=create_event_emitter(
            [EventSinkType.LOGGING, EventSinkType.METRICS]
        ),
        poll_interval=settings.poll_interval_seconds,
        max_attempts=settings.max_poll_attempts,
    )
    slack_handler = SlackEventHandler(
        orchestrator=orchestrator,
        store=store,
        slack_client=slack_client,
        bot_user_id=settings.slack_bot_user_id,
    )
    webhook_handler = TaskWebhookHandler(
        orchestrator=orchestrator,
        store=store,
        spawn=_spawn,
    )

    logger.info("Jules relay started successfully")

    yield

    logger.info("Jules relay shutting down...")

    if _background_tasks:
        logger.warning(
            "Shutting down with sessions still polling",
            extra={"pending_tasks": len(_background_tasks)},
        )

    if orchestrator is not None:
        await orchestrator.event_emitter.close()
    if slack_client is not None:
        await slack_client.close()
    if jules_client is not None:
        await jules_client.close()
    if isinstance(store, PostgresCredentialStore):
        await store.disconnect()

    logger.info("Jules relay shutdown complete")


app = FastAPI(
    title="Jules Relay",
    description="Starts Jules coding sessions from Slack and webhooks",
    version="1.0.0",
    lifespan=lifespan,
)


def _not_initialized() -> JSONResponse:
    logger.error("Relay not initialized")
    return JSONResponse(status_code=503, content={"error": "Relay not initialized"})


def _to_response(result: WebhookResponse) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


@app.get("/health")
async def health():
    """Liveness probe endpoint.

    Returns:
        dict: Status indicating the application is running.
    """
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Checks connectivity to the credential database when one is
    configured. The in-memory store is always ready.
    """
    if store is None:
        database_status = "unavailable"
    elif isinstance(store, PostgresCredentialStore):
        database_status = "healthy" if await store.health_check() else "unhealthy"
    else:
        database_status = "in_memory"

    is_ready = database_status in ("healthy", "in_memory")
    body = {
        "status": "ready" if is_ready else "not_ready",
        "dependencies": {"database": database_status},
    }
    return JSONResponse(status_code=200 if is_ready else 503, content=body)


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)


# -----------------------------------------------------------------------------
# Slack
# -----------------------------------------------------------------------------


def _verify_slack_request(request: Request, body: bytes) -> bool:
    try:
        verify_slack_signature(
            secret=settings.slack_signing_secret,
            timestamp=request.headers.get(SLACK_TIMESTAMP_HEADER),
            body=body,
            signature=request.headers.get(SLACK_SIGNATURE_HEADER),
        )
    except InvalidSignatureError as e:
        logger.warning("Rejected Slack request: %s", e)
        return False
    return True


@app.post("/slack/events")
async def slack_events(request: Request):
    """Slack Events API receiver.

    Acknowledges immediately; the session is started and polled in a
    background task. Slack redeliveries are acknowledged without being
    processed again.
    """
    if settings is None or slack_handler is None:
        return _not_initialized()

    body = await request.body()
    if not _verify_slack_request(request, body):
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    try:
        envelope = SlackEnvelope.model_validate(json.loads(body))
    except ValueError as e:
        logger.warning("Invalid Slack event body: %s", e)
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})

    if envelope.type == "url_verification":
        return {"challenge": envelope.challenge}

    retry_num = request.headers.get(SLACK_RETRY_HEADER)
    if retry_num is not None:
        logger.info(
            "Skipping Slack retry",
            extra={"event_id": envelope.event_id, "retry_num": retry_num},
        )
        return {"ok": True}

    if envelope.type == "event_callback":
        event = slack_handler.parse_event(envelope.event)
        if event is not None:
            _spawn(slack_handler.handle_event(event))

    return {"ok": True}


@app.post("/slack/commands")
async def slack_commands(request: Request):
    """Slack slash command receiver."""
    if settings is None or slack_handler is None:
        return _not_initialized()

    body = await request.body()
    if not _verify_slack_request(request, body):
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    form = {
        key: values[0]
        for key, values in parse_qs(body.decode("utf-8"), keep_blank_values=True).items()
    }
    command = slack_handler.parse_command(form)
    if command is None:
        return JSONResponse(status_code=400, content={"error": "Invalid slash command"})

    response = await slack_handler.handle_command(command)
    return response.model_dump()


# -----------------------------------------------------------------------------
# Webhooks
# -----------------------------------------------------------------------------


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


@app.post("/webhooks/tasks")
async def start_task(request: Request):
    """Start a Jules session for a webhook caller."""
    if webhook_handler is None:
        return _not_initialized()
    return _to_response(await webhook_handler.start_task(await _read_json(request)))


@app.post("/webhooks/tasks/token")
async def register_token(request: Request):
    """Register a Jules API token for a webhook caller."""
    if webhook_handler is None:
        return _not_initialized()
    return _to_response(await webhook_handler.register_token(await _read_json(request)))


@app.post("/webhooks/tasks/repo")
async def register_repo(request: Request):
    """Register a preferred repository for a webhook caller."""
    if webhook_handler is None:
        return _not_initialized()
    return _to_response(await webhook_handler.register_repo(await _read_json(request)))


if __name__ == "__main__":
    import uvicorn

    # For local development, load settings to get host/port
    dev_settings = get_settings()
    uvicorn.run(
        "src.relay.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
