from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.config import get_settings
from app.db.session import get_db
from app.observability.tracing import begin_span
from app.services.user_service import find_by_name

router = APIRouter(tags=["greetings"])

logger = structlog.get_logger(__name__)


async def _pause(delay_ms: int) -> None:
    """Simulated downstream latency.

    Cancellation is logged and re-raised so the task stays cancelled.
    """

    try:
        await asyncio.sleep(delay_ms / 1000.0)
    except asyncio.CancelledError:
        logger.warning("Simulated work interrupted", delay_ms=delay_ms)
        raise


@router.get("/", response_class=PlainTextResponse)
async def home() -> str:
    with begin_span("home"):
        logger.info("Home endpoint called")
        return "Hello World!"


@router.get("/greet/{name}", response_class=PlainTextResponse)
async def greet(name: str, db: Session = Depends(get_db)) -> str:
    with begin_span("greet", {"greet.name": name}) as span:
        logger.info("Greeting user", user_name=name)
        await _pause(get_settings().greet_delay_ms)

        user = find_by_name(db, name)
        span.set_attribute("greet.known_user", user is not None)
        if user is None:
            return f"Hello, {name}!"
        return user.personalized_message


@router.get("/slow", response_class=PlainTextResponse)
async def slow() -> str:
    with begin_span("slow"):
        logger.info("Starting slow operation")
        await _pause(get_settings().slow_delay_ms)
        logger.info("Slow operation completed")
        return "Done!"
