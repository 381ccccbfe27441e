from fastapi import FastAPI

from app.api.greetings import router as greetings_router
from app.api.metrics import router as metrics_router
from app.models.schemas import HealthResponse
from app.observability.middleware import RequestContextMiddleware
from app.observability.tracing import shutdown_telemetry
from app.startup import initialize


app = FastAPI(title="Greeter Telemetry Demo", version="0.1.0")
app.add_middleware(RequestContextMiddleware)
app.include_router(greetings_router)
app.include_router(metrics_router)


@app.on_event("startup")
def _startup() -> None:
    initialize()


@app.on_event("shutdown")
def _shutdown() -> None:
    shutdown_telemetry()


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse()
