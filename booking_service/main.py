import asyncio

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import SERVICE_NAME
from .errors import DomainError
from .expiry_worker import expiry_loop
from .middleware import RequestLoggingMiddleware
from .rabbitmq import publisher
from .redis_client import redis_client
from .routes import router

app = FastAPI(title="Booking Service")
app.add_middleware(RequestLoggingMiddleware)
app.include_router(router)

_stop_event: asyncio.Event | None = None
_expiry_task: asyncio.Task | None = None


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "kind": exc.kind},
    )


@app.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE_NAME}


@app.on_event("startup")
async def startup():
    global _stop_event, _expiry_task
    try:
        await publisher.connect()
    except Exception:
        # events stay disabled until the broker is reachable; publish() reconnects lazily
        pass

    _stop_event = asyncio.Event()
    _expiry_task = asyncio.create_task(expiry_loop(_stop_event))
    print(f"[{SERVICE_NAME}] started (events={'on' if publisher.enabled else 'off'}, expiry index={'redis' if redis_client else 'db only'})")


@app.on_event("shutdown")
async def shutdown():
    if _stop_event:
        _stop_event.set()
    if _expiry_task:
        try:
            await _expiry_task
        except Exception:
            pass
    try:
        await publisher.close()
    except Exception:
        pass
    if redis_client is not None:
        await redis_client.aclose()
