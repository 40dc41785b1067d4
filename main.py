# main.py
import asyncio
import logging
from fastapi_limiter import FastAPILimiter
import routes
from contextlib import asynccontextmanager, suppress
from util.enums import Environment, Color
from fastapi import FastAPI, Request
from starlette.middleware.cors import CORSMiddleware
from config.settings import settings
from config.cache import close_redis, get_redis
from fastapi.responses import JSONResponse
from model.api import ErrorEnvelope
from service.bootstrap import build_services, ensure_storage_dirs
from util.constants import TUS_VERSION, InternalURIs, TusHeaders
from util.errors import IngestError
from util.logger import init_logger

logger = logging.getLogger(__name__)


async def _real_ip(request: Request) -> str:
    if settings.TRUST_PROXY:
        fwd = request.headers.get("x-forwarded-for")
        if fwd:
            return fwd.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@asynccontextmanager
async def lifespan(fastApi: FastAPI):
    try:
        init_logger()
        print(f"{Color.GREEN}Initializing...{Color.RESET}")
        redis = await get_redis()
        if settings.RATE_LIMIT_ENABLED:
            await FastAPILimiter.init(redis, identifier=_real_ip)
    except Exception as e:
        print("Failed to connect to Redis:", e)
        raise

    ensure_storage_dirs()
    services = build_services()
    services.tasks.start()
    fastApi.state.tasks = services.tasks
    fastApi.state.uploads = services.uploads
    fastApi.state.provisioner = services.provisioner
    sweeper = asyncio.create_task(
        services.uploads.run_sweeper(settings.UPLOAD_SWEEP_INTERVAL_SECONDS)
    )
    print(f"{Color.BLUE}Server Started{Color.RESET}")

    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        # Let in-flight git work finish; queued tasks are not persisted.
        await asyncio.to_thread(services.tasks.shutdown, True, 60)
        try:
            await close_redis()
        except Exception as e:
            print("Error closing Redis:", e)

        print(f"{Color.RED}Server Shutdown{Color.RESET}")


app: FastAPI = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.ALLOWED_ORIGIN],
    allow_credentials=True,  # Allow cookies and other credentials
    allow_methods=["GET", "POST", "PATCH", "HEAD", "DELETE", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        settings.IDENTITY_HEADER,
        TusHeaders.RESUMABLE,
        TusHeaders.UPLOAD_LENGTH,
        TusHeaders.UPLOAD_OFFSET,
        TusHeaders.UPLOAD_METADATA,
    ],
    expose_headers=[
        "Location",
        TusHeaders.RESUMABLE,
        TusHeaders.VERSION,
        TusHeaders.EXTENSION,
        TusHeaders.MAX_SIZE,
        TusHeaders.UPLOAD_LENGTH,
        TusHeaders.UPLOAD_OFFSET,
        TusHeaders.UPLOAD_METADATA,
        TusHeaders.UPLOAD_EXPIRES,
        TusHeaders.TASK_ID,
    ],
)


@app.get("/healthz")
async def healthz():
    return {"ok": True}


@app.exception_handler(IngestError)
async def ingest_error_handler(request: Request, exc: IngestError):
    headers = {}
    if request.url.path.startswith(InternalURIs.TUS):
        headers[TusHeaders.RESUMABLE] = TUS_VERSION
    if exc.http_status >= 500:
        logger.error("http.error path=%s code=%s", request.url.path, exc.code)
    return JSONResponse(
        status_code=exc.http_status,
        content=ErrorEnvelope(error=exc.code, message=exc.message).model_dump(),
        headers=headers,
    )


@app.exception_handler(429)
async def ratelimit_handler(request: Request, exc):
    return JSONResponse(
        status_code=429,
        content={
            "ok": False,
            "error": "rate_limited",
            "message": "Too many requests. Try again in 60s.",
        },
        headers={"Retry-After": "60"},
    )


routes.register_routes(app)

if __name__ == "__main__":
    import uvicorn

    reload = settings.APP_ENV == Environment.DEV
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=reload)
