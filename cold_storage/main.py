import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from cold_storage.config import settings
from cold_storage.db import SessionLocal
from cold_storage.errors import GatePassEngineError
from cold_storage.routers import admin, gate_passes, inventory, ledger, portal, room_entries
from cold_storage.security.headers import install_api_headers
from cold_storage.security.sessions import install_auth_session_middleware
from cold_storage.services.expiration_service import ExpirationSweeper
from cold_storage.services.provider_factory import get_notifier


def configure_logging() -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        root_logger.addHandler(handler)


configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if settings.expiration_sweep_enabled:
        sweeper = ExpirationSweeper(
            SessionLocal,
            interval_seconds=settings.expiration_sweep_interval_seconds,
            notifier=get_notifier(),
        )
        sweeper.start()
    app.state.expiration_sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()


app = FastAPI(title='Cold Storage Gate Pass Engine', lifespan=lifespan)


@app.exception_handler(GatePassEngineError)
async def gate_pass_engine_error_handler(request: Request, exc: GatePassEngineError):
    if exc.status_code >= 500:
        logger.critical('%s %s failed: %s', request.method, request.url.path, exc.message)
    else:
        logger.info('%s %s rejected (%s): %s', request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.message, 'error': exc.kind})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={'detail': jsonable_encoder(exc.errors()), 'error': 'validation_error'},
    )


install_api_headers(app)
install_auth_session_middleware(app)

app.include_router(gate_passes.router)
app.include_router(portal.router)
app.include_router(inventory.router)
app.include_router(room_entries.router)
app.include_router(ledger.router)
app.include_router(admin.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
