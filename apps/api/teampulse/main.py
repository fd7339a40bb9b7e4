from __future__ import annotations

import logging
from time import monotonic

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from teampulse.config import settings
from teampulse.deps import get_identity
from teampulse.errors import ForbiddenError, NotFoundError, StoreUnavailableError, ValidationError
from teampulse.events import EventBus
from teampulse.logging_config import configure_logging, new_request_id, request_id_var, user_id_var
from teampulse.metrics import RuntimeMetrics
from teampulse.policy import Identity
from teampulse.routers.audit import router as audit_router
from teampulse.routers.realtime import router as realtime_router
from teampulse.routers.tasks import router as tasks_router
from teampulse.routers.users import router as users_router
from teampulse.security import app_secret_is_placeholder

logger = logging.getLogger(__name__)


def _field_name(loc: tuple) -> str:
  # ("body", "title") -> "title"; ("query", "status") -> "status"
  parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
  return ".".join(parts) or "body"


def _register_error_handlers(app: FastAPI) -> None:
  def _count(request: Request, outcome: str) -> None:
    request.app.state.metrics.observe_outcome(outcome)

  @app.exception_handler(ValidationError)
  async def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    _count(request, "validation")
    return JSONResponse(status_code=400, content={"detail": {"field": exc.field, "message": exc.message}})

  @app.exception_handler(RequestValidationError)
  async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    _count(request, "validation")
    errors = [{"field": _field_name(tuple(e.get("loc", ()))), "message": str(e.get("msg", ""))} for e in exc.errors()]
    first = errors[0] if errors else {"field": "body", "message": "Invalid request"}
    return JSONResponse(
      status_code=400,
      content={"detail": {"field": first["field"], "message": first["message"], "errors": errors}},
    )

  @app.exception_handler(NotFoundError)
  async def _not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    _count(request, "not_found")
    return JSONResponse(status_code=404, content={"detail": str(exc)})

  @app.exception_handler(ForbiddenError)
  async def _forbidden_handler(request: Request, exc: ForbiddenError) -> JSONResponse:
    _count(request, "forbidden")
    logger.info("policy denied: %s (actor=%s target=%s)", exc.message, exc.actor_role, exc.target_role)
    return JSONResponse(
      status_code=403,
      content={"detail": {"message": exc.message, "actorRole": exc.actor_role, "targetRole": exc.target_role}},
    )

  @app.exception_handler(StoreUnavailableError)
  async def _store_unavailable_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    _count(request, "store_unavailable")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def create_app() -> FastAPI:
  configure_logging()

  app = FastAPI(
    title="TeamPulse API",
    version=settings.app_version,
    docs_url="/docs" if settings.api_docs_enabled else None,
    redoc_url="/redoc" if settings.api_docs_enabled else None,
    openapi_url="/openapi.json" if settings.api_docs_enabled else None,
  )
  app.state.event_bus = EventBus(queue_size=settings.event_queue_size)
  app.state.metrics = RuntimeMetrics()

  _register_error_handlers(app)

  app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list(),
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
  )
  app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

  app.include_router(tasks_router)
  app.include_router(users_router)
  app.include_router(audit_router)
  app.include_router(realtime_router)

  @app.middleware("http")
  async def _request_context_middleware(request: Request, call_next):
    rid = request.headers.get("x-request-id") or new_request_id()
    rid_token = request_id_var.set(rid)
    uid_token = user_id_var.set("")
    start = monotonic()
    try:
      response = await call_next(request)
    finally:
      request_id_var.reset(rid_token)
      user_id_var.reset(uid_token)
    elapsed_ms = (monotonic() - start) * 1000.0
    request.app.state.metrics.observe_request(response.status_code, elapsed_ms)
    response.headers.setdefault("X-Request-ID", rid)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    return response

  @app.get("/health")
  async def health() -> dict:
    return {"ok": True}

  @app.get("/version")
  async def version() -> dict:
    return {"version": settings.app_version, "buildSha": settings.build_sha}

  @app.get("/system/metrics")
  async def system_metrics(request: Request, _: Identity = Depends(get_identity)) -> dict:
    snap = request.app.state.metrics.snapshot()
    snap["eventBus"] = request.app.state.event_bus.snapshot()
    return snap

  @app.on_event("startup")
  async def _startup() -> None:
    if settings.is_test_db():
      return
    if app_secret_is_placeholder():
      raise RuntimeError("APP_SECRET is required and must not be a placeholder")
    logger.info("TeamPulse API %s (%s) starting", settings.app_version, settings.build_sha)

  return app


app = create_app()
