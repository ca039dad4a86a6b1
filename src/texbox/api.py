from __future__ import annotations
import base64
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from .auth import AccessGate, Principal, require_principal
from .core.errors import ClientError
from .core.models import CompileOutcome
from .core.settings import Settings, load_settings
from .logging import setup_logging
from .services.job_service import CompileService

log = structlog.get_logger(__name__)


# --------- Schemas ---------
class CompileReq(BaseModel):
    source: Optional[str] = None


class CompileFailureRes(BaseModel):
    success: bool = False
    jobId: Optional[str] = None
    status: Optional[str] = None
    reason: Optional[str] = None
    error: str
    errorLines: List[int] = []
    rawLog: str = ""
    errorLog: str


class HealthRes(BaseModel):
    ok: bool
    engine: str
    compiler_found: bool


def _client_error(message: str, status_code: int = 400) -> JSONResponse:
    body = CompileFailureRes(error=message, errorLog=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _failure(outcome: CompileOutcome) -> JSONResponse:
    diag = outcome.diagnostic
    body = CompileFailureRes(
        jobId=outcome.job_id,
        status=outcome.status.value,
        reason=outcome.reason,
        error=diag.summary,
        errorLines=diag.error_lines,
        rawLog=diag.raw_log,
        errorLog=diag.error_log,
    )
    return JSONResponse(status_code=500, content=body.model_dump())


def _success(outcome: CompileOutcome, want_json: bool) -> Response:
    if want_json:
        return JSONResponse(
            {
                "success": True,
                "jobId": outcome.job_id,
                "filename": outcome.filename,
                "pdfBase64": base64.b64encode(outcome.pdf).decode("ascii"),
            }
        )
    return Response(
        content=outcome.pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'inline; filename="{outcome.filename}"',
            "X-Job-Id": outcome.job_id,
        },
    )


def create_app(settings: Optional[Settings] = None, service: Optional[CompileService] = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level)

    app = FastAPI(title="texbox LaTeX compile API")
    app.state.settings = settings
    app.state.gate = AccessGate(settings.jwt_secret, settings.jwt_algorithms, settings.jwt_leeway_s)
    app.state.service = service or CompileService(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError):
        return _client_error("Missing LaTeX source")

    # --------- Endpoints ---------

    @app.get("/health", response_model=HealthRes)
    def health():
        return HealthRes(ok=True, engine=settings.engine, compiler_found=settings.compiler_found())

    def compile_endpoint(request: Request, req: Optional[CompileReq] = None,
                         principal: Principal = Depends(require_principal)):
        svc: CompileService = request.app.state.service
        user = principal.username or principal.subject
        log.info("compile_request", user=user)
        try:
            outcome = svc.compile(req.source if req else None, user=user)
        except ClientError as e:
            return _client_error(str(e), e.status_code)
        except Exception as e:
            # không để lỗi lọt ra ngoài làm sập worker
            log.exception("compile_unhandled", error=str(e))
            return _client_error(f"Server error: {e}", 500)

        if not outcome.ok:
            return _failure(outcome)
        want_json = "application/json" in request.headers.get("accept", "")
        return _success(outcome, want_json)

    app.add_api_route("/compile", compile_endpoint, methods=["POST"])
    app.add_api_route("/compile-latex", compile_endpoint, methods=["POST"])

    return app
