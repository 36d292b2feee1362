"""
Model Orchestrator - Service Entry Point

HTTP surface over the dispatch engine:
- tag-routed generation with single-tier fallback
- divide-and-conquer processing of large inputs
- chunk planning preview and per-backend metrics
"""

import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from model_orchestrator import __version__
from model_orchestrator.config import OrchestratorConfig
from model_orchestrator.dispatcher import TurnDispatcher
from model_orchestrator.errors import ErrorKind
from model_orchestrator.orchestrator import GenerationOutcome
from model_orchestrator.routing_engine import infer_intent_tags

logger = logging.getLogger("model-orchestrator")

SERVICE = "model-orchestrator"

_STATUS_BY_KIND = {
    ErrorKind.BACKEND_INVOCATION_FAILED: 502,
    ErrorKind.BACKEND_TIMEOUT: 504,
    ErrorKind.CANCELLED: 409,
    ErrorKind.CHUNK_FAILED: 502,
}

# ─────────────────────────────────────────────────────────────────────────────
# Request Models
# ─────────────────────────────────────────────────────────────────────────────

class GenerateBody(BaseModel):
    prompt: str
    intent_tags: List[str] = Field(default_factory=list)
    infer_tags: bool = False
    integration_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    use_divide_and_conquer: bool = False
    timeout_s: Optional[float] = Field(default=None, gt=0)


class ProcessBody(BaseModel):
    task: str
    text: str
    intent_tags: List[str] = Field(default_factory=list)
    timeout_s: Optional[float] = Field(default=None, gt=0)


class PlanBody(BaseModel):
    text: str
    chunk_size: Optional[int] = Field(default=None, gt=0)


def _outcome_response(outcome: GenerationOutcome) -> dict:
    if not outcome.ok:
        raise HTTPException(
            status_code=_STATUS_BY_KIND.get(outcome.error_kind, 502),
            detail=outcome.to_dict(),
        )
    return {**outcome.to_dict(), "service": SERVICE}


# ─────────────────────────────────────────────────────────────────────────────
# App factory
# ─────────────────────────────────────────────────────────────────────────────

def create_app(dispatcher: Optional[TurnDispatcher] = None,
               config: Optional[OrchestratorConfig] = None) -> FastAPI:
    """Build the FastAPI app.  Without a dispatcher one is built at startup."""
    state = {"dispatcher": dispatcher}

    @asynccontextmanager
    async def _lifespan(a):
        logger.info("Model Orchestrator starting up...")
        if state["dispatcher"] is None:
            cfg = config or OrchestratorConfig()
            state["dispatcher"] = cfg.build_dispatcher()
        registry = state["dispatcher"].orchestrator.registry
        logger.info("Backends: %s (default=%s)", ", ".join(registry.names), registry.default.name)

        yield  # ── app is running ──

        logger.info("Model Orchestrator shutting down...")
        await state["dispatcher"].orchestrator.aclose()

    app = FastAPI(
        title="Model Orchestrator",
        description="Tag-routed generation and divide-and-conquer dispatch",
        version=__version__,
        lifespan=_lifespan,
    )

    def _dispatcher() -> TurnDispatcher:
        d = state["dispatcher"]
        if d is None:
            raise HTTPException(status_code=503, detail="Dispatcher not initialised")
        return d

    # ---- health & status ---------------------------------------------------

    @app.get("/healthz")
    def healthz():
        """Health check endpoint with engine diagnostics."""
        d = state["dispatcher"]
        result = {
            "ok": d is not None,
            "service": SERVICE,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if d is not None:
            result["backends"] = d.orchestrator.registry.names
            result["default_backend"] = d.orchestrator.registry.default.name
            result["dispatch"] = d.to_dict()
        return result

    @app.get("/backends")
    def backends():
        """List registered backends with their live metrics."""
        return {**_dispatcher().orchestrator.registry.to_dict(), "service": SERVICE}

    @app.get("/metrics")
    def metrics():
        d = _dispatcher()
        return {
            "backends": {n: m.to_dict() for n, m in d.orchestrator.get_metrics().items()},
            "divide_and_conquer": {n: m.to_dict() for n, m in d.executor.get_metrics().items()},
            "recent_routes": d.orchestrator.router.decision_log[-20:],
            "service": SERVICE,
        }

    # ---- generation --------------------------------------------------------

    @app.post("/generate")
    async def generate(body: GenerateBody):
        tags = list(body.intent_tags)
        if not tags and body.infer_tags:
            tags = sorted(infer_intent_tags(body.prompt))
        outcome = await _dispatcher().respond(
            body.prompt,
            intent_tags=tags,
            integration_score=body.integration_score,
            use_divide_and_conquer=body.use_divide_and_conquer,
            timeout_s=body.timeout_s,
        )
        return _outcome_response(outcome)

    @app.post("/process")
    async def process(body: ProcessBody):
        outcome = await _dispatcher().process_large_input(
            body.task, body.text, intent_tags=body.intent_tags, timeout_s=body.timeout_s,
        )
        return _outcome_response(outcome)

    @app.post("/plan")
    def plan(body: PlanBody):
        chunks = _dispatcher().executor.divide_into_chunks(body.text, body.chunk_size)
        return {
            "chunks": [c.to_dict() for c in chunks],
            "count": len(chunks),
            "service": SERVICE,
        }

    # ---- error handlers ----------------------------------------------------

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected errors."""
        logger.error("Unhandled exception: %s", exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": str(exc),
                "service": SERVICE,
            },
        )

    return app


def serve(host: str = "127.0.0.1", port: int = 7020, config_path: Optional[str] = None) -> None:
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        stream=sys.stdout,
    )
    logger.info("Starting Model Orchestrator on http://%s:%d", host, port)
    uvicorn.run(
        create_app(config=OrchestratorConfig(config_path)),
        host=host,
        port=port,
        log_level="info",
    )


if __name__ == "__main__":
    serve()
