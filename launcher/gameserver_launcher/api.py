from __future__ import annotations
import threading
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import uvicorn
from . import __version__
from .health import HealthStatus, evaluate_health
from .logging_setup import get_logger
from .orchestrator import Orchestrator
from .settings import Settings

log = get_logger("gameserver.launcher.api")

class HealthResponse(BaseModel):
    status: str
    description: str

def create_app(orch: Orchestrator) -> FastAPI:
    app = FastAPI(title="Game Server Launcher API", version=__version__)

    @app.get("/health", response_model=HealthResponse)
    def health():
        result = evaluate_health(orch.server)
        code = 503 if result.status is HealthStatus.UNHEALTHY else 200
        return JSONResponse(status_code=code, content=result.to_dict())

    @app.get("/status")
    def status():
        return {"ok": True, "data": orch.status()}

    return app

def serve_in_background(orch: Orchestrator, settings: Settings) -> threading.Thread:
    """Run the health API on a daemon thread; it dies with the launcher."""
    config = uvicorn.Config(
        create_app(orch),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
    server = uvicorn.Server(config)
    t = threading.Thread(target=server.run, name="health-api", daemon=True)
    t.start()
    log.info("Health API listening on http://%s:%s", settings.api_host, settings.api_port)
    return t
