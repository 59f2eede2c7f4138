"""
Threat Engine - Web API
FastAPI backend the browser host posts its events to
"""

import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Literal, Optional

# Get project root directory
PROJECT_ROOT = Path(__file__).parent.parent.resolve()

# Add src directory to path for imports
sys.path.insert(0, str(PROJECT_ROOT / 'src'))

# Change working directory to project root so the engine finds config.json
os.chdir(PROJECT_ROOT)

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, ValidationError
import uvicorn

from engine import ThreatDetectionEngine
from engine_config import load_config
from errors import CatalogError, ConfigError
from log_config import setup_logging
from threat_models import BlockedScript, ExtensionInfo, PageBehaviorData
from utils import hostname_of


class PayloadCollector:
    """The host collects page behavior itself and posts it; hand it straight through."""

    async def collect(self, target):
        return target


class URLRequest(BaseModel):
    url: str


class ScriptRequest(BaseModel):
    code: str
    source_url: str = 'inline'


class InterceptRequest(BaseModel):
    code: str
    method: Literal['eval', 'Function', 'innerHTML', 'outerHTML'] = 'eval'
    source_url: str = 'inline'


class NotificationActionRequest(BaseModel):
    button_index: int


class PageLoadRequest(BaseModel):
    url: str
    behavior: Optional[PageBehaviorData] = None


class ExtensionScanRequest(BaseModel):
    extensions: List[ExtensionInfo]


def create_app(engine=None):
    """Build the API around an engine; without one, config.json is loaded."""
    if engine is None:
        try:
            config = load_config(PROJECT_ROOT / 'config.json')
            engine = ThreatDetectionEngine(config, collector=PayloadCollector())
        except (ConfigError, CatalogError) as e:
            raise SystemExit(f"[✗] {e}")

    @asynccontextmanager
    async def lifespan(app):
        await engine.start()
        yield
        await engine.stop()

    app = FastAPI(
        title="Threat Detection Engine",
        description="URL, script, page behavior and extension threat scoring",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    @app.get("/health")
    async def health():
        return {"status": "ok", "enabled": engine.config.enabled}

    @app.post("/api/check-url")
    async def check_url(req: URLRequest):
        result = await engine.check_url(req.url)
        return result.model_dump(mode='json')

    @app.post("/api/script/analyze")
    async def analyze_script(req: ScriptRequest):
        result = engine.analyze_script(req.code, req.source_url)
        return result.model_dump(mode='json')

    @app.post("/api/script/blocked")
    async def script_blocked(record: BlockedScript):
        engine.script_blocked(record)
        return {"success": True}

    @app.get("/api/script/blocked")
    async def blocked_scripts():
        return [r.model_dump(mode='json') for r in reversed(engine.script_blocker.history)]

    @app.post("/api/script/intercept")
    async def intercept(req: InterceptRequest):
        if req.method in ('innerHTML', 'outerHTML'):
            decision = engine.intercept_markup(req.code, req.method, req.source_url)
        else:
            decision = engine.intercept_code(req.code, req.method, req.source_url)
        return decision.model_dump(mode='json')

    @app.post("/api/behavior/page-load")
    async def page_load(req: PageLoadRequest):
        anomaly = await engine.on_page_complete(req.url, target=req.behavior)
        profile = engine.behavior.get_profile(hostname_of(req.url))
        return {
            "anomaly": anomaly.model_dump(mode='json') if anomaly else None,
            "visit_count": profile.visit_count if profile else 0,
            "baseline_locked": profile.baseline_locked if profile else False,
        }

    @app.post("/api/extensions/scan")
    async def scan_extensions(req: ExtensionScanRequest):
        anomalies = []
        for ext in req.extensions:
            anomaly = await engine.scan_extension(ext)
            if anomaly is not None:
                anomalies.append(anomaly.model_dump(mode='json'))
        return {"scanned": len(req.extensions), "anomalies": anomalies}

    @app.post("/api/notifications/{notification_id}/action")
    async def notification_action(notification_id: str, req: NotificationActionRequest):
        action = await engine.on_notification_action(notification_id, req.button_index)
        if action is None:
            raise HTTPException(status_code=404, detail="No pending prompt for this notification")
        return {"action": action}

    @app.get("/api/blocked/{domain}")
    async def block_record(domain: str):
        record = await engine.get_block_record(domain)
        if record is None:
            raise HTTPException(status_code=404, detail="Site is not blocked")
        return record

    @app.get("/api/stats")
    async def stats():
        return engine.get_stats()

    @app.get("/api/config")
    async def get_config():
        return engine.get_config()

    @app.post("/api/config")
    async def update_config(patch: dict):
        try:
            return engine.update_config(patch)
        except (ValidationError, CatalogError) as e:
            raise HTTPException(status_code=422, detail=str(e))

    @app.get("/api/anomalies")
    async def anomalies(limit: int = 100):
        return [a.model_dump(mode='json') for a in engine.dispatcher.get_history()[:limit]]

    @app.delete("/api/anomalies")
    async def clear_anomalies():
        await engine.dispatcher.clear_history()
        return {"success": True}

    return app


app = create_app()


if __name__ == "__main__":
    setup_logging()
    print("Starting Threat Detection Engine API...")
    print("Open http://localhost:8000/docs in your browser")
    uvicorn.run(app, host="0.0.0.0", port=8000)
