from typing import Any, Dict, Optional
from fastapi import Body, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import PlainTextResponse


def get_service(request: Request):
    return request.app.state.service


def get_token(request: Request, x_token: Optional[str] = Header(None, alias="X-Token")):
    expected = request.app.state.token
    if expected and x_token != expected:
        raise HTTPException(status_code=401, detail="Invalid token")


def create_app(service=None, token: Optional[str] = None) -> FastAPI:
    app = FastAPI(title="ReWatch Progress Store")
    app.state.service = service
    app.state.token = token

    @app.get("/healthz")
    def healthz(service=Depends(get_service)):
        if service is None:
            return {"status": "starting"}
        return {"status": "ok"}

    @app.post("/messages", dependencies=[Depends(get_token)])
    async def messages(payload: Dict[str, Any] = Body(...), service=Depends(get_service)):
        if service is None:
            raise HTTPException(status_code=503, detail="Service not ready")
        return await service.router.handle(payload)

    @app.get("/status", dependencies=[Depends(get_token)])
    async def status(service=Depends(get_service)):
        if service is None:
            return {"status": "not_ready"}

        snapshot = await service.snapshot()
        prefs = await service.preferences.current()
        return {
            **snapshot,
            "settings": prefs.to_store(),
        }

    @app.get("/metrics", response_class=PlainTextResponse)
    async def metrics(service=Depends(get_service)):
        # Simple prometheus-style text format
        if service is None:
            return ""

        snapshot = await service.snapshot()
        lines = [
            f'rewatch_tracked_content {snapshot["tracked_content"]}',
            f'rewatch_detector_status_entries {snapshot["detector_status_entries"]}',
            f'rewatch_last_maintenance_timestamp {snapshot["last_maintenance"]}',
        ]
        return "\n".join(lines)

    return app
