from fastapi import Depends, Header, HTTPException, Request

from chatcommerce.services.engine import Engine


def get_engine(request: Request) -> Engine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def verify_admin_token(
    engine: Engine = Depends(get_engine),
    x_admin_token: str | None = Header(default=None, alias="X-Admin-Token"),
) -> None:
    expected = engine.settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if x_admin_token != expected:
        raise HTTPException(status_code=401, detail="Invalid admin token")
