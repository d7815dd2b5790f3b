import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Mount

from todosync.auth import get_auth_gateway, router as auth_router
from todosync.config import get_settings
from todosync.exceptions import AuthenticationError
from todosync.logging_setup import configure_logging
from todosync.mcp_server import mcp
from todosync.routers.tasks import router as tasks_router
from todosync.services.tasks import bind_to_auth, get_task_store

logger = logging.getLogger(__name__)


# --- Localhost-only middleware ---

class LocalhostOnlyMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        client_host = request.client.host if request.client else None
        if client_host not in ("127.0.0.1", "::1", "localhost"):
            return JSONResponse(
                status_code=403,
                content={"error_code": "forbidden", "message": "Localhost access only"},
            )
        return await call_next(request)


# --- Session lifecycle ---

def start_session():
    """Bind the task store to the auth state and restore a persisted sign-in.

    Returns a function that undoes the binding.
    """
    auth = get_auth_gateway()
    unbind = bind_to_auth(get_task_store(), auth)
    auth.check_auth_status()
    return unbind


def stop_session(unbind) -> None:
    unbind()
    get_task_store().unsubscribe()
    logger.info("Task listener released on shutdown")


@asynccontextmanager
async def lifespan(app: FastAPI):
    unbind = start_session()
    try:
        yield
    finally:
        stop_session(unbind)


# --- FastAPI app ---

api = FastAPI(title="todosync", version="0.1.0")
api.include_router(auth_router)
api.include_router(tasks_router)


@api.get("/api/status")
def api_status() -> dict:
    auth = get_auth_gateway()
    store = get_task_store()
    user = auth.current_user()
    status = store.check_listener()
    subscribed = store.is_subscribed
    return {
        "auth": auth.state.value.model_dump(),
        "tasks": {
            "subscribed": subscribed,
            "count": len(store.tasks.value),
            "status": status.model_dump(),
        },
        "ready": user is not None and subscribed,
    }


# --- Exception handlers ---

@api.exception_handler(AuthenticationError)
async def auth_error_handler(request: Request, exc: AuthenticationError):
    return JSONResponse(status_code=401, content={"error_code": "auth_error", "message": str(exc)})


# --- Starlette root app ---

mcp_app = mcp.http_app(path="/", stateless_http=True)


@asynccontextmanager
async def root_lifespan(app: Starlette):
    # Mounted apps don't get their own lifespan, so run both from the root.
    async with mcp_app.lifespan(app):
        async with lifespan(api):
            yield


app = Starlette(
    middleware=[Middleware(LocalhostOnlyMiddleware)],
    routes=[
        Mount("/mcp", app=mcp_app),
        Mount("/", app=api),
    ],
    lifespan=root_lifespan,
)


def run():
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "todosync.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
