import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from storybook.core.config import Settings
from storybook.core.errors import GenerationError, InvalidTransition, StorybookError, ValidationError
from storybook.core.logger import log_api_request, log_error, setup_logger
from storybook.core.media import MEDIA_ROUTE
from storybook.db.session import create_db_models
from storybook.services import Services

from storybook.web import api_routes
from storybook.web import routes as web_routes
from storybook.web import session_routes

ERROR_STATUS = {
    ValidationError: 400,
    InvalidTransition: 409,
    GenerationError: 500,
}


async def storybook_error_handler(request: Request, exc: StorybookError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        log_error(f"{request.method} {request.url.path} failed", exc)
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request."})


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Without ``services`` the collaborators are wired from the environment at
    startup, which fails immediately if a credential is missing.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            settings = Settings.from_env()
            setup_logger(settings.LOG_DIR)
            app.state.services = Services.from_settings(settings)

        create_db_models(app.state.services.gallery.engine)
        #Mount object storage (once; the lifespan runs again on every startup)
        if not any(getattr(route, "name", None) == "media" for route in app.routes):
            app.mount(MEDIA_ROUTE, StaticFiles(directory=str(app.state.services.media.root)), name="media")
        yield

    app = FastAPI(title="AI Storybook Creator", lifespan=lifespan)
    app.state.services = services

    app.add_exception_handler(StorybookError, storybook_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        log_api_request(request.method, request.url.path, response.status_code, (time.perf_counter() - started) * 1000)
        return response

    #Include Routers
    app.include_router(api_routes.router)
    app.include_router(session_routes.router)
    app.include_router(web_routes.router)

    return app


app = create_app()
