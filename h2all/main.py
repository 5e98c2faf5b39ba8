import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from h2all.api.routes.campaign_cookie import router as campaign_cookie_router
from h2all.api.routes.campaigns import router as campaigns_router
from h2all.api.routes.health import router as health_router
from h2all.api.routes.redeem import router as redeem_router
from h2all.api.routes.redemption_codes import router as redemption_codes_router
from h2all.api.routes.redemption_url import router as redemption_url_router
from h2all.core.config import get_settings
from h2all.core.logging import configure_logging


async def _http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    content = exc.detail if isinstance(exc.detail, dict) else {"error": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": {"errors": errors}, "code": "E_VALIDATION"},
    )


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="H2All Redemption API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.add_exception_handler(HTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    app.include_router(health_router)
    app.include_router(redeem_router)
    app.include_router(redemption_codes_router)
    app.include_router(campaigns_router)
    app.include_router(campaign_cookie_router)
    app.include_router(redemption_url_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "h2all.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
