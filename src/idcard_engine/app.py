"""FastAPI application factory for IDCard-Engine."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from idcard_engine.common.config import get_settings
from idcard_engine.common.exceptions import HTTP_STATUS_BY_CODE, IdCardError
from idcard_engine.common.logging import setup_logging
from idcard_engine.common.schemas import ErrorResponse, HealthResponse


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from idcard_engine.deps import get_db
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(IdCardError)
    async def idcard_error_handler(request: Request, exc: IdCardError):
        return JSONResponse(
            status_code=HTTP_STATUS_BY_CODE.get(exc.code, 400),
            content=ErrorResponse(error=exc.message, code=exc.code).model_dump(),
        )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(version=settings.api_version)

    # Mount routers
    from idcard_engine.eligibility.router import router as eligibility_router
    from idcard_engine.navigation.router import router as navigation_router
    from idcard_engine.students.router import router as students_router
    from idcard_engine.transitions.router import router as transitions_router
    from idcard_engine.payments.router import router as payments_router
    from idcard_engine.audit.router import router as audit_router
    from idcard_engine.admins.router import router as admins_router

    prefix = settings.api_prefix
    app.include_router(eligibility_router, prefix=prefix, tags=["eligibility"])
    app.include_router(navigation_router, prefix=prefix, tags=["navigation"])
    app.include_router(students_router, prefix=prefix, tags=["students"])
    app.include_router(transitions_router, prefix=prefix, tags=["transitions"])
    app.include_router(payments_router, prefix=prefix, tags=["payments"])
    app.include_router(audit_router, prefix=prefix, tags=["audit"])
    app.include_router(admins_router, prefix=prefix, tags=["admins"])

    return app
