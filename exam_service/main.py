from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from shared.database import init_db, make_engine, make_session_factory

from . import config
from . import models  # noqa: F401  (registers tables on Base)
from .auth import TokenVerifier, auth_middleware
from .errors import ExamServiceError, StorageError
from .routes import build_router

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("exam-service")


def create_app(engine=None, verify_token: Optional[TokenVerifier] = None) -> FastAPI:
    if engine is None:
        engine = make_engine(config.DATABASE_URL)
    SessionLocal = make_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(engine)
        yield

    app = FastAPI(title="Exam Service", version="1.0.0", lifespan=lifespan)
    app.state.verify_token = verify_token

    allow_credentials = config.CORS_ORIGINS != ["*"]  # browsers reject "*" with credentials
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(auth_middleware)

    @app.exception_handler(ExamServiceError)
    async def exam_service_error_handler(request: Request, exc: ExamServiceError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error("Unhandled storage error on %s %s: %s", request.method, request.url.path, exc)
        err = StorageError()
        return JSONResponse(status_code=err.status_code, content={"detail": err.message, "code": err.code})

    @app.get("/health", operation_id="health_check", tags=["Health"])
    async def health_check():
        return {"status": "healthy", "service": "exam-service"}

    app.include_router(build_router(SessionLocal))
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
