import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from database import Base, make_engine, make_session_factory
from errors import LedgerError
from ledger import LedgerStore
import models  # noqa: F401  registers the tables on Base.metadata
from routers import auth as auth_router
from routers import bills as bills_router
from routers import budgets as budgets_router
from routers import categories as categories_router
from routers import chat as chat_router
from routers import dashboard as dashboard_router
from routers import savings_goals as savings_goals_router
from routers import settings as settings_router
from routers import transactions as transactions_router

logger = logging.getLogger(__name__)


def create_app(database_url: Optional[str] = None) -> FastAPI:
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = make_engine(database_url or config.DATABASE_URL)
        # Create all DB tables on startup
        Base.metadata.create_all(bind=engine)
        app.state.store = LedgerStore(make_session_factory(engine))
        logger.info("Ledger store ready on %s", engine.url.render_as_string(hide_password=True))
        yield
        app.state.store.close()
        engine.dispose()

    app = FastAPI(
        title="Budget Ledger API",
        description="Budgets, category allocations, bills and savings goals",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS: allow all origins (API is protected by JWT tokens)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder({"detail": exc.to_dict()}))

    app.include_router(auth_router.router)
    app.include_router(settings_router.router)
    app.include_router(categories_router.router)
    app.include_router(budgets_router.router)
    app.include_router(transactions_router.router)
    app.include_router(bills_router.router)
    app.include_router(savings_goals_router.router)
    app.include_router(dashboard_router.router)
    app.include_router(chat_router.router)

    @app.get("/", tags=["Health"])
    def root():
        return {"message": "Budget Ledger API is running", "docs": "/docs"}

    @app.get("/health", tags=["Health"])
    def health():
        return {"status": "ok"}

    return app


app = create_app()
