import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from promo_engine import config
from promo_engine.api.admin import router as admin_router
from promo_engine.api.promocode import router as promocode_router
from promo_engine.database import init_db
from promo_engine.errors import RedemptionContention, StorageError

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(create_tables: bool = True) -> FastAPI:
    if create_tables:
        init_db()

    app = FastAPI(
        title="Promo code engine",
        docs_url=None if config.ENV == "prod" else "/docs",
        redoc_url=None if config.ENV == "prod" else "/redoc",
    )

    app.include_router(promocode_router)
    app.include_router(admin_router)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    @app.exception_handler(RedemptionContention)
    async def contention_handler(request: Request, exc: RedemptionContention):
        # retryable: the code itself may still be valid
        return JSONResponse(
            status_code=503,
            content={"detail": str(exc), "retryable": True},
            headers={"Retry-After": "1"},
        )

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        return JSONResponse(status_code=500, content={"detail": "Storage unavailable"})

    return app


app = create_app()
