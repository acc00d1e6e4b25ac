import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bookstore.database import engine
from bookstore.domain.exceptions import ValidationError
from bookstore.infrastructure.db_schema import metadata
from bookstore.application.results import Result
from bookstore.presentation.api import router

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    logger.info("Tables ready")

    yield

    await engine.dispose()
    logger.info("Bookstore service stopped")


app = FastAPI(
    title="Bookstore Order Service",
    description="Orders, pricing, delivery and invoicing for the bookstore",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api")


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    messages = [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]
    result = Result.fail("; ".join(messages), [ValidationError.code])
    return JSONResponse(status_code=422, content=jsonable_encoder(result))


@app.get("/health")
async def health():
    return {"status": "healthy"}
