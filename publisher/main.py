import logging

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from publisher.api import router
from publisher.errors import platform_exception_handler, sqlalchemy_exception_handler
from publisher.meta_api import meta_router
from publisher.platforms.exceptions import PlatformError
from publisher.settings import settings

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Meta Publisher", version="0.1.0")
app.add_exception_handler(PlatformError, platform_exception_handler)
app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
app.include_router(router)
app.include_router(meta_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
