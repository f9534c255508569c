from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from pos_attributes.config import settings
from pos_attributes.log import configure_logging
from pos_attributes.routers import attributes

configure_logging(settings.log_level)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info('pos_attributes.starting', lines_per_page=settings.lines_per_page)
    yield
    logger.info('pos_attributes.stopping')


app = FastAPI(title='POS Attributes', lifespan=lifespan)
app.include_router(attributes.router)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
