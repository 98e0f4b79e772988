# backend/churnguard/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.responses import HTMLResponse

from .config import settings
from .db import Base, engine, SessionLocal
from .log import configure_logging, get_logger
from .seed import seed_if_needed
from .routers import jobs, triggers

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    # Create tables first
    Base.metadata.create_all(bind=engine)

    # Optional seeding
    if settings.seed_on_start:
        with SessionLocal() as db:
            seed_if_needed(db)
    logger.info("churnguard_started", database=engine.url.render_as_string(hide_password=True))
    yield


app = FastAPI(title="ChurnGuard", lifespan=lifespan)


@app.get("/", response_class=HTMLResponse)
def index():
    return (
        "<html><body><h1>ChurnGuard trigger engine</h1>"
        '<ul><li><a href="/docs">API docs</a></li>'
        '<li><a href="/api/triggers?user_id=demo-user">Demo triggers</a></li></ul>'
        "</body></html>"
    )


# API routers
app.include_router(triggers.router)
app.include_router(jobs.router)
