import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import get_settings
from backend.dependencies import get_outbox
from backend.meetings.routes import router as meetings_router
from backend.reminders.routes import router as cron_router

settings = get_settings()

logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logging.getLogger().setLevel(settings.log_level.upper())
for _name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
    logging.getLogger(_name).setLevel(settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing mail or cron credentials must stop the service from starting
    get_settings().validate_required()
    outbox = get_outbox()
    outbox.start()
    try:
        yield
    finally:
        outbox.stop()


app = FastAPI(title="Meeting Reminders API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(meetings_router, prefix="/api/meetings", tags=["meetings"])
app.include_router(cron_router, prefix="/api/cron", tags=["cron"])


@app.get("/health")
def health_check():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.main:app", host=settings.api_host, port=settings.api_port, reload=settings.api_debug)
