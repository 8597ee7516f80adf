import logging
from contextlib import asynccontextmanager

import uvicorn

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware
from timekeeper.cron_jobs import scheduler
from timekeeper.routers import timers
from timekeeper.config import settings

PROD_MODE = settings.PRODUCTION_MODE

logging.basicConfig(
    level=logging.INFO,  # Set the logging level to INFO
    format='%(asctime)s - %(levelname)s - %(message)s',  # Log format
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    from timekeeper.db import ensure_indexes

    await ensure_indexes()
    # Start cron job scheduler
    scheduler.start()
    yield
    scheduler.shutdown(wait=False)


app = FastAPI(title=settings.PROJECT_TITLE, lifespan=lifespan)

app.include_router(timers.router, prefix="/timers", tags=["timers"])

# Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def index():
    return {"message": "Hello Timekeeper"}


if __name__ == "__main__":
    if PROD_MODE == True:
    # Run Uvicorn without reload in production
        uvicorn.run("timekeeper.main:app", host="0.0.0.0", port=settings.PORT, reload=False)

    else:
        # Run Uvicorn with reload=True in development mode
        uvicorn.run("timekeeper.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
