"""Punto de entrada de la API usando FastAPI.

Crea la aplicación, configura logging y CORS y registra los routers de
dispositivos y de jobs de conversión.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from comicfit.api.v1.devices import router as devices_router
from comicfit.api.v1.jobs import router as jobs_router
from comicfit.core.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
)

# CORS configurable via `settings.allowed_origins` (definido en .env)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(o) for o in settings.allowed_origins],
    allow_credentials=settings.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    return {"status": "ok"}


app.include_router(devices_router, prefix="/api/v1")
app.include_router(jobs_router, prefix="/api/v1")
