"""Carga de configuración de la aplicación.

Usa `pydantic-settings` para leer valores desde `.env` o variables de
entorno. Aquí sólo vive la configuración del servicio (rutas, CORS, límites
del scheduler, binario de KindleGen); la configuración de cada conversión
(`ProcessingConfig`) llega siempre ya resuelta desde fuera.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Contenedor tipado para todas las opciones configurables."""

    app_name: str = "comicfit API"
    environment: str = "development"
    log_level: str = "INFO"

    # Directorio base para almacenar archivos de entrada y resultados por job
    data_dir: Path = Path("data/jobs")

    # CORS
    allowed_origins: list[str] = ["*"]
    allow_credentials: bool = False

    # Scheduler de páginas
    default_worker_count: int | None = None  # None = núcleos lógicos
    scheduler_prefetch: int = 2  # páginas extra leídas por delante de los workers
    max_failure_ratio: float = 0.5  # por encima de este ratio el job falla

    # Conversión a MOBI (binario externo)
    kindlegen_binary: str = "kindlegen"
    kindlegen_locale: str = "en"

    # Le indicamos a Pydantic que lea automáticamente las variables de entorno
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)


@lru_cache
def get_settings() -> Settings:
    """Crea (y memoriza) la configuración de forma perezosa.

    Usamos `lru_cache` para que sólo se construya una instancia por proceso,
    evitando relecturas repetidas de `.env`. También normalizamos la lista de
    orígenes permitidos para CORS cuando llega como cadena separada por comas.
    """

    settings = Settings()
    # Accept comma separated `ALLOWED_ORIGINS` env value as a string
    ao = settings.allowed_origins
    if isinstance(ao, str):
        settings.allowed_origins = [s.strip() for s in ao.split(",") if s.strip()]
    return settings
