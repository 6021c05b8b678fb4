"""Perfiles de dispositivo: nombre comercial y resolución del lienzo."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Device(BaseModel):
    """Lienzo de destino (en píxeles, orientación vertical)."""

    name: str = "Custom"
    width: int = Field(gt=0)
    height: int = Field(gt=0)

    model_config = ConfigDict(frozen=True)

    @property
    def dimensions(self) -> tuple[int, int]:
        return self.width, self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height


# slug -> (nombre, ancho, alto)
PRESETS: dict[str, tuple[str, int, int]] = {
    "kindle-pw-11": ("Kindle PW 11", 1236, 1648),
    "kindle-pw-12": ("Kindle PW 12", 1264, 1680),
    "kindle-oasis": ("Kindle Oasis", 1264, 1680),
    "kindle-scribe": ("Kindle Scribe", 1860, 2480),
    "kindle-basic": ("Kindle Basic", 600, 800),
    "kindle-11": ("Kindle 11", 1072, 1448),
    "kobo-clara-hd": ("Kobo Clara HD", 1072, 1448),
    "kobo-clara-2e": ("Kobo Clara 2E", 1072, 1448),
    "kobo-libra-2": ("Kobo Libra 2", 1264, 1680),
    "kobo-sage": ("Kobo Sage", 1440, 1920),
    "kobo-elipsa": ("Kobo Elipsa", 1404, 1872),
    "remarkable-2": ("reMarkable 2", 1404, 1872),
    "ipad-mini": ("iPad Mini", 1488, 2266),
    "ipad-109": ("iPad 10.9", 1640, 2360),
    "ipad-pro-11": ("iPad Pro 11", 1668, 2388),
    "onyx-boox-nova": ("Onyx Boox Nova", 1200, 1600),
    "onyx-boox-note": ("Onyx Boox Note", 1404, 1872),
    "pocketbook-era": ("PocketBook Era", 1200, 1600),
}

DEFAULT_PRESET = "kindle-pw-11"


def normalize_slug(value: str) -> str:
    """'Kindle PW_11' -> 'kindle-pw-11'."""
    return value.strip().lower().replace(" ", "-").replace("_", "-")


def get_preset(slug: str) -> Device:
    """Devuelve el Device de un preset o lanza ValueError si no existe."""
    key = normalize_slug(slug)
    try:
        name, width, height = PRESETS[key]
    except KeyError:
        raise ValueError(f"Invalid device preset: {slug}") from None
    return Device(name=name, width=width, height=height)


def default_device() -> Device:
    return get_preset(DEFAULT_PRESET)


def list_presets() -> list[dict]:
    """Listado serializable para la API."""
    return [
        {"id": slug, "name": name, "width": width, "height": height}
        for slug, (name, width, height) in PRESETS.items()
    ]
