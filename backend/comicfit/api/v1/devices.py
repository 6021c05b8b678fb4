from fastapi import APIRouter

from comicfit.core.devices import list_presets

router = APIRouter(prefix="/devices", tags=["devices"])


@router.get("", summary="List supported device presets")
async def get_devices() -> list[dict]:
    return list_presets()
