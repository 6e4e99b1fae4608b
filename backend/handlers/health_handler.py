import shutil

from fastapi import APIRouter

from utils.gif_renderer import FFMPEG_BIN


router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"ok": True, "ffmpeg_available": shutil.which(FFMPEG_BIN) is not None}
