import logging
import os
from pathlib import Path

from dotenv import load_dotenv

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from handlers.gif_handler import router as gif_router
from handlers.health_handler import router as health_router
from handlers.template_handler import router as template_router

ROOT_DIR = Path(__file__).resolve().parents[1]
load_dotenv(ROOT_DIR / ".env")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


def _attach_file_handler(
    logger_name: str,
    log_file_path: Path,
    level_name: str | None = None,
) -> None:
    logger_level = (level_name or LOG_LEVEL).upper()
    logger_level_value = getattr(logging, logger_level, logging.INFO)

    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
    file_handler.setLevel(logger_level_value)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )

    target_logger = logging.getLogger(logger_name)
    if not any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(log_file_path)
        for handler in target_logger.handlers
    ):
        target_logger.addHandler(file_handler)
    target_logger.setLevel(logger_level_value)


GIF_RENDER_LOG_FILE = os.getenv("GIF_RENDER_LOG_FILE", "").strip()
GIF_RENDER_LOG_LEVEL = os.getenv("GIF_RENDER_LOG_LEVEL", "INFO").strip()
if GIF_RENDER_LOG_FILE:
    render_log_path = Path(GIF_RENDER_LOG_FILE)
    if not render_log_path.is_absolute():
        render_log_path = ROOT_DIR / render_log_path
    for name in (
        "operators.gif_operator",
        "utils.gif_renderer",
        "utils.scratch",
        "handlers.gif_handler",
    ):
        _attach_file_handler(name, render_log_path, level_name=GIF_RENDER_LOG_LEVEL)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]

app = FastAPI(title="GIF Studio Backend")


app.include_router(health_router)
app.include_router(template_router)
app.include_router(gif_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
