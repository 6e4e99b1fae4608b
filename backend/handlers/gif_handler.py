import logging
from typing import Any, Callable

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from models.gif_models import GenerateBulkGifRequest, GenerateGifRequest
from operators.gif_operator import (
    DownloadFailureError,
    GifRenderResult,
    InputError,
    InvalidSpecError,
    RenderFailureError,
    render_bulk,
    render_single,
)


router = APIRouter(prefix="/gifs", tags=["gifs"])
logger = logging.getLogger(__name__)


def _error(status_code: int, error: str, details: str | None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


def result_response(result: GifRenderResult) -> Response:
    return Response(
        content=result.content,
        media_type=result.media_type,
        headers={"Content-Disposition": f'attachment; filename="{result.filename}"'},
    )


async def run_gif_render(
    error_label: str,
    render: Callable[..., GifRenderResult],
    *args: Any,
    **kwargs: Any,
) -> Response:
    """Run a render off the event loop and map its failures to JSON errors."""
    try:
        result = await run_in_threadpool(render, *args, **kwargs)
    except (InputError, InvalidSpecError) as e:
        return _error(400, error_label, str(e))
    except DownloadFailureError as e:
        return _error(502, error_label, str(e))
    except RenderFailureError as e:
        return _error(500, error_label, e.diagnostic or str(e))
    except Exception as e:
        logger.exception("Unexpected render error")
        return _error(500, error_label, type(e).__name__)

    return result_response(result)


@router.post("/generate")
async def generate_gif(request: GenerateGifRequest):
    return await run_gif_render(
        "Failed to generate GIF",
        render_single,
        request.video_url,
        request.variables,
        gif_name=request.gif_name,
    )


@router.post("/generate-bulk")
async def generate_bulk_gif(request: GenerateBulkGifRequest):
    return await run_gif_render(
        "Failed to generate bulk GIFs",
        render_bulk,
        request.video_url,
        request.variables,
        request.file_contents,
        request.gif_name,
    )
