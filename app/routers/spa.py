"""Static files and the single-page-app fallback. Included last."""

from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import FileResponse

from app.core.exceptions import NotFoundException

router = APIRouter()

API_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


def resolve_static_file(static_dir: str, relative_path: str) -> Path | None:
    """Return the file under static_dir for relative_path, never escaping it."""
    root = Path(static_dir).resolve()
    candidate = (root / relative_path).resolve()
    if not candidate.is_relative_to(root) or not candidate.is_file():
        return None
    return candidate


@router.api_route("/api", methods=API_METHODS, include_in_schema=False)
@router.api_route("/api/{api_path:path}", methods=API_METHODS, include_in_schema=False)
async def api_not_found():
    raise NotFoundException("API endpoint not found")


@router.get("/{full_path:path}", include_in_schema=False)
async def serve_spa(full_path: str, request: Request):
    """Serve a static asset when one exists, otherwise the SPA shell."""
    static_dir = request.app.state.settings.static_dir

    if full_path:
        asset = resolve_static_file(static_dir, full_path)
        if asset is not None:
            return FileResponse(asset)

    index = resolve_static_file(static_dir, "index.html")
    if index is None:
        raise NotFoundException("Frontend bundle not found")
    return FileResponse(index)
