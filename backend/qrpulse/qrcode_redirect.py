from fastapi import APIRouter, Request, BackgroundTasks
from fastapi.responses import HTMLResponse
from starlette.responses import RedirectResponse

from .dispatch import RedirectResult
from .pipeline import ScanRequest
from .utils import get_client_ip

router = APIRouter()


@router.get("/q/{short_code}")
def redirect_short_code(short_code: str, request: Request, background_tasks: BackgroundTasks):
    """Resolve a dynamic QR code scan; pipeline errors are mapped by the app's exception handlers."""
    pipeline = request.app.state.pipeline
    scan = ScanRequest(
        short_code=short_code,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent", ""),
        referrer=request.headers.get("referer", ""),
    )
    result = pipeline.handle(scan, background_tasks.add_task)
    if isinstance(result, RedirectResult):
        return RedirectResponse(url=result.url, status_code=result.status_code)
    return HTMLResponse(content=result.html, status_code=result.status_code)
