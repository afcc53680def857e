from fastapi import APIRouter, Request, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy import func
from sqlalchemy.orm import Session
from . import auth, models
from .db import get_db

router = APIRouter()


@router.post("/admin/login")
async def login(request: Request):
    # Accept form submission; also allow JSON body
    password = None
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
            password = data.get("password") if isinstance(data, dict) else None
        except ValueError:
            password = None
    else:
        form = await request.form()
        password = form.get("password")

    settings = request.app.state.settings
    if not auth.check_admin_password(settings, password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    resp = RedirectResponse(url='/api/admin/stats', status_code=302)
    resp.set_cookie(auth.ADMIN_COOKIE, auth.create_admin_token(settings), httponly=True, samesite='lax')
    return resp


@router.post('/admin/logout')
def logout():
    resp = RedirectResponse(url='/health', status_code=302)
    resp.delete_cookie(auth.ADMIN_COOKIE)
    return resp


@router.get('/api/admin/stats', dependencies=[Depends(auth.require_admin)])
def admin_stats(db: Session = Depends(get_db)):
    total_qr = db.query(models.QRCode).count()
    dynamic_qr = db.query(models.QRCode).filter(models.QRCode.is_dynamic.is_(True)).count()
    active_qr = db.query(models.QRCode).filter(models.QRCode.status == "active").count()
    total_scans = db.query(func.coalesce(func.sum(models.QRCode.scan_count), 0)).scalar()
    total_events = db.query(models.AnalyticsEvent).count()
    unique_visitors = db.query(models.AnalyticsEvent)\
        .filter(models.AnalyticsEvent.is_unique_visitor.is_(True)).count()
    return {
        "total_qr": total_qr,
        "dynamic_qr": dynamic_qr,
        "active_qr": active_qr,
        "total_scans": int(total_scans or 0),
        "total_events": total_events,
        "unique_visitors": unique_visitors,
    }
