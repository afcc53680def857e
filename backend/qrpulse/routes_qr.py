import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload
from typing import Optional
from . import schemas, models, auth
from .analytics import summarize
from .db import get_db
from .dispatch import REDIRECT_BUILDERS, build_vcard
from .errors import ShortCodeExhausted
from .utils import as_naive_utc, utcnow
from segno import make as make_qr
from segno.helpers import make_wifi_data
from io import BytesIO
from starlette.responses import StreamingResponse
import json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/qrcodes", tags=["qrcodes"])


def _get_qr(db: Session, qrcode_id: int) -> models.QRCode:
    q = db.query(models.QRCode).options(joinedload(models.QRCode.short_link))\
        .filter(models.QRCode.id == qrcode_id).first()
    if not q:
        raise HTTPException(status_code=404, detail="QRCode not found")
    return q


def _public_base(request: Request) -> str:
    settings = request.app.state.settings
    return settings.base_url or str(request.base_url).rstrip('/')


def static_content(q: models.QRCode) -> str:
    """The string a static QR code encodes directly."""
    data = q.data or {}
    if q.type in REDIRECT_BUILDERS:
        value = REDIRECT_BUILDERS[q.type](data)
        if value:
            return value
    if q.type == "text" and isinstance(data.get("text"), str):
        return data["text"]
    if q.type == "vcard" and isinstance(data.get("vcard"), dict):
        return build_vcard(data["vcard"])
    if q.type == "wifi" and isinstance(data.get("wifi"), dict):
        wifi = data["wifi"]
        return make_wifi_data(ssid=wifi.get("ssid", ""), password=wifi.get("password"),
                              security=wifi.get("security"), hidden=bool(wifi.get("hidden")))
    return json.dumps(data, sort_keys=True)


def _new_qr(data: schemas.QRCreate) -> models.QRCode:
    return models.QRCode(
        name=data.name or "",
        description=data.description,
        type=data.type,
        data=data.data,
        status=data.status,
        is_dynamic=bool(data.is_dynamic),
        expires_at=as_naive_utc(data.expires_at) if data.expires_at else None,
        options=data.options or {},
    )


@router.post("/")
def create_qr(data: schemas.QRCreate, request: Request, db: Session = Depends(get_db)):
    if not data.is_dynamic:
        q = _new_qr(data)
        db.add(q)
        db.commit()
    else:
        resolver = request.app.state.pipeline.resolver
        for attempt in range(resolver.max_attempts):
            q = _new_qr(data)
            # Raises ShortCodeExhausted before anything is written
            short_code = resolver.generate_short_code()
            q.short_link = models.ShortLink(short_code=short_code)
            db.add(q)
            try:
                db.commit()
                break
            except IntegrityError:
                # another request took the code between the check and the insert
                db.rollback()
                logger.info(f"Short code {short_code} taken on insert, attempt {attempt + 1}")
        else:
            raise ShortCodeExhausted(
                f"Failed to insert a unique short code after {resolver.max_attempts} attempts")
    db.refresh(q)
    out = {"id": q.id, "short_code": q.short_code}
    if q.short_code:
        out["short_url"] = f"{_public_base(request)}/q/{q.short_code}"
    return out


@router.get("/")
def list_qrcodes(
    dynamic: Optional[bool] = Query(None),
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort: str = Query("created_desc"),
    db: Session = Depends(get_db)
):
    """List QR codes with pagination, search and sorting.

    Query params:
    - dynamic: filter by dynamic status
    - status: filter by status (active, inactive, archived)
    - search: search in name and description
    - page: page number (default 1)
    - limit: items per page (default 20, max 100)
    - sort: created_desc (default), created_asc, name_asc, name_desc, scans_desc
    """
    q = db.query(models.QRCode).options(joinedload(models.QRCode.short_link))

    if dynamic is True:
        q = q.filter(models.QRCode.is_dynamic.is_(True))
    elif dynamic is False:
        q = q.filter(models.QRCode.is_dynamic.is_(False))

    if status:
        q = q.filter(models.QRCode.status == status)

    if search:
        search_term = f"%{search}%"
        q = q.filter(models.QRCode.name.ilike(search_term) | models.QRCode.description.ilike(search_term))

    # Get total count before pagination
    total = q.count()

    if sort == "created_asc":
        q = q.order_by(models.QRCode.created_at.asc(), models.QRCode.id.asc())
    elif sort == "name_asc":
        q = q.order_by(models.QRCode.name.asc())
    elif sort == "name_desc":
        q = q.order_by(models.QRCode.name.desc())
    elif sort == "scans_desc":
        q = q.order_by(models.QRCode.scan_count.desc())
    else:  # created_desc (default)
        q = q.order_by(models.QRCode.created_at.desc(), models.QRCode.id.desc())

    offset = (page - 1) * limit
    results = q.offset(offset).limit(limit).all()

    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit if total > 0 else 1,
        "items": [schemas.QROut.model_validate(r).model_dump(mode="json") for r in results],
    }


@router.get("/code/{short_code}", response_model=schemas.QROut)
def get_qr_by_short_code(short_code: str, db: Session = Depends(get_db)):
    link = db.query(models.ShortLink).filter(models.ShortLink.short_code == short_code).first()
    if not link:
        raise HTTPException(status_code=404, detail="QRCode not found")
    return _get_qr(db, link.qrcode_id)


@router.get("/{qrcode_id}", response_model=schemas.QROut)
def get_qr(qrcode_id: int, db: Session = Depends(get_db)):
    return _get_qr(db, qrcode_id)


@router.patch("/{qrcode_id}", response_model=schemas.QROut, dependencies=[Depends(auth.require_admin)])
def update_qr(qrcode_id: int, data: schemas.QRUpdate, db: Session = Depends(get_db)):
    q = _get_qr(db, qrcode_id)
    # The short code never changes; only what it points at does
    if data.data is not None:
        if not q.is_dynamic:
            raise HTTPException(status_code=403, detail="QRCode is not dynamic")
        try:
            schemas._check_payload(q.type, data.data)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        q.data = data.data
    if data.name is not None:
        q.name = data.name
    if data.description is not None:
        q.description = data.description
    if data.status is not None:
        q.status = data.status
    if data.clear_expiry:
        q.expires_at = None
    elif data.expires_at is not None:
        q.expires_at = as_naive_utc(data.expires_at)
    if data.options is not None:
        q.options = data.options
    db.commit()
    return _get_qr(db, qrcode_id)


@router.post("/{qrcode_id}/deactivate", response_model=schemas.QROut, dependencies=[Depends(auth.require_admin)])
def deactivate_qr(qrcode_id: int, db: Session = Depends(get_db)):
    q = _get_qr(db, qrcode_id)
    q.status = "inactive"
    db.commit()
    return _get_qr(db, qrcode_id)


@router.delete("/{qrcode_id}", dependencies=[Depends(auth.require_admin)])
def delete_qr(qrcode_id: int, db: Session = Depends(get_db)):
    """Delete a single QR code together with its short link and events."""
    q = _get_qr(db, qrcode_id)
    db.query(models.AnalyticsEvent).filter(models.AnalyticsEvent.qrcode_id == qrcode_id).delete()
    db.delete(q)
    db.commit()
    return {"message": "QR code deleted successfully"}


@router.get('/{qrcode_id}/analytics', response_model=schemas.AnalyticsSummary)
def qrcode_analytics(qrcode_id: int, days: int = Query(30, ge=1, le=365), db: Session = Depends(get_db)):
    """Scan totals, unique visitors and a daily timeseries for the past `days` days."""
    _get_qr(db, qrcode_id)
    return summarize(db, qrcode_id, days=days, now=utcnow())


@router.get('/{qrcode_id}/events')
def qrcode_events(
    qrcode_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db)
):
    _get_qr(db, qrcode_id)

    total = db.query(models.AnalyticsEvent).filter(models.AnalyticsEvent.qrcode_id == qrcode_id).count()

    offset = (page - 1) * limit
    events = db.query(models.AnalyticsEvent)\
        .filter(models.AnalyticsEvent.qrcode_id == qrcode_id)\
        .order_by(models.AnalyticsEvent.timestamp.desc(), models.AnalyticsEvent.id.desc())\
        .offset(offset)\
        .limit(limit)\
        .all()

    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit if total > 0 else 1,
        "events": [
            {
                "id": e.id,
                "event_type": e.event_type,
                "timestamp": e.timestamp.isoformat() if e.timestamp else None,
                "session_id": e.session_id,
                "device": e.device or {},
                "location": e.location or {},
                "referrer_domain": e.referrer_domain,
                "is_unique_visitor": e.is_unique_visitor,
            }
            for e in events
        ]
    }


@router.get("/{qrcode_id}/image")
def get_image(qrcode_id: int, request: Request, format: str = Query("png"), size: int = Query(300, ge=50, le=2000),
              db: Session = Depends(get_db)):
    q = _get_qr(db, qrcode_id)
    # Dynamic QR codes encode the redirect URL; static ones encode their content directly
    if q.is_dynamic and q.short_code:
        qr_content = f"{_public_base(request)}/q/{q.short_code}"
    else:
        qr_content = static_content(q)
    qr = make_qr(qr_content)
    if format == "svg":
        svg_io = BytesIO()
        qr.save(svg_io, kind="svg")
        return Response(content=svg_io.getvalue(), media_type="image/svg+xml")
    png_io = BytesIO()
    # scale = pixels per module, so the PNG is roughly `size` pixels wide
    modules_x, modules_y = qr.symbol_size()
    scale = max(1, int(size // max(modules_x, modules_y)))
    qr.save(png_io, kind="png", scale=scale)
    png_io.seek(0)
    return StreamingResponse(png_io, media_type="image/png")
