"""SQLAlchemy-backed stores used by the redirect pipeline.

Each call opens its own short-lived session, so the stores can be used from
background tasks after the request session is gone.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import update, select, exists
from sqlalchemy.orm import sessionmaker

from . import models


class QRCodeStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def find_by_short_code(self, short_code: str) -> Optional[models.QRCode]:
        with self.session_factory() as db:
            return db.execute(
                select(models.QRCode)
                .join(models.ShortLink, models.ShortLink.qrcode_id == models.QRCode.id)
                .where(models.ShortLink.short_code == short_code)
            ).scalars().first()

    def short_code_exists(self, short_code: str) -> bool:
        with self.session_factory() as db:
            return db.execute(
                select(exists().where(models.ShortLink.short_code == short_code))
            ).scalar()

    def create_short_link(self, qrcode_id: int, short_code: str) -> models.ShortLink:
        with self.session_factory() as db:
            link = models.ShortLink(qrcode_id=qrcode_id, short_code=short_code)
            db.add(link)
            db.commit()
            db.refresh(link)
            return link

    def increment_scan_count(self, qrcode_id: int, scanned_at: datetime):
        # Increment in SQL so concurrent scans never lose updates
        with self.session_factory() as db:
            db.execute(
                update(models.QRCode)
                .where(models.QRCode.id == qrcode_id)
                .values(scan_count=models.QRCode.scan_count + 1, last_scanned_at=scanned_at)
            )
            db.commit()

    def update_last_accessed(self, short_code: str, accessed_at: datetime):
        with self.session_factory() as db:
            db.execute(
                update(models.ShortLink)
                .where(models.ShortLink.short_code == short_code)
                .values(click_count=models.ShortLink.click_count + 1, last_accessed_at=accessed_at)
            )
            db.commit()


class AnalyticsStore:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def insert_event(self, event: models.AnalyticsEvent) -> models.AnalyticsEvent:
        with self.session_factory() as db:
            db.add(event)
            db.commit()
            db.refresh(event)
            return event

    def find_event(self, qrcode_id: int, session_id: str) -> Optional[models.AnalyticsEvent]:
        with self.session_factory() as db:
            return db.execute(
                select(models.AnalyticsEvent)
                .where(models.AnalyticsEvent.qrcode_id == qrcode_id,
                       models.AnalyticsEvent.session_id == session_id)
                .limit(1)
            ).scalars().first()
