from sqlalchemy import Column, String, Boolean, JSON, DateTime, Text

from headshop.database import db
from headshop.models.base import new_id, utcnow


class WebhookEvent(db.Model):
    """One row per webhook delivery received from a payment provider."""
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=new_id)
    provider = Column(String(32), nullable=False, default="MERCADO_PAGO")
    topic = Column(String(64), nullable=True, index=True)
    action = Column(String(64), nullable=True)
    resource_id = Column(String(64), nullable=True, index=True)
    request_id = Column(String(128), nullable=True)
    signature_status = Column(String(16), nullable=False)  # valid, skipped, missing, malformed, mismatch, legacy
    legacy = Column(Boolean, nullable=False, default=False)
    payload = Column(JSON, nullable=True)
    result = Column(String(64), nullable=True)
    error = Column(Text, nullable=True)
    received_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def __repr__(self):
        return f"<WebhookEvent {self.id} {self.topic}:{self.resource_id}>"
