"""
Payment gateway ledger.

Models:
    - ProcessedPaymentTransaction: one row per gateway transaction id that
      has already been applied.  A repeated webhook delivery finds its id
      here and is short-circuited.
"""

import json
from datetime import datetime, timezone

from portal.models import db


class ProcessedPaymentTransaction(db.Model):
    __tablename__ = "processed_payment_transactions"

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.String(50), unique=True, nullable=False)
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    merchant_order_id = db.Column(db.String(100))
    outcome = db.Column(db.String(20), nullable=False, comment="success | failed | pending | voided | refunded | unknown")
    amount_cents = db.Column(db.Integer)
    payload_json = db.Column(db.Text, default="{}")
    processed_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def payload(self) -> dict:
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "application_id": self.application_id,
            "merchant_order_id": self.merchant_order_id,
            "outcome": self.outcome,
            "amount_cents": self.amount_cents,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
        }
