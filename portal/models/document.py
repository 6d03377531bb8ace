"""
Document models.

Models:
    - Document: one uploaded file attached to one application.
    - ServiceRequiredDocument: staff-curated checklist of documents per service.
"""

from datetime import datetime, timezone

from portal.models import db


DOCUMENT_TYPES = (
    "police_clearance",
    "national_id_copy",
    "old_fishing_card",
    "military_status",
    "insurance_doc",
    "personal_photo",
    "previous_license",
    "owner_id_copy",
    "association_letter",
    "insurance_letter",
    "tax_receipt",
    "renewal_form",
    "payment_receipt",
    "other",
)

# Multipart form field → document type
DOCUMENT_FIELD_MAP = {
    "criminalRecord": "police_clearance",
    "nationalIdImage": "national_id_copy",
    "oldFishingCard": "old_fishing_card",
    "militaryStatus": "military_status",
    "insurancePhoto": "insurance_doc",
    "personalPhoto": "personal_photo",
    "previousLicense": "previous_license",
    "ownerPhoto": "owner_id_copy",
    "associationLetter": "association_letter",
    "insuranceLetter": "insurance_letter",
    "taxReceipt": "tax_receipt",
    "renewalForm": "renewal_form",
    "paymentReceipt": "payment_receipt",
}


class Document(db.Model):
    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    document_type = db.Column(db.String(30), nullable=False, default="other")
    file_path = db.Column(db.String(255), nullable=False)
    file_name = db.Column(db.String(255), nullable=False)
    original_name = db.Column(db.String(255))
    file_size = db.Column(db.Integer, default=0)
    mime_type = db.Column(db.String(100))
    uploaded_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    application = db.relationship("Application", back_populates="documents")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "document_type": self.document_type,
            "file_path": self.file_path,
            "file_name": self.file_name,
            "original_name": self.original_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.document_type} for app {self.application_id}>"


class ServiceRequiredDocument(db.Model):
    __tablename__ = "service_required_documents"

    id = db.Column(db.Integer, primary_key=True)
    service_category = db.Column(db.String(30), nullable=False, index=True, comment="application type")
    document_type = db.Column(db.String(30), nullable=False)
    name_ar = db.Column(db.String(200), nullable=False)
    name_en = db.Column(db.String(200))
    description = db.Column(db.Text)
    is_required = db.Column(db.Boolean, default=True)
    renewal_only = db.Column(db.Boolean, default=False)
    display_order = db.Column(db.Integer, default=0)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "service_category": self.service_category,
            "document_type": self.document_type,
            "name_ar": self.name_ar,
            "name_en": self.name_en,
            "description": self.description,
            "is_required": self.is_required,
            "renewal_only": self.renewal_only,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }
