"""
Document Service — upload storage and application document metadata.

Files are written under ``UPLOAD_FOLDER/<subdir>/`` with a random prefix
and a werkzeug-sanitised name; the ``Document`` row stores the path
relative to UPLOAD_FOLDER.
"""

import logging
import os
import uuid

from flask import current_app
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.audit import write_audit
from portal.models.application import STATUS_RECEIVED, STATUS_UNDER_REVIEW, Application
from portal.models.document import (
    DOCUMENT_FIELD_MAP,
    DOCUMENT_TYPES,
    Document,
    ServiceRequiredDocument,
)
from portal.utils.helpers import commit_or_raise, parse_bool

logger = logging.getLogger(__name__)

# Documents can only be added or removed while staff have not approved yet
EDITABLE_STATUSES = (STATUS_RECEIVED, STATUS_UNDER_REVIEW)

# Built-in checklist used when no ServiceRequiredDocument rows are configured.
# (document_type, name_ar, required, renewal_only)
DEFAULT_REQUIRED_DOCUMENTS = {
    "fisherman": [
        ("police_clearance", "فيش جنائي موجه للجهاز", True, False),
        ("national_id_copy", "صورة بطاقة الرقم القومي سارية", True, False),
        ("military_status", "موقف التجنيد", True, False),
        ("personal_photo", "صورة شخصية 4×6 خلفية بيضاء", True, False),
        ("old_fishing_card", "صورة بطاقة الصيد القديمة", True, True),
        ("insurance_doc", "صورة التأمين", False, False),
    ],
    "boat": [
        ("previous_license", "أصل رخصة العام السابق", True, False),
        ("owner_id_copy", "صورة بطاقة المالك", True, False),
        ("association_letter", "خطاب من الجمعية (خالي المديونية)", True, False),
        ("insurance_letter", "خطاب من التأمينات", True, False),
        ("tax_receipt", "إيصال سداد الضرائب", True, False),
        ("renewal_form", "استمارة تجديد ترخيص مركب", True, False),
    ],
    "vehicle": [
        ("previous_license", "أصل رخصة العام السابق", True, True),
        ("owner_id_copy", "صورة بطاقة المالك", True, False),
        ("tax_receipt", "إيصال سداد الضرائب", True, False),
    ],
    "trade": [
        ("national_id_copy", "صورة بطاقة الرقم القومي سارية", True, False),
        ("personal_photo", "صورة شخصية", True, False),
        ("previous_license", "الترخيص السابق", True, True),
    ],
    "entry": [
        ("national_id_copy", "صورة بطاقة الرقم القومي سارية", True, False),
        ("personal_photo", "صورة شخصية", True, False),
    ],
    "other": [
        ("owner_id_copy", "صورة بطاقة المالك", True, False),
        ("personal_photo", "صورة شخصية", True, False),
    ],
}


# ═══════════════════════════════════════════════════════════════
# File storage
# ═══════════════════════════════════════════════════════════════

def _allowed_extension(filename: str) -> bool:
    allowed = current_app.config.get("ALLOWED_UPLOAD_EXTENSIONS", set())
    return "." in filename and filename.rsplit(".", 1)[1].lower() in allowed


def _file_size(file: FileStorage) -> int:
    stream = file.stream
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(0)
    return size


def store_upload(file: FileStorage, subdir: str = "applications") -> dict:
    """Persist one uploaded file and return its metadata.

    Returns:
        {"file_path", "file_name", "original_name", "file_size", "mime_type"}
    """
    if file is None or not file.filename:
        raise ValidationError("No file provided")
    original = file.filename
    if not _allowed_extension(original):
        raise ValidationError(f"File type not allowed: {original}", details={"file": "extension"})
    size = _file_size(file)
    if size > current_app.config.get("MAX_UPLOAD_SIZE", 5 * 1024 * 1024):
        raise ValidationError(f"File too large: {original}", details={"file": "size"})

    safe = secure_filename(original) or "upload"
    if "." not in safe:
        safe = f"{safe}.{original.rsplit('.', 1)[1].lower()}"
    stored_name = f"{uuid.uuid4().hex[:12]}_{safe}"
    target_dir = os.path.join(current_app.config["UPLOAD_FOLDER"], subdir)
    os.makedirs(target_dir, exist_ok=True)
    file.save(os.path.join(target_dir, stored_name))

    return {
        "file_path": f"{subdir}/{stored_name}",
        "file_name": stored_name,
        "original_name": original,
        "file_size": size,
        "mime_type": file.mimetype,
    }


def remove_stored_file(relative_path: str) -> None:
    path = os.path.join(current_app.config["UPLOAD_FOLDER"], relative_path)
    try:
        os.remove(path)
    except FileNotFoundError:
        logger.info("Stored file already gone: %s", relative_path)


def document_type_for_field(field_name: str) -> str:
    """Map a multipart field name (or a document type itself) to a document type."""
    if field_name in DOCUMENT_TYPES:
        return field_name
    return DOCUMENT_FIELD_MAP.get(field_name, "other")


# ═══════════════════════════════════════════════════════════════
# Application documents
# ═══════════════════════════════════════════════════════════════

def stage_document(application_id: int, meta: dict, document_type: str) -> Document:
    """Add a Document row to the session; the caller commits."""
    if document_type not in DOCUMENT_TYPES:
        raise ValidationError(f"Invalid document type: {document_type}",
                              details={"document_type": list(DOCUMENT_TYPES)})
    doc = Document(application_id=application_id, document_type=document_type, **meta)
    db.session.add(doc)
    return doc


def list_documents(application_id: int) -> list[dict]:
    docs = Document.query.filter_by(application_id=application_id).order_by(Document.uploaded_at).all()
    return [d.to_dict() for d in docs]


def add_documents(application: Application, files: list[tuple[str, FileStorage]]) -> list[dict]:
    """Owner uploads extra documents while the application is still editable."""
    if application.status not in EDITABLE_STATUSES:
        raise ValidationError("Documents can no longer be changed for this application")
    if not files:
        raise ValidationError("No files provided")
    docs = []
    for field_name, file in files:
        meta = store_upload(file)
        docs.append(stage_document(application.id, meta, document_type_for_field(field_name)))
    commit_or_raise("Document")
    return [d.to_dict() for d in docs]


def delete_document(application: Application, document_id: int) -> None:
    doc = db.session.get(Document, document_id)
    if not doc or doc.application_id != application.id:
        raise NotFoundError("Document", document_id)
    if application.status not in EDITABLE_STATUSES:
        raise ValidationError("Documents can no longer be changed for this application")
    path = doc.file_path
    db.session.delete(doc)
    commit_or_raise("Document")
    remove_stored_file(path)


# ═══════════════════════════════════════════════════════════════
# Required documents
# ═══════════════════════════════════════════════════════════════

def get_required_documents(application_type: str, is_renewal=False) -> list[dict]:
    """Checklist for a service; configured rows win over the built-in list."""
    is_renewal = parse_bool(is_renewal)
    rows = (
        ServiceRequiredDocument.query
        .filter_by(service_category=application_type, is_active=True)
        .order_by(ServiceRequiredDocument.display_order, ServiceRequiredDocument.id)
        .all()
    )
    if rows:
        return [r.to_dict() for r in rows if is_renewal or not r.renewal_only]

    return [
        {"document_type": doc_type, "name_ar": name, "is_required": required}
        for doc_type, name, required, renewal_only in DEFAULT_REQUIRED_DOCUMENTS.get(application_type, [])
        if is_renewal or not renewal_only
    ]


def list_required_document_rows(service_category: str | None = None) -> list[dict]:
    q = ServiceRequiredDocument.query
    if service_category:
        q = q.filter_by(service_category=service_category)
    return [r.to_dict() for r in q.order_by(ServiceRequiredDocument.service_category,
                                             ServiceRequiredDocument.display_order).all()]


def _apply_required_document(row: ServiceRequiredDocument, data: dict, partial: bool) -> None:
    if not partial or "service_category" in data:
        if not data.get("service_category"):
            raise ValidationError("service_category is required")
        row.service_category = data["service_category"]
    if not partial or "document_type" in data:
        if data.get("document_type") not in DOCUMENT_TYPES:
            raise ValidationError("Invalid document_type", details={"document_type": list(DOCUMENT_TYPES)})
        row.document_type = data["document_type"]
    if not partial or "name_ar" in data:
        if not (data.get("name_ar") or "").strip():
            raise ValidationError("name_ar is required")
        row.name_ar = data["name_ar"].strip()
    for key in ("name_en", "description"):
        if key in data:
            setattr(row, key, data[key])
    for key in ("is_required", "renewal_only", "is_active"):
        if key in data:
            setattr(row, key, parse_bool(data[key]))
    if "display_order" in data:
        row.display_order = int(data["display_order"] or 0)


def _audit_required_document(row, action, actor, diff):
    write_audit(entity_type="required_document", entity_id=row.id, action=action,
                actor=actor.national_id, actor_user_id=actor.id, diff=diff)


def create_required_document(data: dict, actor) -> ServiceRequiredDocument:
    row = ServiceRequiredDocument()
    _apply_required_document(row, data, partial=False)
    db.session.add(row)
    db.session.flush()
    _audit_required_document(row, "create", actor,
                             {"document_type": {"old": None, "new": row.document_type}})
    commit_or_raise("ServiceRequiredDocument")
    return row


def update_required_document(row_id: int, data: dict, actor) -> ServiceRequiredDocument:
    row = db.session.get(ServiceRequiredDocument, row_id)
    if not row:
        raise NotFoundError("ServiceRequiredDocument", row_id)
    _apply_required_document(row, data, partial=True)
    _audit_required_document(row, "update", actor, {k: {"new": v} for k, v in data.items()})
    commit_or_raise("ServiceRequiredDocument")
    return row


def delete_required_document(row_id: int, actor) -> None:
    row = db.session.get(ServiceRequiredDocument, row_id)
    if not row:
        raise NotFoundError("ServiceRequiredDocument", row_id)
    _audit_required_document(row, "delete", actor, {"document_type": {"old": row.document_type, "new": None}})
    db.session.delete(row)
    commit_or_raise("ServiceRequiredDocument")
