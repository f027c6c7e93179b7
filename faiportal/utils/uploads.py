import mimetypes
import secrets
from typing import List, Optional

from fastapi import UploadFile

from faiportal.core.config import settings
from faiportal.core.exceptions import ValidationError
from faiportal.db.schema import DocType
from faiportal.models.submission import DocumentUpload
from faiportal.services.requirements import is_mandatory


# Allowed file extensions for FAI package documents
ALLOWED_DOCUMENT_EXTENSIONS = {
    # Document formats
    "pdf",  # PDF documents
    "doc", "docx",  # Microsoft Word
    "xls", "xlsx", "csv",  # Spreadsheets (BOM, measurement data)
    "txt",  # Plain text
    "rtf",  # Rich Text Format
    "odt", "ods",  # OpenDocument formats
    # Image formats
    "png", "jpg", "jpeg",  # Common image formats
    "webp", "heic", "heif",  # Phone camera formats
    "tif", "tiff", "bmp",  # Scanner output
}


def validate_document_extension(filename: str) -> None:
    """
    Validates that the file extension is allowed for FAI uploads.
    Raises ValidationError if the extension is not allowed.
    """
    if not filename:
        raise ValidationError("Filename is required for document uploads.")

    # Extract extension (case-insensitive)
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""

    if not ext:
        raise ValidationError(
            "File must have an extension. Allowed extensions: " +
            ", ".join(sorted(ALLOWED_DOCUMENT_EXTENSIONS)),
            details={"file": filename}
        )

    if ext not in ALLOWED_DOCUMENT_EXTENSIONS:
        raise ValidationError(
            f"File extension '.{ext}' is not allowed. Allowed extensions: {', '.join(sorted(ALLOWED_DOCUMENT_EXTENSIONS))}",
            details={"file": filename}
        )


def new_document_id() -> str:
    return secrets.token_hex(5)[:9]


def read_upload(
    upload_file: UploadFile,
    doc_type: DocType,
    last_modified: Optional[int] = None
) -> DocumentUpload:
    """
    Reads a multipart file into memory as a DocumentUpload.
    The mandatory flag is snapshotted from the registry here and never re-derived.
    """
    filename = upload_file.filename or ""
    validate_document_extension(filename)

    content = upload_file.file.read(settings.max_upload_bytes + 1)
    if len(content) > settings.max_upload_bytes:
        raise ValidationError(
            f"'{filename}' exceeds the {settings.max_upload_bytes} byte upload limit.",
            details={"file": filename}
        )

    # Browsers send an empty or generic type for unknown formats
    mime_type = upload_file.content_type
    if not mime_type or mime_type == "application/octet-stream":
        mime_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"

    return DocumentUpload(
        id=new_document_id(),
        type=doc_type,
        name=filename,
        mime_type=mime_type,
        last_modified=last_modified or 0,
        is_mandatory=is_mandatory(doc_type),
        content=content
    )


def read_uploads(
    files: List[UploadFile],
    doc_types: List[DocType],
    last_modified: Optional[List[int]] = None
) -> List[DocumentUpload]:
    """
    Pairs each file with its declared type by position. A later file of an
    already-seen type replaces the earlier one, so at most one document per
    type survives.
    """
    if len(files) != len(doc_types):
        raise ValidationError(
            f"Got {len(files)} file(s) but {len(doc_types)} document type(s).",
            details={"files": len(files), "doc_types": len(doc_types)}
        )

    last_modified = last_modified or []
    by_type = {}
    for index, (upload_file, doc_type) in enumerate(zip(files, doc_types)):
        stamp = last_modified[index] if index < len(last_modified) else None
        by_type[doc_type] = read_upload(upload_file, doc_type, stamp)
    return list(by_type.values())
