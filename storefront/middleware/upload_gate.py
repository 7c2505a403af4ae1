# storefront/middleware/upload_gate.py
"""
Upload gate for product images.

Decoding and the accept/reject decision happen before any I/O; writing the
accepted file to object storage is a separate step the pipeline runs only
after the request has passed the CSRF check.
"""
import logging
from typing import Dict, FrozenSet, Optional
from uuid import uuid4

from starlette.datastructures import FormData, UploadFile

from storefront.core.config import ALLOWED_IMAGE_TYPES
from storefront.core.exceptions import PayloadTooLargeError, UploadRejectedError
from storefront.models.upload import UploadDescriptor
from storefront.services.object_storage import ObjectStorage

logger = logging.getLogger(__name__)

_EXTENSIONS: Dict[str, str] = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
}


def _media_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


def is_allowed_image(content_type: Optional[str], allowed: FrozenSet[str] = ALLOWED_IMAGE_TYPES) -> bool:
    """Accept/reject decision for a declared content type. No side effects."""
    return _media_type(content_type) in allowed


def generate_storage_key(content_type: Optional[str] = None) -> str:
    """Random object key, independent of the uploaded filename and bytes"""
    return f"{uuid4().hex}{_EXTENSIONS.get(_media_type(content_type), '')}"


def _is_blank(upload: UploadFile) -> bool:
    # Browsers send an empty part for a file input left untouched
    return not upload.filename and not upload.size


async def extract_upload(
    form: FormData,
    field_name: str,
    allowed: FrozenSet[str] = ALLOWED_IMAGE_TYPES,
    max_bytes: Optional[int] = None
) -> Optional[UploadDescriptor]:
    """
    Pick the single accepted file out of a decoded form.

    Returns:
        The descriptor of an accepted file, or None when there is no file or
        its declared type is not allowed

    Raises:
        UploadRejectedError: If the form carries more than one file or a file
            under any other field
        PayloadTooLargeError: If the accepted file is larger than max_bytes
    """
    files = [(name, value) for name, value in form.multi_items()
             if isinstance(value, UploadFile) and not _is_blank(value)]

    if not files:
        return None

    unexpected = sorted({name for name, _ in files if name != field_name})
    if unexpected:
        raise UploadRejectedError("Unexpected file field", field=unexpected[0])
    if len(files) > 1:
        raise UploadRejectedError("Only one file may be uploaded", field=field_name)

    _, upload = files[0]
    if not is_allowed_image(upload.content_type, allowed):
        logger.info(f"🖼️ Dropped upload with declared type {upload.content_type!r}")
        return None

    if max_bytes is not None and (upload.size or 0) > max_bytes:
        raise PayloadTooLargeError(
            f"Upload exceeds {max_bytes} bytes", field=field_name, details={"size": upload.size}
        )

    await upload.seek(0)
    return UploadDescriptor(
        field_name=field_name,
        content_type=_media_type(upload.content_type),
        file=upload.file,
        size=upload.size or 0,
        filename=upload.filename,
    )


async def store_upload(descriptor: UploadDescriptor, storage: ObjectStorage) -> UploadDescriptor:
    """
    Write an accepted file to object storage.

    The key and location are set on the descriptor only once the write has
    completed, so a failed write leaves the descriptor without a key.
    """
    key = generate_storage_key(descriptor.content_type)
    location = await storage.put(
        key,
        descriptor.file,
        descriptor.size,
        {"fieldName": descriptor.field_name},
        descriptor.content_type,
    )
    descriptor.storage_key = key
    descriptor.location = location
    return descriptor
