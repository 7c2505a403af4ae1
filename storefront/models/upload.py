# storefront/models/upload.py

from dataclasses import dataclass
from typing import BinaryIO, Optional


@dataclass
class UploadDescriptor:
    """
    One uploaded file, alive only for the request that carried it.

    `file` is the spooled handle of the parsed multipart part; it is closed
    together with the form once the response has been produced.
    """
    field_name: str
    content_type: str
    file: BinaryIO
    size: int
    filename: Optional[str] = None
    storage_key: Optional[str] = None
    location: Optional[str] = None
