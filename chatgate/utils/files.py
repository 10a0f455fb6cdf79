# chatgate/utils/files.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

IMAGE_MIME_TYPES = ("image/png", "image/jpeg", "image/jpg", "image/gif", "image/webp")
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".webp")

TEXT_EXTENSIONS = (
    ".txt", ".md", ".markdown", ".csv", ".tsv", ".json", ".jsonl", ".xml", ".yaml", ".yml", ".toml",
    ".ini", ".cfg", ".log", ".html", ".htm", ".css", ".js", ".jsx", ".ts", ".tsx", ".py", ".rb",
    ".go", ".rs", ".java", ".kt", ".c", ".h", ".cpp", ".hpp", ".cs", ".php", ".sh", ".sql", ".swift",
)
TEXT_MIME_PREFIXES = ("text/",)
TEXT_MIME_TYPES = ("application/json", "application/xml", "application/x-yaml", "application/javascript")

PDF_MIME_TYPE = "application/pdf"

ATTACHMENTS_PREFIX = "attachments/"
GENERATIONS_PREFIX = "generations/"
# uploaded keys carry a fixed-width prefix (uuid + separators) before the original name
STORED_NAME_PREFIX_LEN = 51


@dataclass(frozen=True)
class FileTypeInfo:
    is_image: bool
    is_text: bool
    is_pdf: bool


def is_image_mime_type(mime_type: Optional[str]) -> bool:
    return (mime_type or "").lower() in IMAGE_MIME_TYPES


def get_file_type_info(filename: str, mime_type: Optional[str]) -> FileTypeInfo:
    ext = os.path.splitext(filename or "")[1].lower()
    mime = (mime_type or "").lower()
    is_image = is_image_mime_type(mime) or ext in IMAGE_EXTENSIONS
    is_pdf = mime == PDF_MIME_TYPE or ext == ".pdf"
    is_text = not is_pdf and (
        mime.startswith(TEXT_MIME_PREFIXES) or mime in TEXT_MIME_TYPES or ext in TEXT_EXTENSIONS
    )
    return FileTypeInfo(is_image=is_image, is_text=is_text, is_pdf=is_pdf)


def filename_from_key(key: str) -> str:
    """Original upload name recovered from an ``attachments/`` storage key."""
    if not (key or "").startswith(ATTACHMENTS_PREFIX):
        return ""
    last = key.rsplit("/", 1)[-1]
    return last[STORED_NAME_PREFIX_LEN:] if len(last) > STORED_NAME_PREFIX_LEN else last
