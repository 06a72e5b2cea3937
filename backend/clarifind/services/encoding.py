"""
File content helpers: data-URI encoding for storage and re-display,
human-readable sizes, and test-type inference from file names.
"""

import base64
import binascii
import logging
import mimetypes
import os
from urllib.parse import quote
import aiofiles
from fastapi import UploadFile
from clarifind.config import Settings
from clarifind.exceptions import FileReadError, UploadRejectedError

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
SIZE_UNITS = ["Bytes", "KB", "MB"]

# Ordered: the first group with a matching keyword wins.
TEST_TYPE_KEYWORDS = [
    (("cbc", "complete blood"), "Complete Blood Count"),
    (("lipid", "cholesterol"), "Lipid Panel"),
    (("thyroid", "tsh", "t3", "t4"), "Thyroid Function"),
    (("glucose", "blood sugar", "a1c"), "Glucose/Diabetes Panel"),
    (("liver", "alt", "ast"), "Liver Function"),
    (("kidney", "creatinine", "bun"), "Kidney Function"),
]
DEFAULT_TEST_TYPE = "General Lab Test"


def to_data_uri(content: bytes, content_type: str = "") -> str:
    payload = base64.b64encode(content).decode("ascii")
    return f"data:{content_type or DEFAULT_CONTENT_TYPE};base64,{payload}"


def decode_data_uri(data_uri: str) -> tuple[str, bytes]:
    """Split a base64 data URI into (content_type, raw bytes)."""
    if not data_uri.startswith("data:") or "," not in data_uri:
        raise ValueError("Not a data URI")
    header, payload = data_uri[5:].split(",", 1)
    if not header.endswith(";base64"):
        raise ValueError("Only base64 data URIs are supported")
    content_type = header[: -len(";base64")] or DEFAULT_CONTENT_TYPE
    try:
        return content_type, base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e


async def read_upload_as_data_uri(upload: UploadFile) -> tuple[str, int]:
    """Read an uploaded file fully. Returns (data_uri, size_in_bytes)."""
    try:
        content = await upload.read()
    except Exception as e:
        logger.error("Failed to read upload %s: %s", upload.filename, e)
        raise FileReadError(upload.filename or "upload", str(e)) from e
    return to_data_uri(content, upload.content_type or ""), len(content)


async def read_file_as_data_uri(path: str, content_type: str = None) -> tuple[str, int]:
    """Read a file from disk. Returns (data_uri, size_in_bytes)."""
    file_name = os.path.basename(path)
    if content_type is None:
        content_type = mimetypes.guess_type(file_name)[0] or ""
    try:
        async with aiofiles.open(path, "rb") as f:
            content = await f.read()
    except OSError as e:
        logger.error("Failed to read %s: %s", path, e)
        raise FileReadError(file_name, str(e)) from e
    return to_data_uri(content, content_type), len(content)


def format_file_size(size: int) -> str:
    if size < 0:
        raise ValueError("File size cannot be negative")
    if size == 0:
        return "0 Bytes"
    # floor(log_1024(size)), clamped to the known units
    index = 0
    while index < len(SIZE_UNITS) - 1 and size >= 1024 ** (index + 1):
        index += 1
    value = size / 1024 ** index
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return f"{text} {SIZE_UNITS[index]}"


def detect_test_type(file_name: str) -> str:
    name = file_name.lower()
    for keywords, test_type in TEST_TYPE_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return test_type
    return DEFAULT_TEST_TYPE


def validate_upload(content_type: str, size: int, settings: Settings) -> None:
    """Reject uploads that are too large or of an unsupported type."""
    if size > settings.max_upload_bytes:
        limit = format_file_size(settings.max_upload_bytes)
        raise UploadRejectedError(f"File too large: maximum size is {limit}", status_code=413)
    if content_type not in settings.allowed_upload_types:
        raise UploadRejectedError(
            "Invalid file type: please upload a PDF, JPG, or PNG file",
            status_code=415,
        )


def content_disposition(file_name: str, disposition: str = "inline") -> str:
    """Header value with a plain ASCII filename plus an RFC 5987 UTF-8 filename*."""
    fallback = "".join(c for c in file_name if 32 <= ord(c) < 127 and c not in '"\\').strip()
    return f"{disposition}; filename=\"{fallback or 'download'}\"; filename*=UTF-8''{quote(file_name, safe='')}"
