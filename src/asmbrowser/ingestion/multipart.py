"""Extract uploaded files from a raw multipart/form-data body."""

from __future__ import annotations

import logging
from typing import List

from asmbrowser.models import UploadedPayload

LOGGER = logging.getLogger(__name__)

CRLF = b"\r\n"
HEADER_SEPARATOR = b"\r\n\r\n"
_FILENAME_ATTR = 'filename="'


def is_multipart(content_type: str | None) -> bool:
    return bool(content_type) and content_type.lower().startswith("multipart/form-data")


def parse_boundary(content_type: str | None) -> str:
    """Return the ``boundary=`` parameter of a Content-Type header, or ``""``."""
    if not content_type:
        return ""
    for element in content_type.split(";"):
        element = element.strip()
        if element.lower().startswith("boundary="):
            return element[len("boundary="):].strip().strip('"')
    return ""


def _extract_filename(headers: str) -> str:
    start = headers.find(_FILENAME_ATTR)
    if start == -1:
        return ""
    start += len(_FILENAME_ATTR)
    end = headers.find('"', start)
    if end == -1:
        return ""
    return headers[start:end]


def _decode_part(part: bytes) -> UploadedPayload | None:
    separator = part.find(HEADER_SEPARATOR)
    if separator == -1:
        return None
    headers = part[:separator].decode("utf-8", errors="replace")
    file_name = _extract_filename(headers)
    if not file_name:
        return None
    data = part[separator + len(HEADER_SEPARATOR):]
    if not data:
        LOGGER.debug("Dropping empty part for %s", file_name)
        return None
    return UploadedPayload(file_name=file_name, data=data)


def decode_multipart(body: bytes, boundary: str) -> List[UploadedPayload]:
    """Split ``body`` on ``--boundary`` delimiters and return the file parts in order.

    Parts without a ``filename`` attribute and parts with an empty payload are
    dropped. An empty boundary or a body without parts yields an empty list.
    """
    if not boundary:
        return []

    delimiter = b"--" + boundary.encode("utf-8")
    payloads: List[UploadedPayload] = []

    position = body.find(delimiter)
    while position != -1:
        start = position + len(delimiter)
        # "--boundary--" closes the body
        if body.startswith(b"--", start):
            break
        if body.startswith(CRLF, start):
            start += len(CRLF)

        # The CRLF preceding a delimiter belongs to the delimiter, not the payload.
        next_position = body.find(CRLF + delimiter, start)
        if next_position == -1:
            break

        payload = _decode_part(body[start:next_position])
        if payload is not None:
            payloads.append(payload)
        position = next_position + len(CRLF)

    return payloads
