"""
PDF probing and rasterization on top of PyMuPDF.

The probe reports an explicit result variant instead of leaking library
exceptions, and rendering failures surface as `PdfRenderError` carrying the
library's own message so the caller can show it next to the file.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Union

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

RENDER_SCALE = 2.0
UNREADABLE_PDF_MESSAGE = "Could not read this PDF. It may be corrupted or unsupported."
EMPTY_PDF_MESSAGE = "This PDF does not contain any pages."
INCORRECT_PASSWORD_MESSAGE = "Incorrect password for this PDF."
MISSING_PASSWORD_MESSAGE = "This PDF is password protected. Please enter its password."


class PdfRenderError(RuntimeError):
    """Raised when a statement cannot be opened or rendered to images."""


@dataclass(frozen=True, slots=True)
class ProbeReady:
    page_count: int


@dataclass(frozen=True, slots=True)
class ProbeNeedsPassword:
    pass


@dataclass(frozen=True, slots=True)
class ProbeError:
    reason: str


ProbeResult = Union[ProbeReady, ProbeNeedsPassword, ProbeError]


def probe_pdf(content: bytes) -> ProbeResult:
    """Open the document without a password and classify it."""

    try:
        document = _open_document(content)
    except PdfRenderError as exc:
        return ProbeError(reason=str(exc))

    with document:
        if document.needs_pass:
            return ProbeNeedsPassword()
        if document.page_count == 0:
            return ProbeError(reason=EMPTY_PDF_MESSAGE)
        return ProbeReady(page_count=document.page_count)


def render_pdf_pages(content: bytes, password: str | None = None, *, scale: float = RENDER_SCALE) -> list[str]:
    """
    Render every page to PNG and return the images as base64 strings, in page order.

    Raises:
        PdfRenderError: the document cannot be opened, the password is missing
            or wrong, or a page fails to render.
    """

    document = _open_document(content)
    with document:
        if document.needs_pass:
            if not password:
                raise PdfRenderError(MISSING_PASSWORD_MESSAGE)
            if not document.authenticate(password):
                raise PdfRenderError(INCORRECT_PASSWORD_MESSAGE)

        if document.page_count == 0:
            raise PdfRenderError(EMPTY_PDF_MESSAGE)

        matrix = fitz.Matrix(scale, scale)
        images: list[str] = []
        for page in document:
            try:
                pixmap = page.get_pixmap(matrix=matrix)
                png_bytes = pixmap.tobytes("png")
            except (RuntimeError, ValueError) as exc:
                raise PdfRenderError(str(exc) or f"Failed to render page {page.number + 1}.") from exc
            images.append(base64.b64encode(png_bytes).decode("ascii"))

    logger.debug({"event": "pdf_rendered", "page_count": len(images), "scale": scale})
    return images


def _open_document(content: bytes) -> "fitz.Document":
    if not content:
        raise PdfRenderError(UNREADABLE_PDF_MESSAGE)
    try:
        return fitz.open(stream=content, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        # FileDataError and EmptyFileError derive from RuntimeError.
        raise PdfRenderError(str(exc) or UNREADABLE_PDF_MESSAGE) from exc
