import base64

from pdf_service import (
    INCORRECT_PASSWORD_MESSAGE,
    MISSING_PASSWORD_MESSAGE,
    UNREADABLE_PDF_MESSAGE,
    PdfRenderError,
    ProbeError,
    ProbeNeedsPassword,
    ProbeReady,
    probe_pdf,
    render_pdf_pages,
)

import pytest

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"


def test_probe_plain_pdf_is_ready(make_pdf):
    result = probe_pdf(make_pdf(pages=2))

    assert isinstance(result, ProbeReady)
    assert result.page_count == 2


def test_probe_encrypted_pdf_needs_password(make_pdf):
    result = probe_pdf(make_pdf(password="hunter2"))

    assert isinstance(result, ProbeNeedsPassword)


def test_probe_garbage_reports_error():
    result = probe_pdf(b"this is not a pdf at all")

    assert isinstance(result, ProbeError)
    assert result.reason


def test_probe_empty_bytes_reports_unreadable():
    result = probe_pdf(b"")

    assert result == ProbeError(reason=UNREADABLE_PDF_MESSAGE)


def test_render_returns_one_png_per_page_in_order(make_pdf):
    images = render_pdf_pages(make_pdf(pages=3))

    assert len(images) == 3
    for image in images:
        assert base64.b64decode(image).startswith(PNG_SIGNATURE)


def test_render_scale_controls_image_size(make_pdf):
    content = make_pdf()

    small = base64.b64decode(render_pdf_pages(content, scale=1.0)[0])
    large = base64.b64decode(render_pdf_pages(content, scale=2.0)[0])

    assert len(large) > len(small)


def test_render_encrypted_pdf_with_correct_password(make_pdf):
    images = render_pdf_pages(make_pdf(pages=2, password="hunter2"), "hunter2")

    assert len(images) == 2


def test_render_encrypted_pdf_with_wrong_password(make_pdf):
    with pytest.raises(PdfRenderError) as excinfo:
        render_pdf_pages(make_pdf(password="hunter2"), "wrong")

    assert str(excinfo.value) == INCORRECT_PASSWORD_MESSAGE


def test_render_encrypted_pdf_without_password(make_pdf):
    with pytest.raises(PdfRenderError) as excinfo:
        render_pdf_pages(make_pdf(password="hunter2"))

    assert str(excinfo.value) == MISSING_PASSWORD_MESSAGE


def test_render_garbage_raises():
    with pytest.raises(PdfRenderError):
        render_pdf_pages(b"definitely not a pdf")
