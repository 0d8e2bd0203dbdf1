from file_intake import (
    NON_PDF_WARNING,
    UnknownFileError,
    build_file_id,
    find_file,
    intake_files,
    is_conversion_ready,
    is_convertible,
    update_password,
    update_status,
)
from statement_model import FileState, FileStatus, UploadedFile

import pytest


def _file(file_id: str, status: FileStatus, password: str | None = None) -> FileState:
    return FileState(id=file_id, filename=f"{file_id}.pdf", content=b"%PDF", status=status, password=password)


def test_intake_keeps_only_pdfs_and_warns_once():
    uploads = [
        UploadedFile(filename="jan.pdf", content=b"a", last_modified=1),
        UploadedFile(filename="notes.txt", content=b"b", last_modified=2),
        UploadedFile(filename="photo.png", content=b"c", last_modified=3),
        UploadedFile(filename="FEB.PDF", content=b"d", last_modified=4),
    ]

    result = intake_files(uploads)

    assert [f.filename for f in result.files] == ["jan.pdf", "FEB.PDF"]
    assert all(f.status is FileStatus.PENDING for f in result.files)
    assert result.warning == NON_PDF_WARNING


def test_intake_without_rejections_has_no_warning():
    result = intake_files([UploadedFile(filename="jan.pdf", content=b"a")])

    assert result.warning is None
    assert len(result.files) == 1


def test_intake_of_only_non_pdfs_returns_no_files():
    result = intake_files([UploadedFile(filename="notes.txt", content=b"b")])

    assert result.files == ()
    assert result.warning == NON_PDF_WARNING


def test_file_id_combines_name_and_modification_time():
    upload = UploadedFile(filename="jan.pdf", content=b"a", last_modified=1700000000)

    assert build_file_id(upload) == "jan.pdf-1700000000"


def test_duplicate_uploads_are_collapsed():
    upload = UploadedFile(filename="jan.pdf", content=b"a", last_modified=5)

    result = intake_files([upload, upload])

    assert len(result.files) == 1


def test_update_password_returns_new_tuple_and_leaves_original():
    files = (_file("a", FileStatus.NEEDS_PASSWORD), _file("b", FileStatus.READY))

    updated = update_password(files, "a", "secret")

    assert updated[0].password == "secret"
    assert files[0].password is None
    assert updated[1] is files[1]


def test_update_status_clears_error_unless_given():
    files = (_file("a", FileStatus.ERROR),)
    files = update_status(files, "a", FileStatus.ERROR, "boom")
    assert files[0].error_message == "boom"

    files = update_status(files, "a", FileStatus.PROCESSING)
    assert files[0].status is FileStatus.PROCESSING
    assert files[0].error_message is None


def test_unknown_file_id_raises():
    with pytest.raises(UnknownFileError):
        update_password((), "missing", "pw")
    with pytest.raises(UnknownFileError):
        find_file((_file("a", FileStatus.READY),), "missing")


def test_readiness_requires_passwords_for_protected_files():
    ready = _file("a", FileStatus.READY)
    locked = _file("b", FileStatus.NEEDS_PASSWORD)

    assert is_conversion_ready((ready,)) is True
    assert is_conversion_ready((ready, locked)) is False
    assert is_conversion_ready((ready, update_password((locked,), "b", "pw")[0])) is True


def test_readiness_needs_at_least_one_candidate():
    assert is_conversion_ready(()) is False
    assert is_conversion_ready((_file("a", FileStatus.ERROR), _file("b", FileStatus.PENDING))) is False
    assert is_conversion_ready((_file("a", FileStatus.ERROR), _file("b", FileStatus.READY))) is True


def test_convertible_files():
    assert is_convertible(_file("a", FileStatus.READY))
    assert is_convertible(_file("b", FileStatus.NEEDS_PASSWORD, password="pw"))
    assert not is_convertible(_file("c", FileStatus.NEEDS_PASSWORD))
    assert not is_convertible(_file("d", FileStatus.ERROR))
    assert not is_convertible(_file("e", FileStatus.SUCCESS))


def test_readiness_waits_for_every_probe():
    assert is_conversion_ready((_file("a", FileStatus.READY), _file("b", FileStatus.PENDING))) is False
