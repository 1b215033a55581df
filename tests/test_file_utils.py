import os

import pytest

from app.errors import InvalidInput
from app.utils.file_utils import build_upload_path, is_allowed_file, safe_filename, write_upload
from app.utils.hashing import get_bytes_hash, get_submission_key


def test_allowed_extensions():
    assert is_allowed_file("a.PDF")
    assert is_allowed_file("scan.jpeg")
    assert not is_allowed_file("notes.txt")
    assert not is_allowed_file("")


def test_safe_filename_strips_paths():
    assert safe_filename("../../etc/passwd.pdf") == "passwd.pdf"
    assert safe_filename("C:\\Users\\me\\hw 1.png") == "hw_1.png"
    assert safe_filename("") == "upload"


def test_upload_path_prefixes_timestamp(tmp_path):
    data = b"%PDF-data"
    path = write_upload(data, build_upload_path(data, "hw.pdf", tmp_path / "uploads"))
    name = os.path.basename(path)
    prefix, rest = name.split("_", 1)

    assert prefix.isdigit()
    assert rest == "hw.pdf"
    with open(path, "rb") as f:
        assert f.read() == b"%PDF-data"


def test_upload_path_rejects_bad_input(tmp_path):
    with pytest.raises(InvalidInput):
        build_upload_path(b"data", "hw.exe", tmp_path)
    with pytest.raises(InvalidInput):
        build_upload_path(b"", "hw.pdf", tmp_path)
    assert list(tmp_path.iterdir()) == []


def test_hashes():
    assert get_bytes_hash(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"

    key = get_submission_key("h", "math", "single", 2)
    assert key == get_submission_key("h", "math", "single", 2)
    assert key != get_submission_key("h", "math", "single", 3)
