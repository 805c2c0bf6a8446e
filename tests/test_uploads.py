import io
import os

import pytest
from flask import Flask
from flask_babel import Babel
from werkzeug.datastructures import FileStorage

from conftest import png_bytes
from utils.formatting import format_file_size, parse_timestamp, time_ago
from utils.uploads import (
    UploadTooLarge,
    model_storage_name,
    remove_file,
    sanitize_filename,
    save_upload,
    validate_model_file,
    validate_photo,
)
from utils.validators import parse_print_settings, parse_tags

ALLOWED = {"stl", "obj"}
PHOTO_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
PHOTO_FORMATS = {"jpeg", "png", "gif", "webp"}


@pytest.fixture(autouse=True)
def babel_context():
    # gettext требует контекста приложения с Flask-Babel
    app = Flask(__name__)
    Babel(app)
    with app.app_context():
        yield


def storage(data: bytes, filename: str) -> FileStorage:
    return FileStorage(stream=io.BytesIO(data), filename=filename)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("my part (v2).stl", "mypartv2.stl"),
        ("../../etc/passwd", "passwd"),
        ("..hidden.obj", "hidden.obj"),
        ("модель.stl", "stl"),
        ("", "file"),
    ],
)
def test_sanitize_filename(raw, expected):
    assert sanitize_filename(raw) == expected


def test_model_storage_name_has_random_prefix():
    first = model_storage_name("Part A.stl")
    second = model_storage_name("Part A.stl")
    assert first.endswith("_PartA.stl")
    assert first != second
    assert len(first.split("_", 1)[0]) == 16


def test_validate_model_file():
    assert validate_model_file(storage(b"solid", "part.STL"), ALLOWED, 1024) is None
    assert validate_model_file(storage(b"MZ", "tool.exe"), ALLOWED, 1024) is not None
    assert validate_model_file(storage(b"x" * 2048, "big.stl"), ALLOWED, 1024) is not None
    assert validate_model_file(None, ALLOWED, 1024) is not None


def test_validate_model_file_keeps_stream_position():
    file_storage = storage(b"solid part", "part.stl")
    validate_model_file(file_storage, ALLOWED, 1024)
    assert file_storage.stream.read() == b"solid part"


def test_validate_photo_checks_content():
    extension, error = validate_photo(storage(png_bytes(), "shot.png"), PHOTO_EXTENSIONS, PHOTO_FORMATS, 1024 * 1024)
    assert (extension, error) == ("png", None)

    extension, error = validate_photo(storage(b"<?php", "shot.png"), PHOTO_EXTENSIONS, PHOTO_FORMATS, 1024 * 1024)
    assert extension is None
    assert error

    _, error = validate_photo(storage(png_bytes(), "shot.bmp"), PHOTO_EXTENSIONS, PHOTO_FORMATS, 1024 * 1024)
    assert error


def test_save_upload_writes_file(tmp_path):
    size = save_upload(storage(b"solid part", "part.stl"), str(tmp_path), "abc_part.stl", 1024)
    assert size == 10
    assert (tmp_path / "abc_part.stl").read_bytes() == b"solid part"


def test_save_upload_aborts_and_removes_partial_file(tmp_path):
    with pytest.raises(UploadTooLarge):
        save_upload(storage(b"x" * (200 * 1024), "big.stl"), str(tmp_path), "big.stl", 100 * 1024)
    assert os.listdir(tmp_path) == []


def test_remove_file_reports_missing(tmp_path):
    (tmp_path / "a.stl").write_bytes(b"1")
    assert remove_file(str(tmp_path), "a.stl") is True
    assert remove_file(str(tmp_path), "a.stl") is False


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, []),
        ("a, b ,,c", ["a", "b", "c"]),
        ('["x", " y "]', ["x", "y"]),
        (["one", ""], ["one"]),
        ("[broken", ["[broken"]),
    ],
)
def test_parse_tags(raw, expected):
    assert parse_tags(raw) == expected


def test_parse_print_settings():
    assert parse_print_settings('{"infill": 20, "supports": ""}') == {"infill": "20"}
    assert parse_print_settings("not json") == {}
    assert parse_print_settings({"layer": "0.2"}) == {"layer": "0.2"}


def test_formatting_helpers():
    now = parse_timestamp("2024-05-10 12:00:00.000000")
    assert time_ago("2024-05-10 11:59:30.000000", now=now) == "just now"
    assert time_ago("2024-05-10 09:00:00.000000", now=now) == "3h ago"
    assert format_file_size(1536) == "1.50 KB"
