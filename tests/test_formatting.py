"""
Tests for the formatting helpers shared by routes and notification mails.
"""

import pytest

from utils.formatting import (
    clean_folder_id,
    format_bytes,
    format_duration,
    get_file_type,
    is_valid_file_id,
    sanitize_string,
)


@pytest.mark.parametrize("value,expected", [
    (0, "0 Bytes"),
    (512, "512 Bytes"),
    (1024, "1 KB"),
    (1234, "1.21 KB"),
    (1024 ** 2, "1 MB"),
    (int(1.5 * 1024 ** 3), "1.5 GB"),
])
def test_format_bytes(value, expected):
    assert format_bytes(value) == expected


def test_format_bytes_invalid_input():
    assert format_bytes(-10) == "0 Bytes"
    assert format_bytes("abc") == "0 Bytes"
    assert format_bytes(None) == "0 Bytes"


def test_format_bytes_negative_decimals_are_treated_as_zero():
    assert format_bytes(1234, decimals=-3) == "1 KB"


def test_format_duration():
    assert format_duration(0) == "00:00"
    assert format_duration(65) == "01:05"
    assert format_duration(3661) == "01:01:01"
    assert format_duration(59.9) == "00:59"


def test_format_duration_invalid_input():
    assert format_duration(-1) == "00:00"
    assert format_duration("soon") == "00:00"
    assert format_duration(float("nan")) == "00:00"


def test_get_file_type():
    assert get_file_type("application/vnd.google-apps.folder") == "folder"
    assert get_file_type("video/mp4") == "video"
    assert get_file_type("audio/mpeg") == "audio"
    assert get_file_type("image/png") == "image"
    assert get_file_type("application/pdf") == "pdf"
    assert get_file_type("application/vnd.google-apps.document") == "office"
    assert get_file_type("application/octet-stream", "budget.xlsx") == "office"
    assert get_file_type("application/octet-stream", "main.py") == "code"
    assert get_file_type("text/plain", "notes.txt") == "code"
    assert get_file_type("application/zip", "archive.zip") == "other"


def test_sanitize_string_strips_tags():
    assert sanitize_string("  <b>Report</b> 2024 ") == "Report 2024"
    assert sanitize_string("<script>alert(1)</script>") == "alert(1)"
    assert sanitize_string(None) == ""


def test_is_valid_file_id():
    assert is_valid_file_id("1AbC_d-E")
    assert not is_valid_file_id("")
    assert not is_valid_file_id(None)
    assert not is_valid_file_id("../etc/passwd")
    assert not is_valid_file_id("a" * 101)


def test_clean_folder_id():
    assert clean_folder_id("abc123") == "abc123"
    assert clean_folder_id("abc123%26share_token%3Dx") == "abc123"
    assert clean_folder_id("abc123?foo=bar") == "abc123"
    assert clean_folder_id(None) is None
