from datetime import datetime

import pytest

from cdn_console.services.filenames import (
    MAX_KEY_LENGTH,
    build_object_key,
    build_public_url,
    get_file_extension,
    normalize_prefix,
    resolve_prefix_template,
    sanitize_filename,
)


class TestSanitizeFilename:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("photo.png", "photo.png"),
            ("my holiday photo.JPG", "my-holiday-photo.JPG"),
            ("  spaced   out  .txt", "spaced-out.txt"),
            ("café.png", "cafe.png"),
            ("evil\x00name\x1f.png", "evilname.png"),
            ("a--b__c..d.png", "a-b_c.d.png"),
            ("../../etc/passwd", "etc/passwd"),
            ("...", "file"),
            ("", "file"),
            ("文件.pdf", "pdf"),
            ("report.", "report"),
        ],
    )
    def test_sanitize(self, raw, expected):
        assert sanitize_filename(raw) == expected

    def test_none_falls_back(self):
        assert sanitize_filename(None) == "file"

    def test_only_safe_characters(self):
        result = sanitize_filename("we!rd #name$ (1) [final].tar.gz")
        assert all(ch.isalnum() or ch in "_./-" for ch in result)
        assert result.endswith(".gz")

    def test_base_name_capped_extension_kept(self):
        result = sanitize_filename("a" * 500 + ".png")
        assert result == "a" * 200 + ".png"

    @pytest.mark.parametrize(
        "raw",
        [
            "my holiday photo.JPG",
            "  --leading.and.trailing--  ",
            "a" * 300 + "-." + "b" * 5,
            "dir//sub/../x .png",
            "x" * 199 + "-" + "y" * 10 + ".txt",
            "._-/",
            "name-.png",
            "über  straße__final..v2.tar.gz",
        ],
    )
    def test_idempotent(self, raw):
        once = sanitize_filename(raw)
        assert sanitize_filename(once) == once


class TestGetFileExtension:
    @pytest.mark.parametrize(
        ("filename", "expected"),
        [
            ("photo.PNG", "png"),
            ("archive.tar.gz", "gz"),
            (".bashrc", ""),
            ("noext", ""),
            ("trailing.", ""),
            ("", ""),
            (None, ""),
        ],
    )
    def test_extension(self, filename, expected):
        assert get_file_extension(filename) == expected


class TestResolvePrefixTemplate:
    def test_all_placeholders(self):
        result = resolve_prefix_template(
            "invites/{label}/{YYYY}/{MM}/{DD}/", "kit", datetime(2024, 3, 5)
        )
        assert result == "invites/kit/2024/03/05/"

    def test_unknown_placeholders_left_alone(self):
        result = resolve_prefix_template("{label}/{other}", "kit", datetime(2024, 1, 1))
        assert result == "kit/{other}"

    def test_defaults_to_today(self):
        result = resolve_prefix_template("{YYYY}", "kit")
        assert len(result) == 4 and result.isdigit()


class TestBuildObjectKey:
    def test_suffix_before_extension(self):
        key = build_object_key("invites/kit/", "a.png", "Ab3_")
        assert key == "invites/kit/a-Ab3_.png"

    def test_no_extension(self):
        assert build_object_key("uploads", "README", "xyz") == "uploads/README-xyz"

    @pytest.mark.parametrize("prefix", ["/invites/kit", "invites/kit//", "//invites/kit/"])
    def test_prefix_normalized(self, prefix):
        assert build_object_key(prefix, "a.png", "s").startswith("invites/kit/a")

    def test_filename_sanitized(self):
        assert build_object_key("p/", "my photo.png", "s") == "p/my-photo-s.png"

    def test_truncates_base_to_fit(self):
        prefix = "p" * 900 + "/"
        key = build_object_key(prefix, "b" * 200 + ".png", "suffix")
        assert len(key) == MAX_KEY_LENGTH
        assert key.startswith(prefix)
        assert key.endswith("-suffix.png")

    def test_key_never_exceeds_limit(self):
        for prefix_length in (0, 10, 500, 1000):
            key = build_object_key("x" * prefix_length, "n" * 200 + ".jpeg", "abcdef")
            assert len(key) <= MAX_KEY_LENGTH
            assert key.endswith("-abcdef.jpeg")

    def test_no_room_for_name(self):
        with pytest.raises(ValueError, match="no room"):
            build_object_key("x" * 1020, "a.png", "suffix")


def test_normalize_prefix():
    assert normalize_prefix("/a/b") == "a/b/"
    assert normalize_prefix("a/b///") == "a/b/"
    assert normalize_prefix("") == ""
    assert normalize_prefix("/") == ""


def test_build_public_url():
    url = build_public_url("https://cdn.example.com/", "a/b.png")
    assert url == "https://cdn.example.com/a/b.png"
