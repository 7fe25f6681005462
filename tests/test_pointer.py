"""Tests for the pointer codec: creation, validation, migration, paths."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from refile.errors import InvalidPointerError
from refile.pointer import (
    PointerMeta,
    PointerV1,
    PointerV2,
    create_pointer,
    dump_pointer,
    extension_for_mime,
    is_pointer_path,
    original_path_for,
    pointer_path_for,
    read_pointer,
    read_pointer_ex,
    write_pointer,
)

HASH = "sha256:" + "ab" * 32


def _legacy_image_doc() -> dict:
    return {
        "v": 1,
        "type": "refile",
        "mime": "image/png",
        "url": "https://nas.local/f/abc",
        "hash": HASH,
        "size": 1234,
        "name": "cat.png",
        "createdAt": 1700000000000,
    }


class TestCreatePointer:
    """Tests for create_pointer()."""

    def test_generic_file_is_v1(self):
        p = create_pointer("video/mp4", "https://x/1", HASH, 10, "a.mp4")
        assert isinstance(p, PointerV1)
        assert p.v == 1
        assert p.type == "refile"

    def test_image_is_v2(self):
        p = create_pointer("image/jpeg", "https://x/1", HASH, 10, "a.jpg")
        assert isinstance(p, PointerV2)
        assert p.v == 2
        assert p.type == "virtual-image"

    def test_created_at_is_set(self):
        p = create_pointer("text/plain", "https://x/1", HASH, 0, "a.txt")
        assert p.created_at > 1_600_000_000_000

    def test_carries_backend_and_meta(self):
        meta = PointerMeta(mode=0o600, mtime=1.5, atime=2.5)
        p = create_pointer("text/plain", "https://x/1", HASH, 3, "a.txt", backend="nas", meta=meta)
        assert p.backend == "nas"
        assert p.meta.mode == 0o600

    @pytest.mark.parametrize("bad_hash", [
        "sha256:" + "AB" * 32,
        "sha256:" + "ab" * 31,
        "md5:" + "ab" * 32,
        "",
    ])
    def test_rejects_malformed_hash(self, bad_hash):
        with pytest.raises(InvalidPointerError):
            create_pointer("text/plain", "https://x/1", bad_hash, 1, "a.txt")

    def test_rejects_negative_size(self):
        with pytest.raises(InvalidPointerError):
            create_pointer("text/plain", "https://x/1", HASH, -1, "a.txt")

    def test_rejects_non_uri(self):
        with pytest.raises(InvalidPointerError):
            create_pointer("text/plain", "not a url", HASH, 1, "a.txt")


class TestSerialization:
    """Tests for the on-disk JSON shape."""

    def test_camel_case_and_no_nulls(self):
        p = create_pointer("text/plain", "https://x/1", HASH, 1, "a.txt")
        doc = json.loads(dump_pointer(p))
        assert "createdAt" in doc
        assert "created_at" not in doc
        assert "backend" not in doc
        assert "meta" not in doc

    def test_write_then_read(self, tmp_path: Path):
        meta = PointerMeta(mode=0o640, mtime=1700000000123.0, atime=1700000000456.0)
        p = create_pointer("audio/mpeg", "https://x/song", HASH, 99, "s.mp3", backend="b", meta=meta)
        target = tmp_path / "s.mp3.remusic"
        write_pointer(target, p)
        assert read_pointer(target) == p

    def test_write_leaves_no_temp_files(self, tmp_path: Path):
        p = create_pointer("text/plain", "https://x/1", HASH, 1, "a.txt")
        write_pointer(tmp_path / "a.txt.refile", p)
        assert [f.name for f in tmp_path.iterdir()] == ["a.txt.refile"]


class TestReadPointer:
    """Tests for read_pointer() / read_pointer_ex()."""

    def test_missing_file(self, tmp_path: Path):
        assert read_pointer(tmp_path / "nope.refile") is None

    def test_not_json(self, tmp_path: Path):
        f = tmp_path / "a.refile"
        f.write_text("this is not json")
        assert read_pointer(f) is None

    def test_wrong_version_for_type(self, tmp_path: Path):
        doc = _legacy_image_doc()
        doc["v"] = 2
        f = tmp_path / "a.refile"
        f.write_text(json.dumps(doc))
        assert read_pointer(f) is None

    def test_unknown_type(self, tmp_path: Path):
        doc = _legacy_image_doc()
        doc["type"] = "something-else"
        f = tmp_path / "a.refile"
        f.write_text(json.dumps(doc))
        assert read_pointer(f) is None

    def test_string_size_rejected(self, tmp_path: Path):
        doc = _legacy_image_doc()
        doc["size"] = "1234"
        f = tmp_path / "a.refile"
        f.write_text(json.dumps(doc))
        assert read_pointer(f) is None


class TestMigration:
    """Legacy v1 image pointers in .repic files upgrade on read."""

    def test_upgrades_and_rewrites(self, tmp_path: Path):
        f = tmp_path / "cat.png.repic"
        f.write_text(json.dumps(_legacy_image_doc()))

        pointer, migrated = read_pointer_ex(f)

        assert migrated is True
        assert isinstance(pointer, PointerV2)
        assert pointer.hash == HASH
        assert pointer.size == 1234
        on_disk = json.loads(f.read_text())
        assert on_disk["v"] == 2
        assert on_disk["type"] == "virtual-image"

    def test_second_read_is_not_a_migration(self, tmp_path: Path):
        f = tmp_path / "cat.png.repic"
        f.write_text(json.dumps(_legacy_image_doc()))
        first, _ = read_pointer_ex(f)

        second, migrated = read_pointer_ex(f)

        assert migrated is False
        assert second == first

    def test_v1_image_outside_repic_is_left_alone(self, tmp_path: Path):
        f = tmp_path / "cat.png.refile"
        f.write_text(json.dumps(_legacy_image_doc()))

        pointer, migrated = read_pointer_ex(f)

        assert migrated is False
        assert isinstance(pointer, PointerV1)
        assert json.loads(f.read_text())["v"] == 1


class TestPaths:
    """Tests for suffix helpers."""

    @pytest.mark.parametrize("mime,ext", [
        ("video/mp4", ".revid"),
        ("audio/flac", ".remusic"),
        ("image/png", ".repic"),
        ("application/pdf", ".refile"),
        ("application/octet-stream", ".refile"),
    ])
    def test_extension_for_mime(self, mime, ext):
        assert extension_for_mime(mime) == ext

    def test_pointer_path_for_defaults_to_refile(self):
        assert pointer_path_for("/data/x.bin") == "/data/x.bin.refile"
        assert pointer_path_for("/data/x.mkv", "video/x-matroska") == "/data/x.mkv.revid"

    def test_original_path_for(self):
        assert original_path_for("/data/movie.mp4.revid") == "/data/movie.mp4"
        assert original_path_for("/data/plain.txt") == "/data/plain.txt"

    def test_is_pointer_path(self):
        assert is_pointer_path("/a/b.pdf.refile")
        assert is_pointer_path("/a/b.jpg.repic")
        assert not is_pointer_path("/a/b.pdf")
        assert not is_pointer_path("/a/b.refile.bak")
