import os

import pytest

from covers import CoverResolver, cover_path
from errors import NotFoundError, StorageError, ValidationError
from library import CatalogStore
from models import CoverPath


@pytest.fixture
def resolver(files, catalog):
    return CoverResolver(files, catalog)


def test_probe_order_prefers_png(resolver, write_asset):
    write_asset("Vleer/Covers/x.gif", b"gif")
    write_asset("Vleer/Covers/x.jpg", b"jpg")
    art = resolver.resolve("x")
    assert art.path == "Vleer/Covers/x.jpg"
    assert art.data == b"jpg"
    write_asset("Vleer/Covers/x.png", b"png")
    assert resolver.resolve("x").data == b"png"


def test_missing_cover_resolves_to_placeholder(resolver):
    art = resolver.resolve("nothing")
    assert art.is_placeholder
    assert art.path == "/cover.png"


def test_song_cover_reads_png_only(resolver, write_asset):
    write_asset("Vleer/Covers/s.jpg", b"jpg")
    with pytest.raises(NotFoundError):
        resolver.song_cover("s")
    write_asset("Vleer/Covers/s.png", b"png")
    assert resolver.song_cover("s") == b"png"


def test_update_replaces_every_older_cover(resolver, catalog, playlist, write_asset, tmp_path):
    write_asset("Vleer/Covers/p1.png", b"old-png")
    write_asset("Vleer/Covers/p1.gif", b"old-gif")
    picked = tmp_path / "picked.JPG"
    picked.write_bytes(b"new")

    new_path = resolver.update_cover("p1", {"path": str(picked)})

    assert new_path == cover_path("p1", "jpg")
    assert resolver.cover_files("p1") == ["Vleer/Covers/p1.jpg"]
    assert resolver.resolve("p1").data == b"new"
    assert catalog.get_playlist_by_id("p1").cover == new_path


def test_update_persists_cover_pointer(resolver, db, files, playlist, tmp_path):
    picked = tmp_path / "art.png"
    picked.write_bytes(b"img")
    resolver.update_cover("p1", CoverPath(str(picked)))
    reloaded = CatalogStore(db, files)
    reloaded.load()
    assert reloaded.get_playlist_by_id("p1").cover == "Vleer/Covers/p1.png"


@pytest.mark.parametrize("cover", [None, "p.png", {"path": None}, {"path": ""}])
def test_update_rejects_malformed_reference(resolver, playlist, write_asset, cover):
    write_asset("Vleer/Covers/p1.png", b"old")
    with pytest.raises(ValidationError):
        resolver.update_cover("p1", cover)
    assert resolver.resolve("p1").data == b"old"


def test_update_rejects_unknown_extension(resolver, playlist, tmp_path):
    picked = tmp_path / "art.bmp"
    picked.write_bytes(b"img")
    with pytest.raises(ValidationError):
        resolver.update_cover("p1", {"path": str(picked)})


def test_update_unknown_playlist(resolver, catalog, tmp_path):
    picked = tmp_path / "art.png"
    picked.write_bytes(b"img")
    with pytest.raises(NotFoundError):
        resolver.update_cover("nope", {"path": str(picked)})


def test_unreadable_source_leaves_old_cover(resolver, playlist, write_asset, tmp_path):
    write_asset("Vleer/Covers/p1.gif", b"old")
    with pytest.raises(StorageError):
        resolver.update_cover("p1", {"path": str(tmp_path / "missing.png")})
    assert resolver.cover_files("p1") == ["Vleer/Covers/p1.gif"]


def test_failed_write_rolls_back(resolver, files, catalog, playlist, write_asset, tmp_path, monkeypatch):
    write_asset("Vleer/Covers/p1.png", b"old-png")
    write_asset("Vleer/Covers/p1.jpeg", b"old-jpeg")
    picked = tmp_path / "new.gif"
    picked.write_bytes(b"new")

    real_write = files.write

    def flaky_write(path, data):
        if path == "Vleer/Covers/p1.gif":
            real_write(path, b"partial")
            raise PermissionError("read-only volume")
        real_write(path, data)

    monkeypatch.setattr(files, "write", flaky_write)
    with pytest.raises(StorageError, match="path or permission issues"):
        resolver.update_cover("p1", {"path": str(picked)})

    assert sorted(resolver.cover_files("p1")) == ["Vleer/Covers/p1.jpeg", "Vleer/Covers/p1.png"]
    assert resolver.resolve("p1").data == b"old-png"
    assert catalog.get_playlist_by_id("p1").cover is None


def test_failed_db_commit_rolls_back_files(resolver, files, catalog, playlist, write_asset, tmp_path, monkeypatch):
    write_asset("Vleer/Covers/p1.png", b"old")
    picked = tmp_path / "new.jpg"
    picked.write_bytes(b"new")

    def fail(*args, **kwargs):
        raise StorageError("database is locked")

    monkeypatch.setattr(catalog, "set_playlist_cover", fail)
    with pytest.raises(StorageError):
        resolver.update_cover("p1", {"path": str(picked)})
    assert resolver.cover_files("p1") == ["Vleer/Covers/p1.png"]
    assert not os.path.exists(files.resolve("Vleer/Covers/p1.jpg"))
