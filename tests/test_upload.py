import pytest

from photoblog.upload import (
    album_file_path,
    album_path,
    move_album_upload,
    move_site_upload,
    tus_album_html_button,
    tus_uploads_button,
)


def test_album_path():
    assert album_path("2024-07-13-aloevera") == "album/2024-07-13-aloevera"


def test_album_path_is_cleaned():
    assert album_path("x/../y") == "album/y"


def test_album_file_path():
    assert album_file_path("album/trip", "a.jpg") == "album/trip/a.jpg"


def test_move_album_upload(tmp_path):
    src = tmp_path / "upload.bin"
    src.write_bytes(b"data")
    target = move_album_upload(src, "trip", "a.jpg", tmp_path)
    assert target == tmp_path / "album" / "trip" / "a.jpg"
    assert target.read_bytes() == b"data"
    assert not src.exists()


def test_move_album_upload_without_album_goes_to_site(tmp_path):
    src = tmp_path / "upload.bin"
    src.write_bytes(b"icon")
    target = move_album_upload(src, "", "favicon.png", tmp_path)
    assert target == tmp_path / "site" / "favicon.png"
    assert target.read_bytes() == b"icon"


def test_move_site_upload(tmp_path):
    src = tmp_path / "u"
    src.write_bytes(b"x")
    target = move_site_upload(src, "f.txt", tmp_path)
    assert target.parent == tmp_path / "site"
    assert target.read_bytes() == b"x"


def test_move_missing_source_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        move_album_upload(tmp_path / "nope", "trip", "a.jpg", tmp_path)


def test_site_button():
    html = tus_uploads_button()
    assert "Upload site files" in html
    assert "'/files'" in html
    assert "X-Album-Name" not in html


def test_album_button_carries_album_header():
    html = tus_album_html_button("my-album")
    assert '{"X-Album-Name": "my-album"}' in html
    assert "Upload files" in html
    assert "chunkSize: 900000" in html