"""Placement of finished uploads and the upload widgets of admin pages."""

from __future__ import annotations

import os
import posixpath
from pathlib import Path

_SITE_DIR = "site"
_ALBUM_DIR = "album"
_DIR_MODE = 0o700


def album_path(album_name: str) -> str:
    """Return the directory that holds the files of an album."""
    return posixpath.normpath(posixpath.join(_ALBUM_DIR, album_name))


def album_file_path(album_path: str, file_name: str) -> str:
    """Return the path of a file inside an album directory."""
    return album_path + "/" + file_name


def move_site_upload(
    source: str | os.PathLike[str], filename: str, root: str | os.PathLike[str] = "."
) -> Path:
    """Move an uploaded file into the site directory and return its new path."""
    directory = Path(root) / _SITE_DIR
    directory.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
    target = Path(root) / posixpath.normpath(posixpath.join(_SITE_DIR, filename))
    os.rename(source, target)
    return target


def move_album_upload(
    source: str | os.PathLike[str],
    album_name: str,
    filename: str,
    root: str | os.PathLike[str] = ".",
) -> Path:
    """Move an uploaded file into its album directory and return its new path.

    Without an album name the file goes to the site directory.
    """
    if album_name == "":
        return move_site_upload(source, filename, root)
    directory = album_path(album_name)
    (Path(root) / directory).mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)
    target = Path(root) / album_file_path(directory, filename)
    os.rename(source, target)
    return target


def tus_uploads_button() -> str:
    """Return HTML of a button that uploads site files."""
    return """
<button style="margin: 2em" class="btn btn-secondary" id="uppyModalOpener">Upload site files</button>
<script>
    {
        const { Dashboard, Tus } = Uppy
        const uppy = new Uppy.Uppy({ debug: true, autoProceed: false })
            .use(Dashboard, { 
\t\t\t\ttrigger: '#uppyModalOpener', 
\t\t\t\tnote: 'These files would be available with "/site/<name.ext>" HTTP(s) links.', 
\t\t\t\tproudlyDisplayPoweredByUppy: false,
\t\t\t})
            .use(Tus, { 
\t\t\t\tendpoint: window.location.protocol + '//' + window.location.host + '/files',
\t\t\t\tchunkSize: 900000, // 900K to fit in 1MiB default client_max_body_size of nginx.
\t\t\t})
    }
</script>
"""


def tus_album_html_button(album_name: str) -> str:
    """Return HTML of a button that uploads files into the named album."""
    return (
        """
<button style="margin: 2em" class="btn btn-secondary" id="uppyModalOpener">Upload files</button>
<script>
    {
        const { Dashboard, Tus } = Uppy
        const uppy = new Uppy.Uppy({ debug: true, autoProceed: false, limit: 1 })
            .use(Dashboard, { 
\t\t\t\ttrigger: '#uppyModalOpener', 
\t\t\t\tnote: 'JPG, GPX are supported', 
\t\t\t\tproudlyDisplayPoweredByUppy: false,
\t\t\t})
            .use(Tus, { 
\t\t\t\tlimit: 1,
\t\t\t\tendpoint: window.location.protocol + '//' + window.location.host + '/files',
\t\t\t\tchunkSize: 900000, // 900K to fit in 1MiB default client_max_body_size of nginx.
\t\t\t\theaders: {"X-Album-Name": \""""
        + album_name
        + """"},
\t\t\t})
    }
</script>
"""
    )