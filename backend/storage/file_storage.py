"""
File storage for published map assets.

Files live under a single public directory and are served from a site-root
relative URL:

- {public_dir}/{url_dir}/{filename}  - on disk
- {site_root}/{url_dir}/{filename}   - as a URL
"""
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Union

_SLASHES_RE = re.compile(r"/+")


def join_site_url(site_root: str, *parts: str) -> str:
    """Join URL parts under the site root and collapse duplicate slashes."""
    url = "/".join([site_root or "/", *parts])
    if not url.startswith("/"):
        url = "/" + url
    return _SLASHES_RE.sub("/", url)


class FileStorage:
    """
    Local file storage for map files.

    Writes are atomic: content goes to a temporary sibling first and is renamed
    into place only once complete, so a present file is always a whole file.
    """

    def __init__(self, public_dir: Union[str, Path], url_dir: str, site_root: str = "/"):
        self.public_dir = Path(public_dir)
        self.url_dir = url_dir.strip("/")
        self.site_root = site_root

    @property
    def root(self) -> Path:
        return self.public_dir / self.url_dir

    def get_local_path(self, filename: str) -> Path:
        return self.root / filename

    def get_public_url(self, filename: str) -> str:
        return join_site_url(self.site_root, self.url_dir, filename)

    def file_exists(self, filename: str) -> bool:
        return self.get_local_path(filename).is_file()

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def copy_in(self, source: Path, filename: str) -> Path:
        """Copy a local file into storage under `filename`."""
        with open(source, "rb") as f:
            return self.save_chunks(filename, iter(lambda: f.read(64 * 1024), b""))

    def save_chunks(self, filename: str, chunks: Iterable[bytes]) -> Path:
        """
        Stream chunks into `filename`.

        Raises whatever the chunk iterator or the filesystem raises; on error
        the partial temporary file is removed and the destination is untouched.
        """
        dest = self.get_local_path(filename)
        self.ensure_root()
        fd, tmp_name = tempfile.mkstemp(prefix=f".{filename}.", suffix=".part", dir=str(self.root))
        try:
            with os.fdopen(fd, "wb") as f:
                for chunk in chunks:
                    if chunk:
                        f.write(chunk)
            os.replace(tmp_name, dest)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        return dest

    def save_bytes(self, filename: str, data: bytes) -> Path:
        return self.save_chunks(filename, [data])

    def clear(self) -> bool:
        """Delete every stored map file."""
        if self.root.exists():
            shutil.rmtree(self.root)
            return True
        return False
