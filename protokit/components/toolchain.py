"""protoc toolchain cache.

Layout under the cache root:

    <root>/protobuf/<version>/        extracted archive (bin/protoc, include/)
    <root>/protobuf/<version>/.ready  written only after a successful extract
    <root>/protobuf/<version>.lock    advisory lock guarding the entry

Entries are only ever removed by an explicit delete.
"""

from __future__ import annotations

import hashlib
import io
import logging
import os
import platform
import shutil
import sys
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
from urllib.parse import unquote, urlparse

import requests

from protokit import DEFAULT_PROTOC_VERSION
from protokit.config import Config
from protokit.errors import ToolchainError
from protokit.utils.lock_utils import file_lock

logger = logging.getLogger(__name__)

TOOLCHAIN_NAME = "protobuf"
CACHE_DIR_NAME = "protokit"
READY_MARKER = ".ready"

CACHE_PATH_ENV = "PROTOKIT_CACHE_PATH"
PROTOC_BIN_PATH_ENV = "PROTOKIT_PROTOC_BIN_PATH"
PROTOC_WKT_PATH_ENV = "PROTOKIT_PROTOC_WKT_PATH"

DOWNLOAD_URL_TEMPLATE = (
    "https://github.com/protocolbuffers/protobuf/releases/download/"
    "v{version}/protoc-{file_version}-{os}-{arch}.zip"
)


@dataclass(frozen=True)
class ProtocPaths:
    """Location of a usable protoc binary and its well-known types."""

    bin_path: str
    wkt_path: str


def default_cache_root(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Get the platform default cache root.

    Raises:
        ToolchainError: On platforms without a known cache location.
    """
    environ = os.environ if environ is None else environ
    xdg_cache_home = environ.get("XDG_CACHE_HOME")
    if xdg_cache_home:
        return Path(xdg_cache_home) / CACHE_DIR_NAME
    home = environ.get("HOME") or str(Path.home())
    if sys.platform.startswith("linux"):
        return Path(home) / ".cache" / CACHE_DIR_NAME
    if sys.platform == "darwin":
        return Path(home) / "Library" / "Caches" / CACHE_DIR_NAME
    raise ToolchainError(f"Unsupported platform for the protoc cache: {sys.platform}")


def _archive_platform() -> tuple[str, str]:
    if sys.platform.startswith("linux"):
        os_name = "linux"
    elif sys.platform == "darwin":
        os_name = "osx"
    else:
        raise ToolchainError(f"No protoc release for platform {sys.platform}")

    machine = platform.machine().lower()
    if machine in ("x86_64", "amd64"):
        arch = "x86_64"
    elif machine in ("arm64", "aarch64"):
        arch = "aarch_64"
    else:
        raise ToolchainError(f"No protoc release for architecture {machine}")
    return os_name, arch


def release_url(version: str) -> str:
    """Get the GitHub release archive URL for a protoc version.

    Release candidates are tagged v3.12.0-rc1 but their archives are named
    protoc-3.12.0-rc-1-<os>-<arch>.zip.
    """
    os_name, arch = _archive_platform()
    file_version = version.replace("-rc", "-rc-", 1) if "-rc" in version else version
    return DOWNLOAD_URL_TEMPLATE.format(
        version=version, file_version=file_version, os=os_name, arch=arch
    )


class Downloader:
    """Download and cache protoc for one configuration."""

    def __init__(
        self,
        config: Optional[Config] = None,
        cache_path: Optional[str] = None,
        protoc_bin_path: Optional[str] = None,
        protoc_wkt_path: Optional[str] = None,
        protoc_url: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        """Initialize downloader.

        Explicit arguments take precedence over the PROTOKIT_* environment
        variables.

        Raises:
            ToolchainError: On conflicting overrides.
        """
        self.environ = os.environ if environ is None else environ
        self.version = config.protoc.version if config is not None else DEFAULT_PROTOC_VERSION
        self.custom_cache_path = cache_path or self.environ.get(CACHE_PATH_ENV) or None
        self.protoc_bin_path = protoc_bin_path or self.environ.get(PROTOC_BIN_PATH_ENV) or None
        self.protoc_wkt_path = protoc_wkt_path or self.environ.get(PROTOC_WKT_PATH_ENV) or None
        self.protoc_url = protoc_url

        if bool(self.protoc_bin_path) != bool(self.protoc_wkt_path):
            raise ToolchainError("protoc bin path and wkt path must be set together")
        if self.protoc_bin_path and self.protoc_url:
            raise ToolchainError("protoc url cannot be used with protoc bin and wkt paths")

    @property
    def cache_root(self) -> Path:
        if self.custom_cache_path:
            return Path(self.custom_cache_path)
        return default_cache_root(self.environ)

    @property
    def entry_key(self) -> str:
        """Cache entry name: the version, or a digest of a custom URL."""
        if self.protoc_url:
            digest = hashlib.sha256(self.protoc_url.encode("utf-8")).hexdigest()
            return f"url-{digest[:16]}"
        return self.version

    @property
    def base_path(self) -> Path:
        return self.cache_root / TOOLCHAIN_NAME / self.entry_key

    @property
    def lock_path(self) -> Path:
        return self.cache_root / TOOLCHAIN_NAME / f"{self.entry_key}.lock"

    @property
    def url(self) -> str:
        return self.protoc_url or release_url(self.version)

    def is_ready(self) -> bool:
        return (self.base_path / READY_MARKER).is_file()

    def _fetch(self, url: str) -> bytes:
        """Fetch the archive bytes from an http(s) or file URL."""
        parsed = urlparse(url)
        if parsed.scheme == "file":
            try:
                return Path(unquote(parsed.path)).read_bytes()
            except OSError as e:
                raise ToolchainError(f"Could not read {url}: {e}")

        logger.info("downloading %s", url)
        try:
            response = requests.get(url)
            response.raise_for_status()
        except requests.RequestException as e:
            raise ToolchainError(f"Could not download {url}: {e}")
        return response.content

    def _extract(self, data: bytes, destination: Path) -> None:
        """Extract a protoc release archive and check its layout."""
        try:
            with zipfile.ZipFile(io.BytesIO(data)) as archive:
                archive.extractall(destination)
        except (zipfile.BadZipFile, OSError) as e:
            raise ToolchainError(f"Could not extract protoc archive: {e}", file=str(destination))

        protoc = destination / "bin" / "protoc"
        if not protoc.is_file():
            raise ToolchainError("protoc archive has no bin/protoc", file=str(destination))
        if not (destination / "include").is_dir():
            raise ToolchainError("protoc archive has no include directory", file=str(destination))
        protoc.chmod(0o755)

    def download(self) -> str:
        """Make sure the cache entry exists and return its path.

        Safe to call from several processes at once: the entry is created
        under an exclusive lock and re-checked after the lock is taken. A
        failed attempt leaves no ready marker, so the next call starts over.

        Raises:
            ToolchainError: If the archive cannot be fetched or extracted.
        """
        base_path = self.base_path
        if self.is_ready():
            logger.debug("protoc cache hit %s", base_path)
            return str(base_path)

        with file_lock(self.lock_path):
            if self.is_ready():
                logger.debug("protoc cache filled by another process %s", base_path)
                return str(base_path)

            if base_path.exists():
                logger.debug("removing incomplete cache entry %s", base_path)
                shutil.rmtree(base_path)

            try:
                data = self._fetch(self.url)
                base_path.mkdir(parents=True)
                self._extract(data, base_path)
                (base_path / READY_MARKER).write_text(self.url + "\n", encoding="utf-8")
            except BaseException:
                shutil.rmtree(base_path, ignore_errors=True)
                raise

        logger.debug("protoc cached at %s", base_path)
        return str(base_path)

    def protoc_paths(self) -> ProtocPaths:
        """Get protoc binary and well-known types paths, downloading if needed.

        Raises:
            ToolchainError: If an explicit binary is missing or the download fails.
        """
        if self.protoc_bin_path:
            if not os.path.isfile(self.protoc_bin_path):
                raise ToolchainError("protoc binary not found", file=self.protoc_bin_path)
            if not os.path.isdir(self.protoc_wkt_path):
                raise ToolchainError("protoc wkt path is not a directory", file=self.protoc_wkt_path)
            return ProtocPaths(bin_path=self.protoc_bin_path, wkt_path=self.protoc_wkt_path)

        base_path = Path(self.download())
        return ProtocPaths(
            bin_path=str(base_path / "bin" / "protoc"),
            wkt_path=str(base_path / "include"),
        )

    def delete(self) -> None:
        """Delete the default cache root.

        Custom cache paths are managed by the caller and are left alone.
        """
        if self.custom_cache_path:
            logger.debug("not deleting custom cache path %s", self.custom_cache_path)
            return
        cache_root = default_cache_root(self.environ)
        if cache_root.exists():
            logger.debug("deleting %s", cache_root)
            shutil.rmtree(cache_root)
