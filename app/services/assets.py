"""
Pass image retrieval and the template working area.

Images referenced by the pass configuration are downloaded, checked with
Pillow and written into a workspace seeded from the pass template
directory. The workspace is either a private temp directory per request
(default) or the shared template directory held under AssetLockManager.
"""

import asyncio
import io
import logging
import re
import shutil
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import httpx
from PIL import Image
from starlette.concurrency import run_in_threadpool

from app.core.errors import AssetRetrievalError
from app.services.asset_lock import AssetLockManager

logger = logging.getLogger(__name__)

# Config key -> image base name inside the bundle
CONFIG_IMAGES: dict[str, str] = {
    "logo_url": "logo",
    "icon_url": "icon",
    "strip_image_url": "strip",
}

SCALE_SUFFIXES = ("", "@2x", "@3x")

ICON_SIZES: dict[str, tuple[int, int]] = {
    "icon.png": (29, 29),
    "icon@2x.png": (58, 58),
    "icon@3x.png": (87, 87),
}

# Generated by the bundle builder, never taken from the template
GENERATED_FILES = {"pass.json", "manifest.json", "signature"}


def to_png(data: bytes, source: str) -> bytes:
    """Validate downloaded image bytes and return them as PNG."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.format == "PNG":
                return data
            if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                img = img.convert("RGBA")
            buffer = io.BytesIO()
            img.save(buffer, format="PNG")
            return buffer.getvalue()
    except (OSError, Image.DecompressionBombError) as e:
        raise AssetRetrievalError(f"Image at {source} is not a valid image") from e


def generate_default_icon(color: tuple[int, int, int]) -> dict[str, bytes]:
    """Generate plain square icons in the pass background color."""
    icons = {}
    for filename, size in ICON_SIZES.items():
        img = Image.new("RGB", size, color)
        buffer = io.BytesIO()
        img.save(buffer, format="PNG")
        icons[filename] = buffer.getvalue()
    return icons


class AssetFetcher:
    """Downloads the images a pass configuration points at."""

    def __init__(self, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None):
        self.timeout = timeout
        self.transport = transport

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AssetRetrievalError(
                f"Image download failed with status {e.response.status_code}: {url}"
            ) from e
        except httpx.HTTPError as e:
            raise AssetRetrievalError(f"Image download failed: {url}") from e
        return await run_in_threadpool(to_png, response.content, url)

    async def fetch_images(self, apple_config: dict) -> dict[str, bytes]:
        """Download every configured image.

        Returns:
            {base_name: png_bytes}, e.g. {"logo": b"...", "strip": b"..."}

        Raises:
            AssetRetrievalError: If any image cannot be fetched. All downloads
                have finished by the time it is raised.
        """
        wanted = {
            name: apple_config[key]
            for key, name in CONFIG_IMAGES.items()
            if apple_config.get(key)
        }
        if not wanted:
            return {}

        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self.transport
        ) as client:
            results = await asyncio.gather(
                *(self._download(client, url) for url in wanted.values()),
                return_exceptions=True,
            )

        images = {}
        for name, result in zip(wanted, results):
            if isinstance(result, BaseException):
                logger.error(f"Asset retrieval failed for {name}: {result}")
                if isinstance(result, AssetRetrievalError):
                    raise result
                raise AssetRetrievalError(f"Image download failed: {wanted[name]}") from result
            images[name] = result
        return images


class Workspace:
    """A directory holding the files of one pass bundle while it is assembled."""

    def __init__(self, path: Path, restore_on_close: bool = False):
        self.path = path
        self.restore_on_close = restore_on_close
        self._previous: dict[Path, bytes | None] = {}

    def write(self, filename: str, data: bytes) -> None:
        target = self.path / filename
        if self.restore_on_close and target not in self._previous:
            self._previous[target] = target.read_bytes() if target.exists() else None
        target.write_bytes(data)

    def write_image(self, base_name: str, data: bytes) -> None:
        for suffix in SCALE_SUFFIXES:
            self.write(f"{base_name}{suffix}.png", data)

    def has_file(self, filename: str) -> bool:
        return (self.path / filename).is_file()

    def snapshot(self) -> dict[str, bytes]:
        """Read every bundle file into memory, keyed by its relative path."""
        files = {}
        for path in sorted(self.path.rglob("*")):
            if not path.is_file():
                continue
            relative = path.relative_to(self.path).as_posix()
            if relative in GENERATED_FILES or path.name.startswith("."):
                continue
            files[relative] = path.read_bytes()
        return files

    def restore(self) -> None:
        """Put the shared template back the way this request found it."""
        for target, previous in self._previous.items():
            if previous is None:
                target.unlink(missing_ok=True)
            else:
                target.write_bytes(previous)
        self._previous.clear()


class TemplateWorkspace:
    """Hands out a workspace per regeneration.

    isolate=True: a private copy of the template in a temp directory,
    deleted after use. isolate=False: the shared template directory itself,
    held under the asset lock and restored before the lock is released.
    """

    def __init__(
        self,
        template_dir: str | Path,
        lock_manager: AssetLockManager,
        isolate: bool = True,
        work_dir: str | Path | None = None,
    ):
        self.template_dir = Path(template_dir)
        self.lock_manager = lock_manager
        self.isolate = isolate
        self.work_dir = Path(work_dir) if work_dir else None

    @asynccontextmanager
    async def open(self, serial_number: str) -> AsyncIterator[Workspace]:
        if self.isolate:
            async with self._private(serial_number) as workspace:
                yield workspace
        else:
            async with self._shared() as workspace:
                yield workspace

    def _seed_private(self, serial_number: str) -> Path:
        if self.work_dir:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        safe_serial = re.sub(r"[^A-Za-z0-9_-]", "_", serial_number)[:32]
        path = Path(tempfile.mkdtemp(prefix=f"pass-{safe_serial}-", dir=self.work_dir))
        try:
            if self.template_dir.is_dir():
                shutil.copytree(self.template_dir, path, dirs_exist_ok=True)
        except OSError:
            shutil.rmtree(path, ignore_errors=True)
            raise
        return path

    @asynccontextmanager
    async def _private(self, serial_number: str) -> AsyncIterator[Workspace]:
        # Filesystem work stays off the event loop
        path = await run_in_threadpool(self._seed_private, serial_number)
        try:
            yield Workspace(path)
        finally:
            await run_in_threadpool(shutil.rmtree, path, True)

    @asynccontextmanager
    async def _shared(self) -> AsyncIterator[Workspace]:
        key = str(self.template_dir.resolve())
        async with self.lock_manager.hold(key):
            await run_in_threadpool(self.template_dir.mkdir, parents=True, exist_ok=True)
            workspace = Workspace(self.template_dir, restore_on_close=True)
            try:
                yield workspace
            finally:
                await run_in_threadpool(workspace.restore)
