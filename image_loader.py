"""
Image Loader
============

Screenshots are decoded off the control thread so a large PNG does not stall
the UI.  Each upload becomes a ``Future``; the loader keeps every future it
handed out until the control thread collects it, and ``images_loading`` is
true for as long as any are outstanding.  Export checks that flag so it never
runs against images that are still being verified.
"""

import io
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import List, Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


class ImageError(RuntimeError):
    """Base class for screenshot failures shown to the user."""


class ImageTypeError(ImageError):
    """The upload is not an image."""


class ImageDecodeError(ImageError):
    """The bytes could not be decoded as an image."""


@dataclass(frozen=True)
class LoadedImage:
    """A decoded screenshot: the original bytes plus its natural size."""

    data: bytes
    mime_type: str
    width: int
    height: int
    name: str = ""

    @property
    def aspect_ratio(self) -> float:
        """height / width"""
        return self.height / self.width


def decode_image(data: bytes, mime_type: str = "image/png", name: str = "") -> LoadedImage:
    """Fully decode ``data`` with Pillow and return it with its dimensions."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Could not decode image {name!r}: {e}") from e
    if not width or not height:
        raise ImageDecodeError(f"Image {name} has no size")
    return LoadedImage(data=data, mime_type=mime_type, width=width, height=height, name=name)


class ImageLoader:
    """Schedules decodes and counts those the control thread hasn't collected."""

    def __init__(self, max_workers: int = 2):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="image-decode")
        self._pending: List[Future] = []

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def images_loading(self) -> bool:
        """True while any scheduled decode has not been collected."""
        return bool(self._pending)

    def load(self, data: bytes, mime_type: str, name: str = "") -> Future:
        """Schedule a decode of ``data`` and return its future.

        Raises:
            ImageTypeError: ``mime_type`` is not ``image/*``; nothing is scheduled.
        """
        if not mime_type or not mime_type.startswith("image/"):
            raise ImageTypeError("Only image files are accepted")
        future = self._executor.submit(decode_image, data, mime_type, name)
        self._pending.append(future)
        logger.debug("Scheduled decode of %s (%d bytes), %d pending", name or "image", len(data), len(self._pending))
        return future

    def collect(self, wait_all: bool = False, timeout: Optional[float] = None) -> List[Future]:
        """Return finished futures in submission order and stop counting them.

        With ``wait_all`` the call blocks until everything scheduled so far is
        done (or ``timeout`` passes).
        """
        if wait_all and self._pending:
            wait(self._pending, timeout=timeout)
        done: List[Future] = []
        still_pending: List[Future] = []
        for future in self._pending:
            (done if future.done() else still_pending).append(future)
        self._pending = still_pending
        return done

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
