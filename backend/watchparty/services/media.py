import asyncio
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
from yt_dlp import YoutubeDL

logger = logging.getLogger(__name__)


class MediaKind(str, Enum):
    ADAPTIVE_STREAM = 'adaptive-stream'
    EMBEDDED_WIDGET = 'embedded-widget'


class PlayerError(Exception):
    pass


class ManifestError(PlayerError):
    pass


class WidgetUnavailableError(PlayerError):
    pass


WIDGET_URL_PATTERNS = [
    re.compile(r'^(?:https?://)?(?:www\.|m\.|music\.)?youtube\.com/watch\?(?:[^#]*&)?v=([\w-]{11})'),
    re.compile(r'^(?:https?://)?(?:www\.|m\.)?youtube\.com/(?:embed|shorts|live|v)/([\w-]{11})'),
    re.compile(r'^(?:https?://)?(?:www\.)?youtube-nocookie\.com/embed/([\w-]{11})'),
    re.compile(r'^(?:https?://)?youtu\.be/([\w-]{11})'),
]


def extract_widget_video_id(url: str) -> Optional[str]:
    url = url.strip()
    for pattern in WIDGET_URL_PATTERNS:
        match = pattern.match(url)
        if match:
            return match.group(1)
    return None


def detect_media_kind(url: str) -> MediaKind:
    # Everything that isn't a known widget link is assumed to be a manifest
    if extract_widget_video_id(url):
        return MediaKind.EMBEDDED_WIDGET
    return MediaKind.ADAPTIVE_STREAM


@dataclass
class Manifest:
    url: str
    segment_count: int = 0
    duration: Optional[float] = None # None while the stream is live
    variants: List[str] = field(default_factory=list)

    @property
    def is_master(self) -> bool:
        return bool(self.variants)


def parse_manifest(text: str, base_url: str) -> Manifest:
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines or not lines[0].startswith('#EXTM3U'):
        raise ManifestError(f"Not an HLS manifest: {base_url}")

    manifest = Manifest(url=base_url)
    total = 0.0
    ended = False
    expect_variant = False

    for line in lines[1:]:
        if line.startswith('#EXT-X-STREAM-INF'):
            expect_variant = True
        elif line.startswith('#EXTINF:'):
            try:
                total += float(line[len('#EXTINF:'):].split(',', 1)[0])
            except ValueError:
                raise ManifestError(f"Bad segment duration in {base_url}: {line}")
            manifest.segment_count += 1
        elif line.startswith('#EXT-X-ENDLIST'):
            ended = True
        elif not line.startswith('#') and expect_variant:
            manifest.variants.append(str(httpx.URL(base_url).join(line)))
            expect_variant = False

    if not manifest.variants and not manifest.segment_count:
        raise ManifestError(f"Manifest has no variants or segments: {base_url}")
    if ended:
        manifest.duration = total
    return manifest


async def fetch_manifest(url: str, client: httpx.AsyncClient) -> Manifest:
    """
    Downloads and parses a manifest. A master playlist is followed one
    level down to its first variant so duration and liveness are known.
    """
    try:
        response = await client.get(url, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise ManifestError(f"Could not fetch manifest {url}: {e}") from e

    manifest = parse_manifest(response.text, str(response.url))
    if manifest.is_master:
        variant = await fetch_manifest(manifest.variants[0], client)
        manifest.segment_count = variant.segment_count
        manifest.duration = variant.duration
    return manifest


def _create_ydl():
    return YoutubeDL({
        'quiet': True,
        'noplaylist': True,
        'skip_download': True,
    })


class WidgetApi:
    """
    Process-wide handle on the third-party widget API. Loading happens at
    most once; every session awaits the same ready signal.
    """

    _shared: Optional["WidgetApi"] = None

    def __init__(self, loader: Optional[Callable[[], Awaitable[Any]]] = None):
        self._loader = loader or self._load_ydl
        self._ready = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.client: Any = None
        self.error: Optional[BaseException] = None

    @classmethod
    def shared(cls) -> "WidgetApi":
        if cls._shared is None:
            cls._shared = cls()
        return cls._shared

    @classmethod
    def install(cls, api: Optional["WidgetApi"]):
        cls._shared = api

    @property
    def is_ready(self) -> bool:
        return self._ready.is_set()

    @property
    def failed(self) -> bool:
        return self.error is not None

    @staticmethod
    async def _load_ydl():
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _create_ydl)

    def ensure_loaded(self) -> asyncio.Task:
        if self._task is None or self._task.cancelled():
            self._task = asyncio.create_task(self._load())
        return self._task

    async def _load(self):
        try:
            self.client = await self._loader()
        except Exception as e:
            self.error = e
            logger.error(f"Widget API failed to load: {e}")
            return
        self._ready.set()
        logger.info("Widget API ready")

    async def wait_ready(self) -> bool:
        # Cancelling one waiter must not cancel the shared load
        await asyncio.shield(self.ensure_loaded())
        return self.is_ready

    async def resolve(self, url: str) -> Dict[str, Any]:
        """
        Looks up widget metadata in a thread pool to avoid blocking.
        """
        if not await self.wait_ready():
            raise WidgetUnavailableError(f"Widget API is not available: {self.error}")

        loop = asyncio.get_running_loop()
        info = await loop.run_in_executor(None, lambda: self.client.extract_info(url, download=False))
        return {
            "video_id": info.get('id') or extract_widget_video_id(url),
            "title": info.get('title', 'Unknown Video'),
            "duration": info.get('duration'),
        }
