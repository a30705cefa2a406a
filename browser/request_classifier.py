"""
Request classification for metrics filtering.

Static assets pass through untouched. Navigation and auth calls are tagged
with ``TRACK_HEADER`` so they can be told apart in server-side metrics.
"""
import posixpath
from dataclasses import dataclass
from urllib.parse import urlparse

from utils.structured_logger import get_logger, LogCategory, LogSource

STATIC_EXTENSIONS = frozenset({
    'js', 'css', 'png', 'jpg', 'jpeg', 'gif', 'svg',
    'woff', 'woff2', 'ttf', 'eot', 'ico', 'webp',
})
STATIC_SEGMENTS = ('/fonts/', '/images/', '/assets/', '/static/')
TRACK_HEADER = 'x-loadtest-track'

_logger = get_logger(category=LogCategory.REQUEST, source=LogSource.CLASSIFIER)


@dataclass(frozen=True)
class RequestClass:
    asset: bool
    tracked: bool


def _path_of(url):
    return urlparse(url).path or ''


def is_asset(url) -> bool:
    path = _path_of(url)
    extension = posixpath.splitext(path)[1][1:].lower()
    if extension in STATIC_EXTENSIONS:
        return True
    return any(segment in path for segment in STATIC_SEGMENTS)


def classify(url, tracked_fragments=()) -> RequestClass:
    """Classify a request URL. Pure, never touches the network."""
    if is_asset(url):
        return RequestClass(asset=True, tracked=False)
    path = _path_of(url)
    tracked = any(fragment and fragment in path for fragment in tracked_fragments)
    return RequestClass(asset=False, tracked=tracked)


def make_route_handler(tracked_fragments):
    """Build a Playwright route handler that tags tracked requests."""
    fragments = tuple(tracked_fragments)

    async def handle_route(route, request):
        if classify(request.url, fragments).tracked:
            headers = {**request.headers, TRACK_HEADER: 'true'}
            await route.continue_(headers=headers)
        else:
            await route.continue_()

    return handle_route


async def install_request_tracking(target, tracked_fragments):
    """Route every request of a Page or BrowserContext through the classifier."""
    await target.route("**/*", make_route_handler(tracked_fragments))
    _logger.debug("Request tracking installed", extra_data={'tracked': list(tracked_fragments)})
