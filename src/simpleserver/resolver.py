"""Request resolution: map one request onto the root directory and answer it.

Rules, in order:
 - the joined, normalized path must stay inside root, else 403;
 - only GET is allowed; any other method is answered with 403 as well;
 - an existing regular file is served with a Content-Type by extension;
 - an existing directory is listed when listings are enabled;
 - anything else is 404.

The containment test is lexical. `..` segments are collapsed before the
test, but symlinks below root are followed when the file is opened.
"""
import logging
import mimetypes
import os
import shutil
from dataclasses import dataclass, replace
from enum import Enum
from typing import BinaryIO, Optional

from .listing import render_listing
from .protocol import build_response_head

DEFAULT_CONTENT_TYPE = 'application/octet-stream'
LISTING_CONTENT_TYPE = 'text/html'
CHUNK_SIZE = 64 * 1024

# mimetypes reports these suffixes as an encoding rather than a type
COMPRESSED_CONTENT_TYPES = {
    'gzip': 'application/gzip',
    'bzip2': 'application/x-bzip2',
    'xz': 'application/x-xz',
    'compress': 'application/x-compress',
    'br': 'application/x-brotli',
}


class Outcome(Enum):
    """Final classification of a request."""
    SERVE_FILE = 'serve_file'
    SERVE_DIRECTORY_LISTING = 'serve_directory_listing'
    FORBIDDEN = 'forbidden'
    NOT_FOUND = 'not_found'
    METHOD_NOT_ALLOWED = 'method_not_allowed'
    SERVER_ERROR = 'server_error'
    BAD_REQUEST = 'bad_request'

    @property
    def status(self) -> int:
        return _STATUS[self]


_STATUS = {
    Outcome.SERVE_FILE: 200,
    Outcome.SERVE_DIRECTORY_LISTING: 200,
    Outcome.FORBIDDEN: 403,
    Outcome.NOT_FOUND: 404,
    # non-GET methods are refused with 403, not 405
    Outcome.METHOD_NOT_ALLOWED: 403,
    Outcome.SERVER_ERROR: 500,
    Outcome.BAD_REQUEST: 400,
}


@dataclass(frozen=True)
class ResolvedRequest:
    method: str
    raw_path: str
    resolved_path: Optional[str]
    outcome: Outcome

    @property
    def status(self) -> int:
        return self.outcome.status


def guess_content_type(path: str) -> str:
    """Content-Type by the last extension; `x.tar.gz` is gzip, not tar."""
    content_type, encoding = mimetypes.guess_type(path)
    if encoding is not None:
        return COMPRESSED_CONTENT_TYPES.get(encoding, DEFAULT_CONTENT_TYPE)
    return content_type or DEFAULT_CONTENT_TYPE


class RequestResolver:
    """Resolves requests against a root directory and writes the responses.

    Instances hold no per-request state and may be shared by any number of
    connection threads.
    """

    def __init__(self, root: str, directory_listings: bool, logger: Optional[logging.Logger] = None):
        """
        :param root: absolute, normalized directory files are served from
        :param directory_listings: whether directories get an HTML listing
        :param logger: receives one record per request, with `path`,
            `resolved_path` and `outcome` attributes
        """
        self.root = root
        self.directory_listings = directory_listings
        self.logger = logger or logging.getLogger('simpleserver')
        self._root_prefix = root if root.endswith(os.sep) else root + os.sep

    def contains(self, path: str) -> bool:
        return path == self.root or path.startswith(self._root_prefix)

    def resolve_path(self, raw_path: str) -> str:
        path = raw_path
        if path.startswith('/'):
            path = path[1:]
        return os.path.normpath(os.path.join(self.root, path.replace('/', os.sep)))

    def resolve(self, method: str, raw_path: str) -> ResolvedRequest:
        """Decide the outcome for a request without touching the response."""
        path = self.resolve_path(raw_path)
        if not self.contains(path):
            outcome = Outcome.FORBIDDEN
        elif method != 'GET':
            outcome = Outcome.METHOD_NOT_ALLOWED
        elif os.path.isfile(path):
            outcome = Outcome.SERVE_FILE
        elif self.directory_listings and os.path.isdir(path):
            outcome = Outcome.SERVE_DIRECTORY_LISTING
        else:
            outcome = Outcome.NOT_FOUND
        return ResolvedRequest(method, raw_path, path, outcome)

    def serve(self, method: str, raw_path: str, wfile: BinaryIO) -> ResolvedRequest:
        """Resolve a request and write the complete response to `wfile`.

        Never raises for request-level failures; the returned request
        carries the outcome that was actually answered.
        """
        request = self.resolve(method, raw_path)
        if request.outcome is Outcome.SERVE_FILE:
            return self._serve_file(request, wfile)
        if request.outcome is Outcome.SERVE_DIRECTORY_LISTING:
            return self._serve_listing(request, wfile)

        if request.outcome is Outcome.FORBIDDEN:
            self._trace(logging.WARNING, request, f"Forbidden to load '{raw_path}'")
        elif request.outcome is Outcome.METHOD_NOT_ALLOWED:
            self._trace(logging.WARNING, request, f"Forbidden to use method {method} '{raw_path}'")
        else:
            self._trace(logging.WARNING, request, f"Cannot find '{raw_path}'")
        self.send_status(request, wfile)
        return request

    def reject(self, method: str, raw_path: str, outcome: Outcome, wfile: BinaryIO) -> ResolvedRequest:
        """Answer a request that never reached path resolution."""
        request = ResolvedRequest(method, raw_path, None, outcome)
        self._trace(logging.WARNING, request, f"Rejected request '{raw_path}' with {outcome.status}")
        self.send_status(request, wfile)
        return request

    def send_status(self, request: ResolvedRequest, wfile: BinaryIO) -> None:
        try:
            wfile.write(build_response_head(request.status))
            wfile.flush()
        except OSError as e:
            self._trace(logging.WARNING, request, f"Client went away before status {request.status}: {e}")

    def _serve_file(self, request: ResolvedRequest, wfile: BinaryIO) -> ResolvedRequest:
        path = request.resolved_path
        content_type = guess_content_type(path)
        self._trace(logging.INFO, request, f"Serving '{path}' - {content_type}")
        try:
            f = open(path, 'rb')
        except OSError as e:
            return self._fail(request, wfile, f"Exception serving '{path}': {e}")

        with f:
            try:
                length = os.fstat(f.fileno()).st_size
                head = build_response_head(200, {'Content-Type': content_type}, length)
            except OSError as e:
                return self._fail(request, wfile, f"Exception serving '{path}': {e}")
            try:
                wfile.write(head)
                shutil.copyfileobj(f, wfile, CHUNK_SIZE)
                wfile.flush()
            except OSError as e:
                # head is already on the wire, the status cannot change
                failed = replace(request, outcome=Outcome.SERVER_ERROR)
                self._trace(logging.ERROR, failed, f"Exception serving '{path}': {e}")
                return failed

        self._trace(logging.INFO, request, f"Served '{path}', {length} bytes")
        return request

    def _serve_listing(self, request: ResolvedRequest, wfile: BinaryIO) -> ResolvedRequest:
        path = request.resolved_path
        self._trace(logging.INFO, request, f"Directory listing '{path}'")
        try:
            body = render_listing(self.root, path)
        except (OSError, ValueError) as e:
            return self._fail(request, wfile, f"Exception serving directory '{path}': {e}")

        try:
            wfile.write(build_response_head(200, {'Content-Type': LISTING_CONTENT_TYPE}, len(body)))
            wfile.write(body)
            wfile.flush()
        except OSError as e:
            failed = replace(request, outcome=Outcome.SERVER_ERROR)
            self._trace(logging.ERROR, failed, f"Exception serving directory '{path}': {e}")
            return failed

        self._trace(logging.INFO, request, f"Directory '{path}', {len(body)} bytes")
        return request

    def _fail(self, request: ResolvedRequest, wfile: BinaryIO, message: str) -> ResolvedRequest:
        failed = replace(request, outcome=Outcome.SERVER_ERROR)
        self._trace(logging.ERROR, failed, message)
        self.send_status(failed, wfile)
        return failed

    def _trace(self, level: int, request: ResolvedRequest, message: str) -> None:
        self.logger.log(level, message, extra={
            'method': request.method,
            'path': request.raw_path,
            'resolved_path': request.resolved_path,
            'outcome': request.outcome.name,
        })
