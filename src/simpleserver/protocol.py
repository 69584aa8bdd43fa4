"""Wire helpers for the file server.

Only the small subset of HTTP/1.x the server needs:
 - reading a request head off a socket,
 - splitting the request line,
 - building a response head (status line plus headers),
 - discarding a declared request body so closing the socket does not reset it.
"""
import socket
from http import HTTPStatus
from typing import Dict, Optional, Tuple
from urllib.parse import unquote_to_bytes, urlsplit

MAX_REQUEST_HEAD = 8192
MAX_DISCARDED_BODY = 1 << 20
RECV_SIZE = 1024


def read_request_head(conn: socket.socket) -> bytes:
    """Read until the blank line ending the head, EOF or the size limit."""
    request = b''
    while b'\r\n\r\n' not in request and len(request) < MAX_REQUEST_HEAD:
        chunk = conn.recv(RECV_SIZE)
        if not chunk:
            break
        request += chunk
    return request


def parse_request_line(raw_request: bytes) -> Tuple[str, str, str]:
    """Return (method, target, version); ValueError if the line is malformed."""
    text = raw_request.decode('iso-8859-1')
    lines = text.split('\r\n', 1)
    parts = lines[0].split()
    if len(parts) != 3:
        raise ValueError(f"bad request line: {lines[0]!r}")
    method, target, version = parts
    if not version.startswith('HTTP/'):
        raise ValueError(f"bad protocol version: {version!r}")
    return method, target, version


def parse_headers(raw_request: bytes) -> Dict[str, str]:
    head = raw_request.split(b'\r\n\r\n', 1)[0]
    headers = {}
    for line in head.decode('iso-8859-1').split('\r\n')[1:]:
        if ':' not in line:
            continue
        k, v = line.split(':', 1)
        headers[k.strip().lower()] = v.strip()
    return headers


def request_path(target: str) -> str:
    """Absolute URI path of a request target, percent-decoded.

    `target` is the request line as decoded by parse_request_line, so its
    characters map back to the bytes on the wire. Those bytes, raw or
    percent-escaped, are read as UTF-8; bytes that are not valid UTF-8
    become surrogates, matching how os.listdir names such files.

    Dot segments are left alone; containment is decided by the resolver.
    """
    if target.startswith(('http://', 'https://')):
        path = urlsplit(target).path or '/'
    else:
        path = target.split('?', 1)[0].split('#', 1)[0]
    try:
        raw = path.encode('iso-8859-1')
    except UnicodeEncodeError:
        raw = path.encode('utf-8', errors='surrogateescape')
    return unquote_to_bytes(raw).decode('utf-8', errors='surrogateescape')


def discard_body(conn: socket.socket, raw_request: bytes) -> None:
    """Drain the declared Content-Length of the request body, if any."""
    try:
        length = int(parse_headers(raw_request).get('content-length', '0'))
    except ValueError:
        return
    parts = raw_request.split(b'\r\n\r\n', 1)
    remaining = min(length, MAX_DISCARDED_BODY)
    if len(parts) == 2:
        remaining -= len(parts[1])
    while remaining > 0:
        chunk = conn.recv(min(RECV_SIZE, remaining))
        if not chunk:
            break
        remaining -= len(chunk)


def build_response_head(status: int, headers: Optional[Dict[str, str]] = None, content_length: int = 0) -> bytes:
    phrase = HTTPStatus(status).phrase
    base_headers = {}
    if headers:
        base_headers.update(headers)
    base_headers['Content-Length'] = str(content_length)
    base_headers['Connection'] = 'close'
    header_lines = [f"HTTP/1.1 {status} {phrase}"]
    for k, v in base_headers.items():
        header_lines.append(f"{k}: {v}")
    return ("\r\n".join(header_lines) + "\r\n\r\n").encode('iso-8859-1')
