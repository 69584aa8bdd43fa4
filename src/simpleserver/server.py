#!/usr/bin/env python3
"""Multithreaded static file server.

Features:
 - Serves files under a root directory with a Content-Type by extension.
 - Generates directory listings with hyperlinks (can be disabled).
 - Blocks path traversal outside root with 403.
 - Handles only GET; every other method gets 403.
 - One thread per accepted connection, so a slow client never stalls accept().
 - Cooperative shutdown: stop() sets an event the accept loop checks between
   iterations; requests already in flight run to completion.

Usage:
  python -m simpleserver <port> <root> [--host localhost] [--no-dirs] [-v|-vv]
"""
import argparse
import logging
import os
import socket
import sys
import threading
from enum import Enum
from typing import Optional

from .protocol import discard_body, parse_request_line, read_request_head, request_path
from .resolver import Outcome, RequestResolver

HOST_DEFAULT = 'localhost'
ACCEPT_POLL_INTERVAL = 0.5
LISTEN_BACKLOG = 32
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ServerState(Enum):
    NOT_STARTED = 'not_started'
    RUNNING = 'running'
    STOPPING = 'stopping'
    STOPPED = 'stopped'


class Server:
    """HTTP server for the files under one directory."""

    def __init__(self, port: int, root: str, directory_listings: bool = True,
                 host: str = HOST_DEFAULT, logger: Optional[logging.Logger] = None):
        """
        Make a new server; nothing is bound until start().

        :param port: port number to listen on, 1-65535
        :param root: existing directory files are served from
        :param directory_listings: whether directories get an HTML listing
        :param host: address to bind
        :param logger: destination for request and lifecycle records
        :raises ValueError: if port is out of range or root is empty
        :raises FileNotFoundError: if root is not an existing directory
        """
        if not 0 < port < 0x10000:
            raise ValueError(f"port must be in 1-65535, got {port}")
        if not root:
            raise ValueError("root is required")
        if not os.path.isdir(root):
            raise FileNotFoundError(f"Cannot find directory '{root}'")

        self._port = port
        self._root = os.path.abspath(root)
        self._directory_listings = directory_listings
        self._host = host
        self.logger = logger or logging.getLogger('simpleserver')
        self._resolver = RequestResolver(self._root, directory_listings, self.logger)

        self._started = False
        self._cancel: Optional[threading.Event] = threading.Event()
        self._closed = False
        self._thread: Optional[threading.Thread] = None
        self._address = None

    @property
    def port(self) -> int:
        return self._port

    @property
    def root(self) -> str:
        return self._root

    @property
    def directory_listings(self) -> bool:
        return self._directory_listings

    @property
    def host(self) -> str:
        return self._host

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def address(self):
        """(host, port) actually bound, or None before start()."""
        return self._address

    @property
    def state(self) -> ServerState:
        if not self._started:
            return ServerState.NOT_STARTED
        if self._thread is None or not self._thread.is_alive():
            return ServerState.STOPPED
        if self._cancel is None or not self._cancel.is_set():
            return ServerState.RUNNING
        return ServerState.STOPPING

    def start(self) -> threading.Thread:
        """Bind and start accepting; returns the thread running the accept loop."""
        if self._started:
            raise RuntimeError("Server is already started.")
        if self._cancel is None:
            raise RuntimeError("Server is closed.")

        self._started = True
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self._host, self._port))
            sock.listen(LISTEN_BACKLOG)
            sock.settimeout(ACCEPT_POLL_INTERVAL)
        except OSError:
            sock.close()
            raise
        self._address = sock.getsockname()[:2]
        self.logger.info(f"Listening on http://{self._host}:{self._port}/")

        self._thread = threading.Thread(
            target=self._run_listener,
            args=(sock, self._cancel),
            daemon=True,
            name=f"simpleserver-{self._port}",
        )
        self._thread.start()
        return self._thread

    def stop(self) -> None:
        """Ask the accept loop to exit. In-flight requests are not aborted."""
        if not self._started:
            raise RuntimeError("Server has not been started.")
        if self.state is ServerState.STOPPED:
            raise RuntimeError("Server is already stopped.")
        if self._cancel is None or self._cancel.is_set():
            raise RuntimeError("Server is already stopped.")
        self._cancel.set()

    def close(self) -> None:
        """Release the cancellation handle. Call exactly once."""
        if self._closed:
            raise RuntimeError("Server is already closed.")
        self._closed = True
        self._cancel = None

    def _run_listener(self, sock: socket.socket, cancel: threading.Event) -> None:
        with sock:
            while True:
                if cancel.is_set():
                    self.logger.info("Cancelled")
                    break
                try:
                    conn, addr = sock.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if cancel.is_set():
                        self.logger.info("Cancelled")
                    else:
                        self.logger.error(f"Exception in http listener: {e}")
                    break
                t = threading.Thread(target=self._handle_connection, args=(conn, addr), daemon=True)
                t.start()

    def _handle_connection(self, conn: socket.socket, addr) -> None:
        with conn:
            try:
                request = read_request_head(conn)
                if not request:
                    return
                with conn.makefile('wb') as wfile:
                    try:
                        method, target, _version = parse_request_line(request)
                    except ValueError as e:
                        self.logger.warning(f"Bad request from {addr[0]}: {e}")
                        self._resolver.reject('', '', Outcome.BAD_REQUEST, wfile)
                        return
                    discard_body(conn, request)
                    self._resolver.serve(method, request_path(target), wfile)
            except OSError as e:
                self.logger.warning(f"Connection from {addr[0]} failed: {e}")
            except Exception:
                self.logger.exception(f"Unexpected error handling connection from {addr[0]}")


def port_number(value):
    try:
        port = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid port number: {value!r}")
    if not 0 < port < 0x10000:
        raise argparse.ArgumentTypeError("the port must be in 1-65535")
    return port


def directory(value):
    if not os.path.isdir(value):
        raise argparse.ArgumentTypeError(f"not a directory: {value!r}")
    return os.path.abspath(value)


def parse_args(argv):
    p = argparse.ArgumentParser(prog='simple-server', description='Serve the files under a directory over HTTP')
    p.add_argument('port', type=port_number, nargs='?', default=os.environ.get('PORT'),
                   help='port number to listen on (default: $PORT)')
    p.add_argument('root', type=directory, nargs='?', default=os.environ.get('ROOT'),
                   help='directory files will be served from (default: $ROOT)')
    p.add_argument('--host', default=HOST_DEFAULT, help='address to bind (default: %(default)s)')
    p.add_argument('--no-dirs', dest='directory_listings', action='store_false',
                   help='do not generate directory listings')
    p.add_argument('-v', '--verbose', action='count', default=0,
                   help='-v for warnings, -vv for every request')
    args = p.parse_args(argv)
    # argparse only applies `type` to string defaults
    if args.port is None:
        p.error('the port argument is required')
    if args.root is None:
        p.error('the root argument is required')
    return args


def log_level(verbose: int) -> int:
    if verbose >= 2:
        return logging.INFO
    if verbose == 1:
        return logging.WARNING
    return getattr(logging, os.environ.get('LOG_LEVEL', 'ERROR').upper(), logging.ERROR)


def main(argv=None):
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(level=log_level(args.verbose), format=LOG_FORMAT)
    logger = logging.getLogger('simpleserver')

    logger.info(f"Serving all files under {args.root}")

    server = Server(args.port, args.root, args.directory_listings, host=args.host, logger=logger)
    try:
        thread = server.start()
        try:
            while thread.is_alive():
                thread.join(ACCEPT_POLL_INTERVAL)
        except KeyboardInterrupt:
            logger.info("Cancellation key pressed")
            server.stop()
            thread.join()
    finally:
        server.close()


if __name__ == '__main__':
    main()
