#!/usr/bin/env python3
"""
gallerica-cli - control a running gallerica daemon over its Unix socket.

Examples:
    gallerica-cli next
    gallerica-cli pause
    gallerica-cli interval 30000
    gallerica-cli gallery cats --no-refresh
"""

import argparse
import socket
import sys
from pathlib import Path
from typing import List, Optional

from gallerica import __version__, constants
from gallerica.common import paths
from gallerica.message_api import (
    BadRequest,
    InvalidGallery,
    NextImage,
    Pause,
    Request,
    Response,
    Resume,
    SelectGallery,
    UpdateInterval,
    decode_response,
    encode_request,
)

DEFAULT_TIMEOUT = 5.0  # seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='gallerica-cli', description='Control a running gallerica daemon')
    parser.add_argument(
        '--socket',
        type=Path,
        default=None,
        help=f'Path to the daemon socket (default: $XDG_RUNTIME_DIR/gallerica/{constants.DEFAULT_SOCKET_NAME})',
    )
    parser.add_argument('--timeout', type=float, default=DEFAULT_TIMEOUT, help='Seconds to wait for an answer')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    commands = parser.add_subparsers(dest='command', required=True)
    commands.add_parser('next', help='Immediately show the next image, no matter the update rate')
    commands.add_parser('pause', help='Stop cycling through images')
    commands.add_parser('resume', help='Continue cycling through images')

    interval = commands.add_parser('interval', help='Change the time between two images')
    interval.add_argument('millis', type=int, help='Number of milliseconds to wait before showing the next image')

    gallery = commands.add_parser('gallery', help='Choose a new gallery from which images are selected')
    gallery.add_argument('name', help='Name of the new gallery to use')
    gallery.add_argument(
        '--no-refresh',
        dest='refresh',
        action='store_false',
        help='Wait for the next scheduled update instead of refreshing the display immediately',
    )
    return parser


def request_from_args(args: argparse.Namespace) -> Request:
    if args.command == 'next':
        return NextImage()
    if args.command == 'pause':
        return Pause()
    if args.command == 'resume':
        return Resume()
    if args.command == 'interval':
        return UpdateInterval(millis=args.millis)
    if args.command == 'gallery':
        return SelectGallery(name=args.name, refresh=args.refresh)
    raise ValueError(f"Unknown command {args.command!r}")


def send_request(socket_path: Path, request: Request, timeout: float = DEFAULT_TIMEOUT) -> Response:
    """
    Send one request and wait for the response.

    Raises:
        OSError: If the daemon can't be reached.
        ValueError: If the answer is not a valid response.
    """
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as sock:
        sock.settimeout(timeout)
        sock.connect(str(socket_path))
        sock.sendall(encode_request(request))
        sock.shutdown(socket.SHUT_WR)

        chunks = []
        while True:
            chunk = sock.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)

    return decode_response(b''.join(chunks))


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    socket_path = args.socket or paths.runtime_dir() / constants.DEFAULT_SOCKET_NAME

    try:
        response = send_request(socket_path, request_from_args(args), args.timeout)
    except OSError as e:
        print(f"Failed to reach gallerica at {socket_path}: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Unexpected answer from gallerica: {e}", file=sys.stderr)
        return 1

    if isinstance(response, BadRequest):
        print(f"BadRequest: {response.message}", file=sys.stderr)
        return 1

    print(type(response).__name__)
    return 1 if isinstance(response, InvalidGallery) else 0


if __name__ == '__main__':
    sys.exit(main())
