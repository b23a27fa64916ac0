"""
Minimal HTTP/1.1 framing helpers for the loopback callback listener.

Only what the listener needs is implemented: reading a single request off a
connected socket, splitting it into request line, header lines and body, and
writing a single "Connection: close" response with permissive CORS headers.
"""

import socket
from http import HTTPStatus
from typing import List, NamedTuple, Optional, Union

from .constants import READ_CHUNK_SIZE, MAX_REQUEST_SIZE, HEADER_SEPARATOR

CORS_HEADERS = (
    ( 'Access-Control-Allow-Origin', '*' ),
    ( 'Access-Control-Allow-Methods', 'POST, GET, OPTIONS' ),
    ( 'Access-Control-Allow-Headers', 'Content-Type' ),
)


class ParsedRequest(NamedTuple):
    method: str
    path: str
    headers: List[str]
    body: bytes


def parseContentLength(header_block: bytes) -> Optional[int]:
    """
    Find the Content-Length declared in a raw header block.

    Header names are matched case-insensitively. The first Content-Length
    line wins.

    Args:
        header_block: Raw bytes preceding the header/body separator.

    Returns:
        The declared length, or None if absent or not a plain decimal number.
    """
    for line in header_block.decode('utf-8', errors='replace').split('\r\n'):
        name, sep, value = line.partition(':')
        if not sep or name.strip().lower() != 'content-length':
            continue
        value = value.strip()
        if not (value.isascii() and value.isdigit()):
            return None
        return int(value)
    return None


def readRequest(sock: socket.socket,
                chunk_size: int = READ_CHUNK_SIZE,
                max_size: int = MAX_REQUEST_SIZE) -> bytes:
    """
    Read one HTTP request (headers and body) from a connected socket.

    Reading stops when the headers are complete and either no Content-Length
    was declared or the declared body has fully arrived. It also stops when
    the peer closes, a read fails, or max_size bytes have been buffered; in
    those cases whatever was read is returned as the request.

    Args:
        sock: The connected socket.
        chunk_size: Size of each recv() call.
        max_size: Hard ceiling on the buffered request size.

    Returns:
        The raw request bytes.
    """
    buf = bytearray()

    while len(buf) < max_size:
        try:
            chunk = sock.recv(min(chunk_size, max_size - len(buf)))
        except OSError:
            break
        if not chunk:
            break
        buf.extend(chunk)

        header_end = buf.find(HEADER_SEPARATOR)
        if header_end == -1:
            continue

        content_length = parseContentLength(bytes(buf[:header_end]))
        if content_length is None:
            # No body declared, the request ends with the headers.
            break
        if len(buf) >= header_end + len(HEADER_SEPARATOR) + content_length:
            break

    return bytes(buf)


def parseRequest(raw: bytes) -> ParsedRequest:
    """
    Split a raw request into method, path, header lines and body.

    Malformed input never raises: a missing method becomes "" and a missing
    path becomes "/". The body is everything after the header separator,
    left as raw bytes.
    """
    header_end = raw.find(HEADER_SEPARATOR)
    if header_end == -1:
        head, body = raw, b''
    else:
        head, body = raw[:header_end], raw[header_end + len(HEADER_SEPARATOR):]

    lines = head.decode('utf-8', errors='replace').splitlines()
    tokens = lines[0].split() if lines else []

    method = tokens[0] if tokens else ''
    path = tokens[1] if len(tokens) > 1 else '/'

    return ParsedRequest(method, path, lines[1:], body)


def buildResponse(status: int, content_type: str, body: Union[bytes, str] = b'') -> bytes:
    """
    Compose a complete HTTP response.

    Content-Length is always the byte length of the encoded body.

    Args:
        status: HTTP status code.
        content_type: Media type, a utf-8 charset parameter is appended.
        body: Response body, str bodies are encoded as utf-8.

    Returns:
        The response bytes, ready to be written to the socket.
    """
    if isinstance(body, str):
        body = body.encode('utf-8')

    status = HTTPStatus(status)
    lines = [
        f"HTTP/1.1 {status.value} {status.phrase}",
        f"Content-Type: {content_type}; charset=utf-8",
        f"Content-Length: {len(body)}",
        "Connection: close",
    ]
    lines.extend(f"{name}: {value}" for name, value in CORS_HEADERS)

    head = ("\r\n".join(lines) + "\r\n\r\n").encode('ascii')
    return head + body


def sendResponse(sock: socket.socket, status: int, content_type: str, body: Union[bytes, str] = b'') -> bool:
    """
    Write a response to the socket.

    Returns:
        True if the whole response was written, False if the peer went away.
    """
    try:
        sock.sendall(buildResponse(status, content_type, body))
        return True
    except OSError:
        return False
