import errno
import socket
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from .constants import LISTEN_HOST, DEFAULT_MAX_CONNECTIONS
from .constants import CALLBACK_PATH, FAVICON_PATH, CALLBACK_EVENT_NAME, CALLBACK_ACK_BODY
from .http_utils import readRequest, parseRequest, sendResponse
from .login_page import getLoginPage
from .utils import BridgeException

# Default function to call with debug messages.
DEFAULT_PRINT_DEBUG_FN: Optional[Callable[[str], None]] = None

def set_default_print_debug_fn( fn: Optional[Callable[[str], None]] = None ):
    """
    Set a default function to call with debug messages.

    Args:
        fn (function): the function to call with debug messages.
    """
    global DEFAULT_PRINT_DEBUG_FN
    DEFAULT_PRINT_DEBUG_FN = fn


class OAuthServerError(BridgeException):
    """Loopback listener startup errors."""
    pass


class OAuthCallbackServer:
    """Self-terminating loopback HTTP listener for browser OAuth callbacks.

    The listener serves the login page, answers CORS preflights and waits
    for the login page to POST the signed-in user to /callback. The body of
    that POST is handed to on_callback and the listener stops. If no
    callback arrives, the listener stops after max_connections accepted
    connections (or when the optional timeout expires).
    """

    def __init__(self,
                 on_callback: Optional[Callable[[str, str], None]] = None,
                 max_connections: int = DEFAULT_MAX_CONNECTIONS,
                 login_page: Optional[Union[bytes, str]] = None,
                 timeout: Optional[float] = None,
                 print_debug_fn: Optional[Callable[[str], None]] = None):
        """
        Initialize the OAuth callback server.

        Args:
            on_callback: Called as on_callback(event_name, payload) with the raw callback body.
                Invoked from the listener thread, at most once.
            max_connections: Number of connections to accept before giving up.
            login_page: Page served to GET requests, defaults to the bundled login page.
            timeout: Optional maximum lifetime of the listener (seconds).
            print_debug_fn: Function receiving debug messages.
        """
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")

        if login_page is None:
            login_page = getLoginPage()
        elif isinstance(login_page, str):
            login_page = login_page.encode('utf-8')

        self.on_callback = on_callback
        self.max_connections = max_connections
        self.login_page = login_page
        self.timeout = timeout
        self.port = None
        self.server_thread = None
        self.callback_received = False
        self._debug = print_debug_fn or DEFAULT_PRINT_DEBUG_FN

    def _printDebug(self, msg):
        if self._debug is not None:
            time_string = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%SZ")
            self._debug(f"{time_string}: {msg}")

    def start(self) -> int:
        """
        Bind an ephemeral loopback port and start accepting connections.

        The port is bound when this returns, so it can be embedded in a URL
        right away. Connections are handled on a background thread.

        Returns:
            The port number the server is listening on

        Raises:
            OAuthServerError: If the socket cannot be bound.
        """
        if self.server_thread is not None:
            raise OAuthServerError("OAuth callback server already started")

        sock = None
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.bind((LISTEN_HOST, 0))
            sock.listen()
            self.port = sock.getsockname()[1]
        except OSError as e:
            if sock is not None:
                sock.close()
            raise OAuthServerError(f"Failed to start OAuth callback server: {str(e)}")

        deadline = None
        if self.timeout:
            deadline = time.monotonic() + self.timeout

        self.server_thread = threading.Thread(target=self._run_server, args=(sock, deadline))
        self.server_thread.daemon = True
        self.server_thread.start()

        self._printDebug(f"OAuth callback server listening on {LISTEN_HOST}:{self.port}")
        return self.port

    @property
    def is_running(self) -> bool:
        return self.server_thread is not None and self.server_thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the listener thread to exit.

        Returns:
            True if the listener has stopped.
        """
        if self.server_thread is not None:
            self.server_thread.join(timeout)
        return not self.is_running

    def _run_server(self, sock: socket.socket, deadline: Optional[float]):
        """Accept connections until the callback is received or the budget is spent."""
        try:
            for attempt in range(self.max_connections):
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        self._printDebug("OAuth callback server timed out")
                        break
                    sock.settimeout(remaining)

                try:
                    conn, addr = sock.accept()
                except socket.timeout:
                    self._printDebug("OAuth callback server timed out")
                    break
                except OSError as e:
                    if e.errno == errno.EBADF:
                        break
                    self._printDebug(f"accept failed ({attempt + 1}/{self.max_connections}): {str(e)}")
                    continue

                with conn:
                    try:
                        if self._handle_connection(conn):
                            break
                    except Exception as e:
                        self._printDebug(f"failed to handle connection: {str(e)}")
            else:
                self._printDebug(f"no callback after {self.max_connections} connections, giving up")
        finally:
            sock.close()
            self._printDebug("OAuth callback server stopped")

    def _handle_connection(self, conn: socket.socket) -> bool:
        """
        Serve one request.

        Returns:
            True if this was the OAuth callback and the listener should stop.
        """
        request = parseRequest(readRequest(conn))
        method, path = request.method, request.path
        self._printDebug(f"{method or '-'} {path}")

        if method == 'OPTIONS':
            # CORS preflight
            sendResponse(conn, 204, 'text/plain')
            return False

        if method == 'POST' and path.startswith(CALLBACK_PATH):
            sendResponse(conn, 200, 'application/json', CALLBACK_ACK_BODY)
            conn.close()
            self._forward(request.body.decode('utf-8', errors='replace'))
            return True

        if path == FAVICON_PATH:
            sendResponse(conn, 204, 'text/plain')
        else:
            sendResponse(conn, 200, 'text/html', self.login_page)
        return False

    def _forward(self, payload: str):
        self.callback_received = True
        if self.on_callback is None:
            return
        try:
            self.on_callback(CALLBACK_EVENT_NAME, payload)
        except Exception as e:
            # The browser already got its answer, nothing else to do.
            self._printDebug(f"failed to forward OAuth callback: {str(e)}")
