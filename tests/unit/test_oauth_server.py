"""
Unit tests for the loopback OAuth callback listener.

These tests talk to a real listener over 127.0.0.1.
"""

import errno
import socket
import threading
import time

import pytest

from conftest import sendRawRequest, parseRawResponse

import oauthbridge.oauth_server
from oauthbridge.oauth_server import OAuthCallbackServer, OAuthServerError, set_default_print_debug_fn
from oauthbridge.login_page import LOGIN_PAGE_TITLE, getLoginPage
from oauthbridge.constants import CALLBACK_EVENT_NAME


GET_FAVICON = b"GET /favicon.ico HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n"


def _post(path, body, content_length=None):
    if content_length is None:
        content_length = len(body)
    return (b"POST %s HTTP/1.1\r\nHost: 127.0.0.1\r\nContent-Type: application/json\r\n"
            b"Content-Length: %d\r\n\r\n" % (path.encode(), content_length)) + body


class Recorder:
    """Collects forwarded callbacks."""
    def __init__(self):
        self.events = []
        self.received = threading.Event()

    def __call__(self, event, payload):
        self.events.append((event, payload))
        self.received.set()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def server(recorder):
    srv = OAuthCallbackServer(on_callback=recorder, max_connections=5)
    yield srv
    # Exhaust whatever budget is left so the listener thread exits.
    while srv.is_running:
        try:
            sendRawRequest(srv.port, GET_FAVICON, timeout=1)
        except OSError:
            pass
        srv.join(0.5)


class TestStart:

    def test_port_is_valid_and_connectable(self, server):
        port = server.start()
        assert 1 <= port <= 65535
        assert port == server.port
        with socket.create_connection(('127.0.0.1', port), timeout=5):
            pass
        assert server.is_running

    def test_each_session_gets_its_own_port(self, server):
        other = OAuthCallbackServer(max_connections=1)
        try:
            assert server.start() != other.start()
        finally:
            sendRawRequest(other.port, GET_FAVICON)
            assert other.join(5)

    def test_start_twice_fails(self, server):
        server.start()
        with pytest.raises(OAuthServerError):
            server.start()

    def test_bind_failure_is_reported(self, monkeypatch):
        # TEST-NET address, not assigned to any local interface.
        monkeypatch.setattr(oauthbridge.oauth_server, "LISTEN_HOST", "192.0.2.1")
        srv = OAuthCallbackServer()
        with pytest.raises(OAuthServerError) as exc_info:
            srv.start()
        assert "Failed to start OAuth callback server" in str(exc_info.value)
        assert srv.server_thread is None

    def test_invalid_max_connections(self):
        with pytest.raises(ValueError):
            OAuthCallbackServer(max_connections=0)


class TestDispatch:

    def test_preflight(self, server):
        port = server.start()
        raw = sendRawRequest(port, b"OPTIONS /callback HTTP/1.1\r\nHost: 127.0.0.1\r\n"
                                   b"Access-Control-Request-Method: POST\r\n\r\n")
        status, headers, body = parseRawResponse(raw)

        assert status == 204
        assert body == b''
        assert headers['content-length'] == '0'
        assert headers['access-control-allow-origin'] == '*'
        assert headers['access-control-allow-methods'] == 'POST, GET, OPTIONS'
        assert headers['access-control-allow-headers'] == 'Content-Type'

        # The listener keeps serving after a preflight.
        status, _, _ = parseRawResponse(sendRawRequest(port, b"OPTIONS / HTTP/1.1\r\n\r\n"))
        assert status == 204
        assert server.is_running

    def test_callback_round_trip(self, server, recorder):
        port = server.start()
        raw = sendRawRequest(port, _post("/callback", b'{"uid":"abc"}'))
        status, headers, body = parseRawResponse(raw)

        assert status == 200
        assert body == b'{"ok":true}'
        assert headers['content-length'] == '11'
        assert headers['content-type'] == 'application/json; charset=utf-8'
        assert headers['connection'] == 'close'
        assert headers['access-control-allow-origin'] == '*'

        assert recorder.received.wait(5)
        assert recorder.events == [(CALLBACK_EVENT_NAME, '{"uid":"abc"}')]
        assert server.join(5)
        assert server.callback_received

    def test_callback_prefix_match(self, server, recorder):
        port = server.start()
        status, _, _ = parseRawResponse(sendRawRequest(port, _post("/callback?attempt=1", b'{}')))
        assert status == 200
        assert recorder.received.wait(5)
        assert recorder.events[0][1] == '{}'

    def test_callback_non_ascii_payload_is_forwarded_exactly(self, server, recorder):
        payload = '{"displayName":"김민준","email":"min@example.com"}'
        port = server.start()
        sendRawRequest(port, _post("/callback", payload.encode('utf-8')))
        assert recorder.received.wait(5)
        assert recorder.events[0][1] == payload

    def test_callback_body_sent_in_pieces(self, server, recorder):
        body = b'{"uid":"slow"}'
        port = server.start()
        with socket.create_connection(('127.0.0.1', port), timeout=5) as s:
            s.sendall(_post("/callback", b'', content_length=len(body)))
            time.sleep(0.2)
            s.sendall(body[:5])
            time.sleep(0.2)
            s.sendall(body[5:])
            response = b''
            while True:
                data = s.recv(4096)
                if not data:
                    break
                response += data
        assert parseRawResponse(response)[0] == 200
        assert recorder.received.wait(5)
        assert recorder.events[0][1] == '{"uid":"slow"}'

    def test_get_callback_serves_login_page(self, server, recorder):
        port = server.start()
        status, headers, _ = parseRawResponse(sendRawRequest(port, b"GET /callback HTTP/1.1\r\n\r\n"))
        assert status == 200
        assert headers['content-type'] == 'text/html; charset=utf-8'
        assert recorder.events == []
        assert server.is_running

    @pytest.mark.parametrize("path", ["/", "/login", "/anything-unmatched"])
    def test_default_route_serves_login_page(self, server, path):
        port = server.start()
        raw = sendRawRequest(port, b"GET %s HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n" % path.encode())
        status, headers, body = parseRawResponse(raw)

        assert status == 200
        assert headers['content-type'] == 'text/html; charset=utf-8'
        assert LOGIN_PAGE_TITLE.encode('utf-8') in body

    def test_login_page_content_length_counts_bytes(self, server):
        page = getLoginPage()
        # The bundled page contains multi-byte characters.
        assert len(page) != len(page.decode('utf-8'))

        port = server.start()
        status, headers, body = parseRawResponse(sendRawRequest(port, b"GET / HTTP/1.1\r\n\r\n"))
        assert int(headers['content-length']) == len(body) == len(page)
        assert body == page

    def test_favicon(self, server):
        server.login_page = b'<title>should not be served</title>'
        port = server.start()
        status, headers, body = parseRawResponse(sendRawRequest(port, GET_FAVICON))
        assert status == 204
        assert body == b''
        assert headers['content-length'] == '0'

    def test_malformed_request_serves_login_page(self, server):
        port = server.start()
        status, headers, _ = parseRawResponse(sendRawRequest(port, b"\r\n\r\n"))
        assert status == 200
        assert headers['content-type'] == 'text/html; charset=utf-8'

    def test_custom_login_page(self, recorder):
        srv = OAuthCallbackServer(on_callback=recorder, max_connections=1, login_page='<h1>Hé</h1>')
        port = srv.start()
        status, headers, body = parseRawResponse(sendRawRequest(port, b"GET / HTTP/1.1\r\n\r\n"))
        assert body == '<h1>Hé</h1>'.encode('utf-8')
        assert headers['content-length'] == str(len(body))
        assert srv.join(5)


class TestLifecycle:

    def test_stops_after_connection_budget(self, recorder):
        srv = OAuthCallbackServer(on_callback=recorder, max_connections=3)
        port = srv.start()
        for _ in range(3):
            status, _, _ = parseRawResponse(sendRawRequest(port, GET_FAVICON))
            assert status == 204

        assert srv.join(5)
        assert not srv.is_running
        assert not srv.callback_received
        assert recorder.events == []

        with pytest.raises(ConnectionRefusedError):
            socket.create_connection(('127.0.0.1', port), timeout=5)

    def test_stops_after_callback(self, server):
        port = server.start()
        sendRawRequest(port, _post("/callback", b'{}'))
        assert server.join(5)
        with pytest.raises(ConnectionRefusedError):
            socket.create_connection(('127.0.0.1', port), timeout=5)

    def test_forwarding_failure_is_ignored(self):
        messages = []

        def failing(event, payload):
            raise RuntimeError("host window closed")

        srv = OAuthCallbackServer(on_callback=failing, max_connections=2, print_debug_fn=messages.append)
        port = srv.start()
        status, _, body = parseRawResponse(sendRawRequest(port, _post("/callback", b'{}')))

        assert status == 200
        assert body == b'{"ok":true}'
        assert srv.join(5)
        assert srv.callback_received
        assert any("host window closed" in m for m in messages)

    def test_connection_error_does_not_stop_listener(self, recorder):
        messages = []

        def debug(msg):
            if "GET /boom" in msg:
                raise RuntimeError("debug sink down")
            messages.append(msg)

        srv = OAuthCallbackServer(on_callback=recorder, max_connections=3, print_debug_fn=debug)
        port = srv.start()
        assert sendRawRequest(port, b"GET /boom HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n") == b""
        assert srv.is_running

        status, _, _ = parseRawResponse(sendRawRequest(port, _post("/callback", b'{"uid":"u-1"}')))
        assert status == 200
        assert srv.join(5)
        assert recorder.events == [(CALLBACK_EVENT_NAME, '{"uid":"u-1"}')]
        assert any("failed to handle connection: debug sink down" in m for m in messages)

    def test_no_callback_handler(self):
        srv = OAuthCallbackServer(max_connections=2)
        port = srv.start()
        status, _, _ = parseRawResponse(sendRawRequest(port, _post("/callback", b'{}')))
        assert status == 200
        assert srv.join(5)
        assert srv.callback_received

    def test_timeout_stops_listener(self, recorder):
        srv = OAuthCallbackServer(on_callback=recorder, max_connections=5, timeout=0.3)
        port = srv.start()
        assert srv.join(5)
        assert not srv.callback_received
        with pytest.raises(ConnectionRefusedError):
            socket.create_connection(('127.0.0.1', port), timeout=5)

    def test_accept_errors_consume_budget(self):
        class FailingListener:
            def __init__(self):
                self.accepts = 0
                self.closed = False

            def accept(self):
                self.accepts += 1
                raise OSError(errno.ECONNABORTED, "Software caused connection abort")

            def close(self):
                self.closed = True

        listener = FailingListener()
        OAuthCallbackServer(max_connections=4)._run_server(listener, None)
        assert listener.accepts == 4
        assert listener.closed

    def test_closed_listening_socket_stops_loop(self):
        class ClosedListener:
            def __init__(self):
                self.accepts = 0

            def accept(self):
                self.accepts += 1
                raise OSError(errno.EBADF, "Bad file descriptor")

            def close(self):
                pass

        listener = ClosedListener()
        OAuthCallbackServer(max_connections=4)._run_server(listener, None)
        assert listener.accepts == 1


class TestDebugOutput:

    def test_instance_debug_fn(self):
        messages = []
        srv = OAuthCallbackServer(max_connections=1, print_debug_fn=messages.append)
        port = srv.start()
        sendRawRequest(port, GET_FAVICON)
        assert srv.join(5)
        assert any("GET /favicon.ico" in m for m in messages)
        assert any("listening on 127.0.0.1:%d" % port in m for m in messages)

    def test_default_debug_fn(self):
        messages = []
        set_default_print_debug_fn(messages.append)
        srv = OAuthCallbackServer(max_connections=1)
        port = srv.start()
        sendRawRequest(port, GET_FAVICON)
        assert srv.join(5)
        assert any("stopped" in m for m in messages)
