import os
import socket
import sys

import pytest

# Get the directory of the current conftest.py file
current_dir = os.path.dirname(os.path.abspath(__file__))

# Calculate the project root (adjust the number of ".." if needed)
project_root = os.path.abspath(os.path.join(current_dir, '../../'))

# Insert the project root at the beginning of sys.path
if project_root not in sys.path:
    sys.path.insert(0, project_root)

import oauthbridge.utils
from oauthbridge import oauth_server


def sendRawRequest(port, raw, timeout=5):
    """Send raw bytes to the listener and return everything it answers."""
    with socket.create_connection(('127.0.0.1', port), timeout=timeout) as s:
        s.sendall(raw)
        chunks = []
        while True:
            data = s.recv(4096)
            if not data:
                break
            chunks.append(data)
    return b''.join(chunks)


def parseRawResponse(raw):
    """Split a raw response into (status, lower-cased headers, body)."""
    head, _, body = raw.partition(b'\r\n\r\n')
    lines = head.decode('ascii').split('\r\n')
    status = int(lines[0].split()[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(': ')
        headers[name.lower()] = value
    return status, headers, body


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    """Point the configuration file at a temporary path and clear env overrides."""
    file_path = str(tmp_path / "oauthbridge.yaml")
    monkeypatch.setattr(oauthbridge.utils, "CONFIG_FILE_PATH", file_path)
    for var in ("OAUTHBRIDGE_API_KEY", "OAUTHBRIDGE_AUTH_DOMAIN", "OAUTHBRIDGE_PROJECT_ID",
                "OAUTHBRIDGE_ENV", "OAUTHBRIDGE_EPHEMERAL_CREDS"):
        monkeypatch.delenv(var, raising=False)
    return file_path


@pytest.fixture(autouse=True)
def no_default_debug_fn():
    yield
    oauth_server.set_default_print_debug_fn(None)
