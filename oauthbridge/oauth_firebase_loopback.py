"""
Browser-based Firebase sign-in for desktop hosts.

The flow runs entirely through the loopback listener:

1. Start the listener on an ephemeral loopback port.
2. Open the system browser at the login page served by the listener, with
   the Firebase configuration in the query string.
3. The page signs the user in with the Firebase JS SDK and POSTs the user
   record back to /callback.
4. The listener forwards the record here and shuts down; the tokens are
   stored in the configuration file.
"""

import queue
import time
import webbrowser
from typing import Callable, Dict, Optional

from termcolor import colored

from . import json_utils
from .constants import DEFAULT_MAX_CONNECTIONS, OAUTH_CALLBACK_TIMEOUT, CALLBACK_EVENT_NAME
from .login_page import buildLoginUrl, getLoginPage, validateFirebaseConfig
from .oauth_server import OAuthCallbackServer
from .utils import BridgeException


class OAuthFlowError(BridgeException):
    """Loopback sign-in flow errors."""
    pass


class LoopbackFirebaseAuth:
    """Sign a user in through the system browser and the loopback listener."""

    def __init__(self, firebase_config: Dict[str, str],
                 max_connections: int = DEFAULT_MAX_CONNECTIONS,
                 timeout: float = OAUTH_CALLBACK_TIMEOUT,
                 print_debug_fn: Optional[Callable[[str], None]] = None):
        """
        Args:
            firebase_config: Dictionary with api_key, auth_domain, project_id and
                optional mode / login_page_path.
            max_connections: Connection budget of the listener.
            timeout: Maximum time to wait for the callback (seconds).
            print_debug_fn: Function receiving debug messages.
        """
        self.firebase_config = firebase_config
        self.max_connections = max_connections
        self.timeout = timeout
        self.print_debug_fn = print_debug_fn
        self.callback_queue = queue.Queue()
        self.callback_server = None

    def _on_callback(self, event: str, payload: str):
        # Runs on the listener thread.
        self.callback_queue.put((event, payload))

    def start_auth_flow(self, no_browser: bool = False, mode: Optional[str] = None, path: str = '/') -> Dict:
        """
        Run the sign-in flow.

        Args:
            no_browser: If True, print URL instead of opening browser
            mode: Sign-in mode, "popup" or "redirect", defaults to the configured one
            path: Path of the login page to open

        Returns:
            The user record posted by the login page.

        Raises:
            OAuthFlowError: If no valid callback is received.
            ConfigError: If the Firebase configuration is incomplete.
        """
        mode = validateFirebaseConfig(self.firebase_config, mode)

        self.callback_server = OAuthCallbackServer(
            on_callback=self._on_callback,
            max_connections=self.max_connections,
            login_page=getLoginPage(self.firebase_config.get('login_page_path')),
            timeout=self.timeout,
            print_debug_fn=self.print_debug_fn
        )
        port = self.callback_server.start()
        login_url = buildLoginUrl(port, self.firebase_config, mode=mode, path=path)

        print(f"OAuth callback server started on port {port}")

        if no_browser:
            print(f"\nPlease visit this URL to sign in:\n{login_url}\n")
        else:
            print("Opening browser for authentication...")
            if not webbrowser.open(login_url):
                print(f"\nCould not open browser. Please visit this URL:\n{login_url}\n")

        print("Waiting for authentication...")

        payload = self.wait_for_callback()

        try:
            return json_utils.loadsObject(payload)
        except ValueError as e:
            raise OAuthFlowError(f"Invalid callback payload: {str(e)}")

    def wait_for_callback(self) -> str:
        """
        Wait for the login page to post the user record.

        Returns:
            The raw callback payload.

        Raises:
            OAuthFlowError: On timeout, or if the listener gave up first.
        """
        deadline = time.monotonic() + self.timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise OAuthFlowError("Authentication timeout")
            try:
                event, payload = self.callback_queue.get(timeout=min(remaining, 0.5))
            except queue.Empty:
                if self.callback_server is not None and not self.callback_server.is_running and self.callback_queue.empty():
                    raise OAuthFlowError("Login page was not completed before the callback server stopped")
                continue
            if event == CALLBACK_EVENT_NAME:
                return payload


def summarizeUser(user: Dict) -> Dict:
    """
    Extract what gets stored from the user record posted by the login page.

    Args:
        user: Firebase user record (localStorage layout).

    Returns:
        Dictionary with uid, email, display_name, id_token, refresh_token and expires_at.

    Raises:
        OAuthFlowError: If the record has no uid.
    """
    if not user.get('uid'):
        raise OAuthFlowError("Callback payload has no uid")

    tokens = user.get('stsTokenManager') or {}

    # expirationTime is in milliseconds.
    expires_at = tokens.get('expirationTime')
    if expires_at is not None:
        expires_at = int(expires_at) // 1000

    return {
        'uid': user['uid'],
        'email': user.get('email'),
        'display_name': user.get('displayName'),
        'id_token': tokens.get('accessToken'),
        'refresh_token': tokens.get('refreshToken'),
        'expires_at': expires_at,
    }


def perform_loopback_firebase_auth(environment: Optional[str] = None,
                                   no_browser: bool = False,
                                   mode: Optional[str] = None,
                                   max_connections: int = DEFAULT_MAX_CONNECTIONS,
                                   timeout: float = OAUTH_CALLBACK_TIMEOUT,
                                   print_debug_fn: Optional[Callable[[str], None]] = None) -> bool:
    """
    Perform the loopback sign-in and save the user.

    Args:
        environment: Environment name (optional)
        no_browser: Don't open browser automatically
        mode: Sign-in mode, "popup" or "redirect"
        max_connections: Connection budget of the listener
        timeout: Maximum time to wait for the callback (seconds)
        print_debug_fn: Function receiving debug messages

    Returns:
        True if login successful
    """
    from . import utils

    environment = utils.currentEnvironment(environment)

    try:
        auth = LoopbackFirebaseAuth(
            utils.getFirebaseConfig(environment),
            max_connections=max_connections,
            timeout=timeout,
            print_debug_fn=print_debug_fn
        )
        user = summarizeUser(auth.start_auth_flow(no_browser=no_browser, mode=mode))
    except BridgeException as e:
        print(colored(f"\nSign-in failed: {str(e)}", 'red'))
        return False

    utils.writeConfig(environment, user=user)

    who = user['email'] or user['uid']
    print(colored(f"\nSigned in as {who} (environment: {environment})", 'green'))
    return True
