"""
Login page served by the loopback listener.

The page signs the user in with the Firebase JS SDK and POSTs the resulting
user record to /callback on the same origin. The Firebase configuration is
read client-side from the query string built by buildLoginUrl().
"""

import urllib.parse
from typing import Dict, Optional

from .constants import LISTEN_HOST, SIGN_IN_MODES
from .utils import ConfigError

LOGIN_PAGE_TITLE = 'Desktop Sign-In'

LOGIN_HTML = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>__TITLE__</title>
<style>
  * { margin: 0; padding: 0; box-sizing: border-box; }
  body { font-family: system-ui, -apple-system, sans-serif; background: #08081a; color: #e2e8f0; display: flex; align-items: center; justify-content: center; min-height: 100vh; }
  .card { background: #111128; border: 1px solid #1e1e3a; border-radius: 16px; padding: 48px; text-align: center; max-width: 400px; width: 90%; }
  h1 { font-size: 28px; margin-bottom: 8px; }
  p { color: #94a3b8; margin-bottom: 24px; font-size: 14px; }
  .spinner { width: 40px; height: 40px; border: 3px solid #1e1e3a; border-top-color: #e94560; border-radius: 50%; animation: spin 0.8s linear infinite; margin: 24px auto; }
  @keyframes spin { to { transform: rotate(360deg); } }
  .error { color: #ef4444; margin-top: 16px; font-size: 13px; }
  .success { color: #34d399; }
  #status { margin-top: 16px; font-size: 13px; color: #94a3b8; }
</style>
</head>
<body>
<div class="card">
  <h1>__TITLE__</h1>
  <p>Signing in with your Google account…</p>
  <div class="spinner" id="spinner"></div>
  <div id="status">Pick your Google account in the pop-up window</div>
  <div class="error" id="error"></div>
</div>
<script src="https://www.gstatic.com/firebasejs/10.12.0/firebase-app-compat.js"></script>
<script src="https://www.gstatic.com/firebasejs/10.12.0/firebase-auth-compat.js"></script>
<script>
(async function() {
  var params = new URLSearchParams(location.search);
  var config = {
    apiKey: params.get('apiKey'),
    authDomain: params.get('authDomain'),
    projectId: params.get('projectId'),
  };
  var mode = params.get('mode') === 'redirect' ? 'redirect' : 'popup';
  var statusEl = document.getElementById('status');
  var errorEl = document.getElementById('error');
  var spinnerEl = document.getElementById('spinner');

  function fail(err) {
    spinnerEl.style.display = 'none';
    statusEl.textContent = '';
    errorEl.textContent = 'Sign-in failed: ' + (err.message || err);
    console.error(err);
  }

  async function deliver(user) {
    statusEl.textContent = 'Sending credentials to the application…';
    var accessToken = await user.getIdToken(true);
    var userData = {
      uid: user.uid,
      email: user.email,
      emailVerified: user.emailVerified,
      displayName: user.displayName,
      isAnonymous: user.isAnonymous,
      photoURL: user.photoURL,
      providerData: user.providerData.map(function(p) {
        return {
          providerId: p.providerId,
          uid: p.uid,
          displayName: p.displayName,
          email: p.email,
          phoneNumber: p.phoneNumber,
          photoURL: p.photoURL
        };
      }),
      stsTokenManager: {
        refreshToken: user.refreshToken,
        accessToken: accessToken,
        expirationTime: Date.now() + 3600 * 1000
      },
      createdAt: String(new Date(user.metadata.creationTime).getTime()),
      lastLoginAt: String(new Date(user.metadata.lastSignInTime).getTime()),
      apiKey: config.apiKey,
      appName: '[DEFAULT]'
    };
    await fetch('/callback', {
      method: 'POST',
      headers: { 'Content-Type': 'application/json' },
      body: JSON.stringify(userData)
    });
    spinnerEl.style.display = 'none';
    statusEl.innerHTML = '<span class="success">✓ Signed in!</span><br><br>You can close this window and return to the application.';
    setTimeout(function() { window.close(); }, 2000);
  }

  try {
    firebase.initializeApp(config);
    var auth = firebase.auth();
    var provider = new firebase.auth.GoogleAuthProvider();

    var redirected = await auth.getRedirectResult();
    if (redirected && redirected.user) {
      await deliver(redirected.user);
      return;
    }

    if (mode === 'redirect') {
      statusEl.textContent = 'Redirecting to Google…';
      await auth.signInWithRedirect(provider);
      return;
    }

    var result;
    try {
      result = await auth.signInWithPopup(provider);
    } catch (err) {
      var code = err.code || '';
      if (code === 'auth/popup-blocked' || code === 'auth/popup-closed-by-browser') {
        statusEl.textContent = 'Pop-up blocked, redirecting to Google…';
        await auth.signInWithRedirect(provider);
        return;
      }
      throw err;
    }
    await deliver(result.user);
  } catch (err) {
    fail(err);
  }
})();
</script>
</body>
</html>""".replace('__TITLE__', LOGIN_PAGE_TITLE)


def getLoginPage(path: Optional[str] = None) -> bytes:
    """
    Get the login page body.

    Args:
        path: Optional file to serve instead of the bundled page.

    Returns:
        The page as utf-8 bytes.
    """
    if path:
        with open(path, 'rb') as f:
            return f.read()
    return LOGIN_HTML.encode('utf-8')


def validateFirebaseConfig(firebase_config: Dict[str, str], mode: Optional[str] = None) -> Optional[str]:
    """
    Check that the login page can be configured.

    Returns:
        The sign-in mode to use, None for the page default.

    Raises:
        ConfigError: If the API key is missing or the mode is unknown.
    """
    if not firebase_config.get('api_key'):
        raise ConfigError("Firebase API key is not configured, run the 'configure' action first")

    mode = mode or firebase_config.get('mode')
    if mode is not None and mode not in SIGN_IN_MODES:
        raise ConfigError(f"Unknown sign-in mode: {mode}")
    return mode


def buildLoginUrl(port: int, firebase_config: Dict[str, str],
                  mode: Optional[str] = None, path: str = '/') -> str:
    """
    Build the URL the browser is opened at.

    Args:
        port: Port the listener is bound to.
        firebase_config: Dictionary with api_key, auth_domain and project_id.
        mode: Optional sign-in mode, "popup" or "redirect".
        path: Path of the login page ("/" or "/login").

    Returns:
        The full login URL.

    Raises:
        ConfigError: If the API key is missing or the mode is unknown.
    """
    mode = validateFirebaseConfig(firebase_config, mode)

    params = {
        'apiKey': firebase_config['api_key'],
        'authDomain': firebase_config.get('auth_domain'),
        'projectId': firebase_config.get('project_id'),
        'mode': mode,
    }
    query = urllib.parse.urlencode({k: v for k, v in params.items() if v})

    return f"http://{LISTEN_HOST}:{port}{path}?{query}"
