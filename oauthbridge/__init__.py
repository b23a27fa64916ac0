"""Loopback OAuth bridge for desktop applications"""

__version__ = "1.0.0"
__author__ = "Maxime Lamothe-Brassard ( Refraction Point, Inc )"
__author_email__ = "maxime@refractionpoint.com"
__license__ = "Apache v2"
__copyright__ = "Copyright (c) 2020 Refraction Point, Inc"

from .oauth_server import OAuthCallbackServer, OAuthServerError, set_default_print_debug_fn
from .oauth_firebase_loopback import LoopbackFirebaseAuth, OAuthFlowError
from .oauth import OAuthManager, TokenRefreshError
from .login_page import buildLoginUrl, getLoginPage
from .utils import BridgeException, ConfigError
from .constants import CALLBACK_EVENT_NAME
