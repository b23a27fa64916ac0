import os

# Path to the configuration file. Can be overriden for tests.
CONFIG_FILE_PATH = os.path.expanduser( '~/.oauthbridge' )

# Loopback listener constants.
LISTEN_HOST = '127.0.0.1'

# Maximum number of accepted connections before the listener gives up
# waiting for the callback and closes its socket.
DEFAULT_MAX_CONNECTIONS = 10

READ_CHUNK_SIZE = 4096

# Requests larger than this are truncated and handled as-is.
MAX_REQUEST_SIZE = 65536

HEADER_SEPARATOR = b'\r\n\r\n'

CALLBACK_PATH = '/callback'
FAVICON_PATH = '/favicon.ico'

# Name of the event the callback body is forwarded under.
CALLBACK_EVENT_NAME = 'oauth-callback'
CALLBACK_ACK_BODY = '{"ok":true}'

# OAuth-related constants
OAUTH_CALLBACK_TIMEOUT = 300  # 5 minutes
OAUTH_TOKEN_REFRESH_BUFFER = 300  # 5 minutes before expiry

SIGN_IN_MODES = ( 'popup', 'redirect' )

# Ephemeral credentials mode - when set, disables all config persistence to disk.
# Firebase configuration must then come from the OAUTHBRIDGE_* environment variables.
EPHEMERAL_CREDS_ENV_VAR = 'OAUTHBRIDGE_EPHEMERAL_CREDS'

API_KEY_ENV_VAR = 'OAUTHBRIDGE_API_KEY'
AUTH_DOMAIN_ENV_VAR = 'OAUTHBRIDGE_AUTH_DOMAIN'
PROJECT_ID_ENV_VAR = 'OAUTHBRIDGE_PROJECT_ID'
CURRENT_ENV_ENV_VAR = 'OAUTHBRIDGE_ENV'
