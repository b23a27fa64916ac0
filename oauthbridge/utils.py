import os
import yaml
import tempfile
import stat
import shutil

from .constants import CONFIG_FILE_PATH, EPHEMERAL_CREDS_ENV_VAR
from .constants import API_KEY_ENV_VAR, AUTH_DOMAIN_ENV_VAR, PROJECT_ID_ENV_VAR, CURRENT_ENV_ENV_VAR


class BridgeException ( Exception ):
    '''Exception type used for various errors in the OAuth bridge.'''

    def __init__(self, message, code=None):
        """
        Initialize the exception with a message and an optional status code.

        Args:
            message (str): The error message.
            code (int, optional): An optional status code returned by a remote API. Defaults to None.
        """
        super().__init__(message)
        self.code = code


class ConfigError( BridgeException ):
    '''Missing or invalid Firebase configuration.'''
    pass


def currentEnvironment( environment = None ):
    '''Resolve the environment name to use.

    Args:
        environment (str): explicit environment name, if any.

    Returns:
        the environment name, "default" if none is selected.
    '''
    if environment:
        return environment
    return os.environ.get( CURRENT_ENV_ENV_VAR, '' ) or 'default'


def loadConfig():
    """
    Load the configuration file.

    Returns:
        dict: Loaded configuration or None if file doesn't exist
    """
    # If ephemeral credentials mode is enabled, skip disk operations entirely
    if os.environ.get( EPHEMERAL_CREDS_ENV_VAR ):
        return None

    try:
        with open( CONFIG_FILE_PATH, 'rb' ) as f:
            return yaml.safe_load( f.read() )
    except FileNotFoundError:
        return None


def _getEnvironmentBlock( conf, environment ):
    if not conf:
        return {}
    if environment == 'default':
        # Default values are at the top of the config file.
        return conf
    return conf.get( 'env', {} ).get( environment, {} ) or {}


def getFirebaseConfig( environment = None ):
    '''Get the Firebase configuration for an environment.

    Values are acquired in the following order:
    1- OAUTHBRIDGE_API_KEY, OAUTHBRIDGE_AUTH_DOMAIN and OAUTHBRIDGE_PROJECT_ID environment variables.
    2- The "firebase" block of the environment in the config file.

    Args:
        environment (str): environment name, defaults to the current environment.

    Returns:
        dict with api_key, auth_domain, project_id and optional mode / login_page_path.
    '''
    environment = currentEnvironment( environment )
    block = _getEnvironmentBlock( loadConfig(), environment )
    firebase = dict( block.get( 'firebase', {} ) or {} )

    for key, envVar in ( ( 'api_key', API_KEY_ENV_VAR ),
                         ( 'auth_domain', AUTH_DOMAIN_ENV_VAR ),
                         ( 'project_id', PROJECT_ID_ENV_VAR ) ):
        value = os.environ.get( envVar, None )
        if value:
            firebase[ key ] = value

    return firebase


def getUser( environment = None ):
    '''Get the stored signed-in user of an environment, or None.'''
    environment = currentEnvironment( environment )
    block = _getEnvironmentBlock( loadConfig(), environment )
    return block.get( 'user', None )


def listEnvironments():
    '''List the environment names present in the config file.'''
    conf = loadConfig() or {}
    names = []
    if 'firebase' in conf or 'user' in conf:
        names.append( 'default' )
    names.extend( conf.get( 'env', {} ).keys() )
    return names


def writeConfig( environment, firebase = None, user = None ):
    """
    Securely write configuration to a file on disk.

    Args:
        environment (str): Environment name, "default" for the top level values.
        firebase (dict): Firebase configuration (api_key, auth_domain, project_id...).
        user (dict): Signed-in user summary (uid, tokens, expiry...).
    """
    # If ephemeral credentials mode is enabled, skip disk operations entirely
    if os.environ.get( EPHEMERAL_CREDS_ENV_VAR ):
        print( "Ephemeral credentials mode enabled - configuration will not be persisted to disk" )
        return

    conf = {}

    try:
        with open( CONFIG_FILE_PATH, 'rb' ) as f:
            conf = yaml.safe_load( f.read() )
    except FileNotFoundError:
        pass

    # Handle scenario where a file is empty
    conf = conf or {}

    if environment == "default" or environment is None:
        block = conf
    else:
        conf.setdefault( 'env', {} )
        block = conf[ 'env' ].setdefault( environment, {} )

    if firebase is not None:
        block.setdefault( 'firebase', {} )
        block[ 'firebase' ].update( { k : v for k, v in firebase.items() if v is not None } )
    if user is not None:
        block[ 'user' ] = user

    content = yaml.safe_dump( conf, default_flow_style = False ).encode()

    # For security reasons we first write it to a temporary file, chown + chmod it and
    # then move it to a final location. Without doing that, there is a potential race condition
    # with the file being written to and read from by another user (before we chmod it).
    fd, tmp_path = tempfile.mkstemp()

    # Set secure ownership and permissions on the temporary file.
    os.chown( tmp_path, os.getuid(), os.getgid() )
    os.chmod( tmp_path, stat.S_IWUSR | stat.S_IRUSR )  # 0o600

    try:
        try:
            os.write( fd, content )
        finally:
            os.close( fd )

        # Move is an atomic operation on unix.
        shutil.move( tmp_path, CONFIG_FILE_PATH )
    finally:
        if os.path.isfile( tmp_path ):
            os.unlink( tmp_path )

    print( "Configuration has been stored to: %s" % ( CONFIG_FILE_PATH, ) )
