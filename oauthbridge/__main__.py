import sys
import traceback


def cli(args):
    """
    Command line interface for the OAuth bridge.

    Args:
        args (list): list of CLI arguments to parse.
    """
    import argparse

    from . import utils
    from .constants import DEFAULT_MAX_CONNECTIONS, OAUTH_CALLBACK_TIMEOUT, SIGN_IN_MODES

    parser = argparse.ArgumentParser( prog = 'oauthbridge' )
    parser.add_argument( 'action',
                         type = str,
                         help = 'management action, currently supported "version", "configure" (store Firebase configuration), "login" (sign in through the browser), "who" (show the signed-in user), "refresh" (refresh stored tokens), "use" (list environments), "serve" (run a bare callback listener)' )
    parser.add_argument( 'opt_arg',
                         type = str,
                         nargs = "?",
                         default = None,
                         help = 'optional argument depending on action' )

    # Hack around a bit so that we can pass the help
    # to the proper sub-command line.
    rootArgs = args[ 1: 2 ]

    # Everything after the command name and the action name that is passed
    # to the action argument parser.
    actionArgs = args[ 2: ]
    args = parser.parse_args( rootArgs )

    action = args.action.lower()

    if action == 'version':
        from . import __version__
        print( "OAuth bridge version %s" % ( __version__, ) )
    elif action == 'configure':
        parser = argparse.ArgumentParser( prog = 'oauthbridge configure' )
        parser.add_argument( '--api-key',
                             type = str,
                             required = True,
                             help = 'Firebase web API key' )
        parser.add_argument( '--auth-domain',
                             type = str,
                             default = None,
                             help = 'Firebase auth domain (e.g. my-project.firebaseapp.com)' )
        parser.add_argument( '--project-id',
                             type = str,
                             default = None,
                             help = 'Firebase project ID' )
        parser.add_argument( '--mode',
                             type = str,
                             choices = SIGN_IN_MODES,
                             default = None,
                             help = 'default sign-in mode of the login page' )
        parser.add_argument( '--login-page',
                             type = str,
                             default = None,
                             dest = 'login_page_path',
                             help = 'HTML file to serve instead of the bundled login page' )
        parser.add_argument( '--environment', '--env',
                             type = str,
                             default = None,
                             help = 'environment name (default: "default")' )
        args = parser.parse_args( actionArgs )

        utils.writeConfig( utils.currentEnvironment( args.environment ), firebase = {
            'api_key' : args.api_key,
            'auth_domain' : args.auth_domain,
            'project_id' : args.project_id,
            'mode' : args.mode,
            'login_page_path' : args.login_page_path,
        } )
    elif action == 'login':
        from .oauth_firebase_loopback import perform_loopback_firebase_auth

        parser = argparse.ArgumentParser( prog = 'oauthbridge login' )
        parser.add_argument( '--environment', '--env',
                             type = str,
                             default = None,
                             help = 'environment name (default: "default")' )
        parser.add_argument( '--no-browser',
                             action = 'store_true',
                             help = 'print URL instead of opening browser' )
        parser.add_argument( '--mode',
                             type = str,
                             choices = SIGN_IN_MODES,
                             default = None,
                             help = 'sign-in mode of the login page' )
        parser.add_argument( '--max-connections',
                             type = int,
                             default = DEFAULT_MAX_CONNECTIONS,
                             help = 'connections accepted before the listener gives up' )
        parser.add_argument( '--timeout',
                             type = float,
                             default = OAUTH_CALLBACK_TIMEOUT,
                             help = 'seconds to wait for the browser sign-in' )
        args = parser.parse_args( actionArgs )

        success = perform_loopback_firebase_auth(
            environment = args.environment,
            no_browser = args.no_browser,
            mode = args.mode,
            max_connections = args.max_connections,
            timeout = args.timeout
        )
        if not success:
            sys.exit( 1 )
    elif action == 'who':
        from .term_utils import printUser, prettyFormatDict

        parser = argparse.ArgumentParser( prog = 'oauthbridge who' )
        parser.add_argument( '--environment', '--env',
                             type = str,
                             default = None,
                             help = 'environment name (default: "default")' )
        parser.add_argument( '--json',
                             action = 'store_true',
                             help = 'output the stored user as JSON' )
        args = parser.parse_args( actionArgs )

        environment = utils.currentEnvironment( args.environment )
        user = utils.getUser( environment )
        if args.json:
            print( prettyFormatDict( user or {} ) )
        else:
            printUser( environment, user )
        if not user:
            sys.exit( 1 )
    elif action == 'refresh':
        from .oauth import OAuthManager

        parser = argparse.ArgumentParser( prog = 'oauthbridge refresh' )
        parser.add_argument( '--environment', '--env',
                             type = str,
                             default = None,
                             help = 'environment name (default: "default")' )
        parser.add_argument( '--force',
                             action = 'store_true',
                             help = 'refresh even if the current token is still valid' )
        args = parser.parse_args( actionArgs )

        environment = utils.currentEnvironment( args.environment )
        user = utils.getUser( environment )
        if not user:
            print( "Not signed in (environment: %s), use the login action first." % ( environment, ) )
            sys.exit( 1 )
        if not args.force and not OAuthManager.is_token_expired( user.get( 'expires_at' ) ):
            print( "Token is still valid." )
            return

        firebase = utils.getFirebaseConfig( environment )
        if not firebase.get( 'api_key' ):
            raise utils.ConfigError( "Firebase API key is not configured, run the 'configure' action first" )

        user.update( OAuthManager.refresh_token( user.get( 'refresh_token' ), firebase[ 'api_key' ] ) )
        utils.writeConfig( environment, user = user )
        print( "Token refreshed." )
    elif action == 'use':
        parser = argparse.ArgumentParser( prog = 'oauthbridge use' )
        args = parser.parse_args( actionArgs )
        print( "Current environment: %s\n" % ( utils.currentEnvironment(), ) )
        print( "Available environments:" )
        for env in utils.listEnvironments():
            print( env )
    elif action == 'serve':
        from .login_page import buildLoginUrl, getLoginPage
        from .oauth_server import OAuthCallbackServer

        parser = argparse.ArgumentParser( prog = 'oauthbridge serve' )
        parser.add_argument( '--environment', '--env',
                             type = str,
                             default = None,
                             help = 'environment whose Firebase configuration is put in the login URL' )
        parser.add_argument( '--max-connections',
                             type = int,
                             default = DEFAULT_MAX_CONNECTIONS,
                             help = 'connections accepted before the listener gives up' )
        parser.add_argument( '--timeout',
                             type = float,
                             default = None,
                             help = 'seconds before the listener gives up' )
        args = parser.parse_args( actionArgs )

        def _printCallback( event, payload ):
            print( "%s: %s" % ( event, payload ) )

        firebase = utils.getFirebaseConfig( args.environment )
        server = OAuthCallbackServer( on_callback = _printCallback,
                                      max_connections = args.max_connections,
                                      login_page = getLoginPage( firebase.get( 'login_page_path' ) ),
                                      timeout = args.timeout )
        port = server.start()
        print( "Listening on port %s" % ( port, ) )
        if firebase.get( 'api_key' ):
            print( "Login URL: %s" % ( buildLoginUrl( port, firebase ), ) )
        server.join()
        if not server.callback_received:
            print( "No callback received." )
            sys.exit( 1 )
    else:
        raise Exception( "unknown action: %s" % ( args.action, ) )


def main():
    args = sys.argv

    # Hack since we don't have access to parsed args here and parsing itself may fail
    debug_mode = False
    if "--debug" in args:
        debug_mode = True
        args.remove( "--debug" )
        from .oauth_server import set_default_print_debug_fn
        set_default_print_debug_fn( lambda x: print( x, file = sys.stderr ) )

    try:
        cli( args )
    except Exception as e:
        print( "Error:", e, file = sys.stderr )

        if debug_mode:
            print( traceback.format_exc(), file = sys.stderr )

        return 1

    return 0

if __name__ == "__main__":
    sys.exit( main() )
