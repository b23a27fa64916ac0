import os
import sys
import time

from pygments import highlight, lexers, formatters
from rich.console import Console
from tabulate import tabulate

from . import json_utils

# Tokens are only shown truncated to this many characters.
TOKEN_PREVIEW_LENGTH = 12


def getConsole():
    return Console()


def _previewToken(token):
    if not token:
        return '-'
    if len(token) <= TOKEN_PREVIEW_LENGTH:
        return token
    return token[:TOKEN_PREVIEW_LENGTH] + '...'


def formatUserTable(environment: str, user: dict) -> str:
    """
    Format a stored user as a two-column table, for example:

    +--------------+--------------------+
    | environment  | default            |
    | uid          | abc                |
    ...
    """
    expires_at = user.get('expires_at')
    if expires_at:
        expiry = time.strftime('%Y-%m-%d %H:%M:%S UTC', time.gmtime(int(expires_at)))
    else:
        expiry = '-'

    rows = [
        ['environment', environment],
        ['uid', user.get('uid') or '-'],
        ['email', user.get('email') or '-'],
        ['display name', user.get('display_name') or '-'],
        ['id token', _previewToken(user.get('id_token'))],
        ['refresh token', _previewToken(user.get('refresh_token'))],
        ['expires', expiry],
    ]
    return tabulate(rows, tablefmt="grid")


def printUser(environment: str, user: dict) -> None:
    console = getConsole()

    if not user:
        console.print(f"[bold red]Not signed in (environment: {environment}).[/bold red]")
        return

    console.print("[bold cyan]Signed-in user[/bold cyan]\n")
    print(formatUserTable(environment, user))


def useColors(stream=None) -> bool:
    """Return True if ANSI colors should be written to the stream (stdout by default)."""
    stream = stream if stream is not None else sys.stdout
    if not stream.isatty():
        return False
    if "NO_COLOR" in os.environ:
        return False
    return os.environ.get("TERM", "") != "dumb"


def prettyFormatDict(data: dict, use_colors: bool = None) -> str:
    """
    Render a stored record as sorted, two-space indented JSON.

    :param data: The record to render.
    :param use_colors: Highlight with pygments; None decides from the terminal.
    :return: The rendered string.
    """
    formatted = json_utils.dumps(data, indent=2, sort_keys=True)
    if use_colors is None:
        use_colors = useColors()
    if not use_colors:
        return formatted
    return highlight(formatted, lexers.JsonLexer(), formatters.TerminalFormatter())
