"""Console front-end for a launch.

Pattern: Prompt Renderer
-------------------------
The CLI is the player-facing boundary.  It handles three responsibilities:

  1. **Wiring**: build the session store, token chain, interactive login and
     launcher from one ``LauncherConfig``.
  2. **Login prompt**: show the sign-in URL in case the browser does not open,
     then a summary of the session the launch will use (never its tokens).
  3. **Outcome**: report configuration and authentication failures plainly
     and turn them into a non-zero exit status.

Rich is used for display.  The CLI knows nothing about the token chain's
stages or the namespace internals; it delegates everything to the launcher.
"""

from __future__ import annotations

import datetime
import logging

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from aurora_launcher.auth.session import CredentialBundle
from aurora_launcher.auth.session_manager import InteractiveLogin, SessionManager
from aurora_launcher.auth.session_store import SessionStore, SessionStoreError
from aurora_launcher.auth.token_chain import AuthError, ChainEndpoints, TokenChainClient
from aurora_launcher.config import AuthSettings, ConfigurationError, LauncherConfig
from aurora_launcher.launch.orchestrator import LAUNCHER_VERSION, Launcher

logger = logging.getLogger(__name__)
console = Console()


def _print_banner(config: LauncherConfig) -> None:
    console.print(
        Panel(
            f"[bold]Aurora Launcher[/bold] {LAUNCHER_VERSION}\n"
            f"Client version [bold]{config.version}[/bold] from {config.install_dir}",
            border_style="blue",
        )
    )


def _show_login_url(url: str) -> None:
    console.print("\n[bold yellow]Sign in[/bold yellow] (a browser window should open)\n")
    console.print(f"  If it does not, open this URL:\n  [link={url}]{url}[/link]\n")


def _print_session_summary(bundle: CredentialBundle) -> None:
    expires = datetime.datetime.fromtimestamp(bundle.expires_at, tz=datetime.timezone.utc)
    table = Table(title="Session")
    table.add_column("Player", style="bold")
    table.add_column("UUID", style="cyan")
    table.add_column("Expires (UTC)", style="green")
    table.add_row(bundle.username, bundle.account_id, expires.strftime("%Y-%m-%d %H:%M:%S"))
    console.print(table)


def _chain_endpoints(auth: AuthSettings) -> ChainEndpoints:
    return ChainEndpoints(
        token_url=auth.token_url,
        federation_url=auth.federation_url,
        security_token_url=auth.security_token_url,
        client_auth_url=auth.client_auth_url,
        profile_url=auth.profile_url,
    )


def run_cli(config: LauncherConfig) -> int:
    """Launch the client; return the process exit status."""
    _print_banner(config)

    store = SessionStore(config.session_file)
    login = InteractiveLogin(config.auth, notify=_show_login_url)

    with TokenChainClient(
        client_id=config.auth.client_id,
        redirect_uri=config.auth.redirect_uri,
        http_client=httpx.Client(),
        endpoints=_chain_endpoints(config.auth),
    ) as chain:
        launcher = Launcher(config, SessionManager(store, chain, login), on_session=_print_session_summary)
        try:
            launched = launcher.launch()
        except ConfigurationError as exc:
            console.print(f"[red]Configuration error:[/red] {exc}")
            return 1
        except AuthError as exc:
            console.print(f"[red]Authentication failed[/red] at stage [bold]{exc.stage.value}[/bold]: {exc}")
            return 1
        except SessionStoreError as exc:
            console.print(f"[red]Could not save session:[/red] {exc}")
            return 1

    if not launched:
        console.print("[red]The client failed to start; see the log for the traceback.[/red]")
    else:
        console.print("\n[dim]Client exited.[/dim]")
    return 0
