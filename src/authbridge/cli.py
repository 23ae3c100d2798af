"""AuthBridge CLI tools using Cyclopts."""

import importlib.metadata
import platform
import sys
from pathlib import Path
from typing import Annotated

import anyio
import cyclopts
import httpx
from rich.console import Console
from rich.table import Table

import authbridge
from authbridge.exceptions import AuthBridgeError
from authbridge.utilities.logging import get_logger

logger = get_logger("cli")
console = Console()

app = cyclopts.App(
    name="authbridge",
    help="AuthBridge - PKCE credential exchange between an OAuth2 server and an identity provider.",
    version=authbridge.__version__,
)


@app.command
def version():
    """Display version information and platform details."""
    info = {
        "AuthBridge version": authbridge.__version__,
        "Authlib version": importlib.metadata.version("authlib"),
        "Python version": platform.python_version(),
        "Platform": platform.platform(),
        "AuthBridge root path": Path(authbridge.__file__).resolve().parents[1],
    }

    g = Table.grid(padding=(0, 1))
    g.add_column(style="bold", justify="left")
    g.add_column(style="cyan", justify="right")
    for k, v in info.items():
        g.add_row(k + ":", str(v).replace("\n", " "))
    console.print(g)


@app.command
def run(
    *,
    host: Annotated[
        str | None,
        cyclopts.Parameter("--host", help="Host to bind to"),
    ] = None,
    port: Annotated[
        int | None,
        cyclopts.Parameter("--port", help="Port to bind to"),
    ] = None,
    log_level: Annotated[
        str | None,
        cyclopts.Parameter("--log-level", help="Log level for the server"),
    ] = None,
) -> None:
    """Serve the bridge with uvicorn."""
    import uvicorn

    from authbridge.bridge import Bridge
    from authbridge.server.app import create_app

    settings = authbridge.settings
    try:
        bridge = Bridge.from_settings(settings)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(1)

    uvicorn.run(
        create_app(bridge),
        host=host or settings.host,
        port=port or settings.port,
        log_level=(log_level or settings.log_level).lower(),
    )


@app.command(name="validate-token")
def validate_token(
    token: str,
    *,
    show_keys: Annotated[
        bool,
        cyclopts.Parameter(
            "--show-keys",
            help="List the keys of the verifying key set",
            negative="",
        ),
    ] = False,
) -> None:
    """Verify a bearer credential and print its claims.

    Args:
        token: The credential to verify
    """
    from authbridge.bridge import Bridge

    async def _validate() -> int:
        bridge = Bridge.from_settings(authbridge.settings)
        try:
            if show_keys:
                key_set = await bridge.signer.get_public_key_set()
                keys = Table("kid", "kty", "alg", "use", title="Key set")
                for key in key_set.get("keys", []):
                    keys.add_row(
                        *(str(key.get(f, "")) for f in ("kid", "kty", "alg", "use"))
                    )
                console.print(keys)

            try:
                claims = await bridge.signer.verify(token)
            except AuthBridgeError as e:
                console.print(f"[bold red]Invalid token:[/bold red] {e}")
                return 1

            table = Table.grid(padding=(0, 1))
            table.add_column(style="bold", justify="left")
            table.add_column(style="cyan", justify="left")
            for k, v in claims.model_dump(exclude_none=True).items():
                table.add_row(k + ":", str(v))
            console.print("[green]✓[/green] Token is valid")
            console.print(table)
            return 0
        finally:
            await bridge.aclose()

    try:
        code = anyio.run(_validate)
    except (AuthBridgeError, httpx.HTTPError, ValueError) as e:
        logger.error("Token validation failed: %s", e)
        sys.exit(1)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    app()
