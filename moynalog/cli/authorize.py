import logging
from typing import Optional

import typer

from moynalog import NalogApi, NalogApiError

app = typer.Typer(help="Log in to Moy Nalog by phone and save the session")


@app.command()
def authorize(
    phone: str = typer.Option(..., "--phone", "-p", prompt="Phone number (e.g. +7 999 123-45-67)"),
    path: str = typer.Option("session-token.json", "--path", help="Where to save the session"),
    secret: Optional[str] = typer.Option(None, "--secret", envvar="MOYNALOG_TOKEN_SECRET", help="Encrypt the session file"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    api = NalogApi(save_token=True, save_token_path=path, token_secret=secret, debug=verbose)

    typer.echo("Sending SMS code...")
    try:
        challenge_token = api.request_sms_code(phone)
    except NalogApiError as exc:
        typer.echo(f"Failed to send SMS: {exc}", err=True)
        raise typer.Exit(code=1)

    code = typer.prompt("Code from SMS").strip()
    if not code:
        typer.echo("No code entered", err=True)
        raise typer.Exit(code=1)

    try:
        result = api.auth_by_phone(phone, challenge_token, code)
    except NalogApiError as exc:
        typer.echo(f"Authorization failed: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo("Authorized.")
    typer.echo(f"  INN: {(result.profile and result.profile.inn) or api.get_inn()}")
    if result.profile and result.profile.display_name:
        typer.echo(f"  Name: {result.profile.display_name}")
    typer.echo(f"  Session saved to: {path}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
