import typer

from phiguard.core.database import create_db_and_tables, create_db_engine, make_session_factory
from phiguard.core.errors import ConfigurationFailure
from phiguard.core.crypto import FieldCipher
from phiguard.core.logging import configure_logging
from phiguard.core.settings import settings
from phiguard.auth.refresh import RefreshTokenStore
from phiguard.maintenance.tasks import purge_expired_refresh_tokens, reencrypt_legacy_values

app = typer.Typer(help="Security maintenance commands (run from cron or by hand)")


def _session_factory():
    configure_logging(settings.LOG_LEVEL, json_output=settings.LOG_JSON or settings.is_production)
    engine = create_db_engine(settings.DATABASE_URL)
    create_db_and_tables(engine)
    return make_session_factory(engine)


@app.command("purge-tokens")
def purge_tokens():
    """
    Delete refresh tokens that are expired or revoked.
    """
    deleted = purge_expired_refresh_tokens(_session_factory(), RefreshTokenStore.from_settings(settings))
    typer.echo(f"Purged {deleted} refresh token(s).")


@app.command("reencrypt")
def reencrypt():
    """
    Encrypt protected patient and clinical record values still stored as legacy plaintext.
    """
    try:
        cipher = FieldCipher.from_settings(settings)
    except ConfigurationFailure as exc:
        typer.echo(f"Configuration error: {exc.message}")
        raise typer.Exit(code=1)

    changed = reencrypt_legacy_values(_session_factory(), cipher)
    typer.echo(f"Re-encrypted {changed} record(s).")
