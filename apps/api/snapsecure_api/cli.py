"""CLI commands for SnapSecure."""

import json
import sys

import click

from snapsecure_api.container import build_container
from snapsecure_api.db.session import create_session_factory, get_engine, init_db
from snapsecure_api.errors import SnapSecureError
from snapsecure_api.security.crypto import CryptoPrimitives
from snapsecure_api.settings import get_settings


def _container():
    engine = get_engine()
    return build_container(get_settings(), create_session_factory(engine))


@click.group()
def cli():
    """SnapSecure CLI."""
    pass


@cli.command("init-db")
def init_db_command():
    """Create database tables."""
    init_db(get_engine())
    click.echo("✓ Database tables created.")


@cli.command("verify-ledger")
def verify_ledger():
    """Recompute every ledger hash. Exits 1 on corruption."""
    try:
        report = _container().ledger.verify_all()
    except SnapSecureError as e:
        click.echo(f"✗ Verification failed: {e}", err=True)
        sys.exit(2)

    click.echo(json.dumps(report.to_dict(), indent=2))
    if not report.valid:
        click.echo("✗ Ledger integrity violated.", err=True)
        sys.exit(1)
    click.echo(f"✓ {report.entries_checked} entries verified.")


@cli.command("chain-stats")
def chain_stats():
    """Print ledger statistics."""
    click.echo(json.dumps(_container().audit.get_chain_stats().to_dict(), indent=2))


@cli.command()
def reconcile():
    """Rebuild missing security log rows from the ledger."""
    rebuilt = _container().audit.reconcile()
    click.echo(f"✓ Rebuilt {rebuilt} security log rows.")


@cli.command("generate-key")
def generate_key():
    """Print a random value for ENCRYPTION_KEY / MASTER_ENCRYPTION_KEY."""
    click.echo(CryptoPrimitives.generate_passphrase())


if __name__ == "__main__":
    cli()
