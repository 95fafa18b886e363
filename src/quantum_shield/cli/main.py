# SPDX-License-Identifier: MPL-2.0
"""Main CLI entry point."""
import click

from quantum_shield.core.agility import (
    CryptoAgilityManager,
    migration_deadline,
    regulations_for,
)
from quantum_shield.core.models import LEGACY_STATE_ALIASES, CryptoState


@click.group()  # type: ignore[misc]
def cli() -> None:
    """Quantum Shield CLI."""


@cli.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    from quantum_shield import __version__

    click.echo(f"Quantum Shield v{__version__}")


@cli.command()  # type: ignore[misc]
@click.option("--signature-algorithm", default="ML-DSA-65", show_default=True)
@click.option("--kem-algorithm", default="ML-KEM-768", show_default=True)
def postures(signature_algorithm: str, kem_algorithm: str) -> None:
    """List crypto-agility postures with their suites and compliance flags."""
    manager = CryptoAgilityManager(
        CryptoState.CLASSICAL_ONLY, signature_algorithm, kem_algorithm
    )
    for state in CryptoState:
        suite = manager.suite_for(state)
        regulations = regulations_for(state)
        passed = [name for name, ok in regulations.items() if ok]
        click.echo(f"{state.value}")
        click.echo(f"  signature:   {suite.signature_algorithm}")
        click.echo(f"  kem:         {suite.kem_algorithm}")
        click.echo(f"  compliant:   {'yes' if all(regulations.values()) else 'no'}")
        click.echo(f"  regulations: {', '.join(passed) or 'none'}")
        click.echo(f"  deadline:    {migration_deadline(state) or '-'}")
    aliases = ", ".join(f"{old}={new.value}" for old, new in LEGACY_STATE_ALIASES.items())
    click.echo(f"Legacy names: {aliases}")


@cli.command()  # type: ignore[misc]
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(host: str, port: int, reload: bool) -> None:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    uvicorn.run("quantum_shield.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    cli()
