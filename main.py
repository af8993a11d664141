#!/usr/bin/env python3
"""
Sales Back-Office — CLI entry point.

Usage examples:
  python main.py init-db                            # Create the SQLite schema
  python main.py check                              # Verify database, storage, classifier
  python main.py scope <company-id>                 # Show the tenant scope a company resolves to
  python main.py next-number invoice                # Preview the next invoice number
  python main.py next-number quote --year 2025
  python main.py recalculate                        # Report documents whose stored totals drifted
  python main.py recalculate --type invoice
  python main.py jobs --limit 50                    # List pending background jobs
"""
import logging
import sys
from pathlib import Path

import click

from backoffice.classifier import LLMClassifier
from backoffice.database import Database
from backoffice.errors import BackofficeError
from backoffice.jobs import JobQueue
from backoffice.numbering import SEQUENCES, NumberGenerator
from backoffice.sales_service import SalesService
from backoffice.tenant import TenantResolver
from config import Config


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )
    # Quieten noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def _config(ctx: click.Context) -> Config:
    config = Config()
    if ctx.obj.get("db"):
        config.db_path = Path(ctx.obj["db"])
    return config


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--db", default=None, type=click.Path(dir_okay=False), help="SQLite database path")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, db: str | None) -> None:
    """Sales Back-Office — invoices, quotes, delivery notes, and the document vault."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["db"] = db
    _setup_logging(verbose)


# --------------------------------------------------------------------
# init-db command
# --------------------------------------------------------------------

@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database schema (idempotent)."""
    config = _config(ctx)
    try:
        Database(config.db_path)
    except BackofficeError as e:
        click.echo(f"✗ Could not initialise {config.db_path}: {e}", err=True)
        sys.exit(1)
    click.echo(f"✓ Database ready: {config.db_path}")


# --------------------------------------------------------------------
# check command
# --------------------------------------------------------------------

@cli.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that the database, file storage, and classifier are ready."""
    config = _config(ctx)

    click.echo("\n=== Back-Office Setup Check ===\n")

    try:
        db = Database(config.db_path)
        counts = {
            t: db.fetch_value(f"SELECT COUNT(*) FROM {t}", default=0)
            for t in ("invoices", "quotes", "delivery_notes", "documents")
        }
        click.echo(f"  Database:      ✓  {config.db_path}")
        for table, n in counts.items():
            click.echo(f"     {table:<16} {n}")
    except BackofficeError as e:
        click.echo(f"  Database:      ✗  {config.db_path} ({e})")

    click.echo()
    tick = "✓" if config.storage_dir.exists() else "✗"
    click.echo(f"  Storage dir:   {tick}  {config.storage_dir}")

    click.echo()
    if not config.classifier_enabled:
        click.echo("  Classifier:    disabled (titles derived from file names)")
    else:
        status = LLMClassifier.from_config(config).check_connection()
        click.echo(f"  LLM endpoint:  {config.llm_base_url}")
        if status["ok"]:
            model_status = "✓ available" if status.get("model_available") else "✗ NOT found"
            click.echo(f"  Model '{config.llm_model}':  {model_status}")
        else:
            click.echo(f"  Classifier:    ✗ NOT reachable ({status.get('error')})")
            click.echo("  → Check LLM_BASE_URL, LLM_API_KEY in your .env")
    click.echo()


# --------------------------------------------------------------------
# scope command
# --------------------------------------------------------------------

@cli.command()
@click.argument("company_id")
@click.pass_context
def scope(ctx: click.Context, company_id: str) -> None:
    """Show the tenant scope COMPANY_ID resolves to."""
    resolver = TenantResolver(Database(_config(ctx).db_path))
    resolved = resolver.resolve(company_id)
    source = "company fallback" if resolved == company_id else "tenant"
    click.echo(f"{company_id} → {resolved}  ({source})")


# --------------------------------------------------------------------
# next-number command
# --------------------------------------------------------------------

@cli.command("next-number")
@click.argument("doc_type", type=click.Choice(sorted(SEQUENCES)))
@click.option("--year", type=int, default=None, help="Year (default: current UTC year)")
@click.pass_context
def next_number(ctx: click.Context, doc_type: str, year: int | None) -> None:
    """Preview the next number for DOC_TYPE without reserving it."""
    config = _config(ctx)
    generator = NumberGenerator(Database(config.db_path), SEQUENCES[doc_type], config.number_fetch_limit)
    click.echo(generator.next_number(year))


# --------------------------------------------------------------------
# recalculate command
# --------------------------------------------------------------------

@cli.command()
@click.option("--type", "doc_type", type=click.Choice(sorted(SEQUENCES)), default=None,
              help="Only check one document type")
@click.pass_context
def recalculate(ctx: click.Context, doc_type: str | None) -> None:
    """Report documents whose stored totals differ from the recomputed ones."""
    config = _config(ctx)
    service = SalesService(Database(config.db_path), config)
    drift = service.recalculate([doc_type] if doc_type else None)

    if not drift:
        click.echo("✓ All stored totals match their line items")
        return

    click.echo(f"✗ {len(drift)} document(s) with drifted totals:")
    for d in drift:
        click.echo(
            f"   {d['document_type']:<14} {d['number']:<18} "
            f"stored {d['stored_total']:.2f}  computed {d['computed_total']:.2f}  "
            f"({', '.join(d['fields'])})"
        )
    sys.exit(1)


# --------------------------------------------------------------------
# jobs command
# --------------------------------------------------------------------

@cli.command()
@click.option("--limit", default=20, show_default=True, type=int, help="Maximum jobs to list")
@click.pass_context
def jobs(ctx: click.Context, limit: int) -> None:
    """List pending background jobs (emails, document processing)."""
    queue = JobQueue(Database(_config(ctx).db_path))
    pending = queue.pending(limit)
    stats = queue.stats()
    click.echo(
        "Jobs: " + (", ".join(f"{k}={v}" for k, v in sorted(stats.items())) or "none")
    )
    for job in pending:
        click.echo(f"  {job['created_at']}  {job['job_type']:<18} {job['status']:<8} {job['id']}")


if __name__ == "__main__":
    cli()
