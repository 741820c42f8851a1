"""
Command-line interface for the bank statement reconciliation engine.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional
import logging
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .adapters.csv_source import CsvSnapshotLoader
from .adapters.memory import InMemoryCandidateSource, RecordingLedgerPoster
from .config import ReconConfig, generate_default_config, load_config
from .matching.engine import SuggestionEngine
from .models.candidate import ScoreBand, ScoredCandidate
from .models.transaction import Direction, parse_direction
from .reports.excel_generator import ExcelReportGenerator
from .reports.summary import ReconciliationSummary
from .service import ReconciliationService
from .utils.exceptions import ReconciliationError
from .utils.logging_config import setup_logging

console = Console()

BAND_STYLES = {
    ScoreBand.HIGH: "green",
    ScoreBand.MEDIUM: "yellow",
    ScoreBand.LOW: "red",
}

config_option = click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
verbose_option = click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")


@click.group()
@click.version_option(version=__version__)
def main():
    """Bank Statement Reconciliation Engine."""
    pass


def _prepare(config: Optional[Path], verbose: bool) -> ReconConfig:
    recon_config = load_config(config)
    level = (
        logging.DEBUG
        if verbose
        else getattr(logging, recon_config.logging.level.upper(), logging.INFO)
    )
    log_file = Path(recon_config.logging.file) if recon_config.logging.file else None
    setup_logging(level, log_file=log_file, log_format=recon_config.logging.format)
    return recon_config


def _build_service(
    recon_config: ReconConfig,
    transactions_file: Path,
    candidates_file: Optional[Path] = None,
) -> ReconciliationService:
    loader = CsvSnapshotLoader(recon_config)
    repository = loader.load_repository(transactions_file)
    candidates = (
        loader.load_candidates(candidates_file) if candidates_file else InMemoryCandidateSource()
    )
    return ReconciliationService(
        repository, candidates, RecordingLedgerPoster(), config=recon_config
    )


def _fail(e: Exception, verbose: bool) -> None:
    console.print(f"[red]Error: {escape(str(e))}[/red]")
    if verbose:
        console.print_exception()
    sys.exit(1)


@main.command()
@click.argument("transactions_file", type=click.Path(exists=True, path_type=Path))
@click.argument("candidates_file", type=click.Path(exists=True, path_type=Path))
@click.option("-t", "--transaction-id", help="Only this bank transaction")
@click.option("--tolerance", type=float, default=None, help="Override amount tolerance")
@click.option("-n", "--max-results", type=int, default=None, help="Suggestions per transaction")
@config_option
@verbose_option
def suggest(
    transactions_file: Path,
    candidates_file: Path,
    transaction_id: Optional[str],
    tolerance: Optional[float],
    max_results: Optional[int],
    config: Optional[Path],
    verbose: bool,
):
    """
    Show ranked reconciliation suggestions.

    TRANSACTIONS_FILE: CSV snapshot of bank transactions
    CANDIDATES_FILE: CSV snapshot of candidate records
    """
    try:
        recon_config = _prepare(config, verbose)
        service = _build_service(recon_config, transactions_file, candidates_file)
        tolerance_value = Decimal(str(tolerance)) if tolerance is not None else None

        if transaction_id:
            targets = [service.transactions.get(transaction_id)]
        else:
            targets = [
                t for t in service.transactions.all() if not t.is_reconciled and not t.is_paired
            ]

        for txn in targets:
            ranked = service.get_suggestions(txn.id, tolerance_value, max_results)
            _display_suggestions(txn.id, f"₹{txn.amount:,.2f} {txn.direction.value}", ranked)

    except ReconciliationError as e:
        _fail(e, verbose)


@main.command()
@click.argument("candidates_file", type=click.Path(exists=True, path_type=Path))
@click.argument("query", default="")
@click.option("--amount", type=float, default=None, help="Amount hint (searches ±20%)")
@click.option("--company", default=None, help="Company id")
@click.option(
    "--direction",
    type=click.Choice([d.value for d in Direction]),
    default=None,
    help="Restrict to credit or debit candidates",
)
@click.option("-n", "--max-results", type=int, default=None)
@config_option
@verbose_option
def search(
    candidates_file: Path,
    query: str,
    amount: Optional[float],
    company: Optional[str],
    direction: Optional[str],
    max_results: Optional[int],
    config: Optional[Path],
    verbose: bool,
):
    """
    Free-text search over candidate records.

    CANDIDATES_FILE: CSV snapshot of candidate records
    QUERY: Text to look for in names, references and descriptions
    """
    try:
        recon_config = _prepare(config, verbose)
        loader = CsvSnapshotLoader(recon_config)
        candidates = loader.load_candidates(candidates_file)
        engine = SuggestionEngine(candidates, recon_config)
        results = engine.search(
            query,
            Decimal(str(amount)) if amount is not None else None,
            company,
            parse_direction(direction) if direction else None,
            max_results,
        )

        table = Table(title=f"Candidates matching {query!r}")
        table.add_column("Type")
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("Date")
        table.add_column("Amount", justify="right")
        table.add_column("Reference")

        for candidate in results:
            table.add_row(
                candidate.reconciled_type,
                candidate.candidate_id,
                candidate.display_name,
                str(candidate.candidate_date or "-"),
                f"₹{candidate.amount:,.2f}",
                candidate.reference_number or "-",
            )

        console.print(table)
        console.print(f"\nTotal candidates: {len(results)}")

    except ReconciliationError as e:
        _fail(e, verbose)


@main.command("detect-reversal")
@click.argument("transactions_file", type=click.Path(exists=True, path_type=Path))
@click.option("-t", "--transaction-id", help="Check a single transaction")
@click.option("--account", default=None, help="Bank account id")
@click.option("--max-days-back", type=int, default=None, help="Lookback for originals")
@config_option
@verbose_option
def detect_reversal(
    transactions_file: Path,
    transaction_id: Optional[str],
    account: Optional[str],
    max_days_back: Optional[int],
    config: Optional[Path],
    verbose: bool,
):
    """
    Detect reversal credits and list their likely originals.

    TRANSACTIONS_FILE: CSV snapshot of bank transactions
    """
    try:
        recon_config = _prepare(config, verbose)
        service = _build_service(recon_config, transactions_file)

        if transaction_id:
            targets = [service.transactions.get(transaction_id)]
        else:
            targets = service.unpaired_reversals(account)
            console.print(f"Unpaired reversals: {len(targets)}")

        for txn in targets:
            detection = service.detect_reversal(txn.id)
            if not detection.is_reversal:
                console.print(f"[yellow]{txn.id}: not a reversal[/yellow]")
                continue

            console.print(
                f"\n[bold]{txn.id}[/bold] {txn.description} "
                f"(pattern {detection.detected_pattern or 'bank flag'}, "
                f"confidence {detection.confidence}%)"
            )
            if detection.extracted_original_reference:
                console.print(f"Original reference: {detection.extracted_original_reference}")

            originals = detection.suggested_originals
            if max_days_back is not None:
                originals = service.find_potential_originals(txn.id, max_days_back=max_days_back)
            _display_suggestions(txn.id, f"₹{txn.amount:,.2f} credit", originals)

    except ReconciliationError as e:
        _fail(e, verbose)


@main.command("auto-reconcile")
@click.argument("transactions_file", type=click.Path(exists=True, path_type=Path))
@click.argument("candidates_file", type=click.Path(exists=True, path_type=Path))
@click.option("--account", required=True, help="Bank account id")
@click.option("--min-score", type=float, default=None, help="Minimum match score to commit")
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Also write an Excel report")
@config_option
@verbose_option
def auto_reconcile(
    transactions_file: Path,
    candidates_file: Path,
    account: str,
    min_score: Optional[float],
    output: Optional[Path],
    config: Optional[Path],
    verbose: bool,
):
    """
    Commit confident, unambiguous matches for an account.

    TRANSACTIONS_FILE: CSV snapshot of bank transactions
    CANDIDATES_FILE: CSV snapshot of candidate records
    """
    try:
        recon_config = _prepare(config, verbose)
        service = _build_service(recon_config, transactions_file, candidates_file)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Auto-reconciling...", total=None)
            records = service.auto_reconcile(account, min_score)
            progress.update(task, completed=True)

        table = Table(title="Auto-reconciled")
        table.add_column("Transaction")
        table.add_column("Type")
        table.add_column("Record")
        for record in records:
            table.add_row(record.transaction_id, record.reconciled_type, record.reconciled_id)
        console.print(table)

        summary = service.summarize(account)
        _display_summary(summary)

        if output is not None:
            path = _write_report(service, recon_config, account, summary, output)
            console.print(f"\n[green]Report generated: {path}[/green]")

    except ReconciliationError as e:
        _fail(e, verbose)


@main.command()
@click.argument("transactions_file", type=click.Path(exists=True, path_type=Path))
@click.argument("candidates_file", type=click.Path(exists=True, path_type=Path))
@click.option("--account", required=True, help="Bank account id")
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Output Excel file path")
@click.option("--dry-run", is_flag=True, help="Show summary without generating report")
@config_option
@verbose_option
def report(
    transactions_file: Path,
    candidates_file: Path,
    account: str,
    output: Optional[Path],
    dry_run: bool,
    config: Optional[Path],
    verbose: bool,
):
    """
    Summarize reconciliation status and write an Excel report.

    TRANSACTIONS_FILE: CSV snapshot of bank transactions
    CANDIDATES_FILE: CSV snapshot of candidate records
    """
    try:
        recon_config = _prepare(config, verbose)
        service = _build_service(recon_config, transactions_file, candidates_file)
        summary = service.summarize(account)
        _display_summary(summary)

        if dry_run:
            console.print("\n[yellow]Dry run - no report generated[/yellow]")
            return

        path = _write_report(service, recon_config, account, summary, output)
        console.print(f"\n[green]Report generated: {path}[/green]")

    except ReconciliationError as e:
        _fail(e, verbose)


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


def _write_report(
    service: ReconciliationService,
    recon_config: ReconConfig,
    account: str,
    summary: ReconciliationSummary,
    output: Optional[Path],
) -> Path:
    if output is None:
        now = datetime.now()
        output = Path(
            recon_config.output.excel.filename_template.format(
                date=now.strftime("%Y%m%d"), time=now.strftime("%H%M%S")
            )
        )

    transactions = {t.id: t for t in service.transactions.list_for_account(account)}
    generator = ExcelReportGenerator(recon_config)
    return generator.generate_report(
        summary=summary,
        suggestions=service.bulk_suggestions(account),
        records=service.ledger.records(),
        pairs=service.reversals.pairs(),
        output_path=output,
        transactions=transactions,
    )


def _display_suggestions(transaction_id: str, label: str, ranked: list[ScoredCandidate]) -> None:
    """Display ranked candidates for one transaction."""
    table = Table(title=f"{transaction_id} ({label})")
    table.add_column("#", justify="right")
    table.add_column("Type")
    table.add_column("Candidate")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Score", justify="right")
    table.add_column("Reason")

    for rank, scored in enumerate(ranked, start=1):
        candidate = scored.candidate
        style = BAND_STYLES[scored.band]
        table.add_row(
            str(rank),
            candidate.reconciled_type,
            f"{candidate.candidate_id} {candidate.display_name}",
            str(candidate.candidate_date or "-"),
            f"₹{candidate.amount:,.2f}",
            f"[{style}]{scored.score:.2f}[/{style}]",
            scored.match_reason,
        )

    if ranked:
        console.print(table)
    else:
        console.print(f"[yellow]{transaction_id}: no matches found[/yellow]")


def _display_summary(summary: ReconciliationSummary) -> None:
    """Display reconciliation summary in console."""
    table = Table(title="Reconciliation Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Total Transactions", str(summary.total_count))
    table.add_row("Reconciled", str(summary.reconciled_count))
    table.add_row("Unreconciled", str(summary.unreconciled_count))
    table.add_row("Paired Reversals", str(summary.paired_reversal_count))
    table.add_row("Reconciliation %", f"{summary.reconciliation_percentage:.1f}%")
    table.add_row("Total Credits", f"₹{summary.total_credits:,.2f}")
    table.add_row("Total Debits", f"₹{summary.total_debits:,.2f}")
    table.add_row("Net Change", f"₹{summary.net_change:,.2f}")
    for kind, amount in sorted(summary.difference_totals.items()):
        table.add_row(f"Difference: {kind}", f"₹{amount:,.2f}")
    if summary.tds_by_section:
        table.add_row("Total TDS", f"₹{summary.total_tds:,.2f}")

    console.print(table)


if __name__ == "__main__":
    main()
