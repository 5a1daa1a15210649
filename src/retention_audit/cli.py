"""CLI interface using Typer and Rich."""

from datetime import timedelta
from functools import partial
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from retention_audit.auditor import (
    AuditAbortedError,
    AuditOptions,
    AuditReport,
    ResumeMismatchError,
    RetentionAudit,
)
from retention_audit.config import AppConfig, load_app_config
from retention_audit.models import AuditSummary
from retention_audit.orchestrator import MAX_CONCURRENCY, RECOMMENDED_MAX_CONCURRENCY
from retention_audit.progress import ProgressFileError, ProgressStore
from retention_audit.providers.base import CloudStorageError, StorageProvider
from retention_audit.providers.factory import (
    SUPPORTED_PROVIDERS,
    build_provider,
    load_provider_config,
)
from retention_audit.results import ResultsFileError
from retention_audit.utils.logging import configure_logging, get_logger
from retention_audit.utils.rate_limiter import RateLimiter
from retention_audit.utils.retry import RetryPolicy
from retention_audit.utils.validators import compile_regex, matches_regex

app = typer.Typer(help="Storage Retention Audit Tool")
console = Console()


def create_provider(
    provider_name: str, account_id: str, rate_limiter: RateLimiter
) -> StorageProvider:
    """Create provider instance based on name.

    Args:
        provider_name: Provider name ('azure', 'tencent' or 'aliyun').
        account_id: Storage account identifier.
        rate_limiter: Limiter shared by every provider of the run.

    Returns:
        Configured provider instance.

    Raises:
        typer.Exit: If the provider is unknown or configuration is invalid.
    """
    try:
        return build_provider(provider_name, account_id, rate_limiter)
    except ValidationError as e:
        console.print(f"[red]Configuration error:[/red]\n{e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def check_provider_config(provider_name: str) -> None:
    """Validate provider configuration without building a client or credential.

    Raises:
        typer.Exit: If the provider is unknown or configuration is invalid.
    """
    try:
        load_provider_config(provider_name)
    except ValidationError as e:
        console.print(f"[red]Configuration error:[/red]\n{e}")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)


def build_options(
    app_config: AppConfig,
    account: str,
    retention_days: int,
    provider: str,
    resource_group: Optional[str],
    output_path: Path,
    concurrency: int,
    timeout_minutes: Optional[float],
    resume: bool,
    container_pattern: Optional[str],
) -> AuditOptions:
    """Combine command line arguments with environment configuration."""
    return AuditOptions(
        account_id=account,
        retention_days=retention_days,
        provider_name=provider,
        resource_group=resource_group,
        output_dir=output_path,
        concurrency=concurrency,
        timeout_minutes=timeout_minutes,
        resume=resume,
        container_pattern=container_pattern,
        cost_per_gb_month=app_config.cost_per_gb_month,
        retry_policy=RetryPolicy(
            max_attempts=app_config.max_attempts,
            delay=app_config.retry_delay,
            retry_auth_errors=app_config.retry_auth_errors,
        ),
        credential_threshold=timedelta(minutes=app_config.credential_threshold_minutes),
        lock_timeout=app_config.lock_timeout,
        concurrency_warn_delay=app_config.concurrency_warn_delay,
        top_n=app_config.top_n,
    )


def display_summary(summary: AuditSummary, retention_days: int, top_n: int = 5) -> None:
    """Display the run summary and the largest deletion candidates."""
    fmt = AuditSummary.format_size

    console.print(f"\n[bold]Retention audit summary ({retention_days} days)[/bold]\n")
    console.print(f"[cyan]Containers with objects:[/cyan] {summary.container_count}")
    console.print(f"[cyan]Total objects:[/cyan] {summary.total_count:,} ({fmt(summary.total_size)})")
    console.print(
        f"[cyan]Objects to delete:[/cyan] {summary.deletion_count:,} "
        f"({fmt(summary.deletion_size)})"
    )
    console.print(
        f"[cyan]Affected:[/cyan] {summary.percent_objects_affected:.2f}% of objects, "
        f"{summary.percent_size_affected:.2f}% of size"
    )
    console.print(
        f"[green]Estimated savings:[/green] ${summary.monthly_savings:,.2f}/month, "
        f"${summary.annual_savings:,.2f}/year\n"
    )

    top = summary.top(top_n)
    if not top:
        return

    table = Table(title=f"Top {len(top)} containers by size to delete")
    table.add_column("Container", style="cyan")
    table.add_column("Objects", justify="right", style="magenta")
    table.add_column("To Delete", justify="right", style="magenta")
    table.add_column("Size To Delete", justify="right", style="green")
    table.add_column("%", justify="right")
    table.add_column("Savings/Month", justify="right", style="green")

    for result in top:
        table.add_row(
            result.container,
            f"{result.total_count:,}",
            f"{result.deletion_count:,}",
            fmt(result.deletion_size),
            f"{result.percent_to_delete:.2f}",
            f"${result.est_monthly_savings:,.2f}",
        )

    console.print(table)
    console.print()


def display_outcome(report: AuditReport) -> None:
    """Display succeeded and failed containers with resume guidance."""
    outcome = report.outcome
    succeeded = outcome.succeeded

    console.print(
        f"[green]Succeeded this run:[/green] {len(succeeded)} "
        f"(of which empty: {len(outcome.empty)})"
    )
    if report.previously_completed:
        console.print(f"[cyan]Completed in earlier runs:[/cyan] {report.previously_completed}")

    if outcome.failures:
        console.print(f"[red]Failed: {len(outcome.failures)}[/red]")
        for failure in sorted(outcome.failures, key=lambda f: f.container):
            console.print(f"  [red]✗[/red] {failure.container}: {failure.reason}")
        console.print(
            "\n[yellow]Some containers failed. Rerun the same command with --resume "
            "to retry only the unfinished containers.[/yellow]"
        )
    else:
        console.print(
            f"\n[dim]All containers completed. The progress file {report.progress_path} "
            "can be deleted.[/dim]"
        )

    console.print(f"\n[cyan]Results:[/cyan] {report.results_path}")
    console.print(f"[cyan]Summary:[/cyan] {report.summary_path}")


@app.command()
def audit(
    account: str,
    retention_days: int,
    provider: str = typer.Option("azure", "--provider", help=f"One of: {', '.join(SUPPORTED_PROVIDERS)}"),
    resource_group: Optional[str] = typer.Option(None, "--resource-group", "-g"),
    output_path: Path = typer.Option(Path("."), "--output-path", "-o"),
    concurrency: int = typer.Option(5, "--concurrency", "--throttle-limit", min=1),
    timeout_minutes: Optional[float] = typer.Option(None, "--timeout-minutes", min=0),
    resume: bool = typer.Option(False, "--resume"),
    container_pattern: Optional[str] = typer.Option(None, "--container-pattern"),
    log_file: Optional[str] = typer.Option(None, "--log-file"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Estimate the impact of a retention policy on a storage account.

    Args:
        account: Storage account identifier
        retention_days: Objects older than this many days would be deleted
        provider: Cloud provider (azure, tencent or aliyun)
        resource_group: Resource group of the account (recorded in progress file)
        output_path: Directory for results, summary and progress files
        concurrency: Containers audited in parallel (recommended <= 10, max 15)
        timeout_minutes: Abandon a single container after this many minutes
        resume: Continue the most recent unfinished run of this account
        container_pattern: Only audit containers matching this regex
        log_file: Path to log file
        verbose: Enable verbose logging

    Example:
        retention-audit audit mystorageacct 90 --resource-group rg-data --concurrency 8
        retention-audit audit mystorageacct 90 --resume
    """
    app_config = load_app_config()
    configure_logging(log_file or app_config.log_file, verbose or app_config.verbose)
    logger = get_logger(__name__)

    try:
        if concurrency > RECOMMENDED_MAX_CONCURRENCY:
            effective = min(concurrency, MAX_CONCURRENCY)
            console.print(
                f"[yellow]⚠ Concurrency {concurrency} is above the recommended "
                f"{RECOMMENDED_MAX_CONCURRENCY}; the storage API may throttle and time out. "
                f"Using {effective}. Continuing in {app_config.concurrency_warn_delay:.0f}s, "
                "press Ctrl+C to cancel.[/yellow]"
            )

        output_path.mkdir(parents=True, exist_ok=True)

        rate_limiter = RateLimiter(rate=float(app_config.rate_limit))
        check_provider_config(provider)
        provider_factory = partial(build_provider, provider, account, rate_limiter)

        options = build_options(
            app_config,
            account,
            retention_days,
            provider,
            resource_group,
            output_path,
            concurrency,
            timeout_minutes,
            resume,
            container_pattern,
        )

        console.print(f"[cyan]Auditing {provider} account '{account}'...[/cyan]")
        report = RetentionAudit(options, provider_factory).execute()

        if report.resumed:
            console.print(f"[cyan]Resumed run {report.run_timestamp}[/cyan]")
        display_summary(report.summary, retention_days)
        display_outcome(report)

    except typer.Exit:
        raise
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted. Rerun with --resume to continue.[/yellow]")
        logger.warning("audit_interrupted")
        raise typer.Exit(130)
    except AuditAbortedError as e:
        console.print(f"[red]Audit aborted: {str(e)}[/red]")
        logger.error("audit_aborted", error=str(e))
        raise typer.Exit(1)
    except (ProgressFileError, ResultsFileError, ResumeMismatchError) as e:
        console.print(f"[red]Cannot resume: {str(e)}[/red]")
        logger.error("resume_failed", error=str(e))
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Validation error: {str(e)}[/red]")
        logger.error("validation_error", error=str(e))
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error: {str(e)}[/red]")
        logger.exception("unexpected_error")
        raise typer.Exit(1)


@app.command(name="list-containers")
def list_containers(
    account: str,
    provider: str = typer.Option("azure", "--provider"),
    pattern: Optional[str] = typer.Option(None, "--pattern"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """List all containers of a storage account.

    Example:
        retention-audit list-containers mystorageacct --pattern "^logs-"
    """
    configure_logging(None, verbose)
    logger = get_logger(__name__)

    try:
        app_config = load_app_config()
        provider_instance = create_provider(
            provider, account, RateLimiter(rate=float(app_config.rate_limit))
        )
        compiled_pattern = compile_regex(pattern) if pattern else None

        identity = provider_instance.authenticate()
        console.print(
            f"[cyan]Listing containers of '{account}' "
            f"(tenant: {identity.tenant_id or '-'})[/cyan]\n"
        )

        count = 0
        for container in provider_instance.list_containers():
            if compiled_pattern and not matches_regex(container.name, compiled_pattern):
                continue
            count += 1
            region = f" [dim]({container.region})[/dim]" if container.region else ""
            console.print(f"[green]•[/green] {container.name}{region}")

        console.print(f"\n[cyan]Total containers: {count}[/cyan]")
        logger.info("list_containers_completed", count=count)

    except typer.Exit:
        raise
    except CloudStorageError as e:
        console.print(f"[red]Cloud storage error: {str(e)}[/red]")
        logger.error("cloud_storage_error", error=str(e))
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid pattern: {e}[/red]")
        raise typer.Exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error: {str(e)}[/red]")
        logger.exception("unexpected_error")
        raise typer.Exit(1)


@app.command()
def progress(
    account: str,
    output_path: Path = typer.Option(Path("."), "--output-path", "-o"),
    verbose: bool = typer.Option(False, "--verbose"),
) -> None:
    """Show the most recent progress file of an account.

    Example:
        retention-audit progress mystorageacct --output-path ./reports
    """
    configure_logging(None, verbose)

    options = AuditOptions(account_id=account, retention_days=0, output_dir=output_path)
    try:
        store = ProgressStore.load(account, options.progress_search_dirs())
        if store is None:
            console.print(f"[yellow]No progress file found for '{account}'.[/yellow]")
            return
        state = store.read()
    except ProgressFileError as e:
        console.print(f"[red]{str(e)}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Progress: {store.path.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Run", state.timestamp)
    table.add_row("Provider", state.provider)
    table.add_row("Resource group", state.resource_group or "-")
    table.add_row("Retention days", str(state.retention_days))
    table.add_row("Started", state.start_time.isoformat())
    table.add_row("Last update", state.last_update.isoformat())
    table.add_row("Completed containers", str(len(state.completed_containers)))
    console.print(table)

    if verbose:
        for name in state.completed_containers:
            console.print(f"  [green]✓[/green] {name}")


if __name__ == "__main__":
    app()
