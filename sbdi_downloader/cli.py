"""
Command-line interface for SBDI Downloader.

Usage:
    sbdi-download --taxon "genus:Accipiter" --email me@example.org --reason-id 10
    sbdi-download --taxon "Callitriche cophocarpa" --fq data_resource_uid:dr5 --qa all
    sbdi-download --config my_search.yaml
    sbdi-download reasons
"""

from __future__ import annotations

import sys
from dataclasses import replace

import click
from rich.console import Console
from rich.table import Table

from sbdi_downloader import __version__
from sbdi_downloader.api import InvalidRequestError, SBDIClient, SBDIError
from sbdi_downloader.config import (
    CACHING_MODES,
    Config,
    SBDIConfig,
    create_example_config,
    list_presets,
    load_preset,
)
from sbdi_downloader.fields import FIELD_TYPES
from sbdi_downloader.filters import (
    AssertionFilterConfig,
    check_assertions,
    filter_records,
    format_filter_stats,
)
from sbdi_downloader.occurrences import count_occurrences, occurrences
from sbdi_downloader.query import OccurrenceQuery
from sbdi_downloader.table import OccurrenceTable
from sbdi_downloader.utils import setup_logging

console = Console()

PREVIEW_ROWS = 5
PREVIEW_COLUMNS = 8


def print_banner():
    """Print the application banner."""
    console.print(
        "\n[bold blue]SBDI Downloader[/bold blue] "
        f"[dim]v{__version__}[/dim]",
    )
    console.print(
        "[dim]Download biodiversity occurrence data from SBDI[/dim]\n"
    )


@click.group(invoke_without_command=True)
@click.option(
    "--taxon", "-t",
    help='Taxon query, free text or field:value (e.g. "genus:Accipiter")',
)
@click.option(
    "--wkt", "-w",
    help="WKT polygon to search within",
)
@click.option(
    "--fq",
    multiple=True,
    help="Filter query FIELD:VALUE (repeatable, clauses are ANDed)",
)
@click.option(
    "--fields",
    help='Fields to return, comma-separated, or "all"',
)
@click.option(
    "--extra",
    help='Extra fields to return, comma-separated, or "all"',
)
@click.option(
    "--qa",
    help='Quality assertions to include, comma-separated, "all" or "none"',
)
@click.option(
    "--email", "-e",
    help="Your email address (required for downloads)",
)
@click.option(
    "--reason-id", "-r",
    help="Download reason id or name (see: sbdi-download reasons)",
)
@click.option(
    "--reason",
    help="Free text describing why you download the data",
)
@click.option(
    "--caching",
    type=click.Choice(CACHING_MODES),
    help="Archive cache mode (default: on)",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False),
    help="Directory for downloaded archives",
)
@click.option(
    "--layer-names/--layer-ids",
    default=True,
    help="Name layer columns after the layer or keep the layer id (default: names)",
)
@click.option(
    "--count-only",
    is_flag=True,
    help="Only count the matching records",
)
@click.option(
    "--drop-fatal",
    is_flag=True,
    help="Drop records flagged by fatal quality assertions",
)
@click.option(
    "--config",
    "config_file",
    type=click.Path(exists=True),
    help="Load settings and query from YAML config file",
)
@click.option(
    "--preset",
    help="Load a preset from ~/.sbdi_downloader",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    help="Enable verbose output",
)
@click.option(
    "--version",
    is_flag=True,
    help="Show version and exit",
)
@click.pass_context
def main(
    ctx,
    taxon,
    wkt,
    fq,
    fields,
    extra,
    qa,
    email,
    reason_id,
    reason,
    caching,
    cache_dir,
    layer_names,
    count_only,
    drop_fatal,
    config_file,
    preset,
    verbose,
    version,
):
    """
    Download occurrence records from SBDI.

    Examples:

    \b
    # Count Accipiter records
    sbdi-download --taxon "genus:Accipiter" --count-only

    \b
    # Download a species from one data resource
    sbdi-download --taxon "Callitriche cophocarpa" --fq data_resource_uid:dr5 \\
        --email me@example.org --reason-id 10

    \b
    # Use a config file
    sbdi-download --config my_search.yaml
    """
    if version:
        console.print(f"sbdi-downloader version {__version__}")
        sys.exit(0)

    if ctx.invoked_subcommand is not None:
        return

    if not (taxon or wkt or fq or config_file or preset):
        click.echo(ctx.get_help())
        sys.exit(0)

    setup_logging(verbose=verbose)

    print_banner()

    config = Config()
    if config_file or preset:
        try:
            config = Config.load(config_file) if config_file else load_preset(preset)
            console.print(f"[green]Loaded config from: {config_file or preset}[/green]\n")
        except Exception as e:
            console.print(f"[red]Error loading config: {e}[/red]")
            sys.exit(1)

    overrides = {
        "email": email,
        "download_reason_id": reason_id,
        "caching": caching,
        "cache_dir": cache_dir,
    }
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if verbose:
        overrides["verbose"] = True

    try:
        settings = replace(config.settings, **overrides)

        if taxon or wkt or fq:
            query = OccurrenceQuery(
                taxon=taxon,
                wkt=wkt,
                fq=list(fq),
                fields=fields,
                extra=extra,
                qa=qa,
                reason=reason,
            )
        elif config.query is not None:
            query = config.query
        else:
            raise InvalidRequestError(
                "invalid request: need at least one of taxon, fq, or wkt to be specified"
            )
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(1)

    run_download(settings, query, count_only, drop_fatal, layer_names)


def run_download(
    settings: SBDIConfig,
    query: OccurrenceQuery,
    count_only: bool = False,
    drop_fatal: bool = False,
    use_layer_names: bool = True,
):
    """
    Run the download process.

    Args:
        settings: Client configuration
        query: Occurrence query
        count_only: Only count the matching records
        drop_fatal: Drop records flagged by fatal assertions
        use_layer_names: Name layer columns after the layer
    """
    show_config(settings, query)

    client = SBDIClient(settings)

    try:
        if count_only:
            with console.status("[bold blue]Counting records..."):
                total_count = count_occurrences(client, query)

            console.print(f"[blue]Matching records on SBDI:[/blue] {total_count:,}")
            return

        with console.status("[bold blue]Downloading occurrences (this can take a while)..."):
            table = occurrences(client, query, use_layer_names=use_layer_names)

        console.print()

        if table.empty:
            console.print("[yellow]No records found matching the criteria.[/yellow]")
            sys.exit(0)

        if query.qa and query.qa != ["none"]:
            show_assertions(table, client)

        if drop_fatal:
            table, stats = filter_records(
                table, AssertionFilterConfig(exclude_fatal=True), client.assertions()
            )
            console.print(format_filter_stats(stats))
            console.print()

        show_summary(table)

    except InvalidRequestError as e:
        console.print(f"\n[red]Invalid request: {e}[/red]")
        sys.exit(1)
    except SBDIError as e:
        console.print(f"\n[red]SBDI API error: {e}[/red]")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Download interrupted by user.[/yellow]")
        sys.exit(130)
    finally:
        client.close()


def show_config(settings: SBDIConfig, query: OccurrenceQuery):
    """Display the current configuration."""
    table = Table(title="Search Configuration", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    if query.taxon:
        table.add_row("Taxon", query.taxon)
    if query.wkt:
        table.add_row("WKT", query.wkt)
    for clause in query.fq:
        table.add_row("Filter", clause)
    if query.fields:
        table.add_row("Fields", ", ".join(query.fields))
    if query.extra:
        table.add_row("Extra fields", ", ".join(query.extra))
    if query.qa:
        table.add_row("Assertions", ", ".join(query.qa))
    table.add_row("Email", settings.email or "[red]not set[/red]")
    if settings.download_reason_id is None:
        table.add_row("Reason id", "[red]not set[/red]")
    else:
        table.add_row("Reason id", str(settings.download_reason_id))
    table.add_row("Caching", settings.caching)

    console.print(table)
    console.print()


def show_summary(table: OccurrenceTable):
    """Display the downloaded records."""
    console.print(f"[green]Records downloaded:[/green] {len(table):,}")
    console.print(f"[green]Columns:[/green] {len(table.columns)}")
    console.print(f"[dim]{', '.join(table.columns)}[/dim]\n")

    preview = Table(title=f"First {min(PREVIEW_ROWS, len(table))} records")
    columns = table.columns[:PREVIEW_COLUMNS]
    for column in columns:
        preview.add_column(column, overflow="fold")
    for row in table.data[columns].head(PREVIEW_ROWS).itertuples(index=False):
        preview.add_row(*["" if value is None else str(value) for value in row])
    console.print(preview)

    if table.citation_text:
        console.print("\n[bold]Citation:[/bold]")
        console.print(table.citation_text, markup=False)

    console.print(f"\n[bold green]Success![/bold green] Archive saved to: {table.path}")


def show_assertions(table: OccurrenceTable, client: SBDIClient):
    """Display the quality assertions flagged in the records."""
    summary = check_assertions(table, client.assertions())
    summary = summary[summary["count"] > 0]

    if summary.empty:
        console.print("[green]No quality assertions flagged.[/green]\n")
        return

    view = Table(title="Quality assertions")
    view.add_column("Assertion", style="cyan")
    view.add_column("Fatal")
    view.add_column("Records", justify="right")
    for row in summary.to_dict("records"):
        view.add_row(
            row["name"], "[red]yes[/red]" if row["fatal"] else "no", f"{row['count']:,}"
        )

    console.print(view)
    console.print()


@main.command()
@click.argument("path", type=click.Path(), default="example_config.yaml")
def init(path):
    """Create an example configuration file."""
    print_banner()

    output_path = create_example_config(path)
    console.print(f"[green]Created example config:[/green] {output_path}")
    console.print("[dim]Edit this file and use with: sbdi-download --config example_config.yaml[/dim]")


@main.command()
def presets():
    """List available preset configurations."""
    print_banner()

    preset_list = list_presets()

    if not preset_list:
        console.print("[yellow]No presets found.[/yellow]")
        console.print("[dim]Save a config file to ~/.sbdi_downloader/NAME.yaml to create one[/dim]")
        return

    console.print("[bold]Available presets:[/bold]\n")
    for preset in preset_list:
        console.print(f"  - {preset}")

    console.print("\n[dim]Use with: sbdi-download --preset PRESET[/dim]")


@main.command()
def reasons():
    """List the valid download reasons."""
    with SBDIClient() as client:
        try:
            reason_list = client.reasons()
        except SBDIError as e:
            console.print(f"[red]SBDI API error: {e}[/red]")
            sys.exit(1)

    table = Table(title="Download reasons")
    table.add_column("Id", justify="right", style="cyan")
    table.add_column("Name")
    for reason in reason_list:
        table.add_row(str(reason.id), reason.name)

    console.print(table)


@main.command()
@click.argument("fields_type", type=click.Choice(FIELD_TYPES), default="occurrence")
def fields(fields_type):
    """List the fields, assertions or layers known to SBDI."""
    with SBDIClient() as client:
        try:
            field_list = client.fields(fields_type)
        except SBDIError as e:
            console.print(f"[red]SBDI API error: {e}[/red]")
            sys.exit(1)

    table = Table(title=f"{fields_type} ({len(field_list):,})")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    if fields_type == "assertions":
        table.add_column("Fatal")

    for info in field_list:
        row = [info.name, info.description]
        if fields_type == "assertions":
            row.append("yes" if info.fatal else "no")
        table.add_row(*row)

    console.print(table)


if __name__ == "__main__":
    main()
