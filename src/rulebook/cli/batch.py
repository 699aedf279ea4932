"""rulebook batch — checkpointed ingestion of a large code inventory.

The inventory (YAML or JSON) lists the sourcebooks to ingest together with
their expected counts:

    {"sourcebooks": [{"code": "SYSC", "chapters": 21, "sections": 150}]}

Codes are upper-cased, de-duplicated and sorted, then split into fixed-size
batches. Each batch is one ingestion run with ``keep_going=True``. After
every batch the persisted counts of each code's latest version are compared
with the inventory and flagged ``ok`` / ``mismatch`` / ``n/a``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console
from rich.table import Table

from rulebook.cli._common import (
    console_log,
    load_config_or_exit,
    open_existing_db,
    resolve_db,
    stats_table,
)
from rulebook.cli.errors import (
    err_batch_range,
    err_ingest_failed,
    err_inventory_invalid,
    err_inventory_missing,
    err_store_unavailable,
)
from rulebook.db.models import LatestCounts
from rulebook.db.repository import Repository
from rulebook.errors import IngestError, StoreUnavailableError
from rulebook.ingest.pipeline import ingest_rulebook

console = Console()


class InventoryError(ValueError):
    """Raised when an inventory file does not have the expected shape."""


@dataclass
class Expected:
    """Expected persisted counts for one sourcebook (None = unknown)."""

    chapters: int | None = None
    sections: int | None = None
    provisions: int | None = None


@dataclass
class Inventory:
    codes: list[str] = field(default_factory=list)
    expected: dict[str, Expected] = field(default_factory=dict)


def load_inventory(path: Path) -> Inventory:
    """Parse an inventory file.

    Entries without a code are skipped; a repeated code keeps its last
    expected counts.

    Raises:
        InventoryError: The file is not a mapping with a ``sourcebooks`` list.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise InventoryError(f"cannot parse file: {exc}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("sourcebooks"), list):
        raise InventoryError("top level must be a mapping with a 'sourcebooks' list")

    expected: dict[str, Expected] = {}
    for entry in data["sourcebooks"]:
        if not isinstance(entry, dict):
            raise InventoryError(f"sourcebook entries must be mappings, got {entry!r}")
        code = str(entry.get("code") or "").strip().upper()
        if not code:
            continue
        expected[code] = Expected(
            chapters=_count(entry, "chapters"),
            sections=_count(entry, "sections"),
            provisions=_count(entry, "provisions"),
        )
    return Inventory(codes=sorted(expected), expected=expected)


def _count(entry: dict, key: str) -> int | None:
    value: Any = entry.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise InventoryError(f"{entry.get('code')}: '{key}' must be an integer, got {value!r}") from exc


def parse_codes(raw: str) -> list[str]:
    """Split a ``PRIN,SYSC`` style list into sorted, unique, upper-case codes."""
    return sorted({c.strip().upper() for c in raw.split(",") if c.strip()})


def partition(codes: list[str], size: int) -> list[list[str]]:
    """Split *codes* into consecutive batches of at most *size* codes."""
    if size < 1:
        raise ValueError(f"batch size must be >= 1, got {size}")
    return [codes[i : i + size] for i in range(0, len(codes), size)]


def checkpoint_flag(actual: int, expected: int | None) -> str:
    if expected is None:
        return "n/a"
    return "ok" if actual == expected else "mismatch"


def batch_cmd(
    inventory: Annotated[
        Path | None,
        typer.Option("--inventory", help="Inventory file (default: ingest.inventory from config)."),
    ] = None,
    codes: Annotated[
        str | None,
        typer.Option("--codes", help="Comma-separated codes; overrides the inventory code list."),
    ] = None,
    batch_size: Annotated[
        int | None,
        typer.Option("--batch-size", min=1, help="Sourcebooks per batch (default: ingest.batch_size)."),
    ] = None,
    start_batch: Annotated[
        int,
        typer.Option("--start-batch", min=1, help="First batch to run (1-based)."),
    ] = 1,
    end_batch: Annotated[
        int | None,
        typer.Option("--end-batch", min=1, help="Last batch to run (inclusive)."),
    ] = None,
    db: Annotated[
        Path | None,
        typer.Option("--db", help="Database path (default: database.path from config)."),
    ] = None,
) -> None:
    """Ingest sourcebooks in batches and verify counts against the inventory."""
    cfg = load_config_or_exit(console)
    inv_path = inventory if inventory is not None else Path(cfg.ingest.inventory)

    inv = Inventory()
    if inv_path.exists():
        try:
            inv = load_inventory(inv_path)
        except InventoryError as exc:
            console.print(err_inventory_invalid(str(inv_path), str(exc)))
            raise typer.Exit(1)
    elif codes is None:
        console.print(err_inventory_missing(str(inv_path)))
        raise typer.Exit(1)

    selected = parse_codes(codes) if codes is not None else inv.codes
    batches = partition(selected, batch_size or cfg.ingest.batch_size)
    first = start_batch
    last = min(end_batch, len(batches)) if end_batch is not None else len(batches)
    if first > last:
        console.print(err_batch_range(start_batch, end_batch or len(batches), len(batches)))
        raise typer.Exit(1)

    console.print(f"Total sourcebooks: {len(selected)}")
    console.print(f"Batches: {len(batches)} (size {batch_size or cfg.ingest.batch_size})")
    console.print(f"Running batches {first} to {last}")

    conn = open_existing_db(resolve_db(db, cfg), console)
    repo = Repository(conn)
    client = cfg.build_client()
    failed_batches: list[int] = []
    failed_codes: list[str] = []

    try:
        for number in range(first, last + 1):
            batch = batches[number - 1]
            console.print(f"\n[bold]=== Batch {number} / {len(batches)} ===[/]")
            console.print(f"Codes: {', '.join(batch)}", markup=False)

            try:
                stats = ingest_rulebook(
                    repo,
                    client,
                    authority=cfg.ingest.authority,
                    jurisdiction=cfg.ingest.jurisdiction,
                    public_base=cfg.source.public_base,
                    sourcebooks=batch,
                    keep_going=True,
                    log=console_log(console),
                )
            except StoreUnavailableError as exc:
                console.print(err_store_unavailable(str(exc)))
                raise typer.Exit(1)
            except IngestError as exc:
                console.print(err_ingest_failed(exc))
                failed_batches.append(number)
                continue

            console.print(stats_table(stats, title=f"Batch {number}"))
            failed_codes.extend(f["code"] for f in stats.failed_sourcebooks)
            counts = repo.count_latest(cfg.ingest.authority, batch)
            console.print(_checkpoint_table(batch, counts, inv.expected))
    finally:
        conn.close()

    if failed_batches or failed_codes:
        if failed_batches:
            console.print(f"[red]Failed batches:[/] {', '.join(map(str, failed_batches))}")
        if failed_codes:
            console.print(f"[red]Failed sourcebooks:[/] {', '.join(failed_codes)}")
        raise typer.Exit(1)
    console.print("\n[green]✓[/] All batches completed")


def _checkpoint_table(
    batch: list[str],
    counts: dict[str, LatestCounts],
    expected: dict[str, Expected],
) -> Table:
    table = Table(title="Checkpoint", show_lines=False)
    table.add_column("Code", style="bold")
    table.add_column("Chapters", justify="right")
    table.add_column("Sections", justify="right")
    table.add_column("Provisions", justify="right")

    for code in batch:
        row = counts.get(code)
        if row is None:
            table.add_row(code, "[yellow]no data found after ingest[/]", "", "")
            continue
        exp = expected.get(code, Expected())
        table.add_row(
            code,
            _cell(row.chapters, exp.chapters),
            _cell(row.sections, exp.sections),
            _cell(row.paragraphs, exp.provisions),
        )
    return table


def _cell(actual: int, expected: int | None) -> str:
    flag = checkpoint_flag(actual, expected)
    colour = {"ok": "green", "mismatch": "red"}.get(flag, "dim")
    return f"{actual} [{colour}]({flag})[/]"
