"""CLI for ObjectCamp.

Commands:
    init-world                      - Create tables
    reset-world                     - Drop and recreate tables
    add-spec <spec_id>              - Register a target spec
    import-subjects <spec_id> <file> - Load extracted subjects from JSON lines
    cluster <spec_id>               - Group unclustered subjects into entities
    list-entities <spec_id>         - List entities of a spec
    show-entity <id>                - Show entity details and members
    merge <id> <id>...              - Merge entities into the first
    split <id> <subject>...         - Extract subjects into a new entity
    move <id> <subject>...          - Move subjects to another or a new entity
    exclude <subject>...            - Mark subjects as non-target
    delete-subject <subject>        - Delete a subject
    delete-entities <id>...         - Delete entities, excluding their members
    stats <spec_id>                 - Subject/entity counts for a spec
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated
from uuid import UUID

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from object_camp.clustering.engine import ClusteringEngine
from object_camp.config import settings
from object_camp.db import async_session_factory, engine, init_db
from object_camp.errors import ObjectCampError
from object_camp.models.enums import ClusterOutcome
from object_camp.services.entity_mutation import EntityMutationService
from object_camp.services.graph_store import GraphStore
from object_camp.services.subject_ingest import SubjectIngestService

app = typer.Typer(
    name="object-camp",
    help="ObjectCamp — groups extracted photo subjects into persistent entities",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context.

    Domain errors are reported on the console and exit with status 1.
    """
    try:
        return asyncio.run(coro)
    except ObjectCampError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None


def parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid UUID: {value}")
        raise typer.Exit(1) from None


@app.callback()
def configure(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
):
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@app.command("init-world")
def init_world():
    """Initialize the database schema (creates tables if they don't exist)."""
    async def _init():
        await init_db()
        console.print("[green]World initialized successfully.[/green]")

    run_async(_init())


@app.command("reset-world")
def reset_world(
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Skip confirmation prompt")
    ] = False,
):
    """Reset the world - drops all tables and recreates them.

    WARNING: This destroys all data!
    """
    if not force:
        confirm = typer.confirm(
            "This will DELETE ALL DATA. Are you sure?",
            default=False,
        )
        if not confirm:
            console.print("[yellow]Aborted.[/yellow]")
            raise typer.Exit(0)

    async def _reset():
        from object_camp.models import Base

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await init_db()
        console.print("[green]World reset successfully.[/green]")

    run_async(_reset())


@app.command("add-spec")
def add_spec(
    spec_id: Annotated[str, typer.Argument(help="Spec key, e.g. 'doll'")],
    display_name: Annotated[str | None, typer.Argument(help="Display name")] = None,
    description: Annotated[str, typer.Option(help="What to extract")] = "",
):
    """Register a target spec."""
    async def _add():
        await init_db()
        async with async_session_factory() as session:
            service = SubjectIngestService(GraphStore(session))
            spec, created = await service.ensure_target_spec(spec_id, display_name, description)
            if created:
                console.print(f"[green]Created spec[/green] {spec.spec_id}")
            else:
                console.print(f"[yellow]Spec already exists:[/yellow] {spec.spec_id}")

    run_async(_add())


@app.command("import-subjects")
def import_subjects(
    spec_id: Annotated[str, typer.Argument(help="Target spec")],
    path: Annotated[Path, typer.Argument(help="JSON lines file, one subject per line")],
):
    """Load extracted subjects.

    Each line: {"source_image_id", "sticker_path", "confidence",
    optional "thumbnail_path", "bounding_box", "feature_vector"}.
    """
    if not path.exists():
        console.print(f"[red]Error:[/red] Path does not exist: {path}")
        raise typer.Exit(1)

    async def _import():
        await init_db()
        imported = 0
        async with async_session_factory() as session:
            store = GraphStore(session)
            await store.require_target_spec(spec_id)
            service = SubjectIngestService(store)
            for line_no, line in enumerate(path.read_text().splitlines(), start=1):
                if not line.strip():
                    continue
                try:
                    row = json.loads(line)
                except json.JSONDecodeError as e:
                    console.print(f"[red]Line {line_no}:[/red] invalid JSON ({e})")
                    continue
                try:
                    await service.record_subject(
                        spec_id,
                        row["source_image_id"],
                        row["sticker_path"],
                        float(row["confidence"]),
                        thumbnail_path=row.get("thumbnail_path"),
                        bounding_box=row.get("bounding_box"),
                        feature_vector=row.get("feature_vector"),
                    )
                except KeyError as e:
                    console.print(f"[red]Line {line_no}:[/red] missing field {e}")
                    continue
                except (TypeError, ValueError) as e:
                    console.print(f"[red]Line {line_no}:[/red] skipped ({e})")
                    continue
                imported += 1
        console.print(f"[green]Imported {imported} subject(s)[/green] into {spec_id}")

    run_async(_import())


@app.command("cluster")
def cluster(
    spec_id: Annotated[str, typer.Argument(help="Target spec to cluster")],
    threshold: Annotated[
        float | None, typer.Option(help="Similarity threshold (default from config)")
    ] = None,
):
    """Group unclustered subjects of a spec into new entities."""
    async def _cluster():
        await init_db()
        async with async_session_factory() as session:
            store = GraphStore(session)
            await store.require_target_spec(spec_id)
            result = await ClusteringEngine(store, threshold=threshold).cluster_subjects(spec_id)

        if result.outcome == ClusterOutcome.NO_ELIGIBLE_SUBJECTS:
            console.print("[yellow]No subjects waiting to be clustered.[/yellow]")
        elif result.outcome == ClusterOutcome.ALL_SINGLETONS:
            console.print(
                f"[yellow]Nothing was confidently groupable:[/yellow] "
                f"{len(result.entities)} single-subject entities created."
            )
        else:
            console.print(
                f"[green]Created {len(result.entities)} entities[/green] "
                f"from {result.eligible_count} subjects (sizes: {result.cluster_sizes})"
            )
        if result.awaiting_vector_count:
            console.print(
                f"[dim]{result.awaiting_vector_count} subject(s) skipped, no feature vector yet[/dim]"
            )

    run_async(_cluster())


@app.command("list-entities")
def list_entities(
    spec_id: Annotated[str, typer.Argument(help="Target spec")],
):
    """List entities of a spec."""
    async def _list():
        await init_db()
        async with async_session_factory() as session:
            store = GraphStore(session)
            await store.require_target_spec(spec_id)
            entities = await store.list_entities(spec_id)
            counts = await store.member_counts(e.entity_id for e in entities)

        if not entities:
            console.print("[yellow]No entities found.[/yellow]")
            return

        table = Table(title=f"Entities — {spec_id}")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Members", justify="right")
        table.add_column("Avg Conf", justify="right")
        table.add_column("Origin")
        for e in entities:
            table.add_row(
                str(e.entity_id),
                e.custom_name or "",
                str(counts.get(e.entity_id, 0)),
                f"{e.average_confidence:.2f}",
                "manual" if e.is_manually_created else "clustered",
            )
        console.print(table)

    run_async(_list())


@app.command("show-entity")
def show_entity(
    entity_id: Annotated[str, typer.Argument(help="Entity ID (UUID)")],
):
    """Show details for a specific entity."""
    eid = parse_uuid(entity_id)

    async def _show():
        await init_db()
        async with async_session_factory() as session:
            store = GraphStore(session)
            entity = await store.get_entity(eid)
            if not entity:
                console.print(f"[red]Error:[/red] Entity not found: {entity_id}")
                raise typer.Exit(1)
            members = await store.members(eid)
            history = await store.evolutions(eid)

        panel_content = []
        panel_content.append(f"[bold]ID:[/bold] {entity.entity_id}")
        panel_content.append(f"[bold]Spec:[/bold] {entity.target_spec_id}")
        if entity.custom_name:
            panel_content.append(f"[bold]Name:[/bold] {entity.custom_name}")
        panel_content.append(f"[bold]Average Confidence:[/bold] {entity.average_confidence:.3f}")
        panel_content.append(f"[bold]Cover:[/bold] {entity.cover_subject_id}")
        panel_content.append(
            f"[bold]Origin:[/bold] {'manual' if entity.is_manually_created else 'clustered'}"
        )
        panel_content.append(f"[bold]Members:[/bold] {len(members)}")
        panel_content.append(f"[bold]History:[/bold] {', '.join(h.kind.value for h in history)}")
        console.print(Panel("\n".join(panel_content), title="Entity Details"))

        table = Table(title="Subjects")
        table.add_column("ID", style="cyan")
        table.add_column("Source")
        table.add_column("Confidence", justify="right")
        table.add_column("Method")
        for s in members:
            marker = " *" if s.subject_id == entity.cover_subject_id else ""
            table.add_row(
                str(s.subject_id) + marker,
                s.source_image_id[:40],
                f"{s.confidence:.2f}",
                s.extraction_method.value,
            )
        console.print(table)

    run_async(_show())


@app.command("merge")
def merge(
    entity_ids: Annotated[list[str], typer.Argument(help="Survivor first, then entities to absorb")],
):
    """Merge entities into the first one."""
    ids = [parse_uuid(e) for e in entity_ids]

    async def _merge():
        async with async_session_factory() as session:
            result = await EntityMutationService(GraphStore(session)).merge(ids)
        console.print(
            f"[green]Merged {len(result.absorbed_entity_ids)} entit(ies)[/green] into "
            f"{result.entity.entity_id} ({result.member_count} members)"
        )

    run_async(_merge())


@app.command("split")
def split(
    entity_id: Annotated[str, typer.Argument(help="Entity to split")],
    subject_ids: Annotated[list[str], typer.Argument(help="Subjects to extract")],
):
    """Extract subjects from an entity into a new entity."""
    eid = parse_uuid(entity_id)
    sids = [parse_uuid(s) for s in subject_ids]

    async def _split():
        async with async_session_factory() as session:
            result = await EntityMutationService(GraphStore(session)).split(eid, sids)
        console.print(f"[green]New entity[/green] {result.new_entity.entity_id}")
        if result.source_deleted:
            console.print("[yellow]Source entity was emptied and deleted.[/yellow]")

    run_async(_split())


@app.command("move")
def move(
    entity_id: Annotated[str, typer.Argument(help="Entity the subjects belong to")],
    subject_ids: Annotated[list[str], typer.Argument(help="Subjects to move")],
    to: Annotated[str | None, typer.Option(help="Target entity (omit for a new one)")] = None,
):
    """Move subjects to another entity or to a new one."""
    eid = parse_uuid(entity_id)
    sids = [parse_uuid(s) for s in subject_ids]
    target = parse_uuid(to) if to else None

    async def _move():
        async with async_session_factory() as session:
            result = await EntityMutationService(GraphStore(session)).move_subjects(
                sids, eid, target
            )
        label = "new entity" if result.created_target else "entity"
        console.print(
            f"[green]Moved {result.subjects_moved} subject(s)[/green] to {label} "
            f"{result.target_entity.entity_id}"
        )
        if result.source_deleted:
            console.print("[yellow]Source entity was emptied and deleted.[/yellow]")

    run_async(_move())


@app.command("exclude")
def exclude(
    subject_ids: Annotated[list[str], typer.Argument(help="Subjects that are not targets")],
):
    """Mark subjects as non-target; they leave their entities and are never clustered."""
    sids = [parse_uuid(s) for s in subject_ids]

    async def _exclude():
        async with async_session_factory() as session:
            result = await EntityMutationService(GraphStore(session)).exclude_subjects(sids)
        console.print(f"[green]Excluded {len(result.excluded_subject_ids)} subject(s)[/green]")
        if result.deleted_entity_ids:
            console.print(f"[yellow]{len(result.deleted_entity_ids)} entity(ies) emptied and deleted[/yellow]")

    run_async(_exclude())


@app.command("delete-subject")
def delete_subject(
    subject_id: Annotated[str, typer.Argument(help="Subject ID (UUID)")],
):
    """Delete a subject."""
    sid = parse_uuid(subject_id)

    async def _delete():
        async with async_session_factory() as session:
            result = await EntityMutationService(GraphStore(session)).delete_subject(sid)
        console.print(f"[green]Deleted subject[/green] {result.subject_id}")
        for path in result.released_paths:
            console.print(f"[dim]  blob no longer referenced: {path}[/dim]")

    run_async(_delete())


@app.command("delete-entities")
def delete_entities(
    entity_ids: Annotated[list[str], typer.Argument(help="Entities to delete")],
):
    """Delete entities. Their subjects are marked as non-target."""
    ids = [parse_uuid(e) for e in entity_ids]

    async def _delete():
        async with async_session_factory() as session:
            result = await EntityMutationService(GraphStore(session)).delete_entities(ids)
        console.print(
            f"[green]Deleted {len(result.deleted_entity_ids)} entit(ies)[/green], "
            f"{len(result.excluded_subject_ids)} subject(s) marked non-target"
        )

    run_async(_delete())


@app.command("stats")
def stats(
    spec_id: Annotated[str, typer.Argument(help="Target spec")],
):
    """Show subject and entity counts for a spec."""
    async def _stats():
        await init_db()
        async with async_session_factory() as session:
            store = GraphStore(session)
            await store.require_target_spec(spec_id)
            entities = await store.list_entities(spec_id)
            unclustered = await store.unclustered(spec_id)
            awaiting = await store.count_awaiting_vectors(spec_id)
            counts = await store.member_counts(e.entity_id for e in entities)

        table = Table(title=f"ObjectCamp — {spec_id}")
        table.add_column("Metric", style="cyan")
        table.add_column("Count", justify="right")
        table.add_row("Entities", str(len(entities)))
        table.add_row("Clustered subjects", str(sum(counts.values())))
        table.add_row("Unclustered subjects", str(len(unclustered)))
        table.add_row("  awaiting feature vector", str(awaiting))
        table.add_row("Manual entities", str(sum(1 for e in entities if e.is_manually_created)))
        console.print(table)

    run_async(_stats())


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
