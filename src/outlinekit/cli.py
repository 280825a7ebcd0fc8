"""CLI entry point for outlinekit."""

import asyncio
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.tree import Tree

from outlinekit.config.loader import load_config as load_config_file
from outlinekit.engine.block_engine import BlockEngine
from outlinekit.engine.drafts import DraftCoordinator
from outlinekit.exceptions import InvariantViolation, OutlinerError
from outlinekit.gateway.base import BlockGateway
from outlinekit.gateway.http import HttpBlockGateway
from outlinekit.gateway.memory import InMemoryBlockGateway
from outlinekit.models.config import Config
from outlinekit.outline import render_outline
from outlinekit.tree_index import ROOT
from outlinekit.utils.logging import configure_logging, get_logger


logger = get_logger(__name__)
console = Console()


def load_config(config_path: Optional[Path]) -> Config:
    """
    Load configuration, turning every failure into a click error.

    Raises:
        click.ClickException: If the config is missing or fails validation
    """
    try:
        config = load_config_file(config_path)
        logger.info("config_loaded", path=str(config_path) if config_path else "default")
        return config
    except FileNotFoundError as e:
        logger.error("config_not_found", path=str(config_path))
        raise click.ClickException(str(e))
    except PermissionError as e:
        logger.error("config_permission_error", path=str(config_path))
        raise click.ClickException(str(e))
    except Exception as e:
        logger.error("config_validation_error", error=str(e))
        raise click.ClickException(f"Configuration validation failed:\n{e}")


def build_gateway(ctx: click.Context) -> BlockGateway:
    config = load_config(ctx.obj.get("config_path"))
    return HttpBlockGateway(config.gateway)


async def _open_engine(gateway: BlockGateway, page_id: str, read_only: bool = False) -> BlockEngine:
    """Open a page for editing, or just load it when read_only is set.

    Only an editing session gives an empty page its first block.
    """
    engine = BlockEngine(gateway, page_id)
    if read_only:
        await engine.reload()
    else:
        await engine.open()
    return engine


def _run(coro):
    """Run a coroutine, reporting engine errors as click errors."""
    try:
        return asyncio.run(coro)
    except OutlinerError as e:
        logger.error("command_failed", error=str(e))
        raise click.ClickException(str(e))


def _render_tree(engine: BlockEngine, show_ids: bool) -> Tree:
    tree = Tree(f"[bold]{engine.page_id}[/bold]")

    def add(branch: Tree, parent_id: Optional[str]) -> None:
        for block_id in engine.get_children(parent_id):
            block = engine.get_block(block_id)
            label = block.content.replace("\n", " ⏎ ") or "[dim](empty)[/dim]"
            if show_ids:
                label = f"{label} [dim]{block.id}[/dim]"
            if block.is_collapsed and engine.index.has_children(block_id):
                branch.add(f"{label} [yellow](+{len(engine.index.subtree_ids(block_id)) - 1})[/yellow]")
                continue
            add(branch.add(label), block_id)

    add(tree, ROOT)
    return tree


@click.group()
@click.version_option(version="0.1.0", prog_name="outlinekit")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (default: ~/.config/outlinekit/config.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path]):
    """outlinekit: edit hierarchical outline pages stored in a block store."""
    configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command()
@click.argument("page_id")
@click.option("--ids", "show_ids", is_flag=True, help="Show block ids next to content")
@click.pass_context
def show(ctx: click.Context, page_id: str, show_ids: bool):
    """
    Print a page as a tree (collapsed blocks show a child count).

    Examples:
        outlinekit show my-page
        outlinekit show my-page --ids
    """
    gateway = build_gateway(ctx)

    async def run():
        try:
            engine = await _open_engine(gateway, page_id, read_only=True)
            console.print(_render_tree(engine, show_ids))
            engine.close()
        finally:
            await gateway.aclose()

    _run(run())


@cli.command(name="import")
@click.argument("page_id")
@click.argument("markdown_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--after", "after_block_id", help="Insert below this block (default: end of page)")
@click.pass_context
def import_(ctx: click.Context, page_id: str, markdown_file: Path, after_block_id: Optional[str]):
    """
    Import an indented markdown bullet list into a page.

    Examples:
        outlinekit import my-page notes.md
        outlinekit import my-page notes.md --after 550e8400-e29b-41d4-a716-446655440000
    """
    markdown = markdown_file.read_text(encoding="utf-8")
    gateway = build_gateway(ctx)

    async def run():
        try:
            engine = await _open_engine(gateway, page_id)
            created = await engine.create_blocks_from_markdown(after_block_id, markdown)
            engine.close()
            return created
        finally:
            await gateway.aclose()

    created = _run(run())
    logger.info("import_completed", page_id=page_id, count=len(created))
    console.print(f"[green]✓[/green] Imported {len(created)} block(s) into {page_id}")


@cli.command()
@click.argument("page_id")
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), help="Write to a file instead of stdout")
@click.pass_context
def export(ctx: click.Context, page_id: str, output: Optional[Path]):
    """
    Export a page as an indented markdown bullet list.

    Examples:
        outlinekit export my-page
        outlinekit export my-page -o my-page.md
    """
    gateway = build_gateway(ctx)

    async def run():
        try:
            engine = await _open_engine(gateway, page_id, read_only=True)
            markdown = render_outline(engine.index)
            engine.close()
            return markdown
        finally:
            await gateway.aclose()

    markdown = _run(run())
    if output is None:
        click.echo(markdown)
    else:
        output.write_text(markdown + "\n", encoding="utf-8")
        console.print(f"[green]✓[/green] Wrote {output}")


@cli.command()
@click.argument("page_id")
@click.pass_context
def check(ctx: click.Context, page_id: str):
    """
    Load a page and verify the tree invariants.

    Exits with status 1 if the stored tree is inconsistent.
    """
    gateway = build_gateway(ctx)

    async def run():
        try:
            engine = await _open_engine(gateway, page_id, read_only=True)
            count = len(engine.index)
            engine.close()
            return count
        finally:
            await gateway.aclose()

    try:
        count = asyncio.run(run())
    except InvariantViolation as e:
        logger.error("check_failed", page_id=page_id, error=str(e))
        console.print(f"[red]✗[/red] {page_id}: {e}")
        ctx.exit(1)
    except OutlinerError as e:
        raise click.ClickException(str(e))

    console.print(f"[green]✓[/green] {page_id}: {count} block(s), tree is consistent")


@cli.command()
@click.option("--page-id", default="demo", show_default=True, help="Page id for the scratch page")
def demo(page_id: str):
    """
    Run a scripted editing session against an in-memory store.

    Types a few blocks, splits, indents, merges and collapses, printing the
    page after each step.
    """

    async def run():
        engine = await _open_engine(InMemoryBlockGateway(), page_id)
        drafts = DraftCoordinator(engine, debounce_seconds=0)

        def step(title: str) -> None:
            console.rule(title)
            console.print(_render_tree(engine, show_ids=False))

        first = engine.focus.focused_block_id
        drafts.begin_editing(first)
        drafts.input(first, "Groceries: milk eggs")
        await drafts.commit(first)
        step("Typed the first block")

        second = await drafts.split(first, len("Groceries:"))
        drafts.begin_editing(second)
        drafts.input(second, "milk eggs")
        await drafts.commit(second)
        step("Split at the colon")

        await engine.indent_block(second)
        third = await engine.create_block(second, "bread")
        step("Indented and added a sibling")

        await drafts.merge_with_previous(third)
        step("Merged 'bread' into the previous block")

        await engine.toggle_collapse(first)
        step("Collapsed the top block")

        await drafts.close()
        console.rule("Markdown export")
        console.print(render_outline(engine.index), markup=False)
        engine.close()

    _run(run())


def main():
    """Main entry point for the console script."""
    cli()


if __name__ == "__main__":
    main()
