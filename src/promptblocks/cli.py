"""Command line front end for the prompt block document.

Usage:
    python -m promptblocks [command] [args...]

Commands:
    tree                          Show the block tree with IDs
    add KIND [options]            Add a block (text, fragmentRef, container)
    update BLOCK_ID [options]     Change a block's content, tag or attributes
    delete BLOCK_ID               Delete a block and its subtree
    move BLOCK_ID [options]       Move a block (explicit slot or drop hint)
    render [--line-numbers]       Print the rendered prompt
    fragments [--search QUERY]    List reusable fragments
    add-fragment TITLE CONTENT    Add a reusable fragment
    export [FILE]                 Export everything as JSON (stdout by default)
    import FILE                   Import a JSON export
    clear                         Remove all stored data
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .blocks.blocks_models import Block, BlockKind, DropHint
from .blocks.blocks_store import BlockRepository
from .blocks.xml_renderer import RenderOptions, render
from .errors import NotFoundError, PromptBlocksError, ValidationError
from .fragments import FragmentCatalog
from .preferences import get_settings
from .settings import db_path, settings
from .storage import SqliteStore, Store
from .transfer import clear_all, export_all, import_all

logger = logging.getLogger(__name__)


def _parse_attributes(pairs: list[str] | None) -> dict[str, str] | None:
    if pairs is None:
        return None
    attributes = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            raise ValidationError(f"Attribute must look like name=value: {pair}", field="attributes")
        attributes[name] = value
    return attributes


def _summary(block: Block) -> str:
    parts = [block.kind.value]
    if block.tag_name:
        parts.append(f"<{block.tag_name}>")
    if block.kind == BlockKind.TEXT and block.content:
        text = block.content.splitlines()[0] if block.content.splitlines() else ""
        parts.append(repr(text[:40] + ("..." if len(text) > 40 else "")))
    if block.kind == BlockKind.FRAGMENT_REF:
        parts.append(f"-> {block.fragment_id}")
    if block.collapsed:
        parts.append("(collapsed)")
    return " ".join(parts)


def cmd_tree(args: argparse.Namespace, store: Store) -> int:
    """Print the block tree."""
    repo = BlockRepository(store)

    def print_block(block: Block) -> None:
        print(f"{'  ' * block.depth}{block.order}. {_summary(block)}  [{block.id}]")
        for child in block.children:
            print_block(child)

    for block in repo.build_tree():
        print_block(block)

    print(f"\nTotal: {repo.count()} blocks")
    return 0


def cmd_add(args: argparse.Namespace, store: Store) -> int:
    """Add a block."""
    repo = BlockRepository(store)
    block = repo.create(
        kind=args.kind,
        content=args.content or "",
        fragment_id=args.fragment,
        tag_name=args.tag,
        attributes=_parse_attributes(args.attr),
        parent_id=args.parent,
    )
    if block.kind == BlockKind.FRAGMENT_REF:
        FragmentCatalog(store).record_usage(block.fragment_id)
    print(f"Created block: {block.id}")
    return 0


def cmd_update(args: argparse.Namespace, store: Store) -> int:
    """Update a block."""
    changes = {}
    if args.content is not None:
        changes["content"] = args.content
    if args.tag is not None:
        changes["tag_name"] = args.tag
    if args.fragment is not None:
        changes["fragment_id"] = args.fragment
    if args.attr is not None:
        changes["attributes"] = _parse_attributes(args.attr)

    repo = BlockRepository(store)
    block = repo.update(args.block_id, changes)
    if block is None:
        raise NotFoundError(f"Block not found: {args.block_id}", resource_type="block", resource_id=args.block_id)
    print(f"Updated block: {block.id}")
    return 0


def cmd_delete(args: argparse.Namespace, store: Store) -> int:
    """Delete a block and its subtree."""
    repo = BlockRepository(store)
    before = repo.count()
    if not repo.delete(args.block_id):
        raise NotFoundError(f"Block not found: {args.block_id}", resource_type="block", resource_id=args.block_id)
    print(f"Deleted {before - repo.count()} block(s)")
    return 0


def cmd_move(args: argparse.Namespace, store: Store) -> int:
    """Move a block to an explicit slot or relative to a drop target."""
    repo = BlockRepository(store)

    if args.before or args.after or args.inside:
        if args.before:
            target_id, hint = args.before, DropHint.BEFORE
        elif args.after:
            target_id, hint = args.after, DropHint.AFTER
        else:
            target_id, hint = args.inside, DropHint.INSIDE
        block = repo.move_relative(args.block_id, target_id, hint)
    else:
        block = repo.move(args.block_id, args.parent, args.order)

    if block is None:
        raise NotFoundError(f"Block not found: {args.block_id}", resource_type="block", resource_id=args.block_id)
    print(f"Moved block {block.id} to position {block.order} under {block.parent_id or 'root'}")
    return 0


def cmd_render(args: argparse.Namespace, store: Store) -> int:
    """Print the rendered prompt."""
    app_settings = get_settings(store)
    options = RenderOptions(
        indent_size=args.indent or app_settings.indent_size,
        line_numbers=args.line_numbers,
    )
    repo = BlockRepository(store)
    catalog = FragmentCatalog(store)
    print(render(repo.build_tree(), catalog.lookup, options))
    return 0


def cmd_fragments(args: argparse.Namespace, store: Store) -> int:
    """List fragments."""
    catalog = FragmentCatalog(store)
    fragments = catalog.search(args.search or "")

    print(f"\n{'ID':<38} {'Title':<30} {'Uses':<6} {'Fav'}")
    print("-" * 80)
    for fragment in fragments:
        favorite = "*" if fragment.is_favorite else ""
        print(f"{fragment.id:<38} {fragment.title[:30]:<30} {fragment.usage_count:<6} {favorite}")

    print(f"\nTotal: {len(fragments)} fragments")
    return 0


def cmd_add_fragment(args: argparse.Namespace, store: Store) -> int:
    """Add a fragment."""
    fragment = FragmentCatalog(store).create(title=args.title, content=args.content)
    print(f"Created fragment: {fragment.id}")
    return 0


def cmd_export(args: argparse.Namespace, store: Store) -> int:
    """Export all data as JSON."""
    document = export_all(store)
    if args.file:
        Path(args.file).write_text(document, encoding="utf-8")
        print(f"Exported to {args.file}")
    else:
        print(document)
    return 0


def cmd_import(args: argparse.Namespace, store: Store) -> int:
    """Import a JSON export."""
    text = Path(args.file).read_text(encoding="utf-8")
    imported = import_all(store, text)
    print(f"Imported: {', '.join(imported) or 'nothing'}")
    return 0


def cmd_clear(args: argparse.Namespace, store: Store) -> int:
    """Remove all stored data."""
    clear_all(store)
    print("All data cleared")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="promptblocks",
        description="Compose structured prompts from a tree of blocks",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--db", help=f"Database file (default: {db_path()})")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("tree", help="Show the block tree")
    p.set_defaults(func=cmd_tree)

    p = sub.add_parser("add", help="Add a block")
    p.add_argument("kind", choices=[k.value for k in BlockKind])
    p.add_argument("--parent", help="Parent container ID (root if omitted)")
    p.add_argument("--tag", help="Tag name")
    p.add_argument("--content", help="Inline text")
    p.add_argument("--fragment", help="Fragment ID for fragmentRef blocks")
    p.add_argument("--attr", action="append", metavar="NAME=VALUE", help="Tag attribute (repeatable)")
    p.set_defaults(func=cmd_add)

    p = sub.add_parser("update", help="Update a block")
    p.add_argument("block_id")
    p.add_argument("--tag")
    p.add_argument("--content")
    p.add_argument("--fragment")
    p.add_argument("--attr", action="append", metavar="NAME=VALUE")
    p.set_defaults(func=cmd_update)

    p = sub.add_parser("delete", help="Delete a block and its subtree")
    p.add_argument("block_id")
    p.set_defaults(func=cmd_delete)

    p = sub.add_parser("move", help="Move a block")
    p.add_argument("block_id")
    p.add_argument("--parent", help="New parent container ID (root if omitted)")
    p.add_argument("--order", type=int, default=0, help="Position among new siblings")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--before", metavar="TARGET_ID")
    group.add_argument("--after", metavar="TARGET_ID")
    group.add_argument("--inside", metavar="TARGET_ID")
    p.set_defaults(func=cmd_move)

    p = sub.add_parser("render", help="Print the rendered prompt")
    p.add_argument("--line-numbers", action="store_true")
    p.add_argument("--indent", type=int, choices=[2, 4])
    p.set_defaults(func=cmd_render)

    p = sub.add_parser("fragments", help="List fragments")
    p.add_argument("--search")
    p.set_defaults(func=cmd_fragments)

    p = sub.add_parser("add-fragment", help="Add a fragment")
    p.add_argument("title")
    p.add_argument("content")
    p.set_defaults(func=cmd_add_fragment)

    p = sub.add_parser("export", help="Export all data as JSON")
    p.add_argument("file", nargs="?")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("import", help="Import a JSON export")
    p.add_argument("file")
    p.set_defaults(func=cmd_import)

    p = sub.add_parser("clear", help="Remove all stored data")
    p.set_defaults(func=cmd_clear)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    store = SqliteStore(args.db or db_path())
    try:
        return args.func(args, store)
    except PromptBlocksError as e:
        logger.debug("Command %s failed: %s", args.command, e.to_dict())
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        store.close()
