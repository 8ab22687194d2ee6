"""
Command-line interface for the Agent Memory package.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .config import load_config
from .llm.factory import EmbeddingBackend
from .memory import ConfigurationError, MemoryEntry, MemorySearchOptions, ProjectMemory
from .memory.types import coerce_memory_type, type_value


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="agent-memory",
        description="Agent Memory - persistent project knowledge for AI coding assistants",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Remember a decision
  agent-memory --project my-service store "Using PostgreSQL for JSONB support" --type decision --tags db

  # Search project knowledge
  agent-memory --project my-service search "database"

  # Print prompt context for a question
  agent-memory --project my-service context "how do we store sessions?"

  # Use a specific Redis server
  agent-memory --project my-service --redis-url redis://localhost:6379/0 count
        """
    )

    parser.add_argument(
        "--project", "-p",
        help="Project id (defaults to AGENT_MEMORY_PROJECT or the config file)"
    )
    parser.add_argument(
        "--config",
        help="Path to a .agent-memory.yml configuration file"
    )
    parser.add_argument(
        "--redis-url",
        help="Redis URL for the primary backend"
    )
    parser.add_argument(
        "--sqlite-path",
        help="Path to the SQLite fallback database"
    )
    parser.add_argument(
        "--embeddings",
        choices=[backend.value for backend in EmbeddingBackend],
        help="Embedding provider to use"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Store
    store_parser = subparsers.add_parser("store", help="Store project knowledge")
    store_parser.add_argument("content", help="The knowledge to remember")
    store_parser.add_argument(
        "--type", "-t",
        default="context",
        help="Knowledge type (context, architecture, dependency, config, pattern, decision, todo, issue)"
    )
    store_parser.add_argument(
        "--importance", "-i",
        type=float,
        help="Importance score 0-1 (defaults to the type's default)"
    )
    store_parser.add_argument("--tags", nargs="*", help="Tags")

    # Search
    search_parser = subparsers.add_parser("search", help="Search project knowledge")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--limit", "-n", type=int, default=10, help="Maximum results")
    search_parser.add_argument("--type", "-t", help="Restrict to one knowledge type")
    search_parser.add_argument("--tags", nargs="*", help="Restrict to entries with any of these tags")
    search_parser.add_argument(
        "--min-importance",
        type=float,
        help="Minimum importance score"
    )

    # Context
    context_parser = subparsers.add_parser(
        "context",
        help="Print the knowledge context composed for a query"
    )
    context_parser.add_argument("query", help="Query to compose context for")

    # Listings
    recent_parser = subparsers.add_parser("recent", help="List the newest entries")
    recent_parser.add_argument("--limit", "-n", type=int, default=10, help="Maximum results")

    important_parser = subparsers.add_parser("important", help="List the most important entries")
    important_parser.add_argument("--limit", "-n", type=int, default=10, help="Maximum results")

    subparsers.add_parser("count", help="Print the number of stored entries")
    subparsers.add_parser("info", help="Show backend, embedding provider and configuration")

    # Clear
    clear_parser = subparsers.add_parser(
        "clear",
        help="Delete all entries of the project (use with caution!)"
    )
    clear_parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Skip confirmation"
    )

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.verbose)

    try:
        config = load_config(
            config_path=args.config,
            project_id=args.project,
            redis_url=args.redis_url,
            sqlite_path=args.sqlite_path,
            embedding_provider=args.embeddings,
        )
        asyncio.run(run_command(config, args))
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)


async def run_command(config, args):
    """Open the project memory and dispatch a command."""
    memory = await ProjectMemory.create(config)

    try:
        if args.command == "store":
            await handle_store(memory, args)
        elif args.command == "search":
            await handle_search(memory, args)
        elif args.command == "context":
            await handle_context(memory, args)
        elif args.command == "recent":
            print_entries(await memory.get_recent(args.limit))
        elif args.command == "important":
            print_entries(await memory.get_important(args.limit))
        elif args.command == "count":
            print(await memory.get_count())
        elif args.command == "info":
            await handle_info(memory, config)
        elif args.command == "clear":
            await handle_clear(memory, args)
    finally:
        await memory.close()


def print_entries(entries: List[MemoryEntry]):
    """Print entries in a readable list."""
    if not entries:
        print("No memories found.")
        return

    for i, entry in enumerate(entries, 1):
        print(f"{i}. [{type_value(entry.memory_type)}] Importance: {entry.importance:.2f}")
        print(f"   ID: {entry.id}")
        content_preview = entry.content[:100].replace('\n', ' ')
        if len(entry.content) > 100:
            content_preview += "..."
        print(f"   Content: {content_preview}")
        if entry.tags:
            print(f"   Tags: {', '.join(entry.tags)}")
        print()


async def handle_store(memory: ProjectMemory, args):
    """Store an entry."""
    memory_type = coerce_memory_type(args.type)
    if memory_type.value != args.type.strip().lower():
        print(f"Unknown type '{args.type}', storing as '{memory_type.value}'")

    if args.importance is None:
        entry_id = await getattr(memory, f"store_{memory_type.value}")(args.content, tags=args.tags)
    else:
        entry_id = await memory.store(
            args.content,
            memory_type,
            importance=args.importance,
            tags=args.tags,
        )
    print(f"Stored {memory_type.value} memory: {entry_id}")


async def handle_search(memory: ProjectMemory, args):
    """Search entries."""
    options = MemorySearchOptions(
        limit=args.limit,
        memory_type=coerce_memory_type(args.type) if args.type else None,
        tags=args.tags or None,
        min_importance=args.min_importance,
    )
    results = await memory.search(args.query, options)

    if not results:
        print("No memories found matching your query.")
        return

    print(f"Found {len(results)} matching memories:\n")
    print_entries(results)


async def handle_context(memory: ProjectMemory, args):
    """Print composed context."""
    context = await memory.get_context_for_query(args.query)
    print(context or "No project knowledge available.")


async def handle_info(memory: ProjectMemory, config):
    """Print backend information and the redacted configuration."""
    info = {
        "project_id": memory.project_id,
        "storage_type": memory.storage_type.value,
        "embedding_provider": memory.embedding_provider,
        "count": await memory.get_count(),
        "available": await memory.is_available(),
        "config": config.to_dict(),
    }
    print(json.dumps(info, indent=2))


async def handle_clear(memory: ProjectMemory, args):
    """Clear all entries of the project."""
    if not args.yes:
        confirm = input(
            f"Are you sure you want to clear ALL memories of '{memory.project_id}'? "
            "This cannot be undone. [y/N]: "
        )
        if confirm.lower() != 'y':
            print("Aborted.")
            return

    await memory.clear()
    print("All memories have been cleared.")


if __name__ == "__main__":
    main()
