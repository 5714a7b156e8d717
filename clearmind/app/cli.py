#!/usr/bin/env python3
"""
ClearMind command line.

    clearmind serve [host <addr>] [port <n>]
    clearmind reindex [user <id>] [batch-size <n>]
    clearmind search <user> <query...> [limit <n>]
    clearmind config get <key>
    clearmind config set <key> <value>
"""

import sys
from typing import Any, Dict, List

from clearmind.app.config import AppConfig, load_env, get_db_url
from clearmind.core.cli_parser import (
    ArgStream, CommandParser, CommandSpec, CLIError, CLIHelp,
    parse_int_option, parse_option,
)
from clearmind.core.embedding import TrigramEmbeddingClient
from clearmind.core.entries import EntryService
from clearmind.core.retrieval import RetrievalService
from clearmind.storage.db import Database
from clearmind.core.syslog2 import *


# ============================================================================
# Parsers
# ============================================================================

def parse_serve(stream: ArgStream) -> dict:
    """Parse serve command."""
    return {
        "host": parse_option(stream, "host") or "127.0.0.1",
        "port": parse_int_option(stream, "port", 8000),
    }


def parse_reindex(stream: ArgStream) -> dict:
    """Parse reindex command."""
    return {
        "user": parse_option(stream, "user"),
        "batch_size": parse_int_option(stream, "batch-size", 128),
    }


def parse_search(stream: ArgStream) -> dict:
    """Parse search command."""
    user = stream.expect("user id")
    words = stream.rest()

    # only a trailing "limit <n>" pair is an option, "limit" elsewhere is query text
    limit = None
    if len(words) >= 2 and words[-2].lower() == "limit" and words[-1].isdigit():
        limit = int(words[-1])
        words = words[:-2]

    query = " ".join(words).strip()
    if not query:
        raise CLIError("expected search query")
    return {"user": user, "query": query, "limit": limit}


def parse_config(stream: ArgStream) -> dict:
    """Parse config get/set command."""
    if not stream.has_next():
        raise CLIError("config subcommand required (get, set)")
    subcmd = stream.next().lower()
    if subcmd == "get":
        return {"config_command": "get", "key": stream.expect("key"), "value": None}
    if subcmd == "set":
        key = stream.expect("key")
        return {"config_command": "set", "key": key, "value": stream.expect("value")}
    raise CLIError(f"unknown config subcommand: {subcmd}")


COMMANDS = [
    CommandSpec("serve", parse_serve,
                help_text="serve [host <addr>] [port <n>] - run the HTTP API (default 127.0.0.1:8000)"),
    CommandSpec("search", parse_search,
                help_text="search <user> <query...> [limit <n>] - semantic search over a user's entries"),
    CommandSpec("reindex", parse_reindex,
                help_text="reindex [user <id>] [batch-size <n>] - compute embeddings for entries stored without one"),
    CommandSpec("config", parse_config,
                help_text="config get <key> | config set <key> <value> - read or change config.json\n\n"
                          "Keys: " + ", ".join(AppConfig.DEFAULTS)),
]


# ============================================================================
# Handlers
# ============================================================================

def cmd_serve(args) -> None:
    from clearmind.app.server import run_server
    run_server(host=args.host, port=args.port, log_level=args.log_level)


def cmd_reindex(args, db: Database) -> int:
    service = EntryService(db, TrigramEmbeddingClient())
    updated = service.reindex(user_id=args.user, batch_size=args.batch_size)
    syslog2(LOG_NOTICE, "reindex complete", updated=updated, total=db.count_entries(args.user))
    return updated


def cmd_search(args, db: Database, config: AppConfig) -> List[Dict[str, Any]]:
    policy = config.search_policy()
    if args.limit:
        policy = policy.with_limit(args.limit)
    results = RetrievalService(db, TrigramEmbeddingClient()).search(args.user, args.query, policy)

    if not results:
        syslog2(LOG_NOTICE, "no matching entries", user=args.user, query=args.query)
    for rank, item in enumerate(results, 1):
        syslog2(
            LOG_NOTICE,
            f"#{rank}",
            similarity=round(item["similarity"], 4),
            date=(item["createdAt"] or "")[:10],
            title=item["title"],
            content=item["content"],
        )
    return results


def cmd_config(args, config: AppConfig) -> Any:
    """Handle configuration commands."""
    try:
        if args.config_command == "set":
            config.set(args.key, args.value)
            syslog2(LOG_NOTICE, "config updated", key=args.key, value=config.get(args.key))
        value = config.get(args.key)
    except KeyError:
        raise CLIError(f"unknown config key: {args.key} (keys: {', '.join(AppConfig.DEFAULTS)})")
    except ValueError as e:
        raise CLIError(str(e))

    if args.config_command == "get":
        syslog2(LOG_NOTICE, "config", key=args.key, value=value)
    return value


def run(argv: List[str]) -> int:
    parser = CommandParser(COMMANDS)

    try:
        cmd_name, args = parser.parse(argv)
    except CLIHelp:
        setup_log(LOG_NOTICE)
        topic = argv[1] if len(argv) > 1 and argv[0] in ("-h", "--help", "help") else None
        syslog2(LOG_NOTICE, "help", help_text=parser.get_help(topic))
        return 0
    except CLIError as e:
        setup_log(LOG_NOTICE)
        syslog2(LOG_ERR, f"Error: {e}")
        return 1

    setup_log(args.log_level)
    syslog2(LOG_DEBUG, "args:", command=cmd_name, **vars(args))

    try:
        if cmd_name == "serve":
            cmd_serve(args)
        elif cmd_name == "reindex":
            cmd_reindex(args, Database(get_db_url()))
        elif cmd_name == "search":
            cmd_search(args, Database(get_db_url()), AppConfig())
        elif cmd_name == "config":
            cmd_config(args, AppConfig())
    except CLIError as e:
        syslog2(LOG_ERR, f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        syslog2(LOG_NOTICE, "interrupted")
        return 130
    return 0


def main():
    """Main CLI entry point."""
    load_env()
    sys.exit(run(sys.argv[1:]))


if __name__ == '__main__':
    main()
