#!/usr/bin/env python3
"""
glassist CLI: run the assistant and look after its chat history.

Every command has a short name and a standard alias:

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start           Start the API server
    chats           list, ls        List stored chats, newest first
    show            cat             Print one chat's transcript
    search          find            Substring search over chats
    delete          rm              Delete a chat and its messages
    dump            export          Export every chat to JSON
    tools           -               List the GitLab tools the model can call
    stats           info            Show config and storage stats
"""

import argparse
import json

from glassist import __version__


def _store():
    from glassist.config import get_config
    from glassist.storage.sqlite_store import SQLiteStore

    return SQLiteStore(get_config()["storage"]["sqlite_path"])


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the API server."""
    import uvicorn
    from glassist.config import get_config

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(f"  glassist v{__version__} on {host}:{port}")
    print(f"  LLM:    {cfg['llm']['url']} ({cfg['llm']['model']})")
    print(f"  GitLab: {cfg['gitlab'].get('url') or 'https://gitlab.com/api/v4'}")
    print()

    uvicorn.run(
        "glassist.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_chats(args):
    """List stored chats."""
    store = _store()
    offset = (max(args.page, 1) - 1) * args.limit
    result = store.list_chats(limit=args.limit, offset=offset)

    if not result["chats"]:
        print("  No chats yet.")
        return

    print(f"  {'ID':<34} {'Msgs':>5}  {'Updated':<20} Title")
    print("  " + "─" * 80)
    for chat in result["chats"]:
        print(f"  {chat.id:<34} {chat.message_count:>5}  {chat.updated_at[:19]:<20} {chat.title}")

    shown = offset + len(result["chats"])
    print(f"\n  Showing {offset + 1}-{shown} of {result['total']}")


def cmd_show(args):
    """Print one chat's transcript."""
    from glassist.errors import ChatNotFoundError

    store = _store()
    try:
        chat = store.get_chat(args.chat_id)
        messages = store.load_chat(args.chat_id)
    except ChatNotFoundError as e:
        print(f"  ✗  {e}")
        return

    print(f"  {chat.title}  ({chat.id})")
    print("  " + "─" * 56)
    for msg in messages:
        role_color = "\033[96m" if msg.role == "user" else "\033[93m"
        reset = "\033[0m"
        print(f"\n  {role_color}{msg.role.upper()}{reset}  {msg.created_at[:19]}")
        for call in msg.tool_calls:
            marker = "✗" if call.is_error else "⚡"
            print(f"    {marker} {call.name}({json.dumps(call.input)})")
        if msg.content:
            print(f"    {msg.content}")


def cmd_search(args):
    """Substring search over chat titles and messages."""
    from glassist.config import get_config
    from glassist.search import search_chats

    search_cfg = get_config().get("search", {})
    query = " ".join(args.query)
    print(f"  🔍 Searching for: '{query}'")
    print("  " + "─" * 56)

    results = search_chats(
        _store(),
        query,
        limit=args.results or search_cfg.get("limit", 10),
        excerpt_length=search_cfg.get("excerpt_length", 100),
    )
    if not results:
        print("  No matches.")
        return

    for i, hit in enumerate(results, 1):
        print(f"\n  [{i}] {hit['title']}")
        print(f"      chat: {hit['id']} | updated: {hit['updatedAt'][:19]}")
        print(f"      {hit['excerpt']}")


def cmd_delete(args):
    """Delete a chat."""
    from glassist.errors import ChatNotFoundError

    try:
        _store().delete_chat(args.chat_id)
    except ChatNotFoundError as e:
        print(f"  ✗  {e}")
        return
    print(f"  ✓  Deleted chat {args.chat_id}")


def cmd_dump(args):
    """Export chats to JSON."""
    from glassist.config import get_config

    store = _store()
    stats = store.get_stats()
    print(f"  Database: {get_config()['storage']['sqlite_path']}")
    print(f"  Chats: {stats['chats']} | Messages: {stats['messages']}")

    data = store.export_all_json()
    indent = 2 if args.pretty else None
    with open(args.output, "w") as f:
        json.dump(data, f, indent=indent, ensure_ascii=False)

    print(f"  Dumped {len(data)} chats to {args.output}")


def cmd_tools(args):
    """List the registered tools."""
    from glassist.tools.registry import TOOL_SPECS

    for spec in TOOL_SPECS:
        print(f"  ⚡ {spec.name.value:<18} {spec.description}")


def cmd_stats(args):
    """Show config and storage stats at a glance."""
    from glassist.config import get_config

    cfg = get_config()
    print("  Configuration")
    print(f"  ├─ LLM:       {cfg['llm']['url']}")
    print(f"  ├─ Model:     {cfg['llm']['model']} (max {cfg['llm'].get('max_steps', 5)} steps)")
    print(f"  ├─ GitLab:    {cfg['gitlab'].get('url') or 'https://gitlab.com/api/v4'}")
    print(f"  ├─ Token set: {'yes' if cfg['gitlab'].get('token') else 'no'}")
    print(f"  └─ SQLite:    {cfg['storage']['sqlite_path']}")

    stats = _store().get_stats()
    print()
    print("  Storage")
    print(f"  ├─ Chats:      {stats['chats']}")
    print(f"  ├─ Messages:   {stats['messages']}")
    print(f"  ├─ User msgs:  {stats['user_messages']}")
    print(f"  ├─ Asst msgs:  {stats['assistant_messages']}")
    print(f"  └─ Tool calls: {stats['tool_calls']}")

    if stats["tools"]:
        print()
        print("  Tool usage")
        items = sorted(stats["tools"].items(), key=lambda x: x[1], reverse=True)
        for i, (name, count) in enumerate(items):
            prefix = "└─" if i == len(items) - 1 else "├─"
            print(f"  {prefix} {name}: {count}")


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name and aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="glassist",
        description="glassist: GitLab chat assistant with persistent, searchable history.",
        epilog="Run 'glassist <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", "-v", action="version", version=f"glassist {__version__}")
    sub = parser.add_subparsers(dest="command")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Bind host (default: from config)")
        p.add_argument("--port", "-p", type=int, default=None, help="Bind port (default: from config)")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    _add_command(sub, ["serve", "start"], "Start the API server", cmd_serve, setup_serve)

    def setup_chats(p):
        p.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
        p.add_argument("--limit", "-n", type=int, default=20, help="Chats per page (default: 20)")

    _add_command(sub, ["chats", "list", "ls"], "List stored chats", cmd_chats, setup_chats)

    def setup_show(p):
        p.add_argument("chat_id", help="Chat id")

    _add_command(sub, ["show", "cat"], "Print one chat's transcript", cmd_show, setup_show)

    def setup_search(p):
        p.add_argument("query", nargs="+", help="Search query")
        p.add_argument("--results", "-n", type=int, default=None, help="Max hits per source")

    _add_command(sub, ["search", "find"], "Substring search over chats", cmd_search, setup_search)

    def setup_delete(p):
        p.add_argument("chat_id", help="Chat id")

    _add_command(sub, ["delete", "rm"], "Delete a chat and its messages", cmd_delete, setup_delete)

    def setup_dump(p):
        p.add_argument("--output", "-o", default="chats_export.json", help="Output file")
        p.add_argument("--pretty", action="store_true", help="Pretty-print JSON")

    _add_command(sub, ["dump", "export"], "Export every chat to JSON", cmd_dump, setup_dump)

    _add_command(sub, ["tools"], "List the GitLab tools the model can call", cmd_tools)

    _add_command(sub, ["stats", "info"], "Show config and storage stats", cmd_stats)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
