"""Dispatcher for ``python -m graph_kg <subcommand> [args…]``.

Subcommands
-----------
ingest      Incrementally ingest a repository
query       Run a filter / semantic / expand query
schema      Introspect the live graph schema
watch       Re-ingest a repository whenever its files change
mcp         Start the MCP server
"""

import sys

_COMMANDS: dict[str, str] = {
    "ingest": "graph_kg.build_graphkg",
    "query": "graph_kg.graphkg_query",
    "schema": "graph_kg.graphkg_schema",
    "watch": "graph_kg.graphkg_watch",
    "mcp": "graph_kg.mcp_server",
}

_HELP = """\
usage: python -m graph_kg <subcommand> [options]

subcommands:
  ingest      Incrementally ingest a repository
  query       Run a filter / semantic / expand query
  schema      Introspect the live graph schema
  watch       Re-ingest a repository whenever its files change
  mcp         Start the MCP server

Run  python -m graph_kg <subcommand> --help  for per-command options.
"""


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] in ("-h", "--help"):
        print(_HELP, end="")
        sys.exit(0)

    subcommand = sys.argv[1]
    if subcommand not in _COMMANDS:
        print(f"error: unknown subcommand '{subcommand}'\n", file=sys.stderr)
        print(_HELP, end="", file=sys.stderr)
        sys.exit(1)

    # ["graph_kg", "query", "--label", "Scope"] -> ["python -m graph_kg query", "--label", "Scope"]
    sys.argv = [f"python -m graph_kg {subcommand}", *sys.argv[2:]]

    import importlib

    mod = importlib.import_module(_COMMANDS[subcommand])
    mod.main()


if __name__ == "__main__":
    main()
