"""
test_cli.py

Tests for the command-line helpers and the ``python -m graph_kg`` dispatcher.
"""

from __future__ import annotations

import argparse
import sys
import threading
from unittest.mock import MagicMock, patch

import pytest

from graph_kg import __main__ as dispatcher
from graph_kg import graphkg_watch
from graph_kg.errors import GraphKGError
from graph_kg.graphkg_query import build_query, parse_value


def _args(**kw):
    base = dict(
        where=None,
        semantic=None,
        index=None,
        top_k=10,
        min_score=0.0,
        expand=None,
        direction="outgoing",
        order_by=None,
        limit=20,
        offset=0,
    )
    base.update(kw)
    return argparse.Namespace(**base)


def _chain():
    q = MagicMock()
    for name in ("where", "semantic", "expand", "order_by", "offset", "limit"):
        getattr(q, name).return_value = q
    return q


# ---------------------------------------------------------------------------
# parse_value / build_query
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("42", 42),
        ("2.5", 2.5),
        ("TRUE", True),
        ("false", False),
        ("a,b", ["a", "b"]),
        ("1,2", [1, 2]),
        ("parse_file", "parse_file"),
    ],
)
def test_parse_value(raw, expected):
    assert parse_value(raw) == expected


def test_build_query_translates_flags():
    q = _chain()
    build_query(
        q,
        _args(
            where=["type=function", "startLine:gt=10"],
            semantic="parse file",
            index="scopeEmbeddings",
            expand=["CONSUMES:2"],
            order_by=["-startLine"],
            offset=5,
        ),
    )
    assert [c.args[0] for c in q.where.call_args_list] == [{"type": "function"}, {"startLine": {"gt": 10}}]
    q.semantic.assert_called_once_with("parse file", vector_index="scopeEmbeddings", top_k=10, min_score=0.0)
    q.expand.assert_called_once_with("CONSUMES", depth=2, direction="outgoing")
    q.order_by.assert_called_once_with("startLine", descending=True)
    q.offset.assert_called_once_with(5)
    q.limit.assert_called_once_with(20)


def test_build_query_rejects_bare_where():
    with pytest.raises(GraphKGError):
        build_query(_chain(), _args(where=["type"]))


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


def test_dispatcher_help(monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["graph_kg"])
    with pytest.raises(SystemExit) as exc:
        dispatcher.main()
    assert exc.value.code == 0
    assert "subcommands:" in capsys.readouterr().out


def test_dispatcher_unknown_subcommand(monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["graph_kg", "nope"])
    with pytest.raises(SystemExit) as exc:
        dispatcher.main()
    assert exc.value.code == 1
    assert "unknown subcommand 'nope'" in capsys.readouterr().err


def test_dispatcher_forwards_arguments(monkeypatch):
    monkeypatch.setattr("sys.argv", ["graph_kg", "query", "--label", "File"])
    seen = {}
    module = MagicMock()
    module.main.side_effect = lambda: seen.update(argv=list(sys.argv))
    with patch("importlib.import_module", return_value=module) as imp:
        dispatcher.main()
    imp.assert_called_once_with("graph_kg.graphkg_query")
    assert seen["argv"] == ["python -m graph_kg query", "--label", "File"]


# ---------------------------------------------------------------------------
# watch
# ---------------------------------------------------------------------------


def test_watch_ingests_then_watches(monkeypatch, tmp_path, capsys):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("sys.argv", ["graphkg-watch", "--repo", str(tmp_path), "--project", "app", "--interval", "0.5"])
    kg = MagicMock()
    kg.ingest.return_value = MagicMock(created=3, updated=0, deleted=0, unchanged=1)
    stop = threading.Event()
    stop.set()
    with (
        patch.object(graphkg_watch, "GraphKG") as kg_cls,
        patch.object(graphkg_watch, "FileWatcher") as watcher_cls,
    ):
        kg_cls.return_value.__enter__.return_value = kg
        graphkg_watch.main(stop)

    kg.ingest.assert_called_once_with(tmp_path.resolve(), project_id="app", embed=True)
    assert "OK: created=3 updated=0 deleted=0 unchanged=1" in capsys.readouterr().out
    (root, queue), kwargs = watcher_cls.call_args
    assert root == tmp_path.resolve()
    assert kwargs == {"include": ("*.py",)}
    assert queue.batch_interval == 0.5
    watcher_cls.return_value.__enter__.assert_called_once()
    watcher_cls.return_value.__exit__.assert_called_once()

    queue.add_file("a.py")
    assert queue.flush() is kg.ingest.return_value
    assert kg.ingest.call_count == 2


def test_watch_skips_initial_run(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(
        "sys.argv",
        ["graphkg-watch", "--repo", str(tmp_path), "--no-initial", "--no-embed", "--exclude", "build"],
    )
    stop = threading.Event()
    stop.set()
    with (
        patch.object(graphkg_watch, "GraphKG") as kg_cls,
        patch.object(graphkg_watch, "FileWatcher") as watcher_cls,
    ):
        graphkg_watch.main(stop)

    kg = kg_cls.return_value.__enter__.return_value
    kg.ingest.assert_not_called()
    assert watcher_cls.call_args.kwargs == {"include": ("*.py",), "exclude": ["build"]}
    queue = watcher_cls.call_args.args[1]
    queue.add_file("a.py")
    queue.flush()
    kg.ingest.assert_called_once_with(tmp_path.resolve(), project_id=None, embed=False)


def test_dispatcher_knows_watch(monkeypatch):
    monkeypatch.setattr("sys.argv", ["graph_kg", "watch", "--repo", "."])
    module = MagicMock()
    with patch("importlib.import_module", return_value=module) as imp:
        dispatcher.main()
    imp.assert_called_once_with("graph_kg.graphkg_watch")
    module.main.assert_called_once()
