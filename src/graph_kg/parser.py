#!/usr/bin/env python3
"""
parser.py

Source parsers: repo -> ParsedGraph (nodes, relationships).

The pipeline treats a parser as an opaque collaborator; anything with a
``parse(root)`` method returning a :class:`~graph_kg.model.ParsedGraph` will do.

:class:`PythonSourceParser` is a pure, deterministic AST pass:

    File   (path, name, extension)
    Scope  (function | class | method)

    Scope -[:DEFINED_IN]->    File
    Scope -[:HAS_PARENT]->    Scope   (method -> class)
    Scope -[:INHERITS_FROM]-> Scope   (bases defined in the same module)
    Scope -[:CONSUMES]->      Scope   (calls resolved in the same module)

External symbols are not materialized.

Author: Eric G. Suchanek, PhD
"""

from __future__ import annotations

import ast
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger

from graph_kg.model import ParsedGraph, ParsedNode, ParsedRelationship, identity_key

# ============================================================================
# Contract
# ============================================================================


@runtime_checkable
class SourceParser(Protocol):
    """Anything that turns a root directory into the full current entity set."""

    def parse(self, root: Path) -> ParsedGraph: ...


# ============================================================================
# Constants
# ============================================================================

SKIP_DIRS = {
    ".git",
    ".venv",
    "venv",
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    "node_modules",
}

FILE_LABEL = "File"
SCOPE_LABEL = "Scope"


# ============================================================================
# Utility helpers
# ============================================================================


def iter_python_files(root: Path) -> Iterable[Path]:
    """
    Yield Python files under *root* in a stable order.

    :param root: Repository root
    """
    for dirpath, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in SKIP_DIRS and not d.startswith("."))
        for f in sorted(files):
            if f.endswith(".py") and not f.startswith("."):
                yield Path(dirpath) / f


def rel_path(path: Path, root: Path) -> str:
    return str(path.relative_to(root)).replace("\\", "/")


def expr_to_name(expr: ast.AST) -> str | None:
    """
    Convert AST expression to dotted name (best effort).

    :param expr: AST node
    """
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        left = expr_to_name(expr.value)
        return f"{left}.{expr.attr}" if left else expr.attr
    if isinstance(expr, ast.Call):
        return expr_to_name(expr.func)
    if isinstance(expr, ast.Subscript):
        return expr_to_name(expr.value)
    return None


def signature_of(stmt: ast.AST) -> str:
    """One-line declaration of a def or class statement."""
    if isinstance(stmt, ast.ClassDef):
        bases = ", ".join(ast.unparse(b) for b in stmt.bases)
        return f"class {stmt.name}({bases})" if bases else f"class {stmt.name}"

    prefix = "async def" if isinstance(stmt, ast.AsyncFunctionDef) else "def"
    sig = f"{prefix} {stmt.name}({ast.unparse(stmt.args)})"
    if stmt.returns is not None:
        sig += f" -> {ast.unparse(stmt.returns)}"
    return sig


def scope_identity(file: str, name: str, kind: str, start_line: int) -> str:
    return identity_key(file, name, kind, start_line)


# ============================================================================
# Python parser
# ============================================================================


class PythonSourceParser:
    """
    AST-based :class:`SourceParser` for Python trees.

    Files that fail to parse are skipped (logged at debug level); the
    parser never raises on bad input. Always parses the whole tree: the
    pipeline treats anything missing from the parse as deleted.
    """

    labels = (FILE_LABEL, SCOPE_LABEL)

    def parse(self, root: Path) -> ParsedGraph:
        root = Path(root).resolve()
        graph = ParsedGraph()

        for pyfile in iter_python_files(root):
            self._parse_file(pyfile, root, graph)

        logger.debug(
            "parsed {}: {} nodes, {} relationships",
            root,
            len(graph.nodes),
            len(graph.relationships),
        )
        return graph

    # ------------------------------------------------------------------

    def _parse_file(self, pyfile: Path, root: Path, graph: ParsedGraph) -> None:
        path = rel_path(pyfile, root)
        try:
            src = pyfile.read_text(encoding="utf-8")
            tree = ast.parse(src, filename=path)
        except (SyntaxError, UnicodeDecodeError, OSError) as exc:
            logger.debug("skipping {}: {}", path, exc)
            return

        file_key = identity_key(path)
        graph.nodes.append(
            ParsedNode(
                labels=(FILE_LABEL,),
                identity=file_key,
                content=src,
                properties={
                    "path": path,
                    "name": pyfile.name,
                    "extension": pyfile.suffix,
                    "lineCount": src.count("\n") + 1,
                },
            )
        )

        # name -> identity key, for in-module resolution
        locals_: dict[str, str] = {}
        class_methods: dict[str, dict[str, str]] = {}
        defs: dict[ast.AST, str] = {}
        rels: dict[tuple[str, str, str], ParsedRelationship] = {}

        def add_scope(stmt: ast.AST, kind: str, qualname: str) -> str:
            key = scope_identity(path, stmt.name, kind, stmt.lineno)
            segment = ast.get_source_segment(src, stmt) or ""
            graph.nodes.append(
                ParsedNode(
                    labels=(SCOPE_LABEL,),
                    identity=key,
                    content=segment,
                    properties={
                        "name": stmt.name,
                        "qualname": qualname,
                        "type": kind,
                        "file": path,
                        "startLine": stmt.lineno,
                        "endLine": getattr(stmt, "end_lineno", stmt.lineno),
                        "signature": signature_of(stmt),
                        "source": segment,
                        "docstring": ast.get_docstring(stmt),
                    },
                )
            )
            rels[(key, "DEFINED_IN", file_key)] = ParsedRelationship("DEFINED_IN", key, file_key)
            defs[stmt] = key
            return key

        # --------------------
        # PASS 1: definitions
        # --------------------
        for stmt in tree.body:
            if isinstance(stmt, ast.ClassDef):
                cls_key = add_scope(stmt, "class", stmt.name)
                locals_[stmt.name] = cls_key
                class_methods[stmt.name] = {}

                for cstmt in stmt.body:
                    if isinstance(cstmt, ast.FunctionDef | ast.AsyncFunctionDef):
                        m_qn = f"{stmt.name}.{cstmt.name}"
                        m_key = add_scope(cstmt, "method", m_qn)
                        rels[(m_key, "HAS_PARENT", cls_key)] = ParsedRelationship(
                            "HAS_PARENT", m_key, cls_key
                        )
                        class_methods[stmt.name][cstmt.name] = m_key
                        locals_[m_qn] = m_key

            elif isinstance(stmt, ast.FunctionDef | ast.AsyncFunctionDef):
                locals_[stmt.name] = add_scope(stmt, "function", stmt.name)

        # inheritance, once every class in the module is known
        for stmt in tree.body:
            if not isinstance(stmt, ast.ClassDef):
                continue
            for base in stmt.bases:
                bname = expr_to_name(base)
                dst = locals_.get(bname) if bname else None
                if dst and dst != defs[stmt]:
                    rels[(defs[stmt], "INHERITS_FROM", dst)] = ParsedRelationship(
                        "INHERITS_FROM", defs[stmt], dst
                    )

        # --------------------
        # PASS 2: call graph
        # --------------------
        parent: dict[ast.AST, ast.AST] = {}
        for p in ast.walk(tree):
            for c in ast.iter_child_nodes(p):
                parent[c] = p

        def enclosing_def(n: ast.AST) -> ast.AST | None:
            cur = parent.get(n)
            while cur:
                if cur in defs and not isinstance(cur, ast.ClassDef):
                    return cur
                cur = parent.get(cur)
            return None

        for n in ast.walk(tree):
            if not isinstance(n, ast.Call):
                continue

            fn = enclosing_def(n)
            if fn is None:
                continue
            src_key = defs[fn]

            callee = expr_to_name(n.func)
            if not callee:
                continue

            if callee in locals_:
                dst_key = locals_[callee]
            elif callee.startswith("self."):
                owner = parent.get(fn)
                methods = class_methods.get(owner.name, {}) if isinstance(owner, ast.ClassDef) else {}
                dst_key = methods.get(callee.split(".", 1)[1])
            else:
                dst_key = None

            if dst_key and dst_key != src_key:
                rels[(src_key, "CONSUMES", dst_key)] = ParsedRelationship(
                    "CONSUMES", src_key, dst_key, {"line": n.lineno}
                )

        graph.relationships.extend(rels.values())
