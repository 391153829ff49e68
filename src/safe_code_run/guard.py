"""Syntax-tree guard applied by the worker before any code runs.

The capability table only controls which names are in scope. Objects reached
through those names still carry interpreter internals: tracebacks lead to
frames, frames lead to the worker's real builtins. This guard rejects every
attribute path into those internals, whatever the source text looks like, so
the check holds even with an empty denylist.
"""

from __future__ import annotations

import ast
import re

# Frame, traceback, generator and coroutine internals without a dunder name.
INTROSPECTION_ATTRIBUTES = frozenset(
    {
        "tb_frame",
        "tb_next",
        "tb_lasti",
        "f_back",
        "f_builtins",
        "f_code",
        "f_globals",
        "f_locals",
        "f_trace",
        "gi_code",
        "gi_frame",
        "gi_yieldfrom",
        "cr_await",
        "cr_code",
        "cr_frame",
        "ag_await",
        "ag_code",
        "ag_frame",
        "mro",
    }
)

# str.format replacement fields and the attribute steps inside them, e.g. "{0.__init__}".
_FORMAT_FIELD = re.compile(r"\{([^{}]*)\}")
_FIELD_ATTRIBUTE = re.compile(r"\.\s*([A-Za-z_][A-Za-z0-9_]*)")


class SandboxViolation(Exception):
    """Code reaches for interpreter internals the sandbox does not grant.

    Example:
        ```python
        raise SandboxViolation("Attribute 'f_back' is not available in the sandbox (line 1)")
        ```
    """


def is_blocked_attribute(name: str) -> bool:
    """Return True for private, dunder and introspection attribute names.

    Example:
        ```python
        assert is_blocked_attribute("__globals__")
        assert not is_blocked_attribute("append")
        ```
    """
    return name.startswith("_") or name in INTROSPECTION_ATTRIBUTES


class _AttributeGuard(ast.NodeVisitor):
    """Stop at the first blocked attribute path in a module.

    Example:
        ```python
        _AttributeGuard().visit(ast.parse("x.f_back"))
        ```
    """

    def _reject(self, name: str, node: ast.AST) -> None:
        """Raise a violation naming the attribute and its line.

        Example:
            ```python
            self._reject("f_back", node)
            ```
        """
        line = getattr(node, "lineno", 0)
        raise SandboxViolation(f"Attribute '{name}' is not available in the sandbox (line {line})")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        """Reject `obj.<blocked>` in load, store and delete position.

        Example:
            ```python
            guard.visit(ast.parse("err.__traceback__"))
            ```
        """
        if is_blocked_attribute(node.attr):
            self._reject(node.attr, node)
        self.generic_visit(node)

    def visit_MatchClass(self, node: ast.MatchClass) -> None:
        """Reject class patterns that read blocked attributes by keyword.

        Example:
            ```python
            guard.visit(ast.parse("match e:\\n    case E(__traceback__=tb): pass"))
            ```
        """
        for name in node.kwd_attrs:
            if is_blocked_attribute(name):
                self._reject(name, node)
        self.generic_visit(node)

    def visit_Constant(self, node: ast.Constant) -> None:
        """Reject format strings whose fields walk into blocked attributes.

        Adjacent literals are already merged into one constant by the parser.

        Example:
            ```python
            guard.visit(ast.parse("'{0.__init__}'.format(x)"))
            ```
        """
        if isinstance(node.value, str):
            for field in _FORMAT_FIELD.finditer(node.value):
                field_name = re.split(r"[!:]", field.group(1), maxsplit=1)[0]
                for step in _FIELD_ATTRIBUTE.finditer(field_name):
                    if is_blocked_attribute(step.group(1)):
                        self._reject(step.group(1), node)


def check_tree(tree: ast.AST) -> None:
    """Raise `SandboxViolation` if the tree touches interpreter internals.

    Example:
        ```python
        check_tree(ast.parse("set_result(sum(numbers))"))
        ```
    """
    _AttributeGuard().visit(tree)
