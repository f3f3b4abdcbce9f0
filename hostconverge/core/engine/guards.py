"""
Guard evaluator — boolean conditions over facts and prior results.

Guards are small expressions compiled once, when the plan is built,
so a typo fails the plan before any task runs:

    not has_fact('package:openjdk-17-jdk')
    changed('Add Jenkins repository') and not failed('Install Jenkins')
    'docker' in fact('groups:ubuntu')
    fact('port:8080') =~ 'java'
    len(lines('Check port 8080')) > 0

Grammar::

    expr       := or
    or         := and ("or" and)*
    and        := not ("and" not)*
    not        := "not" not | comparison
    comparison := operand (op operand)?
    op         := == != < <= > >= in "not in" =~
    operand    := STRING | NUMBER | true | false | none | call | "(" expr ")"
    call       := NAME "(" [expr ("," expr)*] ")"

Evaluation is pure. ``and``/``or`` short-circuit. A task that was
skipped, or has not run, has no effect: ``changed(X)`` is false.
Anything compared against ``NOT_FOUND`` is false, except ``!=`` and
``not in``.
A fact the provider cannot determine raises ``FactUnavailable``; any
other evaluation error is raised as ``GuardError``.
"""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Mapping

from hostconverge.core.errors import FactUnavailable, GuardError, GuardSyntaxError
from hostconverge.core.models.fact import NOT_FOUND
from hostconverge.core.models.result import TaskResult

logger = logging.getLogger(__name__)


# ── Tokenizer ───────────────────────────────────────────────────

_TOKEN_RE = re.compile(
    r"""
    \s*(?:
        (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
      | (?P<number>-?\d+(?:\.\d+)?)
      | (?P<op>==|!=|<=|>=|=~|<|>)
      | (?P<punct>[(),])
      | (?P<name>[A-Za-z_][A-Za-z0-9_]*)
    )
    """,
    re.VERBOSE,
)

_KEYWORDS = {"and", "or", "not", "in", "true", "false", "none"}


@dataclass(frozen=True)
class _Token:
    kind: str      # string, number, op, punct, name, keyword, end
    value: Any
    pos: int


def _tokenize(source: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(source):
        if source[pos:].strip() == "":
            break
        m = _TOKEN_RE.match(source, pos)
        if m is None or m.end() == pos:
            raise GuardSyntaxError(
                f"Unexpected character {source[pos:].lstrip()[:1]!r} "
                f"at position {pos} in guard: {source}"
            )
        kind = m.lastgroup or ""
        text = m.group(kind)
        start = m.start(kind)
        if kind == "string":
            value: Any = re.sub(r"\\(['\"\\])", r"\1", text[1:-1])
        elif kind == "number":
            value = float(text) if "." in text else int(text)
        elif kind == "name" and text.lower() in _KEYWORDS:
            kind, value = "keyword", text.lower()
        else:
            value = text
        tokens.append(_Token(kind, value, start))
        pos = m.end()
    tokens.append(_Token("end", None, len(source)))
    return tokens


# ── AST ─────────────────────────────────────────────────────────


class _Scope:
    """What a guard can see while evaluating."""

    def __init__(self, facts: Any, results: Mapping[str, TaskResult]):
        self._facts = facts
        self.results = results

    def fact(self, key: str) -> Any:
        if hasattr(self._facts, "query"):
            return self._facts.query(key)
        if key in self._facts:
            return self._facts[key]
        raise FactUnavailable(key, "not in fact snapshot")


_Node = Callable[[_Scope], Any]


def _result(scope: _Scope, task: str) -> TaskResult | None:
    return scope.results.get(task)


def _fn_changed(scope: _Scope, task: str) -> bool:
    r = _result(scope, task)
    return r is not None and r.outcome == "changed"


def _fn_failed(scope: _Scope, task: str) -> bool:
    r = _result(scope, task)
    return r is not None and r.outcome == "failed"


def _fn_skipped(scope: _Scope, task: str) -> bool:
    r = _result(scope, task)
    return r is not None and r.outcome == "skipped"


def _fn_succeeded(scope: _Scope, task: str) -> bool:
    r = _result(scope, task)
    return r is not None and r.state == "succeeded"


def _fn_ran(scope: _Scope, task: str) -> bool:
    r = _result(scope, task)
    return r is not None and r.outcome != "skipped"


def _fn_stdout(scope: _Scope, task: str) -> str:
    r = _result(scope, task)
    return r.stdout if r is not None else ""


def _fn_stderr(scope: _Scope, task: str) -> str:
    r = _result(scope, task)
    return r.stderr if r is not None else ""


def _fn_lines(scope: _Scope, task: str) -> list[str]:
    r = _result(scope, task)
    return r.stdout_lines if r is not None else []


def _fn_rc(scope: _Scope, task: str) -> int | None:
    r = _result(scope, task)
    return r.exit_code if r is not None else None


def _fn_fact(scope: _Scope, key: str) -> Any:
    return scope.fact(key)


def _fn_has_fact(scope: _Scope, key: str) -> bool:
    return scope.fact(key) is not NOT_FOUND


# name → (implementation, argument refers to: "task" | "fact")
_REF_FUNCTIONS: dict[str, tuple[Callable[[_Scope, str], Any], str]] = {
    "changed": (_fn_changed, "task"),
    "failed": (_fn_failed, "task"),
    "skipped": (_fn_skipped, "task"),
    "succeeded": (_fn_succeeded, "task"),
    "ran": (_fn_ran, "task"),
    "stdout": (_fn_stdout, "task"),
    "stderr": (_fn_stderr, "task"),
    "lines": (_fn_lines, "task"),
    "rc": (_fn_rc, "task"),
    "fact": (_fn_fact, "fact"),
    "has_fact": (_fn_has_fact, "fact"),
}


def _fn_len(value: Any) -> int:
    if value is NOT_FOUND or value is None:
        return 0
    try:
        return len(value)
    except TypeError:
        logger.warning("len() of unsized value %r taken as 0", value)
        return 0


def _fn_lower(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower()
    if isinstance(value, list):
        return [v.lower() if isinstance(v, str) else v for v in value]
    return value


_VALUE_FUNCTIONS: dict[str, Callable[[Any], Any]] = {
    "len": _fn_len,
    "lower": _fn_lower,
}


def _matches(left: Any, right: Any) -> bool:
    if not isinstance(right, str):
        return False
    if isinstance(left, list):
        return any(isinstance(v, str) and re.search(right, v) for v in left)
    if isinstance(left, str):
        return re.search(right, left) is not None
    return False


def _contains(item: Any, container: Any) -> bool:
    if item is NOT_FOUND or container is NOT_FOUND or container is None:
        return False
    if isinstance(container, str) and not isinstance(item, str):
        return False
    return item in container


_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "in": _contains,
    "not in": lambda a, b: not _contains(a, b),
    "=~": _matches,
}


def _compare(op: str, left: Any, right: Any, source: str) -> bool:
    if left is NOT_FOUND or right is NOT_FOUND:
        if op == "!=":
            return left is not right
        if op in ("==", "<", "<=", ">", ">=", "=~"):
            return False
    try:
        return bool(_COMPARATORS[op](left, right))
    except TypeError as e:
        logger.warning("Guard %r: cannot compare %r %s %r (%s)", source, left, op, right, e)
        return False
    except re.error as e:
        logger.warning("Guard %r: invalid regular expression %r (%s)", source, right, e)
        return False


# ── Parser ──────────────────────────────────────────────────────


class _Parser:
    def __init__(self, source: str):
        self.source = source
        self.tokens = _tokenize(source)
        self.pos = 0
        self.task_refs: set[str] = set()
        self.fact_refs: set[str] = set()

    def _peek(self) -> _Token:
        return self.tokens[self.pos]

    def _next(self) -> _Token:
        tok = self.tokens[self.pos]
        self.pos += 1
        return tok

    def _error(self, message: str, tok: _Token) -> GuardSyntaxError:
        return GuardSyntaxError(f"{message} at position {tok.pos} in guard: {self.source}")

    def _expect(self, kind: str, value: Any = None) -> _Token:
        tok = self._next()
        if tok.kind != kind or (value is not None and tok.value != value):
            want = value if value is not None else kind
            got = tok.value if tok.value is not None else "end of expression"
            raise self._error(f"Expected {want!r}, got {got!r}", tok)
        return tok

    def _is(self, kind: str, value: Any = None) -> bool:
        tok = self._peek()
        return tok.kind == kind and (value is None or tok.value == value)

    def parse(self) -> _Node:
        if self._is("end"):
            raise self._error("Empty guard", self._peek())
        node = self._or()
        if not self._is("end"):
            raise self._error(f"Unexpected {self._peek().value!r}", self._peek())
        return node

    def _or(self) -> _Node:
        node = self._and()
        while self._is("keyword", "or"):
            self._next()
            left, right = node, self._and()
            node = lambda s, l=left, r=right: bool(l(s)) or bool(r(s))  # noqa: E731
        return node

    def _and(self) -> _Node:
        node = self._not()
        while self._is("keyword", "and"):
            self._next()
            left, right = node, self._not()
            node = lambda s, l=left, r=right: bool(l(s)) and bool(r(s))  # noqa: E731
        return node

    def _not(self) -> _Node:
        if self._is("keyword", "not"):
            self._next()
            inner = self._not()
            return lambda s: not inner(s)
        return self._comparison()

    def _comparison(self) -> _Node:
        left = self._operand()
        op: str | None = None
        if self._is("op"):
            op = self._next().value
        elif self._is("keyword", "in"):
            self._next()
            op = "in"
        elif self._is("keyword", "not") and self.tokens[self.pos + 1].kind == "keyword" \
                and self.tokens[self.pos + 1].value == "in":
            self.pos += 2
            op = "not in"
        if op is None:
            return left
        right = self._operand()
        source = self.source
        return lambda s: _compare(op, left(s), right(s), source)

    def _operand(self) -> _Node:
        tok = self._next()
        if tok.kind in ("string", "number"):
            value = tok.value
            return lambda s: value
        if tok.kind == "keyword" and tok.value in ("true", "false", "none"):
            value = {"true": True, "false": False, "none": None}[tok.value]
            return lambda s: value
        if tok.kind == "punct" and tok.value == "(":
            node = self._or()
            self._expect("punct", ")")
            return node
        if tok.kind == "name":
            return self._call(tok)
        got = tok.value if tok.value is not None else "end of expression"
        raise self._error(f"Unexpected {got!r}", tok)

    def _call(self, name_tok: _Token) -> _Node:
        name = name_tok.value
        self._expect("punct", "(")

        if name in _REF_FUNCTIONS:
            fn, ref_kind = _REF_FUNCTIONS[name]
            arg = self._next()
            if arg.kind != "string":
                raise self._error(f"{name}() takes a quoted name", arg)
            self._expect("punct", ")")
            ref = arg.value
            if ref_kind == "task":
                self.task_refs.add(ref)
            else:
                self.fact_refs.add(ref)
            return lambda s: fn(s, ref)

        if name in _VALUE_FUNCTIONS:
            fn1 = _VALUE_FUNCTIONS[name]
            inner = self._or()
            self._expect("punct", ")")
            return lambda s: fn1(inner(s))

        known = ", ".join(sorted([*_REF_FUNCTIONS, *_VALUE_FUNCTIONS]))
        raise self._error(f"Unknown function {name!r} (known: {known})", name_tok)


# ── Public API ──────────────────────────────────────────────────


@dataclass(frozen=True)
class Guard:
    """A compiled guard expression."""

    source: str
    task_refs: frozenset[str] = field(default_factory=frozenset)
    fact_refs: frozenset[str] = field(default_factory=frozenset)
    _root: _Node | None = field(default=None, repr=False, compare=False)

    def evaluate(self, facts: Any, results: Mapping[str, TaskResult]) -> bool:
        """Evaluate against a fact source and prior results.

        Args:
            facts: A FactProvider (anything with ``query``) or a plain
                mapping snapshot of fact values.
            results: Latest TaskResult per task name.

        Raises:
            FactUnavailable: A referenced fact cannot be determined.
            GuardError: Evaluation failed for any other reason.
        """
        assert self._root is not None
        try:
            return bool(self._root(_Scope(facts, results)))
        except FactUnavailable:
            raise
        except Exception as e:
            raise GuardError(self.source, f"{type(e).__name__}: {e}") from e


@lru_cache(maxsize=512)
def compile_guard(source: str) -> Guard:
    """Parse a guard expression.

    Raises:
        GuardSyntaxError: The expression is malformed.
    """
    parser = _Parser(source)
    root = parser.parse()
    return Guard(
        source=source,
        task_refs=frozenset(parser.task_refs),
        fact_refs=frozenset(parser.fact_refs),
        _root=root,
    )


def evaluate(
    source: str,
    facts: Any,
    results: Mapping[str, TaskResult],
) -> bool:
    """Compile (cached) and evaluate a guard in one step."""
    return compile_guard(source).evaluate(facts, results)
