"""
Line-in-file provider — ensure a single line is present or absent.

The text transformation lives in ``apply_line`` (pure, no I/O), so the
real provider and the in-memory FakeHost share one implementation.
"""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path
from typing import Any

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext
from hostconverge.core.models.fact import NOT_FOUND
from hostconverge.core.models.result import Invocation

logger = logging.getLogger(__name__)

_STATES = {"present", "absent"}


def line_holds(content: str | None, params: dict[str, Any]) -> bool:
    """Whether ``content`` already satisfies the line declaration."""
    state = params.get("state", "present")
    line = params.get("line", "")
    regexp = params.get("regexp")

    if content is None:
        return state == "absent"

    lines = content.splitlines()
    if state == "absent":
        if regexp:
            return not any(re.search(regexp, l) for l in lines)
        return line not in lines

    if regexp:
        matching = [l for l in lines if re.search(regexp, l)]
        if matching:
            return matching[-1] == line
    return line in lines


def apply_line(content: str | None, params: dict[str, Any]) -> tuple[str | None, bool]:
    """Apply a line declaration to file content.

    Semantics:
        present + regexp     replace the last matching line, else insert
        present              insert after the last ``insertafter`` match
                             (or at EOF / BOF via ``insertbefore: BOF``)
        absent               drop every equal (or regexp-matching) line

    Returns:
        (new_content, changed). new_content is None when the file
        does not exist and nothing needs to be created.
    """
    if line_holds(content, params):
        return content, False

    state = params.get("state", "present")
    line = params.get("line", "")
    regexp = params.get("regexp")
    lines = content.splitlines() if content else []

    if state == "absent":
        if regexp:
            kept = [l for l in lines if not re.search(regexp, l)]
        else:
            kept = [l for l in lines if l != line]
        return _join(kept), True

    if regexp:
        for idx in range(len(lines) - 1, -1, -1):
            if re.search(regexp, lines[idx]):
                lines[idx] = line
                return _join(lines), True

    insertafter = params.get("insertafter")
    insertbefore = params.get("insertbefore")
    position = len(lines)
    if insertbefore == "BOF":
        position = 0
    elif insertafter and insertafter != "EOF":
        for idx in range(len(lines) - 1, -1, -1):
            if re.search(insertafter, lines[idx]):
                position = idx + 1
                break
    lines.insert(position, line)
    return _join(lines), True


def _join(lines: list[str]) -> str:
    return "\n".join(lines) + "\n" if lines else ""


class LineInFileProvider(CapabilityProvider):
    """Manage one line of a text file.

    Params:
        path (str): Target file (absolute).
        line (str): The line to ensure.
        state (str): 'present' (default) or 'absent'.
        regexp (str): Line(s) to replace / remove.
        insertafter (str): Regex; insert after its last match (or 'EOF').
        insertbefore (str): Only 'BOF' is supported.
        create (bool): Create the file if missing (default: False).
    """

    @property
    def name(self) -> str:
        return "lineinfile"

    def is_available(self) -> bool:
        return True

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        if not params.get("path"):
            return False, "Missing required param: 'path'"
        state = params.get("state", "present")
        if state not in _STATES:
            return False, f"Unknown state '{state}'. Valid: {', '.join(sorted(_STATES))}"
        if state == "present" and "line" not in params:
            return False, "Missing required param: 'line' for state=present"
        if state == "absent" and "line" not in params and "regexp" not in params:
            return False, "state=absent needs 'line' or 'regexp'"
        for key in ("regexp", "insertafter"):
            pattern = params.get(key)
            if pattern and pattern != "EOF":
                try:
                    re.compile(pattern)
                except re.error as e:
                    return False, f"Invalid {key} pattern {pattern!r}: {e}"
        return True, ""

    def can_check(self, params: dict[str, Any]) -> bool:
        return True

    def reports_change(self, params: dict[str, Any]) -> bool:
        return True

    def is_converged(self, context: ExecutionContext, facts: Any) -> bool | None:
        content = facts.query(f"file:{context.params['path']}")
        return line_holds(None if content is NOT_FOUND else content, context.params)

    def affected_facts(self, params: dict[str, Any]) -> list[str]:
        path = params.get("path", "")
        return [f"file:{path}", f"path:{path}", "glob:*", "env:*"]

    def invoke(self, context: ExecutionContext) -> Invocation:
        params = context.params
        target = Path(params["path"])

        if target.is_file():
            content: str | None = target.read_text(encoding="utf-8")
        elif params.get("create", False) or params.get("state", "present") == "absent":
            content = None
        else:
            return Invocation(exit_code=1, stderr=f"File does not exist: {target}")

        new_content, changed = apply_line(content, params)
        if not changed or new_content is None:
            return Invocation(stdout=f"{target}: no change", changed=False)

        _atomic_write(target, new_content)
        verb = "removed from" if params.get("state", "present") == "absent" else "written to"
        return Invocation(
            stdout=f"Line {verb} {target}",
            changed=True,
            metadata={"path": str(target)},
        )


def _atomic_write(target: Path, content: str) -> None:
    """Write-to-temp-then-rename, keeping the original file mode."""
    target.parent.mkdir(parents=True, exist_ok=True)
    mode = target.stat().st_mode if target.exists() else None
    _fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=".hc_", suffix=".tmp")
    tmp = Path(tmp_path)
    try:
        with open(_fd, "w", encoding="utf-8") as f:
            f.write(content)
        if mode is not None:
            tmp.chmod(mode)
        tmp.replace(target)
    except Exception:
        tmp.unlink(missing_ok=True)
        raise
