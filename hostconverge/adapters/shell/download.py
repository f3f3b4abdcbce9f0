"""
Download provider — fetch a URL to a local file (``get_url``).
"""

from __future__ import annotations

import logging
import tempfile
import urllib.request
from pathlib import Path
from typing import Any

from hostconverge.adapters.base import CapabilityProvider, ExecutionContext
from hostconverge.core.models.fact import NOT_FOUND
from hostconverge.core.models.result import Invocation

logger = logging.getLogger(__name__)

_USER_AGENT = "hostconverge/0.1"


class DownloadProvider(CapabilityProvider):
    """Download a file unless the destination already exists.

    Params:
        url (str): http(s) URL to fetch.
        dest (str): Absolute destination path.
        mode (int|str): Optional file mode, e.g. '0644'.
        force (bool): Re-download even if dest exists (default: False).
    """

    fatal_by_default = True

    @property
    def name(self) -> str:
        return "get_url"

    def is_available(self) -> bool:
        return True

    def validate(self, params: dict[str, Any]) -> tuple[bool, str]:
        url = params.get("url", "")
        if not url:
            return False, "Missing required param: 'url'"
        if not url.startswith(("http://", "https://")):
            return False, f"Unsupported URL scheme: {url}"
        if not params.get("dest"):
            return False, "Missing required param: 'dest'"
        mode = params.get("mode")
        if mode is not None:
            try:
                _parse_mode(mode)
            except ValueError:
                return False, f"Invalid mode: {mode!r}"
        return True, ""

    def can_check(self, params: dict[str, Any]) -> bool:
        return not params.get("force", False)

    def reports_change(self, params: dict[str, Any]) -> bool:
        return True

    def is_converged(self, context: ExecutionContext, facts: Any) -> bool | None:
        if context.params.get("force", False):
            return None
        return facts.query(f"path:{context.params['dest']}") is not NOT_FOUND

    def affected_facts(self, params: dict[str, Any]) -> list[str]:
        dest = params.get("dest", "")
        return [f"path:{dest}", f"file:{dest}", "glob:*"]

    def invoke(self, context: ExecutionContext) -> Invocation:
        url = context.params["url"]
        dest = Path(context.params["dest"])

        logger.debug("Downloading %s → %s", url, dest)
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        with urllib.request.urlopen(request, timeout=context.timeout) as resp:
            data = resp.read()

        previous = dest.read_bytes() if dest.is_file() else None
        if previous == data:
            return Invocation(stdout=f"{dest} is up to date", changed=False)

        dest.parent.mkdir(parents=True, exist_ok=True)
        _fd, tmp_path = tempfile.mkstemp(dir=dest.parent, prefix=".hc_", suffix=".part")
        tmp = Path(tmp_path)
        try:
            with open(_fd, "wb") as f:
                f.write(data)
            if context.params.get("mode") is not None:
                tmp.chmod(_parse_mode(context.params["mode"]))
            else:
                tmp.chmod(0o644)
            tmp.replace(dest)
        except Exception:
            tmp.unlink(missing_ok=True)
            raise

        return Invocation(
            stdout=f"Downloaded {len(data)} bytes to {dest}",
            changed=True,
            metadata={"url": url, "dest": str(dest), "size": len(data)},
        )


def _parse_mode(mode: Any) -> int:
    if isinstance(mode, int):
        return mode
    return int(str(mode), 8)
