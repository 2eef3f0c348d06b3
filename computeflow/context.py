"""Execution context shared by the steps of one workflow execution."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterator, MutableMapping, Optional

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_.-]*)\s*\}\}")


class MissingContextValue(KeyError):
    """Raised when a template references a key absent from the context."""


class ExecutionContext(MutableMapping[str, Any]):
    """Mutable key/value bag threaded through one execution.

    The mapping is shared, unsynchronised state. Steps that run in the same
    ready set see each other's writes in no defined order, so they should
    write disjoint keys; concurrent writes to one key are last-write-wins.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None) -> None:
        # Keep a reference so writes land in the owning execution record.
        self._data: Dict[str, Any] = data if data is not None else {}

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"ExecutionContext({self._data!r})"

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._data)

    def render(self, template: str) -> str:
        """Substitute ``{{key}}`` placeholders with context values.

        Dotted keys look into nested mappings, e.g. ``{{build.exitCode}}``.
        """

        def _replace(match: re.Match[str]) -> str:
            return str(self.lookup(match.group(1)))

        return _PLACEHOLDER.sub(_replace, template)

    def lookup(self, dotted_key: str) -> Any:
        if dotted_key in self._data:
            return self._data[dotted_key]
        value: Any = self._data
        for part in dotted_key.split("."):
            if not isinstance(value, dict) or part not in value:
                raise MissingContextValue(dotted_key)
            value = value[part]
        return value
