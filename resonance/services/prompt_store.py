"""Stage prompts kept in ``resonance/prompts/prompts.json``.

Entries are addressed by dotted keys (``planner.system_prompt``) and rendered
with ``string.Template``; every ``$name`` placeholder must be supplied.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any

PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"


class PromptCatalog:
    """JSON prompt tree, reloaded when the file changes on disk."""

    def __init__(self, path: Path):
        self.path = path
        self._entries: dict[str, Any] | None = None
        self._mtime_ns: int | None = None

    def _tree(self) -> dict[str, Any]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._entries is None or self._mtime_ns != mtime_ns:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(payload, dict):
                raise ValueError("Prompt catalog must be a JSON object.")
            self._entries, self._mtime_ns = payload, mtime_ns
        return self._entries

    def template(self, key: str) -> Template:
        node: Any = self._tree()
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Prompt key not found: {key}")
            node = node[part]
        if not isinstance(node, str):
            raise TypeError(f"Prompt key must map to a string: {key}")
        return Template(node)

    def placeholders(self, key: str) -> set[str]:
        names = set()
        for match in Template.pattern.finditer(self.template(key).template):
            name = match.group("named") or match.group("braced")
            if name:
                names.add(name)
        return names

    def render(self, key: str, **values: Any) -> str:
        try:
            return self.template(key).substitute(**values)
        except KeyError as exc:
            missing = str(exc.args[0])
            raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc

    def clear(self) -> None:
        self._entries = None
        self._mtime_ns = None


catalog = PromptCatalog(PROMPTS_PATH)


def render_prompt(key: str, **values: Any) -> str:
    return catalog.render(key, **values)


def prompt_placeholders(key: str) -> set[str]:
    return catalog.placeholders(key)


def clear_prompt_cache() -> None:
    catalog.clear()
