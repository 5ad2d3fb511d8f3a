"""Per-stage prompt catalog.

Each worker stage owns a ``system``/``user`` template pair under its own key in
``prompts.json``. Stage values are shared between both templates; each one
only receives the placeholders it declares.
"""
from __future__ import annotations

import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_PATH = Path(__file__).resolve().parents[1] / "prompts" / "prompts.json"
MESSAGE_ROLES = ("system", "user")


class PromptCatalog:
    def __init__(self, path: Path):
        self.path = Path(path)
        self._templates: dict[str, Template] | None = None
        self._mtime_ns: int | None = None

    def _load(self) -> dict[str, Template]:
        mtime_ns = self.path.stat().st_mtime_ns
        if self._templates is not None and self._mtime_ns == mtime_ns:
            return self._templates

        payload = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Prompt catalog must be a JSON object.")
        templates: dict[str, Template] = {}
        for stage, entries in payload.items():
            if not isinstance(entries, dict):
                raise ValueError(f"Prompt stage '{stage}' must be a JSON object.")
            for name, text in entries.items():
                if not isinstance(text, str):
                    raise TypeError(f"Prompt key must map to a string: {stage}.{name}")
                templates[f"{stage}.{name}"] = Template(text)
        self._templates = templates
        self._mtime_ns = mtime_ns
        return templates

    def template(self, key: str) -> Template:
        templates = self._load()
        if key not in templates:
            raise KeyError(f"Prompt key not found: {key}")
        return templates[key]

    def placeholders(self, key: str) -> set[str]:
        return set(self.template(key).get_identifiers())

    def render(self, key: str, **values: Any) -> str:
        template = self.template(key)
        wanted = {name: values[name] for name in template.get_identifiers() if name in values}
        try:
            return template.substitute(**wanted)
        except KeyError as exc:
            missing = str(exc.args[0])
            raise KeyError(f"Missing template value '{missing}' for prompt '{key}'") from exc

    def stage_messages(self, stage: str, **values: Any) -> list[dict[str, str]]:
        """Chat messages for one worker stage, system first."""
        return [
            {"role": role, "content": self.render(f"{stage}.{role}", **values)}
            for role in MESSAGE_ROLES
        ]


_catalog = PromptCatalog(PROMPTS_PATH)


def render_prompt(key: str, **values: Any) -> str:
    return _catalog.render(key, **values)


def stage_messages(stage: str, **values: Any) -> list[dict[str, str]]:
    return _catalog.stage_messages(stage, **values)
