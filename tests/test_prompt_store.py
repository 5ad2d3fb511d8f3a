from __future__ import annotations

import json
import os

import pytest

from app.services.prompt_store import (
    PROMPTS_PATH,
    PromptCatalog,
    render_prompt,
    stage_messages,
)


def test_render_prompt_substitutes_template_values():
    prompt = render_prompt("scoring.user", query="What is RRF?", sources="[0] text")
    assert prompt == "Query: What is RRF?\n\nSources:\n[0] text"


def test_render_prompt_raises_for_unknown_key():
    with pytest.raises(KeyError):
        render_prompt("missing.prompt.key")


def test_render_prompt_raises_for_missing_value():
    with pytest.raises(KeyError, match="sources"):
        render_prompt("scoring.user", query="q")


def test_stage_messages_share_values_between_system_and_user():
    messages = stage_messages("decomposition", query="Explain quantum computing")

    assert [m["role"] for m in messages] == ["system", "user"]
    assert "research query decomposer" in messages[0]["content"]
    assert messages[1]["content"] == "Explain quantum computing"


def test_every_worker_stage_has_a_message_pair():
    catalog = PromptCatalog(PROMPTS_PATH)
    for stage in ("decomposition", "scoring", "synthesis"):
        assert "query" in catalog.placeholders(f"{stage}.user")
        catalog.template(f"{stage}.system")


def test_catalog_reloads_when_file_changes(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"a": {"system": "first $x", "user": "$x"}}), encoding="utf-8")
    catalog = PromptCatalog(path)
    assert catalog.stage_messages("a", x=1)[0]["content"] == "first 1"

    path.write_text(json.dumps({"a": {"system": "second $x", "user": "$x"}}), encoding="utf-8")
    stat = path.stat()
    os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000))

    assert catalog.stage_messages("a", x=2)[0]["content"] == "second 2"


def test_catalog_rejects_non_string_entries(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"a": {"b": ["not", "a", "string"]}}), encoding="utf-8")
    with pytest.raises(TypeError):
        PromptCatalog(path).template("a.b")


def test_catalog_rejects_flat_entries(tmp_path):
    path = tmp_path / "prompts.json"
    path.write_text(json.dumps({"a": "no stage object"}), encoding="utf-8")
    with pytest.raises(ValueError):
        PromptCatalog(path).template("a.system")
