"""PR description prompt and fallback tests."""

from __future__ import annotations

import json
import logging

from pr_bridge.config import JsonFormatter
from pr_bridge.description import fallback_description
from pr_bridge.models import MatchedLinearIssue, NamedRef
from pr_bridge.prompt import construct_issue_prompt, construct_system_prompt


def _issue() -> MatchedLinearIssue:
    return MatchedLinearIssue(
        id="lin-1",
        identifier="LET-7",
        title="Export invoices",
        url="https://linear.app/acme/issue/LET-7",
        state="Todo",
        team=NamedRef(id="t", name="Lettuce"),
    )


class TestPrompts:
    def test_system_prompt_includes_issue_link(self) -> None:
        prompt = construct_system_prompt("LET-7", "https://linear.app/acme/issue/LET-7")
        assert "[LET-7](https://linear.app/acme/issue/LET-7)" in prompt
        assert "Additional instructions" not in prompt

    def test_custom_instructions(self) -> None:
        prompt = construct_system_prompt("LET-7", "u", "Mention the feature flag")
        assert "### Additional instructions" in prompt
        assert prompt.rstrip().endswith("Mention the feature flag")

    def test_issue_prompt_without_description(self) -> None:
        prompt = construct_issue_prompt({"identifier": "LET-7", "title": "T", "url": "u"})
        assert prompt.startswith("## LET-7: T")
        assert "No description" in prompt


class TestFallbackDescription:
    def test_format(self) -> None:
        assert fallback_description(_issue()) == (
            "## Issue\n[LET-7](https://linear.app/acme/issue/LET-7)\n\n"
            "## Description\nExport invoices"
        )


class TestJsonFormatter:
    def test_includes_delivery_context(self) -> None:
        record = logging.LogRecord(
            "pr_bridge.webapp", logging.INFO, __file__, 1, "Created PR #%s", (7,), None
        )
        record.delivery_id = "delivery-1"
        record.repository = "octo/app"

        entry = json.loads(JsonFormatter().format(record))

        assert entry["message"] == "Created PR #7"
        assert entry["level"] == "INFO"
        assert entry["delivery_id"] == "delivery-1"
        assert entry["repository"] == "octo/app"
        assert "branch" not in entry
