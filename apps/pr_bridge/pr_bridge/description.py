"""Pull request description generation."""

from __future__ import annotations

import logging
from typing import Any

from langchain_anthropic import ChatAnthropic

from .config import ANTHROPIC_API_KEY, PR_DESCRIPTION_MODEL
from .models import MatchedLinearIssue
from .prompt import FALLBACK_DESCRIPTION, construct_issue_prompt, construct_system_prompt
from .protocol import DescriptionGenerator

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_TOKENS = 2_000


class AnthropicDescriptionGenerator:
    """Generate PR descriptions with a Claude model."""

    def __init__(self, model: str = PR_DESCRIPTION_MODEL, api_key: str | None = None) -> None:
        self.llm = ChatAnthropic(
            model=model,
            max_tokens=MAX_DESCRIPTION_TOKENS,
            api_key=api_key or ANTHROPIC_API_KEY,
        )

    async def generate(self, issue: dict[str, Any], custom_instructions: str = "") -> str:
        messages = [
            (
                "system",
                construct_system_prompt(
                    issue.get("identifier", ""), issue.get("url", ""), custom_instructions
                ),
            ),
            ("human", construct_issue_prompt(issue)),
        ]
        response = await self.llm.ainvoke(messages)
        content = response.content
        if isinstance(content, str):
            return content.strip()
        return "".join(
            block.get("text", "")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text"
        ).strip()


def build_description_generator() -> DescriptionGenerator | None:
    if not ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY not set; PR descriptions will use the fallback template")
        return None
    return AnthropicDescriptionGenerator()


def fallback_description(issue: MatchedLinearIssue) -> str:
    return FALLBACK_DESCRIPTION.format(
        identifier=issue.identifier, url=issue.url, title=issue.title
    )


async def generate_pr_description(
    issue: MatchedLinearIssue,
    generator: DescriptionGenerator | None,
    custom_instructions: str = "",
) -> str:
    """Generate a description, falling back to a fixed template on any failure.

    Args:
        issue: The matched Linear issue
        generator: Description generator, or None when not configured
        custom_instructions: Extra instructions for the generator

    Returns:
        Description text; never raises
    """
    if generator is None:
        return fallback_description(issue)

    try:
        text = await generator.generate(issue.summary(), custom_instructions)
    except Exception:  # noqa: BLE001
        logger.warning(
            "Error generating PR description for %s; using fallback",
            issue.identifier,
            exc_info=True,
        )
        return fallback_description(issue)

    return text or f"Related to: {issue.title}"
