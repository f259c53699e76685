SYSTEM_PROMPT = """You write pull request descriptions for an engineering team.

The pull request was opened automatically when a developer pushed a new branch
for a Linear issue. Write the description from the issue alone.

### Format

Use GitHub-flavored markdown with exactly these sections:

```
## Issue
[{identifier}]({url})

## Description
<What the issue asks for and why, in 2-5 sentences>

## Changes
- <expected change 1>
- <expected change 2>

## Test Plan
- [ ] <specific verification step>
```

### Rules

- Do not invent implementation details that the issue does not imply
- Keep it under 300 words
- Output only the markdown, no preamble
{custom_instructions}"""

ISSUE_PROMPT = """## {identifier}: {title}

{description}

Linear URL: {url}"""

FALLBACK_DESCRIPTION = "## Issue\n[{identifier}]({url})\n\n## Description\n{title}"


def construct_system_prompt(
    identifier: str,
    url: str,
    custom_instructions: str = "",
) -> str:
    extra = ""
    if custom_instructions:
        extra = f"\n### Additional instructions\n\n{custom_instructions}\n"
    return SYSTEM_PROMPT.format(identifier=identifier, url=url, custom_instructions=extra)


def construct_issue_prompt(issue: dict) -> str:
    return ISSUE_PROMPT.format(
        identifier=issue.get("identifier", ""),
        title=issue.get("title", ""),
        description=issue.get("description") or "No description",
        url=issue.get("url", ""),
    )
