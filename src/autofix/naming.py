"""Branch names, commit messages and pull request texts derived from a request."""

from __future__ import annotations

import re
from typing import Final

from autofix.models import BranchCategory, FixResult, Job


# Checked in order; the first category with a matching keyword wins.
_CATEGORY_KEYWORDS: Final[tuple[tuple[BranchCategory, tuple[str, ...]], ...]] = (
    ("fix", ("bug", "fix", "error")),
    ("feat", ("feature", "add", "implement")),
    ("refactor", ("refactor", "improve", "optimize")),
)
_DEFAULT_CATEGORY: Final[BranchCategory] = "chore"
_MAX_SLUG_LEN: Final[int] = 50
_COMMIT_PREVIEW_LEN: Final[int] = 50
_TITLE_PREVIEW_LEN: Final[int] = 70


def infer_category(text: str) -> BranchCategory:
    lowered = text.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return _DEFAULT_CATEGORY


def slugify_request(text: str) -> str:
    kept = re.sub(r"[^a-z0-9\s-]", "", text.lower())
    slug = re.sub(r"\s+", "-", kept)
    slug = re.sub(r"-{2,}", "-", slug).strip("-")
    slug = slug[:_MAX_SLUG_LEN].rstrip("-")
    return slug or "request"


def branch_name_for(text: str) -> str:
    return f"{infer_category(text)}/{slugify_request(text)}"


def truncate(text: str, limit: int) -> str:
    compact = " ".join(text.split())
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def commit_message_for(text: str, solution: str, files_changed: tuple[str, ...]) -> str:
    lines = [f"autofix: {truncate(text, _COMMIT_PREVIEW_LEN)}", ""]
    if solution.strip():
        lines.extend([solution.strip(), ""])
    lines.append("Files changed:")
    lines.extend(f"- {path}" for path in files_changed)
    return "\n".join(lines)


def pull_request_title_for(text: str, category: BranchCategory) -> str:
    return f"{category}: {truncate(text, _TITLE_PREVIEW_LEN)}"


def pull_request_body_for(job: Job, fix: FixResult) -> str:
    files = "\n".join(f"- `{path}`" for path in fix.files_changed)
    return f"""
## Request

{job.text.strip()}

_Requested in Slack by user `{job.user_id}`._

## Analysis

{fix.analysis.strip() or "_No analysis provided._"}

## Solution

{fix.solution.strip() or "_No summary provided._"}

## Files changed ({len(fix.files_changed)})

{files}

## Review checklist

- [ ] The change matches the request
- [ ] No unrelated files were modified
- [ ] Tests and CI pass
- [ ] Preview deployment looks correct

---
Generated automatically by autofix. Review carefully before merging.
""".strip()
