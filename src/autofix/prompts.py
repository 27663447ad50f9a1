from __future__ import annotations

from autofix.config import GenerationConfig


def build_fix_prompt(*, request_text: str, config: GenerationConfig) -> str:
    return f"""
You are the autofix agent for repository {config.repo_full_name}.

Task:
- A teammate asked for the change below in a chat thread.
- Inspect the repository in the current working directory (base branch: {config.default_branch}).
- Decide whether a code change is needed and, if so, produce it.
- Be precise and surgical. Only change what needs to be changed.
- Keep the existing code style and conventions.
- The change will be opened as a pull request and deployed to a preview environment.

Output requirements:
- Do not edit files in place. Return every changed file with its complete new content.
- Use repository-relative paths with forward slashes.
- List each path at most once and change at most {config.max_files} files.
- If no change is needed or possible, return an empty files list and explain why in analysis.
- If the request cannot be understood, set error to a short reason.

Response format:
- Return JSON only.
- The response must satisfy the provided schema.
- analysis: diagnosis of the request against the code.
- solution: a short human-readable summary of the change.
- Do not include markdown code fences in the JSON fields.

Request:
{request_text.strip()}
""".strip()
