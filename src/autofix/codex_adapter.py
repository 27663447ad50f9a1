from __future__ import annotations

from pathlib import Path
import json
import logging
import tempfile
from typing import cast

from autofix.config import CodexConfig, GenerationConfig
from autofix.models import FileChange, FixResult
from autofix.observability import log_event
from autofix.ports import CodeGenerator
from autofix.prompts import build_fix_prompt
from autofix.shell import run, summarize_command_error


_FIX_OUTPUT_SCHEMA: dict[str, object] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["analysis", "solution", "files", "error"],
    "properties": {
        "analysis": {"type": "string"},
        "solution": {"type": "string"},
        "files": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["path", "content"],
                "properties": {
                    "path": {"type": "string", "minLength": 1},
                    "content": {"type": "string"},
                },
            },
        },
        "error": {"type": ["string", "null"]},
    },
}


LOGGER = logging.getLogger("autofix.codex_adapter")


class CodexCodeGenerator(CodeGenerator):
    def __init__(self, config: CodexConfig) -> None:
        self._config = config

    def analyze(self, request_text: str, repo_path: Path, config: GenerationConfig) -> FixResult:
        if not self._config.enabled:
            return FixResult.failure("Code generation is disabled in config")

        log_event(
            LOGGER,
            "codex_invocation_started",
            repo_path=str(repo_path),
            request_length=len(request_text),
        )
        prompt = build_fix_prompt(request_text=request_text, config=config)
        try:
            payload = self._run_fix_turn(prompt=prompt, cwd=repo_path)
            result = _fix_result_from_payload(payload, max_files=config.max_files)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "codex_invocation_failed",
                level=logging.ERROR,
                error_type=type(exc).__name__,
            )
            return FixResult.failure(f"Code generation failed: {summarize_command_error(exc)}")

        log_event(
            LOGGER,
            "codex_invocation_finished",
            success=result.success,
            file_count=len(result.files_changed),
        )
        return result

    def _run_fix_turn(self, *, prompt: str, cwd: Path) -> dict[str, object]:
        with tempfile.TemporaryDirectory(prefix="autofix_codex_") as tmp:
            tmp_path = Path(tmp)
            schema_path = tmp_path / "schema.json"
            output_path = tmp_path / "last_message.txt"
            schema_path.write_text(json.dumps(_FIX_OUTPUT_SCHEMA), encoding="utf-8")

            cmd = [
                "codex",
                "exec",
                "--json",
                "--skip-git-repo-check",
                "--output-schema",
                str(schema_path),
                "--output-last-message",
                str(output_path),
                "-",
            ]
            self._append_common_options(cmd)

            run(cmd, cwd=cwd, input_text=prompt)
            raw = output_path.read_text(encoding="utf-8").strip()
        return _parse_json_payload(raw)

    def _append_common_options(self, cmd: list[str]) -> None:
        if self._config.model:
            cmd.extend(["--model", self._config.model])
        if self._config.sandbox:
            cmd.extend(["--sandbox", self._config.sandbox])
        if self._config.profile:
            cmd.extend(["--profile", self._config.profile])
        if self._config.extra_args:
            cmd.extend(self._config.extra_args)


def _fix_result_from_payload(payload: dict[str, object], *, max_files: int) -> FixResult:
    analysis = _optional_output_text(payload.get("analysis")) or ""
    solution = _optional_output_text(payload.get("solution")) or ""
    error = _optional_output_text(payload.get("error"))
    if error is not None:
        return FixResult.failure(error, analysis=analysis)

    changes = _parse_file_changes(payload.get("files"))
    if len(changes) > max_files:
        return FixResult.failure(
            f"Generated change touches {len(changes)} files; the limit is {max_files}",
            analysis=analysis,
        )
    return FixResult(
        success=True,
        analysis=analysis,
        solution=solution,
        files_changed=tuple(change.path for change in changes),
        changes=tuple(changes),
    )


def _parse_file_changes(value: object) -> list[FileChange]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise RuntimeError("Codex response field files must be a list")
    changes: list[FileChange] = []
    seen: set[str] = set()
    for item in value:
        item_obj = _as_object_dict(item)
        if item_obj is None:
            raise RuntimeError("Each files entry must be an object")
        path = _normalize_path(item_obj.get("path"))
        content = item_obj.get("content")
        if not isinstance(content, str):
            raise RuntimeError(f"files entry for {path} must carry string content")
        if path in seen:
            raise RuntimeError(f"Codex response lists {path} more than once")
        seen.add(path)
        changes.append(FileChange(path=path, content=content))
    return changes


def _normalize_path(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise RuntimeError("files entry path must be a non-empty string")
    path = value.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    if path.startswith("/") or ".." in path.split("/"):
        raise RuntimeError(f"files entry path must stay inside the repository: {value!r}")
    return path


def _parse_json_payload(raw: str) -> dict[str, object]:
    text = raw.strip()
    if text.startswith("```"):
        lines = text.splitlines()
        if lines and lines[0].startswith("```"):
            lines = lines[1:]
        if lines and lines[-1].startswith("```"):
            lines = lines[:-1]
        text = "\n".join(lines).strip()
    payload = json.loads(text)
    if not isinstance(payload, dict):
        raise RuntimeError("Codex response must be a JSON object")
    return payload


def _optional_output_text(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise RuntimeError("Codex response field must be a string or null")
    normalized = value.strip()
    return normalized or None


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)
