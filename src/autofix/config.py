from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from pathlib import Path
import tomllib
from typing import Literal, cast


DeploymentProvider = Literal["vercel", "none"]


@dataclass(frozen=True)
class RuntimeConfig:
    base_dir: Path
    max_attempts: int = 3
    retry_failed_results: bool = False


@dataclass(frozen=True)
class RepoConfig:
    owner: str
    name: str
    default_branch: str = "main"
    remote_url: str | None = None
    local_path: Path | None = None
    pr_labels: tuple[str, ...] = ("automated", "autofix")

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def effective_remote_url(self) -> str:
        if self.remote_url:
            return self.remote_url
        return f"git@github.com:{self.owner}/{self.name}.git"

    def checkout_path(self, base_dir: Path) -> Path:
        if self.local_path is not None:
            return self.local_path
        return base_dir / "repos" / self.owner / self.name


@dataclass(frozen=True)
class SlackConfig:
    bot_token: str
    signing_secret: str
    channel_id: str | None = None
    event_types: tuple[str, ...] = ("app_mention",)

    def accepts_channel(self, channel: str) -> bool:
        if self.channel_id is None:
            return True
        return channel == self.channel_id


@dataclass(frozen=True)
class CodexConfig:
    enabled: bool
    model: str | None
    sandbox: str | None
    profile: str | None
    extra_args: tuple[str, ...]


@dataclass(frozen=True)
class DeploymentConfig:
    provider: DeploymentProvider = "none"
    project_id: str | None = None
    team_id: str | None = None
    token: str | None = None
    timeout_minutes: int = 5
    poll_interval_seconds: int = 10


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass(frozen=True)
class GenerationConfig:
    repo_full_name: str
    default_branch: str
    max_files: int = 25


@dataclass(frozen=True)
class PipelineConfig:
    base_branch: str
    pr_labels: tuple[str, ...]
    deployment_timeout_minutes: int
    generation: GenerationConfig


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    repo: RepoConfig
    slack: SlackConfig
    codex: CodexConfig
    deployment: DeploymentConfig
    server: ServerConfig

    @property
    def checkout_path(self) -> Path:
        return self.repo.checkout_path(self.runtime.base_dir)

    @property
    def pipeline(self) -> PipelineConfig:
        return PipelineConfig(
            base_branch=self.repo.default_branch,
            pr_labels=self.repo.pr_labels,
            deployment_timeout_minutes=self.deployment.timeout_minutes,
            generation=GenerationConfig(
                repo_full_name=self.repo.full_name,
                default_branch=self.repo.default_branch,
            ),
        )


class ConfigError(ValueError):
    pass


def load_config(path: Path, *, environ: Mapping[str, str] | None = None) -> AppConfig:
    env = os.environ if environ is None else environ
    with path.open("rb") as fh:
        data = tomllib.load(fh)

    runtime_data = _require_table(data, "runtime")
    repo_data = _require_table(data, "repo")
    slack_data = _optional_table(data, "slack") or {}
    codex_data = _optional_table(data, "codex") or {}
    deployment_data = _optional_table(data, "deployment") or {}
    server_data = _optional_table(data, "server") or {}

    runtime = RuntimeConfig(
        base_dir=Path(_require_str(runtime_data, "base_dir")).expanduser(),
        max_attempts=_int_with_default(runtime_data, "max_attempts", 3),
        retry_failed_results=_bool_with_default(runtime_data, "retry_failed_results", False),
    )
    if runtime.max_attempts < 1:
        raise ConfigError("runtime.max_attempts must be >= 1")

    repo = RepoConfig(
        owner=_require_str(repo_data, "owner"),
        name=_require_str(repo_data, "name"),
        default_branch=_str_with_default(repo_data, "default_branch", "main"),
        remote_url=_optional_str(repo_data, "remote_url"),
        local_path=_optional_path(repo_data, "local_path"),
        pr_labels=_tuple_of_str_with_default(repo_data, "pr_labels", ("automated", "autofix")),
    )

    slack = SlackConfig(
        bot_token=_require_env(
            env, _str_with_default(slack_data, "bot_token_env", "SLACK_BOT_TOKEN")
        ),
        signing_secret=_require_env(
            env, _str_with_default(slack_data, "signing_secret_env", "SLACK_SIGNING_SECRET")
        ),
        channel_id=_optional_str(slack_data, "channel_id"),
        event_types=_tuple_of_str_with_default(slack_data, "event_types", ("app_mention",)),
    )
    if not slack.event_types:
        raise ConfigError("slack.event_types must list at least one event type")

    codex = CodexConfig(
        enabled=_bool_with_default(codex_data, "enabled", True),
        model=_optional_str(codex_data, "model"),
        sandbox=_str_with_default(codex_data, "sandbox", "read-only"),
        profile=_optional_str(codex_data, "profile"),
        extra_args=_tuple_of_str_with_default(codex_data, "extra_args", ()),
    )

    deployment = _parse_deployment_config(deployment_data, env)

    server = ServerConfig(
        host=_str_with_default(server_data, "host", "0.0.0.0"),
        port=_int_with_default(server_data, "port", 3000),
    )
    if not 0 < server.port < 65536:
        raise ConfigError("server.port must be between 1 and 65535")

    return AppConfig(
        runtime=runtime,
        repo=repo,
        slack=slack,
        codex=codex,
        deployment=deployment,
        server=server,
    )


def _parse_deployment_config(
    deployment_data: dict[str, object], env: Mapping[str, str]
) -> DeploymentConfig:
    provider = _str_with_default(deployment_data, "provider", "none").strip().lower()
    if provider not in {"vercel", "none"}:
        raise ConfigError("deployment.provider must be one of: vercel, none")
    timeout_minutes = _int_with_default(deployment_data, "timeout_minutes", 5)
    poll_interval_seconds = _int_with_default(deployment_data, "poll_interval_seconds", 10)
    if timeout_minutes < 1:
        raise ConfigError("deployment.timeout_minutes must be >= 1")
    if poll_interval_seconds < 1:
        raise ConfigError("deployment.poll_interval_seconds must be >= 1")

    if provider == "none":
        return DeploymentConfig(
            provider="none",
            timeout_minutes=timeout_minutes,
            poll_interval_seconds=poll_interval_seconds,
        )

    token_env = _str_with_default(deployment_data, "token_env", "VERCEL_TOKEN")
    return DeploymentConfig(
        provider=cast(DeploymentProvider, provider),
        project_id=_require_str(deployment_data, "project_id"),
        team_id=_optional_str(deployment_data, "team_id"),
        token=_require_env(env, token_env),
        timeout_minutes=timeout_minutes,
        poll_interval_seconds=poll_interval_seconds,
    )


def _require_env(env: Mapping[str, str], name: str) -> str:
    value = env.get(name, "").strip()
    if not value:
        raise ConfigError(f"Environment variable {name} is required and must be non-empty")
    return value


def _require_table(data: dict[str, object], key: str) -> dict[str, object]:
    value = data.get(key)
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] is required and must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    return value


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _tuple_of_str(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{key} must be a list of non-empty strings")
        if item not in out:
            out.append(item)
    return tuple(out)


def _tuple_of_str_with_default(
    data: dict[str, object], key: str, default: tuple[str, ...]
) -> tuple[str, ...]:
    if key not in data:
        return default
    return _tuple_of_str(data, key)


def _optional_path(data: dict[str, object], key: str) -> Path | None:
    value = _optional_str(data, key)
    if value is None:
        return None
    return Path(value).expanduser()
