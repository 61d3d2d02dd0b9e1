from __future__ import annotations

import logging
from pathlib import Path

import pytest

from skip_engine.config import (
    DEFAULT_JOB_LIMIT,
    DEFAULT_PAGE_LIMIT,
    DEFAULT_SAME_JOB_LIMIT,
    DEFAULT_SAME_REF_LIMIT,
    ScanLimits,
    SkipConfig,
    config_from_env,
    limits_from_env,
    parse_forced_decision,
    parse_paths,
    resolve_project_path,
)
from skip_engine.data_models import HistoryStrategy
from skip_engine.errors import ConfigError


def _env(**overrides: str) -> dict[str, str]:
    env = {
        "CI_PROJECT_DIR": "/builds/group/project",
        "CI_BUILDS_DIR": "/builds",
        "CI_PROJECT_ID": "42",
        "CI_JOB_ID": "1001",
        "CI_JOB_NAME": "test",
        "CI_COMMIT_REF_NAME": "main",
        "CI_API_V4_URL": "https://gitlab.example/api/v4",
        "API_READ_TOKEN": "read-token",
        "CI_JOB_TOKEN": "job-token",
        "SKIP_IF_TREE_OK_IN_PAST": "service-a lib-1",
    }
    env.update(overrides)
    return env


def test_config_from_env_reads_ci_variables() -> None:
    config = config_from_env(_env())

    assert config.project_path == Path("/builds/group/project")
    assert config.project_id == "42"
    assert config.job_id == "1001"
    assert config.paths == ("service-a", "lib-1")
    assert config.strategy is HistoryStrategy.API
    assert config.forced_decision is None
    assert config.fetch_artifacts is True
    assert config.verbose is False
    assert config.limits == ScanLimits()
    assert config.marker_path == Path("/builds/group/project/ci-skip-42-1001")
    assert config.history_path == Path("/builds/group/project/ci_ok_history")
    assert config.jobs_api_url == "https://gitlab.example/api/v4/projects/42/jobs"


@pytest.mark.parametrize("key", ["CI_PROJECT_DIR", "CI_PROJECT_ID", "CI_JOB_ID"])
def test_config_from_env_requires_marker_key_inputs(key: str) -> None:
    env = _env()
    del env[key]

    with pytest.raises(ConfigError, match=f"{key} is not defined"):
        config_from_env(env)


def test_config_from_env_explicit_arguments_win() -> None:
    env = _env(SKIP_CI_STRATEGY="api", SKIP_CI_NO_ARTIFACT="false", SKIP_CI_VERBOSE="false")

    config = config_from_env(
        env, strategy=HistoryStrategy.CACHE, fetch_artifacts=False, verbose=True
    )

    assert config.strategy is HistoryStrategy.CACHE
    assert config.fetch_artifacts is False
    assert config.verbose is True


def test_config_from_env_reads_flags() -> None:
    config = config_from_env(
        _env(SKIP_CI_STRATEGY="Cache", SKIP_CI_NO_ARTIFACT="true", SKIP_CI_VERBOSE="true")
    )

    assert config.strategy is HistoryStrategy.CACHE
    assert config.fetch_artifacts is False
    assert config.verbose is True


def test_config_from_env_rejects_unknown_strategy() -> None:
    with pytest.raises(ConfigError, match="SKIP_CI_STRATEGY"):
        config_from_env(_env(SKIP_CI_STRATEGY="redis"))


def test_resolve_project_path_inside_builds_dir() -> None:
    assert resolve_project_path("/builds", "/builds/g/p") == Path("/builds/g/p")


def test_resolve_project_path_rebases_outside_builds_dir() -> None:
    assert resolve_project_path("/mnt/ci", "/builds/g/p") == Path("/mnt/ci/g/p")


def test_parse_paths_drops_empty_parts_and_keeps_order() -> None:
    assert parse_paths("  b  a c ") == ("b", "a", "c")
    assert parse_paths("") == ()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, None), ("", None), ("true", True), (" true\n", True), ("false", False), ("yes", False)],
)
def test_parse_forced_decision(raw: str | None, expected: bool | None) -> None:
    assert parse_forced_decision(raw) is expected


def test_limits_from_env_defaults() -> None:
    limits = limits_from_env({})

    assert limits.page_limit == DEFAULT_PAGE_LIMIT == 5
    assert limits.job_limit == DEFAULT_JOB_LIMIT == 1000
    assert limits.same_job_limit == DEFAULT_SAME_JOB_LIMIT == 100
    assert limits.same_ref_limit == DEFAULT_SAME_REF_LIMIT == 2


def test_limits_from_env_overrides() -> None:
    limits = limits_from_env(
        {
            "SKIP_CI_PAGE_TO_FETCH_MAX": "3",
            "SKIP_CI_JOB_TO_CHECK_MAX": "50",
            "SKIP_CI_COMMIT_TO_CHECK_SAME_JOB_MAX": "10",
            "SKIP_CI_COMMIT_TO_CHECK_SAME_REF_MAX": "4",
        }
    )

    assert limits == ScanLimits(page_limit=3, job_limit=50, same_job_limit=10, same_ref_limit=4)


@pytest.mark.parametrize("raw", ["abc", "-1", "1.5"])
def test_limits_from_env_falls_back_on_invalid_values(
    raw: str, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING):
        limits = limits_from_env({"SKIP_CI_PAGE_TO_FETCH_MAX": raw})

    assert limits.page_limit == DEFAULT_PAGE_LIMIT
    assert "SKIP_CI_PAGE_TO_FETCH_MAX" in caplog.text


def test_validate_for_lookup_requires_paths(tmp_path: Path) -> None:
    config = SkipConfig(project_path=tmp_path, project_id="1", job_id="2")

    with pytest.raises(ConfigError, match="SKIP_IF_TREE_OK_IN_PAST is empty"):
        config.validate_for_lookup()


@pytest.mark.parametrize(
    ("missing", "message"),
    [
        ("api_token", "API_READ_TOKEN is empty"),
        ("job_name", "CI_JOB_NAME is empty"),
        ("api_url", "CI_API_V4_URL is empty"),
    ],
)
def test_validate_for_lookup_api_strategy_requirements(
    missing: str, message: str, tmp_path: Path
) -> None:
    settings = {"api_token": "t", "job_name": "test", "api_url": "https://gitlab.example/api/v4"}
    settings[missing] = ""
    config = SkipConfig(project_path=tmp_path, project_id="1", job_id="2", paths=("a",), **settings)

    with pytest.raises(ConfigError, match=message):
        config.validate_for_lookup()


def test_validate_for_lookup_cache_strategy_needs_only_paths(tmp_path: Path) -> None:
    config = SkipConfig(
        project_path=tmp_path,
        project_id="1",
        job_id="2",
        paths=("a",),
        strategy=HistoryStrategy.CACHE,
    )

    config.validate_for_lookup()


def test_describe_redacts_tokens() -> None:
    text = config_from_env(_env()).describe()

    assert "read-token" not in text
    assert "job-token" not in text
    assert "**********" in text
    assert "service-a lib-1" in text


def test_skip_skip_ci_forces_no_skip() -> None:
    assert config_from_env(_env(SKIP_SKIP_CI="true")).forced_decision is False
    assert config_from_env(_env(SKIP_SKIP_CI="true", SKIP_CI_VALUE="true")).forced_decision is False
    assert config_from_env(_env(SKIP_SKIP_CI="false", SKIP_CI_VALUE="true")).forced_decision is True
