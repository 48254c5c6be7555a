# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for release publishing to GitHub and GitLab.

External tools are replaced by the fake_runner fixture, so every test
asserts on the exact gh / release-cli invocations that would have run.
"""

import json
from pathlib import Path

import pytest

from shipwright.config.schema import GitHubConfig, GitLabCIContext, GitLabConfig
from shipwright.release.checksums.integrity import append_checksum, truncate_manifest
from shipwright.release.exceptions import (
    AuthenticationError,
    CIEnvironmentError,
    PublishError,
    ReleaseExistsError,
    RetryExhaustedError,
    ToolMissingError,
)
from shipwright.release.publishing.github import GitHubProvider
from shipwright.release.publishing.gitlab import GitLabProvider, asset_links_json, build_asset_links
from shipwright.release.publishing.publisher import list_release_assets, publish, publish_all
from shipwright.release.versioning import Version
from shipwright.utils.retry import RetryPolicy

V123 = Version.parse("v1.2.3")


@pytest.fixture()
def dist(tmp_path: Path) -> Path:
    path = tmp_path / "dist"
    path.mkdir()
    (path / "tyk-sync-foobar_v1.2.3_linux_amd64.tar.gz").write_bytes(b"tar")
    (path / "tyk-sync-foobar_v1.2.3_windows_amd64.exe.zip").write_bytes(b"zip")
    truncate_manifest(path)
    append_checksum(path, path / "tyk-sync-foobar_v1.2.3_linux_amd64.tar.gz")
    append_checksum(path, path / "tyk-sync-foobar_v1.2.3_windows_amd64.exe.zip")
    return path


def _ready_github(fake_runner, exists: bool = False, authenticated: bool = True):  # type: ignore[no-untyped-def]
    fake_runner.on("gh", "--version", stdout="gh version 2.40.1 (2023-12-13)\n")
    fake_runner.on("gh", "auth", "status", returncode=0 if authenticated else 1)
    fake_runner.on("gh", "release", "view", returncode=0 if exists else 1)
    return fake_runner


def _ready_gitlab(fake_runner):  # type: ignore[no-untyped-def]
    fake_runner.on("release-cli", "--version", stdout="release-cli version 0.16.0")
    fake_runner.on("release-cli", "get", returncode=1)
    return fake_runner


class TestAssets:
    def test_lists_manifest_entries_sorted(self, dist: Path) -> None:
        assert [p.name for p in list_release_assets(dist)] == [
            "checksums.txt",
            "tyk-sync-foobar_v1.2.3_linux_amd64.tar.gz",
            "tyk-sync-foobar_v1.2.3_windows_amd64.exe.zip",
        ]

    def test_missing_dist_dir_fails(self, tmp_path: Path) -> None:
        with pytest.raises(PublishError, match="does not exist"):
            list_release_assets(tmp_path / "nope")

    def test_missing_manifest_fails(self, tmp_path: Path) -> None:
        (tmp_path / "tool_v1.2.3_linux_amd64").write_bytes(b"bin")
        with pytest.raises(PublishError, match="No checksums.txt"):
            list_release_assets(tmp_path)

    def test_empty_manifest_fails(self, tmp_path: Path) -> None:
        truncate_manifest(tmp_path)
        with pytest.raises(PublishError, match="No artifacts"):
            list_release_assets(tmp_path)

    def test_unlisted_files_are_not_published(self, dist: Path) -> None:
        (dist / "tyk-sync-foobar_v1.2.2_linux_amd64.tar.gz").write_bytes(b"old")
        (dist / "notes.txt").write_text("local notes", encoding="utf-8")

        assert [p.name for p in list_release_assets(dist)] == [
            "checksums.txt",
            "tyk-sync-foobar_v1.2.3_linux_amd64.tar.gz",
            "tyk-sync-foobar_v1.2.3_windows_amd64.exe.zip",
        ]

    def test_listed_artifact_missing_on_disk_fails(self, dist: Path) -> None:
        (dist / "tyk-sync-foobar_v1.2.3_windows_amd64.exe.zip").unlink()
        with pytest.raises(PublishError, match="missing: tyk-sync-foobar_v1.2.3_windows_amd64.exe.zip"):
            list_release_assets(dist)

    def test_malformed_manifest_fails(self, dist: Path) -> None:
        (dist / "checksums.txt").write_text("garbage\n", encoding="utf-8")
        with pytest.raises(PublishError, match="Malformed"):
            list_release_assets(dist)


class TestGitHub:
    def test_creates_release_with_all_assets(self, fake_runner, sleeps, dist: Path) -> None:
        _ready_github(fake_runner)
        provider = GitHubProvider(GitHubConfig(), runner=fake_runner)

        outcome = publish(provider, V123, dist, sleep=sleeps)

        assert outcome.success
        assert outcome.attempts == 1
        create = fake_runner.calls_to("gh", "release", "create")
        assert len(create) == 1
        argv = create[0]
        assert argv[3] == "v1.2.3"
        assert str(dist / "checksums.txt") in argv
        assert argv[argv.index("--title") + 1] == "Release v1.2.3"
        assert argv[argv.index("--notes") + 1] == "Automated release of version v1.2.3"
        assert "--repo" not in argv
        assert sleeps.delays == []

    def test_repository_is_passed_when_configured(self, fake_runner, sleeps, dist: Path) -> None:
        _ready_github(fake_runner)
        provider = GitHubProvider(GitHubConfig(repository="acme/tool"), runner=fake_runner)

        publish(provider, V123, dist, sleep=sleeps)

        view = fake_runner.calls_to("gh", "release", "view")[0]
        create = fake_runner.calls_to("gh", "release", "create")[0]
        assert view[-2:] == ("--repo", "acme/tool")
        assert create[-2:] == ("--repo", "acme/tool")

    def test_existing_release_is_refused_with_zero_uploads(self, fake_runner, sleeps, dist: Path) -> None:
        _ready_github(fake_runner, exists=True)
        provider = GitHubProvider(GitHubConfig(), runner=fake_runner)

        with pytest.raises(ReleaseExistsError, match="already exists on github"):
            publish(provider, V123, dist, sleep=sleeps)
        assert fake_runner.calls_to("gh", "release", "create") == []

    def test_retries_transient_failures_with_backoff(self, fake_runner, sleeps, dist: Path) -> None:
        _ready_github(fake_runner)
        fake_runner.on("gh", "release", "create", returncode=1, stderr="502 Bad Gateway")
        fake_runner.on("gh", "release", "create", returncode=0)
        provider = GitHubProvider(GitHubConfig(), runner=fake_runner)

        outcome = publish(provider, V123, dist, sleep=sleeps)

        assert outcome.success
        assert outcome.attempts == 2
        assert sleeps.delays == [5.0]

    def test_gives_up_after_three_attempts(self, fake_runner, sleeps, dist: Path) -> None:
        _ready_github(fake_runner)
        fake_runner.on("gh", "release", "create", returncode=1, stderr="upload failed")
        provider = GitHubProvider(GitHubConfig(), runner=fake_runner)

        with pytest.raises(RetryExhaustedError) as exc_info:
            publish(provider, V123, dist, sleep=sleeps)

        assert exc_info.value.attempts == 3
        assert len(fake_runner.calls_to("gh", "release", "create")) == 3
        assert sleeps.delays == [5.0, 10.0]

    def test_explicit_policy_overrides_provider_policy(self, fake_runner, sleeps, dist: Path) -> None:
        _ready_github(fake_runner)
        fake_runner.on("gh", "release", "create", returncode=1)
        provider = GitHubProvider(GitHubConfig(), runner=fake_runner)

        with pytest.raises(RetryExhaustedError):
            publish(provider, V123, dist, retry_policy=RetryPolicy(max_attempts=1), sleep=sleeps)
        assert len(fake_runner.calls_to("gh", "release", "create")) == 1

    def test_unauthenticated_gh_is_not_retried(self, fake_runner, sleeps, dist: Path) -> None:
        _ready_github(fake_runner, authenticated=False)
        provider = GitHubProvider(GitHubConfig(), runner=fake_runner)

        with pytest.raises(AuthenticationError, match="gh auth login"):
            publish(provider, V123, dist, sleep=sleeps)
        assert fake_runner.calls_to("gh", "release", "create") == []

    def test_missing_gh_raises_tool_missing(self, fake_runner, sleeps, dist: Path) -> None:
        fake_runner.missing("gh")
        provider = GitHubProvider(GitHubConfig(), runner=fake_runner)

        with pytest.raises(ToolMissingError):
            publish(provider, V123, dist, sleep=sleeps)


class TestGitLab:
    def test_asset_links_follow_job_artifact_layout(self, ci_env: dict[str, str], dist: Path) -> None:
        ci = GitLabCIContext.from_env(ci_env)
        links = build_asset_links(ci, list_release_assets(dist), GitLabConfig().asset_url_template)

        assert links[1] == {
            "name": "tyk-sync-foobar_v1.2.3_linux_amd64.tar.gz",
            "url": "https://gitlab.example.com/group/project/-/jobs/4242/artifacts/file/"
            "tyk-sync-foobar_v1.2.3_linux_amd64.tar.gz",
            "link_type": "package",
        }

    def test_asset_links_json_escapes_awkward_names(self, ci_env: dict[str, str], tmp_path: Path) -> None:
        ci = GitLabCIContext.from_env(ci_env)
        awkward = tmp_path / 'we"ird\\name.tar.gz'
        text = asset_links_json(ci, [awkward], GitLabConfig().asset_url_template)

        parsed = json.loads(text)
        assert parsed[0]["name"] == 'we"ird\\name.tar.gz'
        assert parsed[0]["link_type"] == "package"
        assert parsed[0]["url"].endswith("/artifacts/file/we%22ird%5Cname.tar.gz")

    def test_creates_release_with_one_link_per_asset(self, fake_runner, sleeps, ci_env, dist: Path) -> None:
        _ready_gitlab(fake_runner)
        provider = GitLabProvider(GitLabConfig(), environ=ci_env, runner=fake_runner)

        outcome = publish(provider, V123, dist, sleep=sleeps)

        assert outcome.success
        argv = fake_runner.calls_to("release-cli", "create")[0]
        assert argv[argv.index("--name") + 1] == "Release v1.2.3"
        assert argv[argv.index("--tag-name") + 1] == "v1.2.3"
        assert argv[argv.index("--ref") + 1] == ci_env["CI_COMMIT_SHA"]
        links = [json.loads(argv[i + 1]) for i, a in enumerate(argv) if a == "--assets-link"]
        assert [link["name"] for link in links] == [p.name for p in list_release_assets(dist)]

    def test_existing_release_is_refused(self, fake_runner, sleeps, ci_env, dist: Path) -> None:
        fake_runner.on("release-cli", "get", returncode=0)
        provider = GitLabProvider(GitLabConfig(), environ=ci_env, runner=fake_runner)

        with pytest.raises(ReleaseExistsError, match="gitlab"):
            publish(provider, V123, dist, sleep=sleeps)
        assert fake_runner.calls_to("release-cli", "create") == []

    def test_missing_ci_variables_are_named(self, fake_runner, sleeps, dist: Path) -> None:
        provider = GitLabProvider(GitLabConfig(), environ={"CI_JOB_ID": "12"}, runner=fake_runner)

        with pytest.raises(CIEnvironmentError) as exc_info:
            publish(provider, V123, dist, sleep=sleeps)
        assert exc_info.value.missing == ["CI_PROJECT_URL", "CI_COMMIT_SHA", "CI_PIPELINE_ID"]
        assert fake_runner.calls == []

    def test_single_attempt_by_default(self, fake_runner, sleeps, ci_env, dist: Path) -> None:
        _ready_gitlab(fake_runner)
        fake_runner.on("release-cli", "create", returncode=1, stderr="boom")
        provider = GitLabProvider(GitLabConfig(), environ=ci_env, runner=fake_runner)

        with pytest.raises(RetryExhaustedError):
            publish(provider, V123, dist, sleep=sleeps)
        assert len(fake_runner.calls_to("release-cli", "create")) == 1
        assert sleeps.delays == []


class TestPublishAll:
    def test_github_failure_does_not_stop_gitlab(self, fake_runner, sleeps, ci_env, dist: Path) -> None:
        _ready_github(fake_runner)
        _ready_gitlab(fake_runner)
        fake_runner.on("gh", "release", "create", returncode=1, stderr="network unreachable")

        providers = [
            GitHubProvider(GitHubConfig(), runner=fake_runner),
            GitLabProvider(GitLabConfig(), environ=ci_env, runner=fake_runner),
        ]
        outcomes = publish_all(providers, V123, dist, sleep=sleeps)

        github, gitlab = outcomes
        assert github.provider == "github"
        assert not github.success
        assert github.attempts == 3
        assert "network unreachable" in (github.error or "")
        assert gitlab.provider == "gitlab"
        assert gitlab.success
        assert len(fake_runner.calls_to("release-cli", "create")) == 1

    def test_all_succeed(self, fake_runner, sleeps, ci_env, dist: Path) -> None:
        _ready_github(fake_runner)
        _ready_gitlab(fake_runner)
        providers = [
            GitHubProvider(GitHubConfig(), runner=fake_runner),
            GitLabProvider(GitLabConfig(), environ=ci_env, runner=fake_runner),
        ]

        outcomes = publish_all(providers, V123, dist, sleep=sleeps)
        assert [o.success for o in outcomes] == [True, True]
