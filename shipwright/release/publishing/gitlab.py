# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
GitLab releases through `release-cli`.

GitLab release assets are links, not uploads: the files stay in the CI
job's artifacts and the release points at them. Each link is a
`{"name", "url", "link_type": "package"}` object whose url comes from the
job artifact template, by default

    {project_url}/-/jobs/{job_id}/artifacts/file/{name}

The links are always built as Python dicts and serialized with json.dumps,
so names and URLs are escaped correctly whatever they contain.
"""

import json
import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Sequence
from urllib.parse import quote

from shipwright.config.schema import GitLabCIContext, GitLabConfig
from shipwright.logging.logger import get_logger
from shipwright.release.exceptions import PublishError, TransientPublishError
from shipwright.release.publishing.base import Provider, ReleaseProvider, release_notes, release_title
from shipwright.release.versioning import Version
from shipwright.utils.process import CommandRunner, run_command
from shipwright.utils.retry import RetryPolicy

_logger: logging.Logger = get_logger(__name__)


def build_asset_links(
    ci: GitLabCIContext,
    assets: Sequence[Path],
    url_template: str,
) -> list[dict[str, str]]:
    """One link object per asset, in asset order."""
    links: list[dict[str, str]] = []
    for asset in assets:
        url = url_template.format(
            project_url=ci.project_url,
            job_id=ci.job_id,
            pipeline_id=ci.pipeline_id,
            commit_sha=ci.commit_sha,
            name=quote(asset.name),
        )
        links.append({"name": asset.name, "url": url, "link_type": "package"})
    return links


def asset_links_json(ci: GitLabCIContext, assets: Sequence[Path], url_template: str) -> str:
    """The asset links as a JSON array string."""
    return json.dumps(build_asset_links(ci, assets, url_template))


class GitLabProvider(ReleaseProvider):
    provider = Provider.GITLAB

    def __init__(
        self,
        config: GitLabConfig,
        environ: Optional[Mapping[str, str]] = None,
        runner: CommandRunner = run_command,
    ) -> None:
        self._config = config
        self._environ = environ if environ is not None else os.environ
        self._run = runner
        self._ci: Optional[GitLabCIContext] = None

    @property
    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self._config.max_attempts)

    @property
    def ci(self) -> GitLabCIContext:
        if self._ci is None:
            self._ci = GitLabCIContext.from_env(self._environ)
        return self._ci

    def ensure_ready(self) -> None:
        # Validates CI_PROJECT_URL / CI_JOB_ID / CI_COMMIT_SHA / CI_PIPELINE_ID.
        ci = self.ci
        self._run(["release-cli", "--version"], timeout_seconds=30).check()
        _logger.debug(
            "GitLab CI identity validated",
            extra={"project_url": ci.project_url, "job_id": ci.job_id, "pipeline_id": ci.pipeline_id},
        )

    def release_exists(self, version: Version) -> bool:
        result = self._run(
            ["release-cli", "get", "--tag-name", str(version)],
            timeout_seconds=60,
        )
        return result.ok

    def create_release(self, version: Version, assets: Sequence[Path]) -> None:
        if not assets:
            raise PublishError("No assets to link")

        links = build_asset_links(self.ci, assets, self._config.asset_url_template)
        _logger.debug("GitLab asset links", extra={"assets_json": json.dumps(links)})

        args = [
            "release-cli",
            "create",
            "--name",
            release_title(version),
            "--tag-name",
            str(version),
            "--description",
            release_notes(version),
            "--ref",
            self.ci.commit_sha,
        ]
        for link in links:
            args.extend(["--assets-link", json.dumps(link)])

        result = self._run(args, timeout_seconds=self._config.timeout_seconds)
        if not result.ok:
            detail = result.stderr.strip() or f"exit code {result.returncode}"
            raise TransientPublishError(f"release-cli create failed: {detail}")

        _logger.info(
            "GitLab release created successfully",
            extra={"provider": self.name, "version": str(version), "assets": len(links)},
        )
