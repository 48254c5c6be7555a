# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for shipwright.

Every section of the pipeline gets its own frozen pydantic model. Frozen
means a config object cannot change once built: the same values are
threaded through packaging, publishing and image builds for the whole run.

The models use pydantic v2's ConfigDict with:
  - frozen=True: immutability after construction
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

Nothing here reads environment variables. The CLI collects what it needs
from the environment and hands it over explicitly (see GitLabCIContext).
"""

import re
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from shipwright.release.exceptions import CIEnvironmentError, UnsupportedPlatformError
from shipwright.release.platforms import DEFAULT_PLATFORMS, PlatformTarget, parse_platforms

_URL_PATTERN = re.compile(r"^https?://")
_DIGITS_PATTERN = re.compile(r"^[0-9]+$")
_SHA_PATTERN = re.compile(r"^[0-9a-fA-F]{7,64}$")

DEFAULT_ASSET_URL_TEMPLATE = "{project_url}/-/jobs/{job_id}/artifacts/file/{name}"

# Environment variable -> GitLabCIContext field, in reporting order.
CI_ENV_FIELDS: dict[str, str] = {
    "CI_PROJECT_URL": "project_url",
    "CI_JOB_ID": "job_id",
    "CI_COMMIT_SHA": "commit_sha",
    "CI_PIPELINE_ID": "pipeline_id",
}


class BuildConfig(BaseModel):
    """What gets packaged, under which name, for which platforms."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    payload: str = Field(default="foobar.sh", description="File copied verbatim for every platform")
    artifact_name: str = Field(
        default="tyk-sync-foobar",
        min_length=1,
        description="Prefix of every artifact name",
    )
    platforms: list[str] = Field(
        default_factory=lambda: [t.slug for t in DEFAULT_PLATFORMS],
        min_length=1,
        description="Platform slugs in build order, e.g. linux_amd64",
    )
    completions: Optional[str] = Field(
        default=None,
        description="Optional shell completion script bundled into archives",
    )

    @field_validator("platforms")
    @classmethod
    def _check_platforms(cls, value: list[str]) -> list[str]:
        try:
            parse_platforms(value)
        except UnsupportedPlatformError as err:
            raise ValueError(str(err)) from err
        return value

    def targets(self) -> tuple[PlatformTarget, ...]:
        return parse_platforms(self.platforms)


class GitHubConfig(BaseModel):
    """
    GitHub release settings.

    The retry policy applies to release creation only. The defaults are
    three attempts in total with 5s then 10s between them.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    repository: Optional[str] = Field(
        default=None,
        description="owner/name passed to gh --repo; defaults to the current checkout",
    )
    min_gh_version: str = Field(default="2.0.0")
    max_attempts: int = Field(default=3, ge=1, le=10)
    initial_backoff_seconds: float = Field(default=5.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)
    timeout_seconds: int = Field(default=600, ge=1)

    @field_validator("repository")
    @classmethod
    def _check_repository(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not re.match(r"^[\w.-]+/[\w.-]+$", value):
            raise ValueError("repository must look like owner/name")
        return value


class GitLabConfig(BaseModel):
    """GitLab release settings."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    asset_url_template: str = Field(
        default=DEFAULT_ASSET_URL_TEMPLATE,
        description="Format string with {project_url}, {job_id} and {name}",
    )
    max_attempts: int = Field(default=1, ge=1, le=10)
    timeout_seconds: int = Field(default=600, ge=1)

    @field_validator("asset_url_template")
    @classmethod
    def _check_template(cls, value: str) -> str:
        if "{name}" not in value:
            raise ValueError("asset_url_template must contain {name}")
        return value


class DockerConfig(BaseModel):
    """Multi-platform image build settings."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    platforms: list[str] = Field(
        default_factory=lambda: ["linux/amd64", "linux/arm64"],
        min_length=1,
    )
    context: str = Field(default=".", description="Build context directory")
    dockerfile: Optional[str] = Field(default=None, description="Dockerfile path, if not <context>/Dockerfile")
    builder_name: str = Field(default="builder", min_length=1)
    poll_timeout_seconds: float = Field(default=30.0, gt=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    build_timeout_seconds: int = Field(default=3600, ge=1)
    require_login: bool = Field(default=True, description="Require a registry user in `docker system info`")

    @field_validator("platforms")
    @classmethod
    def _check_platforms(cls, value: list[str]) -> list[str]:
        for item in value:
            if not re.match(r"^[a-z0-9]+/[a-z0-9]+(/[a-z0-9]+)?$", item):
                raise ValueError(f"invalid image platform '{item}', expected os/arch[/variant]")
        return value


class CleanConfig(BaseModel):
    """Safety thresholds for removing the distribution directory."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    min_free_bytes: int = Field(
        default=1_024_000,
        ge=0,
        description="Free space the parent filesystem must have before cleanup",
    )


class ShipwrightConfig(BaseModel):
    """
    Root configuration object.

    Every section has defaults, so an empty YAML file (or no file at all)
    yields a working configuration for the stock payload.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    log_level: str = Field(default="INFO")
    build: BuildConfig = Field(default_factory=BuildConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    gitlab: GitLabConfig = Field(default_factory=GitLabConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    clean: CleanConfig = Field(default_factory=CleanConfig)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level '{value}'")
        return upper


class GitLabCIContext(BaseModel):
    """
    Identity of the GitLab CI job a release is created from.

    Built from CI_PROJECT_URL, CI_JOB_ID, CI_COMMIT_SHA and CI_PIPELINE_ID.
    Use `from_env`, which reports every missing or malformed variable at once.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    project_url: str
    job_id: str
    commit_sha: str
    pipeline_id: str

    @field_validator("project_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not _URL_PATTERN.match(value):
            raise ValueError("must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("job_id", "pipeline_id")
    @classmethod
    def _check_digits(cls, value: str) -> str:
        if not _DIGITS_PATTERN.match(value):
            raise ValueError("must be all digits")
        return value

    @field_validator("commit_sha")
    @classmethod
    def _check_sha(cls, value: str) -> str:
        if not _SHA_PATTERN.match(value):
            raise ValueError("must be a hex commit SHA")
        return value

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "GitLabCIContext":
        """
        Build the context from an environment mapping.

        Raises:
            CIEnvironmentError: Naming every missing and every invalid variable.
        """
        missing = [name for name in CI_ENV_FIELDS if not environ.get(name)]
        values = {
            field: environ[name] for name, field in CI_ENV_FIELDS.items() if environ.get(name)
        }
        try:
            context = cls.model_validate(values)
        except PydanticValidationError as err:
            env_by_field = {field: name for name, field in CI_ENV_FIELDS.items()}
            invalid = [
                env_by_field[str(error["loc"][0])]
                for error in err.errors()
                if error["type"] != "missing" and error["loc"] and str(error["loc"][0]) in env_by_field
            ]
            raise CIEnvironmentError(missing=missing, invalid=invalid) from err
        return context
