# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Installer for released binaries.

The counterpart of `shipwright ... release`: it downloads the archive the
release pipeline published for this machine, checks it against the
release's checksums.txt, and puts the binary on PATH.

    1. Detect the platform (linux or macos only, mapped to release slugs)
    2. Resolve "latest" through the GitHub or GitLab releases API
    3. Pick the install directory
    4. Skip if the install receipt already records this version
    5. Download <name>_<version>_<os>_<arch>.tar.gz and checksums.txt
    6. Verify the archive digest, extract safely, install with mode 0755
    7. Install the bundled shell completion script for $SHELL
    8. Write the receipt

All HTTP goes through urllib with bounded retries. Downloaded content is
only ever hashed and unpacked, never executed.
"""

import json
import logging
import os
import platform
import shutil
import stat
import tarfile
import tempfile
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from shipwright.logging.logger import get_logger
from shipwright.release.checksums.integrity import MANIFEST_FILENAME, ManifestFormatError, parse_checksum_text
from shipwright.release.exceptions import InstallError, RetryExhaustedError, UnsupportedPlatformError
from shipwright.release.packaging.packager import COMPLETIONS_MEMBER, artifact_basename
from shipwright.release.platforms import Architecture, OperatingSystem, PlatformTarget
from shipwright.release.versioning import Version
from shipwright.utils.filesystem import atomic_copy, atomic_write_bytes, is_writable, safe_delete
from shipwright.utils.hashing import verify_checksum
from shipwright.utils.retry import RetryPolicy, SleepFn, retry_with_policy

_logger: logging.Logger = get_logger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_URL = "https://github.com"
GITLAB_URL = "https://gitlab.com"

DEFAULT_REPOSITORY = "TykTechnologies/tyk-sync-foobar"
DEFAULT_BINARY_NAME = "tyk-sync-foobar"

DOWNLOAD_POLICY = RetryPolicy(max_attempts=3, initial_delay_seconds=5.0, backoff_factor=2.0)

_HTTP_TIMEOUT_SECONDS = 30
_STREAM_CHUNK_SIZE = 64 * 1024
_MAX_MEMBER_BYTES = 512 * 1024 * 1024
_TRANSIENT_HTTP_CODES = frozenset({429, 500, 502, 503, 504})

_SYSTEM_MAP: dict[str, OperatingSystem] = {
    "linux": OperatingSystem.LINUX,
    "darwin": OperatingSystem.MACOS,
}

_MACHINE_MAP: dict[str, Architecture] = {
    "x86_64": Architecture.AMD64,
    "amd64": Architecture.AMD64,
    "aarch64": Architecture.ARM64,
    "arm64": Architecture.ARM64,
    "armv7l": Architecture.ARM,
    "i386": Architecture.X86,
    "i686": Architecture.X86,
}

# Completion directory under the XDG data home, per shell.
COMPLETION_SUBDIRS: dict[str, str] = {
    "bash": "bash-completion/completions",
    "zsh": "zsh/site-functions",
    "fish": "fish/vendor_completions.d",
}

Opener = Callable[..., Any]


class Source(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"


@dataclass(frozen=True)
class InstallOptions:
    """Everything the installer was asked to do."""

    version: str = "latest"
    source: Source = Source.GITHUB
    install_dir: Optional[Path] = None
    verify_checksum: bool = True
    force: bool = False
    completions: bool = True
    repository: str = DEFAULT_REPOSITORY
    binary_name: str = DEFAULT_BINARY_NAME

    def __post_init__(self) -> None:
        owner, sep, name = self.repository.partition("/")
        if not sep or not owner or not name or "/" in name:
            raise InstallError(f"Repository must look like org/repo, got '{self.repository}'")
        if not self.binary_name or "/" in self.binary_name:
            raise InstallError(f"Invalid binary name '{self.binary_name}'")


@dataclass(frozen=True)
class InstallResult:
    version: str
    binary_path: Path
    skipped: bool
    completion_path: Optional[Path] = None


def detect_platform(system: Optional[str] = None, machine: Optional[str] = None) -> PlatformTarget:
    """
    Map the running machine to a release platform.

    Raises:
        UnsupportedPlatformError: Not linux/macos, or an unknown CPU.
    """
    raw_system = (system if system is not None else platform.system()).lower()
    raw_machine = (machine if machine is not None else platform.machine()).lower()

    os_value = _SYSTEM_MAP.get(raw_system)
    if os_value is None:
        raise UnsupportedPlatformError(f"Unsupported operating system: {raw_system}")
    arch_value = _MACHINE_MAP.get(raw_machine)
    if arch_value is None:
        raise UnsupportedPlatformError(f"Unsupported architecture: {raw_machine}")

    target = PlatformTarget(os_value, arch_value)
    _logger.info("Detected platform", extra={"platform": target.slug})
    return target


def archive_filename(binary_name: str, version: Version, target: PlatformTarget) -> str:
    return artifact_basename(binary_name, version, target) + ".tar.gz"


def _is_transient(err: BaseException) -> bool:
    if isinstance(err, HTTPError):
        return err.code in _TRANSIENT_HTTP_CODES
    return isinstance(err, (URLError, OSError))


def _build_headers(source: Source) -> dict[str, str]:
    headers = {"User-Agent": "shipwright-installer/1.0", "Accept": "application/json"}
    if source is Source.GITHUB:
        headers["Accept"] = "application/vnd.github+json"
        headers["X-GitHub-Api-Version"] = "2022-11-28"
    return headers


def _is_safe_tar_member(member: tarfile.TarInfo, extract_dir: Path) -> bool:
    """
    Reject absolute paths, `..` components, anything resolving outside
    extract_dir, links, devices and oversized files.
    """
    if member.name.startswith(("/", "\\")):
        return False
    if ".." in member.name.replace("\\", "/").split("/"):
        return False

    resolved = (extract_dir / member.name).resolve()
    try:
        resolved.relative_to(extract_dir.resolve())
    except ValueError:
        return False

    if not (member.isfile() or member.isdir()):
        return False
    if member.isfile() and member.size > _MAX_MEMBER_BYTES:
        return False
    return True


def safe_extract_tarball(tarball_path: Path, extract_dir: Path) -> list[str]:
    """
    Extract every safe member of a .tar.gz into extract_dir.

    Returns:
        Names of the extracted regular files.

    Raises:
        InstallError: The archive is not a readable gzip tarball.
    """
    extract_dir.mkdir(parents=True, exist_ok=True)
    extracted: list[str] = []
    try:
        with tarfile.open(tarball_path, "r:gz") as tar:
            for member in tar.getmembers():
                if not _is_safe_tar_member(member, extract_dir):
                    _logger.warning("Skipping unsafe tar member", extra={"member": member.name})
                    continue
                tar.extract(member, path=extract_dir, set_attrs=False, filter="data")
                if member.isfile():
                    extracted.append(member.name)
    except tarfile.TarError as err:
        raise InstallError(f"Cannot extract {tarball_path.name}: {err}") from err
    return extracted


class Installer:
    """Install or uninstall one released binary."""

    def __init__(
        self,
        options: InstallOptions,
        opener: Opener = urlopen,
        sleep: SleepFn = time.sleep,
        environ: Optional[Mapping[str, str]] = None,
        system: Optional[str] = None,
        machine: Optional[str] = None,
    ) -> None:
        self.options = options
        self._open = opener
        self._sleep = sleep
        self._environ = environ if environ is not None else os.environ
        self._system = system
        self._machine = machine

    # ---- paths ----

    @property
    def _home(self) -> Path:
        home = self._environ.get("HOME")
        return Path(home) if home else Path.home()

    def default_install_dirs(self) -> list[Path]:
        return [Path("/usr/local/bin"), self._home / "bin", self._home / ".local" / "bin"]

    def data_home(self) -> Path:
        xdg = self._environ.get("XDG_DATA_HOME")
        return Path(xdg) if xdg else self._home / ".local" / "share"

    def completion_paths(self) -> dict[str, Path]:
        """Where each supported shell's completion file lives."""
        return {
            shell: self.data_home() / subdir / self.options.binary_name
            for shell, subdir in COMPLETION_SUBDIRS.items()
        }

    def completion_path_for_shell(self) -> Optional[Path]:
        """Completion target for $SHELL, or None for an unsupported shell."""
        shell = Path(self._environ.get("SHELL", "")).name
        return self.completion_paths().get(shell)

    def find_install_dir(self) -> Path:
        """
        `--dir` when it or its parent is writable, else the first writable
        default directory.

        Raises:
            InstallError: No usable directory.
        """
        custom = self.options.install_dir
        if custom is not None:
            if is_writable(custom) or is_writable(custom.parent):
                return custom
            raise InstallError(f"Custom installation directory is not writable: {custom}")

        for candidate in self.default_install_dirs():
            if is_writable(candidate) or is_writable(candidate.parent):
                return candidate
        raise InstallError("No writable installation directory found")

    def receipt_path(self, install_dir: Path) -> Path:
        return install_dir / f".{self.options.binary_name}.version"

    def installed_version(self, install_dir: Path) -> Optional[str]:
        """Version recorded next to an installed binary, if both exist."""
        receipt = self.receipt_path(install_dir)
        if not (install_dir / self.options.binary_name).is_file() or not receipt.is_file():
            return None
        return receipt.read_text(encoding="utf-8").strip() or None

    # ---- HTTP ----

    def _get(self, url: str) -> bytes:
        def _once() -> bytes:
            request = Request(url, headers=_build_headers(self.options.source), method="GET")
            with self._open(request, timeout=_HTTP_TIMEOUT_SECONDS) as response:
                return response.read()

        return self._with_retries(_once, f"GET {url}")

    def _download(self, url: str, target: Path) -> None:
        def _once() -> None:
            request = Request(url, headers=_build_headers(self.options.source), method="GET")
            with self._open(request, timeout=_HTTP_TIMEOUT_SECONDS) as response, target.open("wb") as out:
                while True:
                    chunk = response.read(_STREAM_CHUNK_SIZE)
                    if not chunk:
                        break
                    out.write(chunk)

        self._with_retries(_once, f"Download {target.name}")

    def _with_retries(self, operation: Callable[[], Any], description: str) -> Any:
        try:
            return retry_with_policy(
                operation,
                DOWNLOAD_POLICY,
                should_retry=_is_transient,
                description=description,
                sleep=self._sleep,
                logger=_logger,
            )
        except HTTPError as err:
            raise InstallError(f"{description} failed: HTTP {err.code}") from err
        except RetryExhaustedError as err:
            raise InstallError(str(err)) from err

    # ---- release lookup ----

    def _owner_repo(self) -> tuple[str, str]:
        owner, _, name = self.options.repository.partition("/")
        return owner, name

    def latest_version_url(self) -> str:
        owner, name = self._owner_repo()
        if self.options.source is Source.GITHUB:
            return f"{GITHUB_API_URL}/repos/{owner}/{name}/releases/latest"
        return f"{GITLAB_URL}/api/v4/projects/{quote(self.options.repository, safe='')}/releases"

    def download_base_url(self, version: Version) -> str:
        owner, name = self._owner_repo()
        if self.options.source is Source.GITHUB:
            return f"{GITHUB_URL}/{owner}/{name}/releases/download/{version}"
        return f"{GITLAB_URL}/{owner}/{name}/-/releases/{version}/downloads"

    def resolve_version(self) -> Version:
        """
        The requested version, with "latest" looked up on the release host.

        Raises:
            InstallError: The lookup failed or returned no tag.
            VersionFormatError: The tag is not a release version.
        """
        if self.options.version != "latest":
            return Version.parse(self.options.version)

        _logger.info("Fetching latest version", extra={"source": self.options.source.value})
        body = self._get(self.latest_version_url())
        try:
            payload = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as err:
            raise InstallError(f"Failed to get latest version: {err}") from err

        # GitHub returns one release, GitLab a newest-first list.
        release = payload[0] if isinstance(payload, list) and payload else payload
        tag = release.get("tag_name") if isinstance(release, dict) else None
        if not tag:
            raise InstallError("Failed to get latest version")

        version = Version.parse(str(tag))
        _logger.info("Latest version resolved", extra={"version": str(version)})
        return version

    # ---- install / uninstall ----

    def _verify_archive(self, archive: Path, manifest: Path) -> None:
        try:
            expected = parse_checksum_text(manifest.read_text(encoding="utf-8"))
        except (ManifestFormatError, UnicodeDecodeError) as err:
            raise InstallError(f"Checksum verification failed: {err}") from err

        digest = expected.get(archive.name)
        if digest is None:
            raise InstallError(f"Checksum verification failed: {archive.name} not listed in {MANIFEST_FILENAME}")
        if not verify_checksum(archive, digest):
            raise InstallError(f"Checksum verification failed for {archive.name}")
        _logger.info("Checksum verified", extra={"file": archive.name})

    def install(self) -> InstallResult:
        """
        Raises:
            InstallError: Download, verification, extraction or copy failed.
            UnsupportedPlatformError, VersionFormatError
        """
        options = self.options
        target = detect_platform(self._system, self._machine)
        version = self.resolve_version()
        install_dir = self.find_install_dir()
        binary_path = install_dir / options.binary_name

        if not options.force and self.installed_version(install_dir) == str(version):
            _logger.info(f"Version {version} already installed", extra={"path": str(binary_path)})
            return InstallResult(version=str(version), binary_path=binary_path, skipped=True)

        filename = archive_filename(options.binary_name, version, target)
        base_url = self.download_base_url(version)

        with tempfile.TemporaryDirectory(prefix=".shipwright_install_") as tmp:
            tmpdir = Path(tmp)
            archive = tmpdir / filename
            _logger.info(f"Downloading {options.repository} {version}", extra={"file": filename})
            self._download(f"{base_url}/{filename}", archive)

            if options.verify_checksum:
                manifest = tmpdir / MANIFEST_FILENAME
                self._download(f"{base_url}/{MANIFEST_FILENAME}", manifest)
                self._verify_archive(archive, manifest)
            else:
                _logger.warning("Skipping checksum verification", extra={"file": filename})

            extract_dir = tmpdir / "extract"
            members = safe_extract_tarball(archive, extract_dir)

            binary_member = artifact_basename(options.binary_name, version, target)
            if binary_member not in members:
                binary_member = options.binary_name
            if binary_member not in members:
                raise InstallError(f"Archive {filename} does not contain {options.binary_name}")

            try:
                install_dir.mkdir(parents=True, exist_ok=True)
                _logger.info(f"Installing to {install_dir}", extra={"path": str(binary_path)})
                atomic_copy(extract_dir / binary_member, binary_path)
                binary_path.chmod(0o755)

                completion_path = None
                if options.completions and COMPLETIONS_MEMBER in members:
                    completion_path = self._install_completions(extract_dir / COMPLETIONS_MEMBER)

                atomic_write_bytes(self.receipt_path(install_dir), f"{version}\n".encode("utf-8"))
            except OSError as err:
                raise InstallError(f"Failed to install into {install_dir}: {err}") from err

        _logger.info(
            f"Successfully installed {options.binary_name} {version} to {install_dir}",
            extra={"path": str(binary_path), "version": str(version)},
        )
        return InstallResult(
            version=str(version),
            binary_path=binary_path,
            skipped=False,
            completion_path=completion_path,
        )

    def _install_completions(self, script: Path) -> Optional[Path]:
        destination = self.completion_path_for_shell()
        if destination is None:
            _logger.debug("No completion support for shell", extra={"shell": self._environ.get("SHELL", "")})
            return None
        destination.parent.mkdir(parents=True, exist_ok=True)
        atomic_copy(script, destination)
        destination.chmod(stat.S_IRUSR | stat.S_IWUSR | stat.S_IRGRP | stat.S_IROTH)
        _logger.info("Installed shell completions", extra={"path": str(destination)})
        return destination

    def locate_installed_binary(self) -> Optional[Path]:
        name = self.options.binary_name
        if self.options.install_dir is not None:
            candidate = self.options.install_dir / name
            return candidate if candidate.is_file() else None

        found = shutil.which(name, path=self._environ.get("PATH"))
        if found:
            return Path(found)
        for directory in self.default_install_dirs():
            candidate = directory / name
            if candidate.is_file():
                return candidate
        return None

    def uninstall(self) -> list[Path]:
        """
        Remove the binary, its receipt and every completion file.

        Returns:
            The paths that were actually removed.

        Raises:
            InstallError: The binary is not installed, or removal failed.
        """
        binary = self.locate_installed_binary()
        if binary is None:
            raise InstallError(f"{self.options.binary_name} is not installed")

        candidates = [binary, self.receipt_path(binary.parent), *self.completion_paths().values()]
        removed: list[Path] = []
        for path in candidates:
            try:
                deleted = safe_delete(path)
            except OSError as err:
                raise InstallError(f"Failed to remove {path}: {err}") from err
            if deleted:
                removed.append(path)

        _logger.info(f"Uninstalled {self.options.binary_name}", extra={"removed": [str(p) for p in removed]})
        return removed
