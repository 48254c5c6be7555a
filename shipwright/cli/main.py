# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for shipwright.

Every invocation names the release it is about before the command:

    shipwright <version> <dist_dir> <image_name> <command> [flags]
    shipwright v1.0.0 dist myorg/myimage build --compress
    shipwright v1.0.0 dist myorg/myimage release --github --gitlab
    shipwright help

The global options (--config, --log-level) go before the positionals and
are shared by every command. Usage errors exit with USER_ERROR (1), not
argparse's default 2, which is reserved for configuration errors.
"""

import argparse
import sys
from typing import NoReturn, Optional, Sequence

from shipwright.cli.commands import (
    USAGE,
    handle_all,
    handle_build,
    handle_clean,
    handle_docker,
    handle_help,
    handle_release,
    handle_verify,
)
from shipwright.cli.exit_codes import SUCCESS, USER_ERROR


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that reports usage errors with USER_ERROR."""

    def error(self, message: str) -> NoReturn:
        sys.stderr.write(f"Error: {message}\n")
        sys.stderr.write(USAGE)
        sys.exit(USER_ERROR)


def _register_commands(subparsers: argparse._SubParsersAction) -> None:  # type: ignore[type-arg]
    """
    Register every command with its handler.

    Each command sets its handler through set_defaults(func=...) and the
    flags it does not accept default to False, so handlers can read
    args.compress / args.github / args.gitlab unconditionally.
    """
    commands = [
        ("build", "Build platform-specific distributions.", handle_build),
        ("release", "Build, then create GitHub and/or GitLab releases.", handle_release),
        ("docker", "Build and push multi-platform Docker images.", handle_docker),
        ("clean", "Remove the distribution directory.", handle_clean),
        ("verify", "Check dist_dir against checksums.txt.", handle_verify),
        ("all", "Build all platforms with default flags.", handle_all),
        ("help", "Show usage.", handle_help),
    ]

    for name, help_text, handler in commands:
        parser = subparsers.add_parser(name, help=help_text, description=help_text)
        parser.set_defaults(func=handler, compress=False, github=False, gitlab=False)

    for name in ("build", "release"):
        subparsers.choices[name].add_argument(
            "--compress",
            action="store_true",
            help="Create compressed archives (zip for Windows, tar.gz for others).",
        )

    release_parser = subparsers.choices["release"]
    release_parser.add_argument("--github", action="store_true", help="Create a GitHub release.")
    release_parser.add_argument("--gitlab", action="store_true", help="Create a GitLab release.")


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="shipwright",
        description="Multi-platform release pipeline: package, checksum, publish, containerize.",
    )
    parser.add_argument("--config", type=str, default=None, help="Path to YAML configuration file.")
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging verbosity level.",
    )
    parser.add_argument("version", help="Version tag, vX.Y.Z[-tag].")
    parser.add_argument("dist_dir", help="Distribution directory.")
    parser.add_argument("image_name", help="Docker image name.")

    subparsers = parser.add_subparsers(dest="command", metavar="command")
    _register_commands(subparsers)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """
    Main CLI entrypoint. This is what pyproject.toml's [project.scripts] points to.

      1. `shipwright help` on its own prints usage and exits 0
      2. Parse the command line
      3. Call the handler for the chosen command
      4. Exit with the handler's return code

    If no command is given, usage is shown and we exit with USER_ERROR.
    """
    raw = list(sys.argv[1:] if argv is None else argv)
    if raw == ["help"]:
        print(USAGE, end="")
        sys.exit(SUCCESS)

    parser = build_parser()
    args = parser.parse_args(raw)

    if getattr(args, "func", None) is None:
        sys.stderr.write("Error: Insufficient arguments\n")
        sys.stderr.write(USAGE)
        sys.exit(USER_ERROR)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
