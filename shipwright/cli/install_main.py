# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
CLI entrypoint for the binary installer.

Usage:
    shipwright-install
    shipwright-install --version v1.2.0 --dir ~/bin
    shipwright-install --gitlab --no-completion
    shipwright-install --uninstall
"""

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from shipwright.cli.commands import exit_code_for
from shipwright.cli.exit_codes import SUCCESS
from shipwright.install.installer import (
    DEFAULT_BINARY_NAME,
    DEFAULT_REPOSITORY,
    Installer,
    InstallOptions,
    Source,
)
from shipwright.logging.logger import get_logger, set_log_level
from shipwright.release.exceptions import ShipwrightError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shipwright-install",
        description="Download, verify and install a released binary.",
    )
    parser.add_argument("--version", default="latest", help="Install a specific version (default: latest).")

    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--github",
        dest="source",
        action="store_const",
        const=Source.GITHUB,
        help="Use GitHub as download source (default).",
    )
    source.add_argument(
        "--gitlab",
        dest="source",
        action="store_const",
        const=Source.GITLAB,
        help="Use GitLab as download source.",
    )
    parser.set_defaults(source=Source.GITHUB)

    parser.add_argument("--dir", dest="install_dir", default=None, help="Custom installation directory.")
    parser.add_argument(
        "--no-verify",
        dest="verify_checksum",
        action="store_false",
        help="Skip checksum verification.",
    )
    parser.add_argument("--force", action="store_true", help="Install even if this version is already installed.")
    parser.add_argument(
        "--no-completion",
        dest="completions",
        action="store_false",
        help="Skip shell completion installation.",
    )
    parser.add_argument("--quiet", action="store_true", help="Only report warnings and errors.")
    parser.add_argument("--uninstall", action="store_true", help="Remove the installed binary.")
    parser.add_argument("--repository", default=DEFAULT_REPOSITORY, help="Release repository as org/repo.")
    parser.add_argument("--binary", dest="binary_name", default=DEFAULT_BINARY_NAME, help="Installed binary name.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    logger = get_logger("shipwright.cli.install")
    set_log_level("WARNING" if args.quiet else "INFO")

    try:
        options = InstallOptions(
            version=args.version,
            source=args.source,
            install_dir=Path(args.install_dir).expanduser() if args.install_dir else None,
            verify_checksum=args.verify_checksum,
            force=args.force,
            completions=args.completions,
            repository=args.repository,
            binary_name=args.binary_name,
        )
        installer = Installer(options)

        if args.uninstall:
            installer.uninstall()
            sys.exit(SUCCESS)

        result = installer.install()
    except (ShipwrightError, OSError) as err:
        logger.error("Installation failed", extra={"error": str(err), "error_type": type(err).__name__})
        sys.exit(exit_code_for(err))

    if not args.quiet and not result.skipped:
        print(f"Installed {options.binary_name} {result.version} to {result.binary_path}")
        print(f"To get started: {options.binary_name} --help")
    sys.exit(SUCCESS)


if __name__ == "__main__":
    main()
