# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Command handlers for the shipwright CLI.

Each function here corresponds to one command after the three positional
arguments (version, dist_dir, image_name). Handlers return an exit code
and never raise: every ShipwrightError is logged and mapped to a code.

No print() calls except the usage text for `help`. Everything else goes
through the structured logger on stderr.
"""

import argparse
import logging
import os
from pathlib import Path
from typing import Optional

from shipwright.cli.exit_codes import CONFIG_ERROR, RUNTIME_ERROR, SUCCESS, USER_ERROR, VALIDATION_ERROR
from shipwright.config.exceptions import ConfigError
from shipwright.config.loader import load_config
from shipwright.logging.logger import get_logger, set_log_level
from shipwright.release.exceptions import (
    PackagingError,
    ShipwrightError,
    ToolMissingError,
    ValidationError,
)
from shipwright.release.pipeline import (
    RunContext,
    run_build,
    run_clean,
    run_docker,
    run_release,
    run_verify,
)
from shipwright.release.publishing.base import Provider

USAGE = """\
Usage: shipwright [--config PATH] [--log-level LEVEL] <version> <dist_dir> <image_name> <command> [flags]

Commands:
    build          - Build platform-specific distributions
    release        - Create releases (use --github and/or --gitlab flags)
    docker         - Build and push Docker images
    clean          - Clean up build artifacts
    verify         - Check dist_dir against its checksum manifest
    all            - Build all platforms
    help           - Show this message

Arguments:
    version     - Version tag, vX.Y.Z[-tag]
    dist_dir    - Distribution directory
    image_name  - Docker image name

Build/Release Flags:
    --compress  - Create compressed archives (zip for Windows, tar.gz for others)
    --github    - Create GitHub release
    --gitlab    - Create GitLab release

Environment Variables:
    DEBUG      - Enable debug logging when set to "true"
    CI_*       - GitLab CI variables (required for GitLab releases)

Example:
    shipwright v1.0.0 dist myorg/myimage build --compress
    shipwright v1.0.0 dist myorg/myimage release --github --gitlab --compress
"""


def exit_code_for(err: BaseException) -> int:
    """Map an error to the exit code the CLI reports for it."""
    if isinstance(err, ConfigError):
        return CONFIG_ERROR
    if isinstance(err, (ValidationError, ToolMissingError)):
        return VALIDATION_ERROR
    return RUNTIME_ERROR


def resolve_log_level(args: argparse.Namespace, config_level: str = "INFO") -> str:
    """DEBUG=true beats --log-level, which beats the config file."""
    if os.environ.get("DEBUG", "").lower() == "true":
        return "DEBUG"
    return args.log_level or config_level


def _load_context(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[int, Optional[RunContext], logging.Logger]:
    """
    The shared setup every command needs: load config, set the log level,
    validate the positional arguments.

    Returns a tuple of (exit_code, context, logger). If exit_code is not
    SUCCESS the caller should return it immediately.
    """
    logger = get_logger(f"shipwright.cli.{command_name}")
    set_log_level(resolve_log_level(args))

    try:
        config = load_config(Path(args.config) if args.config else None)
    except ConfigError as err:
        logger.error("Configuration error", extra={"command": command_name, "error": str(err)})
        return CONFIG_ERROR, None, logger

    set_log_level(resolve_log_level(args, config.log_level))

    try:
        ctx = RunContext.create(
            version=args.version,
            dist_dir=args.dist_dir,
            image_name=args.image_name,
            config=config,
        )
    except ValidationError as err:
        logger.error(str(err), extra={"command": command_name})
        return VALIDATION_ERROR, None, logger

    logger.debug(
        "Command started",
        extra={
            "command": command_name,
            "version": str(ctx.version),
            "dist_dir": str(ctx.dist_dir),
            "image_name": ctx.image_name,
            "config": args.config,
        },
    )
    return SUCCESS, ctx, logger


def _fail(logger: logging.Logger, message: str, err: BaseException) -> int:
    extra: dict[str, object] = {"error": str(err), "error_type": type(err).__name__}
    if isinstance(err, PackagingError):
        extra["failed_platforms"] = [f.target.slug for f in err.failures]
    logger.error(message, extra=extra)
    return exit_code_for(err)


def handle_build(args: argparse.Namespace) -> int:
    """Package the payload for every configured platform."""
    exit_code, ctx, logger = _load_context(args, "build")
    if exit_code != SUCCESS or ctx is None:
        return exit_code

    try:
        result = run_build(ctx, compress=args.compress)
    except (ShipwrightError, OSError) as err:
        return _fail(logger, "Build command failed", err)

    logger.info(
        "Build finished",
        extra={"artifacts": [a.name for a in result.artifacts], "manifest": str(result.manifest_path)},
    )
    return SUCCESS


def handle_all(args: argparse.Namespace) -> int:
    """`all` is a build with default flags."""
    args.compress = False
    return handle_build(args)


def handle_release(args: argparse.Namespace) -> int:
    """Build, then publish to the selected providers."""
    exit_code, ctx, logger = _load_context(args, "release")
    if exit_code != SUCCESS or ctx is None:
        return exit_code

    providers = [p for p, wanted in ((Provider.GITHUB, args.github), (Provider.GITLAB, args.gitlab)) if wanted]
    if not providers:
        logger.error("Must specify at least one of --github or --gitlab")
        print(USAGE, end="")
        return USER_ERROR

    try:
        outcomes = run_release(ctx, providers, compress=args.compress)
    except (ShipwrightError, OSError) as err:
        return _fail(logger, "Release command failed", err)

    failed = [o for o in outcomes if not o.success]
    for outcome in failed:
        logger.error(
            f"{outcome.provider} release failed",
            extra={"provider": outcome.provider, "attempts": outcome.attempts, "error": outcome.error},
        )
    if failed:
        return RUNTIME_ERROR

    logger.info("Release finished", extra={"providers": [o.provider for o in outcomes]})
    return SUCCESS


def handle_docker(args: argparse.Namespace) -> int:
    """Build and push the multi-platform container image."""
    exit_code, ctx, logger = _load_context(args, "docker")
    if exit_code != SUCCESS or ctx is None:
        return exit_code

    try:
        result = run_docker(ctx)
    except (ShipwrightError, OSError) as err:
        return _fail(logger, "Docker command failed", err)

    logger.info(
        "Docker command finished",
        extra={"tags": list(result.tags), "skipped": result.skipped},
    )
    return SUCCESS


def handle_clean(args: argparse.Namespace) -> int:
    """Remove the distribution directory."""
    exit_code, ctx, logger = _load_context(args, "clean")
    if exit_code != SUCCESS or ctx is None:
        return exit_code

    try:
        run_clean(ctx)
    except (ShipwrightError, OSError) as err:
        return _fail(logger, "Clean command failed", err)
    return SUCCESS


def handle_verify(args: argparse.Namespace) -> int:
    """Check the dist directory against checksums.txt."""
    exit_code, ctx, logger = _load_context(args, "verify")
    if exit_code != SUCCESS or ctx is None:
        return exit_code

    if not ctx.dist_dir.is_dir():
        logger.error("Distribution directory not found", extra={"path": str(ctx.dist_dir)})
        return VALIDATION_ERROR

    try:
        result = run_verify(ctx)
    except (ShipwrightError, OSError) as err:
        return _fail(logger, "Verification failed", err)

    if not result.is_valid:
        logger.error("Integrity check failed", extra={"path": str(ctx.dist_dir), "errors": result.errors})
        return VALIDATION_ERROR

    logger.info("Integrity check passed", extra={"path": str(ctx.dist_dir), "checked": result.checked_count})
    return SUCCESS


def handle_help(args: argparse.Namespace) -> int:
    print(USAGE, end="")
    return SUCCESS
