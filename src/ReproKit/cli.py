"""Command-line interface for repro projects and project statistics."""

import argparse
import logging
import os
import signal
import sys

from .config import (
    InputSpecification, PersistedSettings, ReproConfig, TEXTURE_SCALE_FACTORS,
)
from .core import (
    ConfigurationError, ConflictError, ProjectResolver, ReportParseError,
    ReproCancelledError, SourceMissingError, setup_logging,
)

logger = logging.getLogger("repro_pipeline")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2
EXIT_DECODE_FAILURES = 3
EXIT_CANCELLED = 130


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ReproKit",
        description="Cut minimal repro projects and collect project statistics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  ReproKit scan --project ./MyGame
  ReproKit build-repro --project ./MyGame --input Scene:Assets/Scenes/Bug.unity \\
      --target ../Repros/Bug --scale 4
  ReproKit build-repro --project ./MyGame --input "Assets/Props/*.prefab" --dry-run
  ReproKit --generate-config
        """
    )
    parser.add_argument("--generate-config", nargs="?", const="config.yaml",
                        metavar="PATH", help="Generate default config YAML")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project", "-p", required=True, help="Source project root")
    common.add_argument("--config", "-c", help="Path to config YAML")
    common.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])

    sub = parser.add_subparsers(dest="command")

    scan = sub.add_parser("scan", parents=[common], help="Write a project statistics report")
    scan.add_argument("--output", "-o", help="Report path (default <project>/ProjectStats.json)")

    build = sub.add_parser("build-repro", parents=[common],
                           help="Copy the dependencies of a few assets into a new project")
    build.add_argument("--input", "-i", action="append", default=[], metavar="SPEC",
                       help="Root item: Kind:path (Wildcard/Scene/Prefab/Asset) or a path")
    build.add_argument("--always-include", action="append", default=[], metavar="SPEC",
                       help="Item copied into every repro")
    build.add_argument("--target", "-t", help="New project directory")
    build.add_argument("--scale", type=int, choices=TEXTURE_SCALE_FACTORS,
                       help="Texture downscale factor")
    build.add_argument("--overwrite", choices=["never", "always", "ask"], default="ask",
                       help="What to do when the target is not empty")
    build.add_argument("--open", action="store_true", help="Open the project after export")
    build.add_argument("--dry-run", action="store_true", help="Only build the manifest")
    build.add_argument("--manifest-out", help="Write the copy manifest to this file")
    build.add_argument("--settings", help="Persisted settings file")
    build.add_argument("--no-save-settings", action="store_true")
    return parser


def _load_config(args) -> ReproConfig:
    if args.config:
        if not os.path.exists(args.config):
            logger.error("Config file not found: %s", args.config)
            print(f"Error: Config file not found: {args.config}")
            sys.exit(EXIT_ERROR)
        try:
            config = ReproConfig.from_yaml(args.config)
        except ConfigurationError as e:
            logger.error("Invalid config file '%s': %s", args.config, e)
            print(f"Error: Invalid config: {e}")
            sys.exit(EXIT_ERROR)
    else:
        config = ReproConfig()
    if args.log_level:
        config.log_level = args.log_level
    return config


def _confirm_policy(policy: str):
    if policy == "always":
        return lambda target: True
    if policy == "never":
        return lambda target: False

    def _ask(target: str) -> bool:
        if not sys.stdin or not sys.stdin.isatty():
            logger.warning("Cannot ask for overwrite confirmation without a terminal")
            return False
        answer = input(
            f"There is already an existing project at '{target}'.\n"
            "Do you want to overwrite this project? [y/N] "
        )
        return answer.strip().lower() in ("y", "yes")

    return _ask


def _apply_overrides(settings: PersistedSettings, args):
    if args.input:
        settings.input_items = [InputSpecification.parse(s) for s in args.input]
    if args.always_include:
        settings.project_items = [InputSpecification.parse(s) for s in args.always_include]
    if args.target:
        target = os.path.abspath(args.target)
        settings.project_name = os.path.basename(target)
        settings.project_path = os.path.dirname(target)
    if args.scale is not None:
        settings.texture_scale_factor = args.scale
    if args.open:
        settings.open_after_export = True


def _run_scan(args, config: ReproConfig, pipeline) -> int:
    report = pipeline.collect_statistics(args.output)
    print(f"Scanned {len(report)} files")
    return EXIT_OK


def _run_build(args, config: ReproConfig, pipeline) -> int:
    settings_path = args.settings or os.path.join(pipeline.project_root, config.settings_filename)
    settings = PersistedSettings.load(settings_path)
    _apply_overrides(settings, args)
    pipeline.validate(settings)
    if not args.no_save_settings:
        settings.save(settings_path)

    result = pipeline.run(settings, dry_run=args.dry_run)
    if args.manifest_out:
        result.manifest.write_listing(args.manifest_out)

    if result.dry_run:
        print(f"Dry run: {len(result.manifest)} files would be copied to {result.target}")
        return EXIT_OK
    print(
        f"Repro project created at {result.target}: "
        f"{result.copy.copied} copied, {result.copy.skipped} skipped, "
        f"{result.copy.rescaled} rescaled"
    )
    if result.failed:
        for failure in result.failed:
            print(f"Error: {failure}")
        return EXIT_DECODE_FAILURES
    return EXIT_OK


def main(argv=None):
    """Parse CLI arguments, run the requested command, and exit with its status."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        dest = args.generate_config
        if os.path.isdir(dest):
            dest = os.path.join(dest, "config.yaml")
        ReproConfig().to_yaml(dest)
        logger.info("Generated default %s", dest)
        print(f"Generated default {dest}")
        return

    if not args.command:
        parser.print_help()
        sys.exit(EXIT_ERROR)

    # Early validation warnings from from_yaml() go to stderr before the
    # configured handlers exist.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
    config = _load_config(args)

    if not os.path.isdir(args.project):
        logger.error("Project directory not found: %s", args.project)
        print(f"Error: Project directory not found: {args.project}")
        sys.exit(EXIT_ERROR)

    setup_logging(config.log_level, config.log_file or None)

    from .pipeline import ReproPipeline
    pipeline = ReproPipeline(
        config,
        ProjectResolver(args.project),
        args.project,
        confirm_overwrite=_confirm_policy(getattr(args, "overwrite", "never")),
    )

    def _sigterm_handler(signum, frame):
        logger.warning("Received SIGTERM. Cancelling...")
        pipeline.request_cancel()
        sys.exit(143)

    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _sigterm_handler)

    try:
        if args.command == "scan":
            code = _run_scan(args, config, pipeline)
        else:
            code = _run_build(args, config, pipeline)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user.")
        pipeline.request_cancel()
        sys.exit(EXIT_CANCELLED)
    except ReproCancelledError as exc:
        logger.warning("Cancelled: %s", exc)
        sys.exit(EXIT_CANCELLED)
    except ConflictError as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}")
        sys.exit(EXIT_CONFLICT)
    except (ConfigurationError, SourceMissingError, ReportParseError) as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}")
        sys.exit(EXIT_ERROR)

    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
