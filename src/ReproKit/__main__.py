"""Entrypoint for `python -m ReproKit`.

Usage:
  - Project statistics: `python -m ReproKit scan --project <root>`
  - Repro project:      `python -m ReproKit build-repro --project <root> ...`
"""
import logging

logger = logging.getLogger("repro_pipeline")


def _run_cli():
    from .cli import main as cli_main
    logger.debug("Dispatching to CLI entrypoint.")
    cli_main()


if __name__ == "__main__":
    _run_cli()
