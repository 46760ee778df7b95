"""Provide package metadata for `ReproKit`.

ReproKit cuts a minimal repro project out of a larger asset project and
reports per-asset statistics for a whole project tree.
"""

import logging as _logging

__version__ = "1.0.0"
_logger = _logging.getLogger("repro_pipeline")
_logger.addHandler(_logging.NullHandler())

__all__ = ["__version__"]
