# src/sizecal/__init__.py
try:
    from .sizecal_version import __version__
except ImportError:
    try:
        from importlib.metadata import version, PackageNotFoundError
        __version__ = version("sizecal")
    except (ImportError, PackageNotFoundError):
        __version__ = "0.0.0"

from .calibration.api import calibrate, evaluate_objective, run_optimizer
from .calibration.pipeline import CalibrationPipeline
from .core.config import CalibrationConfig

__all__ = [
    "CalibrationConfig",
    "CalibrationPipeline",
    "calibrate",
    "evaluate_objective",
    "run_optimizer",
    "__version__",
]
