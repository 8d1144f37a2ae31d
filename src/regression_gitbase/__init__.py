"""regression-gitbase: regression benchmarks across gitbase versions."""

__version__ = "0.1.0"
