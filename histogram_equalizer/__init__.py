"""GPU histogram equalisation with selectable histogram and scan kernels."""

__version__ = "1.0.0"
