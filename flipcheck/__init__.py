"""FlipCheck: resale comps and flip/skip decisions."""

__version__ = "1.0.0"
