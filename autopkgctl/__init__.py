"""AutoPkg pipeline control — recipe import, trust and build automation for CI."""

__version__ = "0.1.0"
