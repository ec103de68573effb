"""UPM language backends — Cask and Poetry behind one package-manager contract."""

__version__ = "0.1.0"
