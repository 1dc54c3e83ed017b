"""nvrdb: schema upgrades for the NVR recording database."""

__version__ = "0.4.0"
