"""deployguard: health probes and deployment safety tooling."""

__version__ = "1.0.0"
