"""relictool: batch jobs that build the Relics holder snapshots."""

__version__ = "0.1.0"
