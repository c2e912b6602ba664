"""Triple-helix spaced-repetition stitch sequencing engine."""

__version__ = "0.1.0"
