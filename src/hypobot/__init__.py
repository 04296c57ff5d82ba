"""hypobot - prediction-market trade ideation and bet reconciliation."""

__version__ = "0.1.0"
