"""ClarityPath: employee clarity journeys with a gated Journey Map report."""

__version__ = "0.1.0"
