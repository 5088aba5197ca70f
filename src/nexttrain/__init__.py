"""nexttrain: the next few fastest trains between two stations."""

__version__ = "0.3.0"
