"""
Base interface for patch experts.

Defines the interface that every patch expert family (SVR, CCNF, CEN) implements
so the response engine can size areas of interest and dispatch evaluation
without knowing the family's internals.
"""
import numpy as np
from abc import ABC, abstractmethod


class PatchExpert(ABC):
    """
    Abstract base class for a single trained patch expert
    (one landmark, one view, one scale).
    """

    def __init__(self):
        self.width = 0
        self.height = 0
        self.confidence = 0.0

    @property
    @abstractmethod
    def is_empty(self) -> bool:
        """True when the record holds no trained parameters."""

    @abstractmethod
    def read(self, f):
        """Read the expert record and advance the stream past it."""

    @abstractmethod
    def write(self, f):
        """Write the expert record in the format accepted by read()."""

    def response_size(self, area_of_interest: np.ndarray):
        """(height, width) of the response map produced for an area of interest."""
        return (area_of_interest.shape[0] - self.height + 1,
                area_of_interest.shape[1] - self.width + 1)

    @classmethod
    def from_stream(cls, f, *args, **kwargs):
        expert = cls()
        expert.read(f, *args, **kwargs)
        return expert

    def __repr__(self):
        status = "empty" if self.is_empty else "trained"
        return f"{type(self).__name__}({self.width}x{self.height}, {status})"
