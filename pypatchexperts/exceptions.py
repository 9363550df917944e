"""
Exceptions raised by pypatchexperts.
"""


class PatchExpertError(Exception):
    """Base class for all patch expert errors."""


class ModelLoadError(PatchExpertError):
    """A requested model file could not be opened or read."""

    def __init__(self, family, path, reason=None):
        self.family = family
        self.path = str(path)
        self.reason = reason
        message = f"Can't find/open the {family} patch experts file: {self.path}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ModelFormatError(ModelLoadError):
    """A model file was opened but its contents are truncated or malformed."""


class MissingExpertError(PatchExpertError):
    """A landmark that must be evaluated has no trained patch expert."""

    def __init__(self, scale, view, landmark):
        self.scale = scale
        self.view = view
        self.landmark = landmark
        super().__init__(
            f"No trained patch expert for landmark {landmark} "
            f"(scale {scale}, view {view}); the model bank is corrupt or mismatched"
        )


class BankConsistencyError(PatchExpertError):
    """The loaded bank violates the per-scale view/visibility invariants."""
