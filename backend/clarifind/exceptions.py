class LabResultError(Exception):
    """Base class for lab result lifecycle failures."""


class StorageWriteError(LabResultError):
    def __init__(self, key: str, reason: str = ""):
        self.key = key
        self.reason = reason
        super().__init__(f"Failed to persist '{key}': {reason}" if reason else f"Failed to persist '{key}'")


class StorageConflictError(LabResultError):
    """The stored collection changed between read and write."""

    def __init__(self, key: str, expected_revision=None):
        self.key = key
        self.expected_revision = expected_revision
        super().__init__(f"Storage entry '{key}' was modified concurrently (expected revision {expected_revision})")


class VersionConflictError(LabResultError):
    def __init__(self, result_id: str, expected: int, actual: int):
        self.result_id = result_id
        self.expected = expected
        self.actual = actual
        super().__init__(f"Lab result {result_id} is at version {actual}, not {expected}")


class InvalidTransitionError(LabResultError):
    def __init__(self, result_id: str, reason: str):
        self.result_id = result_id
        self.reason = reason
        super().__init__(f"Invalid transition for {result_id}: {reason}")


class ImmutableFieldError(LabResultError):
    def __init__(self, fields):
        self.fields = sorted(fields)
        super().__init__(f"Immutable fields cannot be updated: {', '.join(self.fields)}")


class MissingInterpretationError(LabResultError):
    def __init__(self):
        super().__init__("Missing interpretation: please write an interpretation before sending")


class UploadRejectedError(LabResultError):
    def __init__(self, reason: str, status_code: int = 400):
        self.reason = reason
        self.status_code = status_code
        super().__init__(reason)


class FileReadError(LabResultError):
    def __init__(self, file_name: str, reason: str = ""):
        self.file_name = file_name
        self.reason = reason
        super().__init__(f"Unable to read file {file_name}" + (f": {reason}" if reason else ""))


class UnknownFieldError(LabResultError):
    def __init__(self, fields):
        self.fields = sorted(fields)
        super().__init__(f"Unknown lab result fields: {', '.join(self.fields)}")
