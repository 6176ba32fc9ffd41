from __future__ import annotations


class ScanError(Exception):
    """Base class for everything a scan attempt can fail with."""


class InvalidPayload(ScanError, ValueError):
    def __init__(self, raw: str) -> None:
        super().__init__("invalid_payload")
        self.raw = raw


class DecodeMismatch(ScanError, ValueError):
    """The fiducial belongs to another evaluation. Ignored by the loop."""

    def __init__(self, expected: str, found: str) -> None:
        super().__init__("evaluation_mismatch")
        self.expected = expected
        self.found = found


class UnknownStudent(ScanError, ValueError):
    def __init__(self, student_id: str) -> None:
        super().__init__("unknown_student")
        self.student_id = student_id


class IncompleteScan(ScanError, ValueError):
    def __init__(self, read: int, expected: int) -> None:
        super().__init__(f"read {read} of {expected}")
        self.read = read
        self.expected = expected


class AlignmentFailure(ScanError, ValueError):
    """Fiducial found outside the tolerance window.

    The live loop never raises it (misalignment only changes the guide color);
    single-photo scans raise it when alignment is requested.
    """

    def __init__(self) -> None:
        super().__init__("fiducial_misaligned")


class CameraAccessError(ScanError, RuntimeError):
    pass


class SubmissionError(ScanError, RuntimeError):
    pass
