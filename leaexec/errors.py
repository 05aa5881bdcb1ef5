from contextlib import contextmanager
from typing import Any, Literal, Optional

from leaexec.color import ColorFormatter

ErrorType = Literal[
    "UsageError",
    "NotFoundError",
    "IOError",
    "InvalidArgument",
    "AllocationError",
    "ModuleError",
    "RuntimeTrapError",
    "UnknownError",
]
ALL_ERROR_TYPES = ErrorType.__args__  # type: ignore


class LauncherError(Exception):
    """
    The only exception raised by the launcher.

    The kind of failure is stored in `etype` instead of being encoded in a
    class hierarchy: every kind is terminal and collapses to exit code 1, so
    the only thing callers ever do with it is to format it or to check the
    etype in tests.
    """
    etype: ErrorType
    message: str
    notes: list[str]

    def __init__(self, etype: ErrorType, message: str) -> None:
        assert etype in ALL_ERROR_TYPES, f"Unknown error type: {etype}"
        self.etype = etype
        self.message = message
        self.notes = []
        super().__init__(message)

    @classmethod
    def wrap(cls, etype: ErrorType, exc: BaseException) -> "LauncherError":
        err = cls(etype, str(exc) or exc.__class__.__name__)
        err.__cause__ = exc
        return err

    def add_context(self, note: str) -> None:
        self.notes.append(note)

    def __str__(self) -> str:
        return self.format(use_colors=False)

    def format(self, use_colors: bool = True) -> str:
        fmt = ColorFormatter(use_colors)
        lines = [f"{fmt.set('error', self.etype)}: {self.message}"]
        for note in self.notes:
            lines.append(f"  {fmt.set('note', note)}")
        return "\n".join(lines)

    @contextmanager
    @staticmethod
    def raises(etype: ErrorType, match: Optional[str] = None) -> Any:
        """
        Equivalent to pytest.raises(LauncherError, ...), but also checks the
        etype.
        """
        import pytest

        with pytest.raises(LauncherError, match=match) as excinfo:
            yield excinfo
        exc = excinfo.value
        assert isinstance(exc, LauncherError)
        if exc.etype != etype:
            msg = f"Expected LauncherError of type {etype}, but got {exc.etype}"
            pytest.fail(msg)
