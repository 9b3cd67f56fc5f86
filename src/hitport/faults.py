class ImportRowError(Exception):
    """A single CSV record that could not be imported."""

    def __init__(self, line_number: int, cause: BaseException):
        super().__init__(f"line {line_number}: {cause}")
        self.line_number = line_number
        self.cause = cause


class FaultGroup:
    """
    Bounded collector of row-level errors.

    Keeps the first `capacity` errors in arrival order; anything after that is
    counted but not kept. The count is never reset, so it stays correct no
    matter how much detail was retained or drained.
    """

    def __init__(self, capacity: int = 50):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._faults: list[BaseException] = []
        self._total = 0

    def append(self, err: BaseException | None) -> bool:
        """Record err; returns False for None so callers can write `if faults.append(err): continue`."""
        if err is None:
            return False
        self._total += 1
        if len(self._faults) < self.capacity:
            self._faults.append(err)
        return True

    def count(self) -> int:
        return self._total

    def __len__(self) -> int:
        return self._total

    def retained(self) -> list[BaseException]:
        return list(self._faults)

    def drain(self) -> list[BaseException]:
        faults, self._faults = self._faults, []
        return faults

    def summary(self) -> str:
        lines = [str(f) for f in self._faults]
        suppressed = self._total - len(self._faults)
        if suppressed > 0:
            lines.append(f"... and {suppressed} more")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return f"FaultGroup(capacity={self.capacity}, count={self._total})"
