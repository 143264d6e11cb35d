class CopySimError(Exception):
    pass


class InvalidConfiguration(CopySimError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        super().__init__("; ".join(errors))

    def __str__(self) -> str:
        rendered = "\n".join(f"- {item}" for item in self.errors)
        return f"Invalid simulation configuration:\n{rendered}"


class InsufficientData(CopySimError):
    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)

    def __str__(self) -> str:
        return f"Insufficient data for simulation: {self.reason}"


class MissingMarketMetadata(CopySimError):
    def __init__(self, condition_id: str) -> None:
        self.condition_id = condition_id
        super().__init__(f"Market metadata not found: {condition_id}")

    def __str__(self) -> str:
        return f"No metadata for market {self.condition_id}"


class DataSourceError(CopySimError):
    def __init__(self, message: str, source: str) -> None:
        self.message = message
        self.source = source
        super().__init__(message)

    def __str__(self) -> str:
        return f"Failed to read from {self.source}: {self.message}"


class SimulationCancelled(CopySimError):
    def __init__(self, reason: str, completed: int = 0) -> None:
        self.reason = reason
        self.completed = completed
        super().__init__(reason)

    def __str__(self) -> str:
        return f"Simulation cancelled after {self.completed} trials: {self.reason}"
