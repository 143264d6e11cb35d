from copysim.execution.fills import FillResult, calculate_fill
from copysim.execution.sizer import PositionSizer
from copysim.execution.risk import ExposureLimiter
from copysim.execution.portfolio import Portfolio, Position, SellResult

__all__ = [
    "FillResult",
    "calculate_fill",
    "PositionSizer",
    "ExposureLimiter",
    "Portfolio",
    "Position",
    "SellResult",
]
