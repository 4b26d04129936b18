"""Errors raised by the statistical components."""


class TrendCalcError(Exception):
    """Base class for trend engine errors"""


class InsufficientDataError(TrendCalcError):
    """Series is shorter than a component's precondition"""

    def __init__(self, required: int, actual: int, component: str = ""):
        self.required = required
        self.actual = actual
        self.component = component
        prefix = f"{component}: " if component else ""
        super().__init__(f"{prefix}need at least {required} samples, got {actual}")


class EmptyInputError(InsufficientDataError):
    """Series has no samples at all"""

    def __init__(self, component: str = ""):
        super().__init__(required=1, actual=0, component=component)
