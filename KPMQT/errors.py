"""
Copyright (c) 2024 Marcel S. Claro

GNU Lesser General Public License v3.0
"""


class KPMError(Exception):
    """Base class of all errors raised by the KPM engine."""


class AllocationError(KPMError, MemoryError):
    """Device memory could not be allocated for a state vector."""


class DimensionMismatchError(KPMError, ValueError):
    """Operands of a vector or operator operation disagree in length."""

    def __init__(self, expected, got, operation=""):
        self.expected = expected
        self.got = got
        self.operation = operation
        where = f" in {operation}" if operation else ""
        super().__init__(f"Dimension mismatch{where}: expected {expected}, got {got}")


class NumericAnomaly(KPMError, ArithmeticError):
    """
    NaN or Inf found in accumulated moments.

    Signals an unstable rescaling or recursion. The offending values are kept
    untouched in ``values`` so the caller can inspect them.
    """

    def __init__(self, driver, indices, values=None):
        self.driver = driver
        self.indices = indices
        self.values = values
        shown = indices[:10]
        more = "..." if len(indices) > 10 else ""
        super().__init__(f"Non-finite values in {driver} moments at indices {shown}{more}. "
                         f"Check the Hamiltonian rescaling (energy_max).")
