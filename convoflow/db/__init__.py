from .ledger import SQLModelLedger
from .models import FlowExecutionRow, FlowRow, NodeExecutionRow, UserInputRow

__all__ = [
    "FlowRow",
    "FlowExecutionRow",
    "NodeExecutionRow",
    "UserInputRow",
    "SQLModelLedger",
]
