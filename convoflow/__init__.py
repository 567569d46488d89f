"""convoflow: Conversational flow execution engine for messaging channels."""

from .config import ConvoflowConfig, load_config
from .contracts import ExecutionResult, FlowEvent, ResumeRequest, TriggerRequest
from .dispatch import FlowDispatcher
from .engine import FlowEngine
from .graph import FlowDefinition, StoredFlow
from .persistence import get_ledger
from .transports import get_transport
from .worker import FlowWorker

__version__ = "0.1.0"
__all__ = [
    "ConvoflowConfig",
    "ExecutionResult",
    "FlowDefinition",
    "FlowDispatcher",
    "FlowEngine",
    "FlowEvent",
    "FlowWorker",
    "ResumeRequest",
    "StoredFlow",
    "TriggerRequest",
    "get_ledger",
    "get_transport",
    "load_config",
]
