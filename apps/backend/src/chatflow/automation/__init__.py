from .executor import ExecutionResult, StepExecutor
from .graph import AutomationGraph
from .schema import AutomationRecord, Edge, Step, parse_step
from .trigger import TriggerMatch, TriggerMatcher
from .variables import Contact, VariableContext, VariableResolver

__all__ = [
    "AutomationGraph",
    "AutomationRecord",
    "Contact",
    "Edge",
    "ExecutionResult",
    "Step",
    "StepExecutor",
    "TriggerMatch",
    "TriggerMatcher",
    "VariableContext",
    "VariableResolver",
    "parse_step",
]
