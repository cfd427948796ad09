"""
Flow automation

Graph model, condition evaluation and the interpreter that drives
tenant-authored flows.
"""

from whatsapp_flows.flows.engine import FlowContext, FlowEngine, FlowStepResult
from whatsapp_flows.flows.errors import FlowExecutionError, FlowGraphError
from whatsapp_flows.flows.graph import FlowGraph, NodeKind

__all__ = [
    "FlowContext",
    "FlowEngine",
    "FlowExecutionError",
    "FlowGraph",
    "FlowGraphError",
    "FlowStepResult",
    "NodeKind",
]
