"""Flow engine errors."""


class FlowExecutionError(Exception):
    """A flow step could not be executed (missing node or edge, chain too long)."""

    def __init__(self, message: str, flow_id: str | None = None, node_id: str | None = None):
        super().__init__(message)
        self.flow_id = flow_id
        self.node_id = node_id


class FlowGraphError(FlowExecutionError):
    """A flow graph violates its structural invariants."""
