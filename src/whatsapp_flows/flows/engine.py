"""
Flow Engine

Interpreter over tenant-authored flow graphs.

One invocation per inbound message:
- Trigger phase (no active flow, text message): the first published flow
  whose trigger keywords match the normalised text is started from its
  trigger node
- Resume phase (active cursor): a captureData node stores the reply into
  the contact's flowData, then the flow advances one step

Routing follows a node's outgoing edge (conditional nodes pick the edge
of the first satisfied condition, else the "else" edge). Chains of
conditionals are walked until a side-effecting node is reached, bounded
by a maximum chain length.
"""

import logging
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from whatsapp_flows.flows.conditions import first_satisfied
from whatsapp_flows.flows.errors import FlowExecutionError, FlowGraphError
from whatsapp_flows.flows.graph import (
    ELSE_HANDLE,
    CaptureDataNodeData,
    ConditionalNodeData,
    FlowGraph,
    FlowNode,
    InternalActionNodeData,
    MessageNodeData,
    NodeKind,
    normalize_text,
)
from whatsapp_flows.persistence.models import Contact, Conversation, Flow
from whatsapp_flows.persistence.repo import WhatsAppRepository

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHAIN_DEPTH = 25


class MessageSender(Protocol):
    """Sends (and records) an outbound text on behalf of the engine."""

    async def send_text(self, conversation: Conversation, contact: Contact, text: str) -> Any:
        ...


@dataclass
class FlowContext:
    """Inputs of one engine invocation."""

    tenant_id: UUID
    contact: Contact
    conversation: Conversation
    text: str | None = None  # Inbound text; None for non-text messages


@dataclass
class FlowStepResult:
    """
    Outcome of one engine invocation.

    (flow_id, step_id) is the new cursor; a missing step id means the
    flow ended (or never started) and the cursor is cleared.
    """

    flow_id: UUID | None = None
    step_id: str | None = None
    triggered: bool = False
    executed_node_id: str | None = None
    error: str | None = None

    @property
    def is_active(self) -> bool:
        return self.flow_id is not None and self.step_id is not None


class FlowEngine:
    """Runs one flow step per inbound message."""

    def __init__(
        self,
        db: Session,
        sender: MessageSender,
        max_chain_depth: int = DEFAULT_MAX_CHAIN_DEPTH,
    ):
        self.db = db
        self.repo = WhatsAppRepository(db)
        self.sender = sender
        self.max_chain_depth = max_chain_depth

    async def run(self, ctx: FlowContext) -> FlowStepResult:
        """
        Execute the trigger or resume phase for one inbound message.

        Flow execution errors terminate the flow (cleared cursor); they
        are logged and never raised to the caller.
        """
        conversation = ctx.conversation

        if conversation.active_flow_id is None:
            return await self._trigger(ctx)

        return await self._resume(ctx)

    # =========================================================================
    # Trigger phase
    # =========================================================================

    def match_trigger(self, tenant_id: UUID, text: str) -> tuple[Flow, FlowGraph] | None:
        """
        Find the first published flow whose trigger matches the text.

        Flows are enumerated by creation time, then id. Flows with an
        invalid graph are logged and skipped.
        """
        normalized = normalize_text(text)
        if not normalized:
            return None

        for flow in self.repo.list_published_flows(tenant_id):
            try:
                graph = FlowGraph.from_flow(flow)
            except FlowGraphError as e:
                logger.error(
                    f"Skipping invalid flow during trigger matching: {e}",
                    extra={"tenant_id": str(tenant_id), "flow_id": str(flow.id)},
                )
                continue

            if graph.matches_trigger(normalized):
                return flow, graph

        return None

    async def _trigger(self, ctx: FlowContext) -> FlowStepResult:
        if ctx.text is None:
            return FlowStepResult()

        match = self.match_trigger(ctx.tenant_id, ctx.text)
        if match is None:
            return FlowStepResult()

        flow, graph = match
        logger.info(
            f"Flow triggered: {flow.name}",
            extra={
                "tenant_id": str(ctx.tenant_id),
                "flow_id": str(flow.id),
                "conversation_id": str(ctx.conversation.id),
            },
        )

        try:
            executed = await self._advance(graph, graph.trigger, ctx)
        except FlowExecutionError as e:
            self._log_failure(e, flow.id, ctx)
            return FlowStepResult(triggered=True, error=str(e))

        executed_id = executed.id if executed else None
        if executed is None or graph.is_single_turn:
            # Single-turn flows never resume, so no cursor is kept
            return FlowStepResult(triggered=True, executed_node_id=executed_id)

        return FlowStepResult(
            flow_id=flow.id,
            step_id=executed.id,
            triggered=True,
            executed_node_id=executed_id,
        )

    # =========================================================================
    # Resume phase
    # =========================================================================

    async def _resume(self, ctx: FlowContext) -> FlowStepResult:
        conversation = ctx.conversation
        flow_id = conversation.active_flow_id

        try:
            if not conversation.current_step_id:
                raise FlowExecutionError("Active flow without a current step", flow_id=str(flow_id))

            flow = self.repo.get_flow(ctx.tenant_id, flow_id)
            if flow is None:
                raise FlowExecutionError(f"Flow {flow_id} not found", flow_id=str(flow_id))

            graph = FlowGraph.from_flow(flow)
            node = graph.require_node(conversation.current_step_id)

            if isinstance(node.data, CaptureDataNodeData) and ctx.text is not None:
                self._capture(node.data, ctx)

            executed = await self._advance(graph, node, ctx)

        except FlowExecutionError as e:
            self._log_failure(e, flow_id, ctx)
            return FlowStepResult(error=str(e))

        if executed is None:
            logger.info(
                "Flow finished",
                extra={"flow_id": str(flow_id), "conversation_id": str(conversation.id)},
            )
            return FlowStepResult()

        return FlowStepResult(flow_id=flow_id, step_id=executed.id, executed_node_id=executed.id)

    def _capture(self, data: CaptureDataNodeData, ctx: FlowContext) -> None:
        if not data.capture_variable:
            logger.warning(
                "captureData node has no variable; reply not stored",
                extra={"conversation_id": str(ctx.conversation.id)},
            )
            return
        self.repo.set_contact_flow_variable(ctx.contact, data.capture_variable, ctx.text)

    # =========================================================================
    # Routing and execution
    # =========================================================================

    async def _advance(
        self,
        graph: FlowGraph,
        node: FlowNode,
        ctx: FlowContext,
    ) -> FlowNode | None:
        """
        Route from `node` and execute the node reached.

        Conditional nodes are walked through until a non-conditional node
        is reached.

        Returns:
            The executed node, or None if the flow terminated
        """
        current = node
        hops = 0

        while True:
            next_node = self._route(graph, current, ctx)
            if next_node is None:
                return None

            if next_node.kind != NodeKind.CONDITIONAL.value:
                await self._execute(next_node, ctx)
                return next_node

            hops += 1
            if hops > self.max_chain_depth:
                raise FlowExecutionError(
                    f"Conditional chain exceeded {self.max_chain_depth} nodes",
                    flow_id=graph.flow_id,
                    node_id=next_node.id,
                )
            current = next_node

    def _route(self, graph: FlowGraph, node: FlowNode, ctx: FlowContext) -> FlowNode | None:
        """Resolve the next node from `node`, or None when the flow ends."""
        if isinstance(node.data, ConditionalNodeData):
            condition = first_satisfied(node.data.conditions, ctx.contact.flow_data, ctx.text)
            if condition is not None:
                edge = graph.edge_for_handle(node.id, condition.id)
                if edge is None:
                    raise FlowExecutionError(
                        f"No edge for condition {condition.id}",
                        flow_id=graph.flow_id,
                        node_id=node.id,
                    )
            else:
                edge = graph.edge_for_handle(node.id, ELSE_HANDLE)
                if edge is None:
                    return None
            return graph.require_node(edge.target)

        edges = graph.outgoing(node.id)
        if not edges:
            return None
        if len(edges) > 1:
            logger.warning(
                f"Node {node.id} has {len(edges)} outgoing edges; following the first",
                extra={"flow_id": graph.flow_id},
            )
        return graph.require_node(edges[0].target)

    async def _execute(self, node: FlowNode, ctx: FlowContext) -> None:
        data = node.data

        if isinstance(data, MessageNodeData):
            await self._send_canned_response(node, data, ctx)

        elif isinstance(data, CaptureDataNodeData):
            if data.prompt:
                await self.sender.send_text(ctx.conversation, ctx.contact, data.prompt)

        elif isinstance(data, InternalActionNodeData):
            self._apply_action(node, data, ctx)

        else:
            # Unimplemented node types stall the flow here
            logger.warning(
                f"Unsupported node type {node.kind!r}; step skipped",
                extra={"node_id": node.id, "conversation_id": str(ctx.conversation.id)},
            )

    async def _send_canned_response(
        self,
        node: FlowNode,
        data: MessageNodeData,
        ctx: FlowContext,
    ) -> None:
        response = (
            self.repo.get_canned_response(ctx.tenant_id, data.message_id)
            if data.message_id
            else None
        )
        if response is None:
            logger.warning(
                f"Canned response {data.message_id} not found; message not sent",
                extra={"node_id": node.id, "tenant_id": str(ctx.tenant_id)},
            )
            return
        await self.sender.send_text(ctx.conversation, ctx.contact, response.text)

    def _apply_action(self, node: FlowNode, data: InternalActionNodeData, ctx: FlowContext) -> None:
        contact = ctx.contact
        if not data.value:
            logger.warning(f"internalAction {data.action_type} without a value", extra={"node_id": node.id})
            return

        if data.action_type == "addTag":
            self.repo.add_contact_tag(contact, data.value)
        elif data.action_type == "removeTag":
            self.repo.remove_contact_tag(contact, data.value)
        elif data.action_type == "moveCrmStage":
            contact.crm_stage = data.value
        else:
            logger.warning(f"Unknown internal action: {data.action_type}", extra={"node_id": node.id})
            return

        logger.debug(
            f"Applied {data.action_type}",
            extra={"contact_id": str(contact.id), "node_id": node.id},
        )

    def _log_failure(self, error: FlowExecutionError, flow_id: Any, ctx: FlowContext) -> None:
        logger.error(
            f"Flow execution failed, terminating flow: {error}",
            exc_info=True,
            extra={
                "tenant_id": str(ctx.tenant_id),
                "flow_id": str(flow_id),
                "node_id": error.node_id,
                "conversation_id": str(ctx.conversation.id),
            },
        )
