"""Tool-calling ERP agent LangGraph implementation.

Each capability family (inventory, order, customer) is served by an ErpAgent:
a small cyclic graph in which the model reasons, calls ERP handlers as
tools, and reasons again until it answers or hits its iteration cap.

    START -> reason -> [tool calls -> act -> reason | answer -> END]

The loop ends when:
1. The model replies without tool calls (its text is the answer)
2. The iteration cap is reached (the last tool result is the answer)
"""

import operator
from typing import Annotated, Any, TypedDict

import structlog
from langgraph.graph import END, START, StateGraph

from agents.llm import (
    LLMClient,
    ToolCallData,
    format_assistant_message_with_tools,
    format_tool_result_for_llm,
)
from agents.prompts import CUSTOMER_AGENT_PROMPT, INVENTORY_AGENT_PROMPT, ORDER_AGENT_PROMPT
from capabilities.base import CapabilityHandler
from capabilities.registry import ErpIntegration
from errors import ValidationError

logger = structlog.get_logger()


class ErpAgentState(TypedDict):
    """State flowing through the agent graph.

    Attributes:
        query: The user's request
        messages: Conversation history, appended to by every node
        pending_tool_calls: Tool calls requested by the last reason step
        iteration: Number of model calls made so far
        max_iterations: Hard limit on model calls
        final_answer: Model's answer once it stops calling tools
        last_tool_result: Most recent handler output
    """

    query: str
    messages: Annotated[list[dict[str, Any]], operator.add]
    pending_tool_calls: list[ToolCallData]
    iteration: int
    max_iterations: int
    final_answer: str | None
    last_tool_result: str | None


class ErpAgent:
    """LLM agent that answers ERP requests using capability handlers as tools.

    Usage:
        >>> agent = create_inventory_agent(erp, llm_client)
        >>> answer = await agent.invoke("How many units of P1001 are in stock?")
    """

    def __init__(
        self,
        name: str,
        system_prompt: str,
        handlers: list[CapabilityHandler],
        llm_client: LLMClient,
        max_iterations: int = 5,
        model: str | None = None,
        temperature: float = 0.0,
    ) -> None:
        self.name = name
        self.system_prompt = system_prompt
        self.handlers = {handler.name: handler for handler in handlers}
        self.llm_client = llm_client
        self.max_iterations = max_iterations
        self.model = model
        self.temperature = temperature
        self._tool_definitions = [handler.tool_definition() for handler in handlers]
        self._compiled_graph = self._build_graph()

    def _build_graph(self) -> Any:
        graph = StateGraph(ErpAgentState)

        graph.add_node("reason", self._reason)
        graph.add_node("act", self._act)

        graph.add_edge(START, "reason")
        graph.add_conditional_edges(
            "reason",
            self._after_reason,
            {"act": "act", "end": END},
        )
        graph.add_conditional_edges(
            "act",
            self._after_act,
            {"continue": "reason", "end": END},
        )

        return graph.compile()

    async def _reason(self, state: ErpAgentState) -> dict[str, Any]:
        response = await self.llm_client.call(
            messages=state["messages"],
            tools=self._tool_definitions,
            model=self.model,
            temperature=self.temperature,
        )
        update: dict[str, Any] = {
            "messages": [
                format_assistant_message_with_tools(response.content, response.tool_calls)
            ],
            "pending_tool_calls": response.tool_calls,
            "iteration": state["iteration"] + 1,
        }
        if not response.tool_calls:
            update["final_answer"] = response.content
        return update

    async def _act(self, state: ErpAgentState) -> dict[str, Any]:
        tool_messages: list[dict[str, Any]] = []
        last_result = state["last_tool_result"]

        for tool_call in state["pending_tool_calls"]:
            result = await self._run_tool(tool_call)
            tool_messages.append(format_tool_result_for_llm(tool_call.id, result))
            last_result = result

        return {
            "messages": tool_messages,
            "pending_tool_calls": [],
            "last_tool_result": last_result,
        }

    async def _run_tool(self, tool_call: ToolCallData) -> str:
        handler = self.handlers.get(tool_call.name)
        if handler is None:
            logger.warning("erp_agent_unknown_tool", agent=self.name, tool=tool_call.name)
            return f"Unknown tool '{tool_call.name}'. Available tools: {', '.join(self.handlers)}"

        try:
            result = await handler.call_tool(tool_call.args)
        except ValidationError as e:
            logger.info("erp_agent_invalid_tool_args", agent=self.name, tool=tool_call.name, error=str(e))
            return f"Invalid arguments for {tool_call.name}: {e}"

        logger.debug("erp_agent_tool_result", agent=self.name, tool=tool_call.name)
        return result

    def _after_reason(self, state: ErpAgentState) -> str:
        return "act" if state["pending_tool_calls"] else "end"

    def _after_act(self, state: ErpAgentState) -> str:
        if state["iteration"] >= state["max_iterations"]:
            logger.warning("erp_agent_iteration_cap", agent=self.name, iterations=state["iteration"])
            return "end"
        return "continue"

    async def invoke(self, query: str) -> str:
        """Answer one request.

        Returns:
            The model's final answer, or the last tool result if the
            iteration cap was reached first.

        Raises:
            TransportError: If the model could not be reached.
        """
        initial_state = ErpAgentState(
            query=query,
            messages=[
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": query},
            ],
            pending_tool_calls=[],
            iteration=0,
            max_iterations=self.max_iterations,
            final_answer=None,
            last_tool_result=None,
        )

        logger.info("erp_agent_started", agent=self.name, max_iterations=self.max_iterations)
        final_state = await self._compiled_graph.ainvoke(
            initial_state,
            config={"recursion_limit": self.max_iterations * 2 + 5},
        )
        logger.info("erp_agent_finished", agent=self.name, iterations=final_state["iteration"])

        if final_state["final_answer"] is not None:
            return final_state["final_answer"]
        if final_state["last_tool_result"] is not None:
            return final_state["last_tool_result"]
        return f"Agent stopped after {final_state['iteration']} iterations without an answer"


def create_inventory_agent(
    erp: ErpIntegration, llm_client: LLMClient, model: str | None = None
) -> ErpAgent:
    return ErpAgent(
        name="inventory",
        system_prompt=INVENTORY_AGENT_PROMPT,
        handlers=[erp.inventory],
        llm_client=llm_client,
        max_iterations=5,
        model=model,
    )


def create_order_agent(
    erp: ErpIntegration, llm_client: LLMClient, model: str | None = None
) -> ErpAgent:
    """Order agent. Also sees inventory and customer tools, so it can serve any request."""
    return ErpAgent(
        name="order",
        system_prompt=ORDER_AGENT_PROMPT,
        handlers=[erp.orders, erp.inventory, erp.customers],
        llm_client=llm_client,
        max_iterations=7,
        model=model,
    )


def create_customer_agent(
    erp: ErpIntegration, llm_client: LLMClient, model: str | None = None
) -> ErpAgent:
    return ErpAgent(
        name="customer",
        system_prompt=CUSTOMER_AGENT_PROMPT,
        handlers=[erp.customers, erp.orders],
        llm_client=llm_client,
        max_iterations=5,
        model=model,
    )
