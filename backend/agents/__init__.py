"""Capability agents, prompts, and LLM integration.

This module exports the key components needed to serve ERP requests:
- LLM client utilities with retry logic and metrics tracking
- Request classifiers (LLM-backed and keyword-based)
- System prompts for the router and the capability agents
- Tool-calling agent graphs for inventory, orders and customers
"""

from agents.classifier import Classifier, KeywordClassifier, LLMClassifier
from agents.erp_agent import (
    ErpAgent,
    ErpAgentState,
    create_customer_agent,
    create_inventory_agent,
    create_order_agent,
)
from agents.llm import (
    LLMClient,
    LLMResponse,
    MockLLMClient,
    ToolCallData,
    format_assistant_message_with_tools,
    format_tool_result_for_llm,
    make_response,
)
from agents.prompts import (
    CUSTOMER_AGENT_PROMPT,
    INVENTORY_AGENT_PROMPT,
    ORDER_AGENT_PROMPT,
    ROUTER_PROMPT,
    get_router_prompt,
)

__all__ = [
    # Classifiers
    "Classifier",
    "KeywordClassifier",
    "LLMClassifier",
    # Prompts
    "ROUTER_PROMPT",
    "INVENTORY_AGENT_PROMPT",
    "ORDER_AGENT_PROMPT",
    "CUSTOMER_AGENT_PROMPT",
    "get_router_prompt",
    # LLM
    "LLMClient",
    "LLMResponse",
    "MockLLMClient",
    "ToolCallData",
    "format_assistant_message_with_tools",
    "format_tool_result_for_llm",
    "make_response",
    # Agents
    "ErpAgent",
    "ErpAgentState",
    "create_inventory_agent",
    "create_order_agent",
    "create_customer_agent",
]
