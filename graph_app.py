from functools import lru_cache
from typing import Any, Mapping, Union

from langgraph.graph import StateGraph, END
from pydantic import ValidationError

from errors import InvalidRequestError
from schemas import RouterRequest, RouterResponse, RouterState
from router_nodes import (
    validate_node,
    classify_node,
    resolve_target_node,
    precheck_node,
    finalize_node,
)


def _after_classify(state: RouterState) -> str:
    # the message itself already forced a question: nothing left to resolve
    return "finalize" if state.question else "resolve_target"


def build_router_graph():
    """
    Intent routing flow:

    1) validate       – reject bad input, pin "now" to the user's timezone.
    2) classify       – rules (+ optional LLM, clamped) pick domain, intent, fields.
    3) resolve_target – DELETE / UPDATE get a concrete target or a "which one?".
    4) precheck       – duplicate habits, schedule conflicts, required fields.
    5) finalize       – build the RouterResponse (contract enforced there).
    """
    graph = StateGraph(RouterState)

    graph.add_node("validate", validate_node)
    graph.add_node("classify", classify_node)
    graph.add_node("resolve_target", resolve_target_node)
    graph.add_node("precheck", precheck_node)
    graph.add_node("finalize", finalize_node)

    graph.set_entry_point("validate")

    graph.add_edge("validate", "classify")
    graph.add_conditional_edges(
        "classify",
        _after_classify,
        {"resolve_target": "resolve_target", "finalize": "finalize"},
    )
    graph.add_edge("resolve_target", "precheck")
    graph.add_edge("precheck", "finalize")
    graph.add_edge("finalize", END)

    return graph.compile()


@lru_cache
def get_router_graph():
    return build_router_graph()


def route(request: Union[RouterRequest, Mapping[str, Any]]) -> RouterResponse:
    """
    Map one user message (plus context) to exactly one executor command.

    Stateless: everything the router knows comes in with the request.
    Raises InvalidRequestError for bad input and
    ClassificationUnavailableError when the LLM backend is down.
    """
    if not isinstance(request, RouterRequest):
        try:
            request = RouterRequest.model_validate(request)
        except ValidationError as exc:
            raise InvalidRequestError(str(exc)) from exc

    result = get_router_graph().invoke({"request": request})

    response = result["response"] if isinstance(result, dict) else result.response
    if isinstance(response, dict):
        response = RouterResponse.model_validate(response)
    return response
