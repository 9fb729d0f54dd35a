from __future__ import annotations

import logging
import time
from typing import Any, Sequence

from langgraph.graph import END, START, StateGraph

from shopchat.agents.prompts import DEFAULT_IMAGE_MESSAGE, IMAGE_MESSAGE_PREFIX
from shopchat.core.context import RequestContext
from shopchat.models.chat import ChatImage, ChatResult
from shopchat.models.search import RetrievalHit, SearchFilter
from shopchat.services.catalog import CatalogService
from shopchat.services.composer import GroundedResponseComposer

logger = logging.getLogger("shopchat.chat")


class ChatService:
    """Greeting shortcut, optional image-to-query step, retrieval and grounded reply.

    ``screen_greeting`` -> END | ``describe_image`` -> ``retrieve`` -> ``compose`` -> END
    """

    def __init__(
        self,
        catalog: CatalogService,
        composer: GroundedResponseComposer,
        *,
        callbacks: Sequence[Any] | None = None,
    ) -> None:
        self._catalog = catalog
        self._composer = composer
        self._callbacks = tuple(callbacks or ())
        self._graph = self._build_graph()

    def _build_graph(self):
        graph = StateGraph(dict)
        graph.add_node("screen_greeting", self._node_screen_greeting)
        graph.add_node("describe_image", self._node_describe_image)
        graph.add_node("retrieve", self._node_retrieve)
        graph.add_node("compose", self._node_compose)

        graph.add_edge(START, "screen_greeting")
        graph.add_conditional_edges(
            "screen_greeting",
            self._route_after_greeting,
            {
                "end": END,
                "describe_image": "describe_image",
                "retrieve": "retrieve",
            },
        )
        graph.add_edge("describe_image", "retrieve")
        graph.add_edge("retrieve", "compose")
        graph.add_edge("compose", END)

        compiled = graph.compile()
        if self._callbacks:
            compiled = compiled.with_config({"callbacks": list(self._callbacks)})
        return compiled

    async def answer(
        self,
        message: str,
        search_filter: SearchFilter | None = None,
        image: ChatImage | None = None,
        context: RequestContext | None = None,
    ) -> ChatResult:
        context = context or RequestContext.new("chat")
        started = time.perf_counter()
        state: dict[str, Any] = {
            "message": (message or "").strip(),
            "filter": search_filter,
            "image": image,
            "context": context,
            "search_query": None,
            "image_description": None,
            "hits": [],
            "reply": None,
            "greeting": False,
        }
        result = await self._graph.ainvoke(state, config={"metadata": {"correlation_id": context.correlation_id}})
        hits: list[RetrievalHit] = result.get("hits") or []
        logger.info(
            "chat.answer",
            extra=context.log_extra(
                greeting=bool(result.get("greeting")),
                image=image is not None,
                products=len(hits),
                durationMs=round((time.perf_counter() - started) * 1000, 2),
            ),
        )
        return ChatResult(
            reply=result["reply"],
            products=[hit.entry for hit in hits],
            image_description=result.get("image_description"),
        )

    # Nodes -----------------------------------------------------------------

    async def _node_screen_greeting(self, state: dict[str, Any]) -> dict[str, Any]:
        if state["image"] is None:
            reply = self._composer.screen_greeting(state["message"])
            if reply is not None:
                state["reply"] = reply
                state["greeting"] = True
        return state

    def _route_after_greeting(self, state: dict[str, Any]) -> str:
        if state.get("greeting"):
            return "end"
        if state["image"] is not None:
            return "describe_image"
        return "retrieve"

    async def _node_describe_image(self, state: dict[str, Any]) -> dict[str, Any]:
        image: ChatImage = state["image"]
        context: RequestContext = state["context"]
        description = await self._composer.describe_image(image.data, image.mime_type, state["message"], context)
        state["image_description"] = description
        state["search_query"] = await self._composer.query_from_description(description, context)
        return state

    async def _node_retrieve(self, state: dict[str, Any]) -> dict[str, Any]:
        query = state["search_query"] or state["message"]
        if not query:
            return state
        state["hits"] = await self._catalog.search(query, state["filter"], None, state["context"])
        return state

    async def _node_compose(self, state: dict[str, Any]) -> dict[str, Any]:
        message = state["message"]
        if state["image"] is not None:
            message = f"{IMAGE_MESSAGE_PREFIX} {message or DEFAULT_IMAGE_MESSAGE}"
        reply = await self._composer.answer(message, state["hits"], state["context"])
        description = state.get("image_description")
        if description:
            reply += self._composer.image_note(description)
        state["reply"] = reply
        return state
