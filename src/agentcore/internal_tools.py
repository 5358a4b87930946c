"""
In-process tool servers exposing the rules and references libraries.

Tool names follow the pattern <verb><Noun>: createRule, getRule, updateRule,
deleteRule, includeRule, excludeRule, listRules, listContextRules, searchRules
(and the same set for references). Handlers return JSON or a status line as
text content; any failure comes back as an error result so the model sees it.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from mcp import types
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.agentcore.context_library import ContextLibrary
from src.agentcore.errors import AgentCoreError, ContextItemError
from src.agentcore.selection.models import ContextItem, RequestContextItem, SelectionConfig
from src.agentcore.yaml_config import IncludeMode
from src.utils.logger import get_logger

if TYPE_CHECKING:
    from src.agentcore.chat_session import ChatSession

SearchFn = Callable[[str, list[ContextItem], SelectionConfig], Awaitable[list[RequestContextItem]]]


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class NameArgs(_Args):
    name: str = Field(description="Name of the item (allowed characters: a-z, A-Z, 0-9, _, -)")


class CreateArgs(_Args):
    name: str = Field(description="Unique name (allowed characters: a-z, A-Z, 0-9, _, -)")
    description: str = Field(default="", description="Short description of the item")
    priorityLevel: int = Field(default=500, ge=0, le=999, description="Priority level (000-999)")
    text: str = Field(min_length=1, description="The full text")
    include: IncludeMode = Field(default="manual", description="How the item is included in sessions")


class UpdateArgs(_Args):
    name: str = Field(description="Name of the item to update")
    description: Optional[str] = Field(default=None, description="New description")
    priorityLevel: Optional[int] = Field(default=None, ge=0, le=999, description="New priority level (000-999)")
    text: Optional[str] = Field(default=None, min_length=1, description="New text")
    include: Optional[IncludeMode] = Field(default=None, description="How the item is included in sessions")


class EmptyArgs(_Args):
    pass


class SearchArgs(_Args):
    query: str = Field(min_length=1, description="Search query text to match against item contents")
    topK: int = Field(default=20, ge=1, description="Maximum embedding matches to consider before grouping")
    topN: int = Field(default=5, ge=0, description="Target number of results to return after grouping")
    includeScore: float = Field(
        default=0.7, ge=0.0, le=1.0,
        description="Always include items with this cosine similarity score or higher",
    )


class ContextLibraryToolServer:
    """Internal tool server for one ContextLibrary (rules or references)."""

    def __init__(self, library: ContextLibrary, search: SearchFn):
        self.library = library
        self.search = search
        self.item_type = library.document_type.__name__.lower()  # "rule" / "reference"
        self.noun = library.document_type.__name__  # "Rule" / "Reference"
        self.plural = f"{self.noun}s"
        self.logger = get_logger(f"InternalTools.{self.plural}")
        self._handlers: dict[str, tuple[type[_Args], Callable[..., Awaitable[Any]], str]] = {
            f"create{self.noun}": (CreateArgs, self._create, f"Create a new {self.item_type}"),
            f"get{self.noun}": (NameArgs, self._get, f"Get a {self.item_type} by name"),
            f"update{self.noun}": (UpdateArgs, self._update, f"Update an existing {self.item_type}"),
            f"delete{self.noun}": (NameArgs, self._delete, f"Delete a {self.item_type} by name"),
            f"include{self.noun}": (
                NameArgs, self._include, f"Include (add) a {self.item_type} in the current chat session context"
            ),
            f"exclude{self.noun}": (
                NameArgs, self._exclude, f"Exclude (remove) a {self.item_type} from the current chat session context"
            ),
            f"list{self.plural}": (EmptyArgs, self._list, f"Get all {self.item_type}s"),
            f"listContext{self.plural}": (
                EmptyArgs, self._list_context, f"List {self.item_type}s currently in the chat session context"
            ),
            f"search{self.plural}": (
                SearchArgs, self._search, f"Search {self.item_type}s using semantic similarity"
            ),
        }

    def list_tools(self) -> list[types.Tool]:
        return [
            types.Tool(name=name, description=description, inputSchema=args_model.model_json_schema())
            for name, (args_model, _, description) in self._handlers.items()
        ]

    async def call_tool(
        self, tool_name: str, arguments: dict[str, Any], session: Optional["ChatSession"]
    ) -> types.CallToolResult:
        entry = self._handlers.get(tool_name)
        try:
            if entry is None:
                raise ContextItemError(f"Unknown tool: {tool_name}")
            args_model, handler, _ = entry
            try:
                args = args_model.model_validate(arguments or {})
            except ValidationError as e:
                raise ContextItemError(f"Invalid arguments for {tool_name}: {e}") from e
            output = await handler(args, session)
        except AgentCoreError as e:
            self.logger.error(f"❌ {tool_name} failed: {e}")
            return types.CallToolResult(
                content=[types.TextContent(type="text", text=f"Error: {e}")], isError=True
            )
        text = output if isinstance(output, str) else json.dumps(output, indent=2)
        return types.CallToolResult(content=[types.TextContent(type="text", text=text)])

    # -- handlers -----------------------------------------------------------

    def _require(self, name: str):
        document = self.library.get(name)
        if document is None:
            raise ContextItemError(f'{self.noun} "{name}" not found')
        return document

    @staticmethod
    def _require_session(session: Optional["ChatSession"]) -> "ChatSession":
        if session is None:
            raise ContextItemError("Chat session not found")
        return session

    def _summary(self, document) -> dict[str, Any]:
        return document.model_dump(mode="json", exclude={"embeddings", "hash"})

    async def _create(self, args: CreateArgs, session) -> str:
        if self.library.exists(args.name):
            raise ContextItemError(f'{self.noun} "{args.name}" already exists')
        self.library.save(
            self.library.document_type(
                name=args.name,
                description=args.description,
                priority_level=args.priorityLevel,
                text=args.text,
                include=args.include,
            )
        )
        return f'{self.noun} "{args.name}" created successfully'

    async def _get(self, args: NameArgs, session) -> dict[str, Any]:
        return self._summary(self._require(args.name))

    async def _update(self, args: UpdateArgs, session) -> str:
        existing = self._require(args.name)
        changes: dict[str, Any] = {}
        if args.description is not None:
            changes["description"] = args.description
        if args.priorityLevel is not None:
            changes["priority_level"] = args.priorityLevel
        if args.text is not None:
            changes["text"] = args.text
        if args.include is not None:
            changes["include"] = args.include
        self.library.save(existing.model_copy(update=changes))
        return f'{self.noun} "{args.name}" updated successfully'

    async def _delete(self, args: NameArgs, session) -> str:
        if not self.library.delete(args.name):
            raise ContextItemError(f'{self.noun} "{args.name}" not found')
        return f'{self.noun} "{args.name}" deleted successfully'

    async def _include(self, args: NameArgs, session) -> str:
        session = self._require_session(session)
        if not session.add_context_document(self.item_type, args.name):
            raise ContextItemError(f'{self.noun} "{args.name}" could not be added to session context')
        return f'{self.noun} "{args.name}" successfully included in chat session'

    async def _exclude(self, args: NameArgs, session) -> str:
        session = self._require_session(session)
        if not session.remove_context_document(self.item_type, args.name):
            raise ContextItemError(f'{self.noun} "{args.name}" could not be removed from session context')
        return f'{self.noun} "{args.name}" successfully excluded from chat session'

    async def _list(self, args: EmptyArgs, session) -> list[dict[str, Any]]:
        return [self._summary(document) for document in self.library.get_all()]

    async def _list_context(self, args: EmptyArgs, session) -> list[dict[str, Any]]:
        session = self._require_session(session)
        return [
            {"name": item.name, "includeMode": item.include_mode}
            for item in session.context_items
            if item.type == self.item_type
        ]

    async def _search(self, args: SearchArgs, session) -> list[dict[str, Any]]:
        documents = {document.name: document for document in self.library.get_all()}
        if not documents:
            return []
        candidates = [
            ContextItem(type=self.item_type, name=name, include_mode=document.include)
            for name, document in documents.items()
        ]
        config = SelectionConfig(top_k=args.topK, top_n=args.topN, include_score=args.includeScore)
        results = await self.search(args.query, candidates, config)
        return [
            {**self._summary(documents[item.name]), "similarityScore": item.similarity_score}
            for item in results
            if item.type == self.item_type and item.name in documents
        ]
