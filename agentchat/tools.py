"""Tools exposed to the agent runtime: filesystem, planning and external.

A tool is a name, a description, a JSON-schema parameter block and an async
handler. External tools (web search, page fetch, protocol tools) come from a
``ToolProvider`` and are merged into the built-in set by name.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from agentchat.filesystem import VirtualFilesystem
from agentchat.memory import MemoryStore
from agentchat.models import Todo

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[Any]]

FILESYSTEM_TOOLS = ("ls", "read_file", "write_file", "edit_file", "delete_file", "glob", "grep")
PLANNING_TOOLS = ("write_todos", "review_todos")
SEARCH_TOOLS = ("web_search", "read_webpage", "scrape_many")


@dataclass
class Tool:
    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler

    async def invoke(self, arguments: Mapping[str, Any] | None = None) -> Any:
        return await self.handler(**(arguments or {}))


class ToolProvider(Protocol):
    """Supplies external tools for one run."""

    def build_tools(self, *, web_search: bool) -> dict[str, Tool]: ...


@dataclass
class ApprovalRequest:
    tool_name: str
    arguments: dict[str, Any]


ApprovalHandler = Callable[[ApprovalRequest], Awaitable[bool]]


@dataclass
class ApprovalPolicy:
    handler: ApprovalHandler
    tools: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class SubagentPolicy:
    max_depth: int = 2
    timeout_sec: int = 120


def _schema(properties: dict[str, Any], required: list[str] | None = None) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required or []}


_STRING = {"type": "string"}


def filesystem_tools(fs: VirtualFilesystem) -> dict[str, Tool]:
    """File tools over one run's virtual filesystem (transient zone)."""

    async def ls(path: str = "", recursive: bool = False) -> list[str]:
        entries = await fs.list(path, recursive=recursive)
        return [e.path + "/" if e.is_directory else e.path for e in entries]

    async def read_file(path: str) -> str:
        return await fs.read(path)

    async def write_file(path: str, content: str) -> str:
        await fs.write(path, content)
        return f"Wrote {len(content)} characters to {path}"

    async def edit_file(path: str, old_string: str, new_string: str, replace_all: bool = False) -> str:
        content = await fs.read(path)
        occurrences = content.count(old_string)
        if occurrences == 0:
            return f"Error: text not found in {path}"
        if occurrences > 1 and not replace_all:
            return f"Error: text occurs {occurrences} times in {path}; pass replace_all or add context"
        updated = content.replace(old_string, new_string, -1 if replace_all else 1)
        await fs.write(path, updated)
        return f"Edited {path} ({occurrences if replace_all else 1} replacement(s))"

    async def delete_file(path: str) -> str:
        if not await fs.exists(path):
            return f"Error: {path} does not exist"
        await fs.delete(path)
        return f"Deleted {path}"

    async def glob(pattern: str) -> list[str]:
        return await fs.glob(pattern)

    async def grep(pattern: str, file_pattern: str | None = None, case_sensitive: bool = True) -> list[str]:
        results = await fs.search(pattern, file_pattern=file_pattern, case_sensitive=case_sensitive, max_results=100)
        return [f"{r.file_path}:{r.line_number}: {r.line_content}" for r in results]

    path_only = _schema({"path": _STRING}, ["path"])
    return {
        "ls": Tool("ls", "List files in a directory of the workspace.",
                   _schema({"path": _STRING, "recursive": {"type": "boolean"}}), ls),
        "read_file": Tool("read_file", "Read a file from the workspace.", path_only, read_file),
        "write_file": Tool("write_file", "Create or overwrite a file in the workspace.",
                           _schema({"path": _STRING, "content": _STRING}, ["path", "content"]), write_file),
        "edit_file": Tool("edit_file", "Replace text inside a workspace file.",
                          _schema({"path": _STRING, "old_string": _STRING, "new_string": _STRING,
                                   "replace_all": {"type": "boolean"}},
                                  ["path", "old_string", "new_string"]), edit_file),
        "delete_file": Tool("delete_file", "Delete a file or directory from the workspace.", path_only, delete_file),
        "glob": Tool("glob", "Find workspace files matching a glob pattern such as **/*.md.",
                     _schema({"pattern": _STRING}, ["pattern"]), glob),
        "grep": Tool("grep", "Search workspace files with a regular expression.",
                     _schema({"pattern": _STRING, "file_pattern": _STRING,
                              "case_sensitive": {"type": "boolean"}}, ["pattern"]), grep),
    }


def planning_tools(memory: MemoryStore, session_id: str) -> dict[str, Tool]:
    """Todo-list tools persisted in the memory store under ``session_id``."""

    async def write_todos(todos: list[dict[str, Any]]) -> str:
        items = [Todo(content=str(t["content"]), status=str(t.get("status", "pending"))) for t in todos]
        await memory.save_todos(session_id, items)
        return f"Saved {len(items)} todo(s)"

    async def review_todos() -> list[dict[str, Any]]:
        return [t.to_dict() for t in await memory.load_todos(session_id)]

    todo_item = {
        "type": "object",
        "properties": {"content": _STRING, "status": {"type": "string", "enum": ["pending", "in_progress", "done"]}},
        "required": ["content"],
    }
    return {
        "write_todos": Tool("write_todos", "Replace the task's todo list.",
                            _schema({"todos": {"type": "array", "items": todo_item}}, ["todos"]), write_todos),
        "review_todos": Tool("review_todos", "Show the current todo list.", _schema({}), review_todos),
    }


class ApprovalGate:
    """Wraps tools so each call waits for the approval handler first."""

    def __init__(self, policy: ApprovalPolicy) -> None:
        self._policy = policy

    def requires_approval(self, tool_name: str) -> bool:
        return tool_name in self._policy.tools

    def wrap(self, tool: Tool) -> Tool:
        if not self.requires_approval(tool.name):
            return tool
        inner = tool.handler

        async def gated(**arguments: Any) -> Any:
            approved = await self._policy.handler(ApprovalRequest(tool.name, dict(arguments)))
            if not approved:
                logger.info("Tool call denied: %s", tool.name)
                return f"The user denied permission to run {tool.name}. Do not retry; continue without it."
            return await inner(**arguments)

        return replace(tool, handler=gated)

    def apply(self, tools: Mapping[str, Tool]) -> dict[str, Tool]:
        return {name: self.wrap(tool) for name, tool in tools.items()}


def build_tool_set(
    fs: VirtualFilesystem,
    memory: MemoryStore | None,
    session_id: str,
    tool_provider: ToolProvider | None = None,
    web_search: bool = True,
    approval: ApprovalPolicy | None = None,
) -> dict[str, Tool]:
    """Merge built-in and external tools by name; external tools win on clashes."""
    tools = filesystem_tools(fs)
    if memory is not None:
        tools.update(planning_tools(memory, session_id))
    if tool_provider is not None:
        external = tool_provider.build_tools(web_search=web_search)
        if not web_search:
            external = {n: t for n, t in external.items() if n not in SEARCH_TOOLS}
        tools.update(external)
    if approval is not None:
        tools = ApprovalGate(approval).apply(tools)
    return tools
