from __future__ import annotations

"""Built-in capabilities.

- ``AgentCapability`` (``Agent``): control signals and the memory store. It
  is part of every registry.
- ``LiveFilesCapability`` (``LiveFiles``): maintains the set of files whose
  current contents are shown in every prompt.
- ``FilesCapability`` (``Files``): minimal file access rooted at
  ``EngineSettings.file_system_root``.
"""

from pathlib import Path
from typing import Dict, List, Optional, Union

from ..resilience.cache import CacheKey, CacheScope, cache_retry, scope_id_for
from .base import (
    BaseCapability,
    CapabilityContext,
    CapabilityMethod,
    CapabilitySchema,
    MethodSchema,
    ParameterSchema,
)

AGENT = "Agent"
LIVE_FILES = "LiveFiles"
FILES = "Files"

COMPLETED_CALL = f"{AGENT}.completed"
REQUEST_FEEDBACK_CALL = f"{AGENT}.request_feedback"

LIVE_FILES_STATE_KEY = "LiveFiles"


def _param(name: str, index: int, description: str, type_: str = "string") -> ParameterSchema:
    return ParameterSchema(name=name, index=index, type=type_, description=description)


_AGENT_SCHEMA = CapabilitySchema(
    name=AGENT,
    description="Control the agent run and its memory.",
    methods={
        "completed": MethodSchema(
            name="completed",
            description="Signal that the task is complete. The note becomes the final output.",
            parameters=[_param("note", 0, "Summary of the result for the requester")],
        ),
        "request_feedback": MethodSchema(
            name="request_feedback",
            description="Pause and ask a human a question. The answer arrives as the next message.",
            parameters=[_param("request", 0, "The question or request for the human")],
        ),
        "save_memory": MethodSchema(
            name="save_memory",
            description="Store a value in memory. Memory contents are shown in every prompt.",
            parameters=[_param("key", 0, "Memory key"), _param("content", 1, "Value to store")],
        ),
        "get_memory": MethodSchema(
            name="get_memory",
            description="Read a value from memory.",
            parameters=[_param("key", 0, "Memory key")],
        ),
        "delete_memory": MethodSchema(
            name="delete_memory",
            description="Remove a value from memory.",
            parameters=[_param("key", 0, "Memory key")],
        ),
    },
)


class AgentCapability(BaseCapability):
    """Control signals and memory access.

    ``completed`` and ``request_feedback`` only echo their argument; the engine
    recognizes them in the call history once every call of the iteration was
    dispatched.
    """

    name = AGENT

    def schema(self) -> CapabilitySchema:
        return _AGENT_SCHEMA

    def methods(self) -> Dict[str, CapabilityMethod]:
        return {
            "completed": self.completed,
            "request_feedback": self.request_feedback,
            "save_memory": self.save_memory,
            "get_memory": self.get_memory,
            "delete_memory": self.delete_memory,
        }

    async def completed(self, ctx: CapabilityContext, note: str = "") -> str:
        return str(note)

    async def request_feedback(self, ctx: CapabilityContext, request: str) -> str:
        return str(request)

    async def save_memory(self, ctx: CapabilityContext, key: str, content: str) -> None:
        ctx.agent.memory[str(key)] = str(content)

    async def get_memory(self, ctx: CapabilityContext, key: str) -> str:
        try:
            return ctx.agent.memory[str(key)]
        except KeyError:
            raise KeyError(f"No memory entry named '{key}'. Existing keys: {', '.join(ctx.agent.memory)}") from None

    async def delete_memory(self, ctx: CapabilityContext, key: str) -> None:
        if ctx.agent.memory.pop(str(key), None) is None:
            raise KeyError(f"No memory entry named '{key}'")


_LIVE_FILES_SCHEMA = CapabilitySchema(
    name=LIVE_FILES,
    description="Files whose current contents are displayed in every prompt.",
    methods={
        "add_files": MethodSchema(
            name="add_files",
            description="Add files to the live files list.",
            parameters=[_param("files", 0, "File paths to add", "array")],
        ),
        "remove_files": MethodSchema(
            name="remove_files",
            description="Remove files from the live files list when no longer needed.",
            parameters=[_param("files", 0, "File paths to remove", "array")],
        ),
    },
)


def resolve_within(root: Union[str, Path], path: str) -> Path:
    """Resolve ``path`` against ``root``, refusing paths that escape it.

    Raises:
        PermissionError: The resolved path is outside of ``root``.
    """
    base = Path(root).resolve()
    target = (base / str(path)).resolve()
    if target != base and base not in target.parents:
        raise PermissionError(f"Path '{path}' is outside of the working directory")
    return target


def _as_list(files: Union[str, List[str]]) -> List[str]:
    if isinstance(files, str):
        return [files]
    return [str(f) for f in files]


class LiveFilesCapability(BaseCapability):
    """Add/remove entries of ``tool_state["LiveFiles"]``, kept as a sorted unique list.

    Only paths below ``EngineSettings.file_system_root`` are accepted.
    """

    name = LIVE_FILES

    def schema(self) -> CapabilitySchema:
        return _LIVE_FILES_SCHEMA

    def methods(self) -> Dict[str, CapabilityMethod]:
        return {"add_files": self.add_files, "remove_files": self.remove_files}

    @staticmethod
    def current(ctx: CapabilityContext) -> List[str]:
        return list(ctx.agent.tool_state.get(LIVE_FILES_STATE_KEY) or [])

    async def add_files(self, ctx: CapabilityContext, files: Union[str, List[str]]) -> List[str]:
        requested = _as_list(files)
        for path in requested:
            resolve_within(ctx.settings.file_system_root, path)
        merged = set(self.current(ctx)) | set(requested)
        ctx.agent.tool_state[LIVE_FILES_STATE_KEY] = sorted(merged)
        return ctx.agent.tool_state[LIVE_FILES_STATE_KEY]

    async def remove_files(self, ctx: CapabilityContext, files: Union[str, List[str]]) -> List[str]:
        remaining = set(self.current(ctx)) - set(_as_list(files))
        ctx.agent.tool_state[LIVE_FILES_STATE_KEY] = sorted(remaining)
        return ctx.agent.tool_state[LIVE_FILES_STATE_KEY]


_FILES_SCHEMA = CapabilitySchema(
    name=FILES,
    description="Read and write files below the working directory.",
    methods={
        "read": MethodSchema(
            name="read",
            description="Return the contents of a file.",
            parameters=[_param("path", 0, "Path relative to the working directory")],
        ),
        "list_directory": MethodSchema(
            name="list_directory",
            description="List the entries of a directory.",
            parameters=[_param("path", 0, "Directory relative to the working directory")],
        ),
        "write": MethodSchema(
            name="write",
            description="Write contents to a file, replacing it if it exists.",
            parameters=[
                _param("path", 0, "Path relative to the working directory"),
                _param("content", 1, "The new file contents"),
            ],
            requires_approval=True,
        ),
    },
)


class FilesCapability(BaseCapability):
    """File access confined to a base directory.

    Attributes:
        root: Base directory. Defaults to ``EngineSettings.file_system_root``
            of the calling context.
    """

    name = FILES

    def __init__(self, root: Optional[Union[str, Path]] = None) -> None:
        self._root = Path(root) if root is not None else None

    def schema(self) -> CapabilitySchema:
        return _FILES_SCHEMA

    def methods(self) -> Dict[str, CapabilityMethod]:
        return {"read": self.read, "list_directory": self.list_directory, "write": self.write}

    def _resolve(self, ctx: CapabilityContext, path: str) -> Path:
        return resolve_within(self._root or ctx.settings.file_system_root, path)

    def _cache_path(self, ctx: CapabilityContext, path: str) -> str:
        base = Path(self._root or ctx.settings.file_system_root).resolve()
        return self._resolve(ctx, path).relative_to(base).as_posix()

    async def read(self, ctx: CapabilityContext, path: str) -> str:
        return await self.read_file(ctx, self._cache_path(ctx, path))

    @cache_retry(scope=CacheScope.agent)
    async def read_file(self, ctx: CapabilityContext, relative_path: str) -> str:
        """Read a file by its normalized path below the root. Cached per agent."""
        target = self._resolve(ctx, relative_path)
        if not target.is_file():
            raise FileNotFoundError(f"File not found: {relative_path}")
        return target.read_text(encoding="utf-8")

    async def list_directory(self, ctx: CapabilityContext, path: str = ".") -> List[str]:
        target = self._resolve(ctx, path)
        if not target.is_dir():
            raise NotADirectoryError(f"Not a directory: {path}")
        return sorted(f"{p.name}/" if p.is_dir() else p.name for p in target.iterdir())

    async def write(self, ctx: CapabilityContext, path: str, content: str) -> str:
        target = self._resolve(ctx, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(str(content), encoding="utf-8")
        if ctx.cache is not None:
            # Drop the cached read of this path so the next read sees the new contents.
            key = CacheKey.build(
                CacheScope.agent,
                scope_id_for(CacheScope.agent, ctx),
                self.name,
                self.read_file.__name__,
                [self._cache_path(ctx, path)],
            )
            await ctx.cache.delete_value(key)
        return f"Wrote {len(str(content))} characters to {path}"
