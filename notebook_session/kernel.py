"""
Kernels: the execution back-ends code cells run against, and the registry
that tracks which one is current.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from IPython.core.interactiveshell import InteractiveShell
from IPython.utils.capture import capture_output
from pydantic import BaseModel, Field

logger = logging.getLogger("notebook_session.kernel")


def _build_mime_bundle(obj) -> dict:
    """
    Build a MIME bundle dictionary from an object.

    Checks for IPython rich display methods and builds a dict
    mapping MIME types to their representations. For display objects
    that have a primary content attribute (e.g. HTML.data), use that
    as the text/plain fallback instead of repr().
    """
    rich_content = None

    rich_entries = []
    for mime_type, method_name in [
        ("text/html", "_repr_html_"),
        ("text/markdown", "_repr_markdown_"),
        ("application/json", "_repr_json_"),
        ("image/svg+xml", "_repr_svg_"),
        ("image/png", "_repr_png_"),
    ]:
        method = getattr(obj, method_name, None)
        if callable(method):
            value = method()
            if value is not None:
                rich_entries.append((mime_type, value))
                if rich_content is None:
                    rich_content = value

    plain = rich_content if rich_content is not None else repr(obj)
    data = {"text/plain": plain}
    for mime_type, value in rich_entries:
        data[mime_type] = value

    return data


@dataclass
class ExecutionContext:
    """What a kernel gets to see besides the code itself."""
    kernel_id: str
    variables: dict[str, Any] = field(default_factory=dict)
    data_sources: dict[str, Any] = field(default_factory=dict)


@dataclass
class ExecutionResult:
    """Result of executing a code cell."""
    output: Optional[str] = None
    error: Optional[str] = None
    details: Any = None
    stdout: str = ""
    stderr: str = ""
    html: Optional[str] = None
    images: list[dict[str, Any]] = field(default_factory=list)
    tables: list[dict[str, Any]] = field(default_factory=list)
    data: list[dict[str, Any]] = field(default_factory=list)
    variables: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    def to_output(self) -> dict:
        """The part of the result that is stored on the cell."""
        out: dict[str, Any] = {
            "output": self.output,
            "html": self.html,
            "images": self.images,
            "tables": self.tables,
            "data": self.data,
        }
        if self.stdout:
            out["stdout"] = self.stdout
        if self.stderr:
            out["stderr"] = self.stderr
        if self.error is not None:
            out["error"] = self.error
            out["details"] = self.details
        return out

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            **self.to_output(),
            "success": self.success,
            "variables": sorted(self.variables),
        }


@runtime_checkable
class Executor(Protocol):
    """Something that can run cell content for a kernel."""

    async def execute(self, content: str, language: str, context: ExecutionContext) -> ExecutionResult:
        ...


class KernelStatus(str, Enum):
    IDLE = "idle"
    BUSY = "busy"
    ERROR = "error"


class Variable(BaseModel):
    """Display summary of one kernel variable."""
    name: str
    type: str
    value: str
    size: Optional[str] = None


def summarize_variable(name: str, value: Any, max_length: int = 60) -> Variable:
    try:
        text = repr(value)
    except Exception:  # noqa: BLE001
        text = "<unable to repr>"
    if len(text) > max_length:
        text = text[: max_length - 3] + "..."
    size = None
    if isinstance(value, (list, tuple, set, dict)):
        size = f"{len(value)} items"
    elif hasattr(value, "shape"):
        size = f"shape {tuple(value.shape)}"
    return Variable(name=name, type=type(value).__name__, value=text, size=size)


class Kernel(BaseModel):
    """An execution back-end plus the variables its last successful runs produced."""
    id: str
    name: str
    language: str = "python"
    status: KernelStatus = KernelStatus.IDLE
    variables: dict[str, Any] = Field(default_factory=dict)

    def variable_summaries(self) -> list[Variable]:
        return [summarize_variable(name, self.variables[name]) for name in sorted(self.variables)]


class IPythonExecutor:
    """
    Runs Python cells in a persistent IPython shell.

    The shell's namespace survives across cells, so the variable snapshot
    returned with each result reflects everything defined so far. Shell
    access happens in a worker thread behind a lock; cancelling the awaiting
    task stops waiting but lets the current cell finish in the background.
    """

    def __init__(self, shell: Optional[InteractiveShell] = None):
        self.shell = shell or InteractiveShell.instance()
        self._lock = threading.Lock()
        self._setup_namespace()

    def _setup_namespace(self):
        self.shell.user_ns["__notebook__"] = True

    async def execute(self, content: str, language: str, context: ExecutionContext) -> ExecutionResult:
        if language != "python":
            raise ValueError(f"Unsupported language: {language}")
        return await asyncio.to_thread(self._run, content, context)

    def _run(self, code: str, context: ExecutionContext) -> ExecutionResult:
        with self._lock:
            self.shell.push(dict(context.data_sources))
            for name, value in context.variables.items():
                self.shell.user_ns.setdefault(name, value)

            with capture_output() as captured:
                result = self.shell.run_cell(code, silent=False)

            exec_result = ExecutionResult(stdout=captured.stdout, stderr=captured.stderr)

            for display_output in captured.outputs:
                if hasattr(display_output, "data"):
                    bundle = display_output.data
                else:
                    bundle = _build_mime_bundle(display_output)
                self._collect(exec_result, bundle)

            exc = result.error_before_exec or result.error_in_exec
            if exc is not None:
                exec_result.error = f"{type(exc).__name__}: {exc}"
                exec_result.details = {
                    "ename": type(exc).__name__,
                    "evalue": str(exc),
                    "traceback": [],
                }
                return exec_result

            if result.result is not None:
                bundle = _build_mime_bundle(result.result)
                exec_result.output = str(bundle.get("text/plain", ""))
                self._collect(exec_result, bundle)
            elif captured.stdout:
                exec_result.output = captured.stdout

            exec_result.variables = self.snapshot()
            return exec_result

    @staticmethod
    def _collect(exec_result: ExecutionResult, bundle: dict):
        exec_result.data.append(bundle)
        if "text/html" in bundle and exec_result.html is None:
            exec_result.html = bundle["text/html"]
        for mime_type in ("image/png", "image/svg+xml"):
            if mime_type in bundle:
                exec_result.images.append({"format": mime_type, "data": bundle[mime_type]})

    def snapshot(self) -> dict[str, Any]:
        """User-defined names currently in the shell namespace."""
        hidden = self.shell.user_ns_hidden
        return {
            key: value
            for key, value in self.shell.user_ns.items()
            if not key.startswith("_") and key not in hidden
        }

    def reset(self):
        """Reset the shell to a clean namespace."""
        with self._lock:
            self.shell.reset()
            self._setup_namespace()


class KernelRegistry:
    """
    Available kernels and the one currently selected.

    The list is filled once when a session starts; after that only the
    current kernel's status and variables change.
    """

    def __init__(self):
        self._kernels: dict[str, Kernel] = {}
        self._executors: dict[str, Executor] = {}
        self._current_id: Optional[str] = None

    def register(self, kernel: Kernel, executor: Executor) -> Kernel:
        self._kernels[kernel.id] = kernel
        self._executors[kernel.id] = executor
        logger.debug("Registered kernel %s (%s)", kernel.id, kernel.language)
        return kernel

    def list_kernels(self) -> list[Kernel]:
        return list(self._kernels.values())

    def get(self, kernel_id: str) -> Optional[Kernel]:
        return self._kernels.get(kernel_id)

    def executor_for(self, kernel_id: str) -> Executor:
        return self._executors[kernel_id]

    def select(self, kernel_id: str) -> Kernel:
        """Make ``kernel_id`` the current kernel."""
        if kernel_id not in self._kernels:
            raise KeyError(f"No kernel registered with id {kernel_id}")
        self._current_id = kernel_id
        logger.info("Selected kernel %s", kernel_id)
        return self._kernels[kernel_id]

    def deselect(self):
        self._current_id = None

    @property
    def current(self) -> Optional[Kernel]:
        if self._current_id is None:
            return None
        return self._kernels[self._current_id]

    @property
    def current_executor(self) -> Optional[Executor]:
        if self._current_id is None:
            return None
        return self._executors[self._current_id]

    @classmethod
    def with_defaults(cls, default_kernel: Optional[str] = "python") -> "KernelRegistry":
        """Registry holding the built-in IPython kernel, selected if asked to."""
        registry = cls()
        registry.register(Kernel(id="python", name="Python 3 (IPython)"), IPythonExecutor())
        if default_kernel is not None:
            registry.select(default_kernel)
        return registry
