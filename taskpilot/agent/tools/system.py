"""
System tools: workspace files, shell and git.

All paths resolve inside the workspace directory. Commands are checked
against a deny-list before they run and are killed at the timeout.
"""

from pathlib import Path
import re
import shlex
import subprocess

from taskpilot import logger
from taskpilot.errors import ToolError
from .base import FunctionTool, ToolCategory, ToolParameter, ToolResult


COMMAND_TIMEOUT_SECONDS = 30
MAX_OUTPUT_CHARS = 10000
MAX_READ_BYTES = 1024 * 1024
MAX_LIST_ENTRIES = 200

DENIED_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"\brm\s+(-[a-z-]*\s+)*-[a-z-]*[rf][a-z-]*\s+([^\s;&|]+\s+)*[\"']?(/|~|\$\{?HOME\b|\*|\.\.?/?(\s|$))",
        r"\bmkfs(\.\w+)?\b",
        r"\bdd\s+.*\bof=/dev/",
        r">\s*/dev/(sd|nvme|hd)",
        r":\(\)\s*\{\s*:\|:&\s*\}\s*;\s*:",
        r"\b(shutdown|reboot|halt|poweroff)\b",
        r"\bchmod\s+(-R\s+)?[0-7]*777\s+/",
        r"\bchown\s+-R\s+\S+\s+/(\s|$)",
        r"\bcurl\b[^|]*\|\s*(ba|z)?sh\b",
        r"\bwget\b[^|]*\|\s*(ba|z)?sh\b",
        r"\bgit\s+push\b.*--force\b",
        r"\bgit\s+clean\s+-[a-z]*f",
        r"\bgit\s+reset\s+--hard\b",
    )
]


class WorkspaceError(ToolError):
    pass


def check_command(command: str) -> None:
    """Raise ValueError if the command matches a destructive pattern."""
    for pattern in DENIED_PATTERNS:
        if pattern.search(command):
            raise ValueError(f"Command blocked by safety policy: {pattern.pattern}")


def _truncate(text: str) -> str:
    text = text.strip()
    if len(text) > MAX_OUTPUT_CHARS:
        return text[:MAX_OUTPUT_CHARS] + f"\n... [{len(text) - MAX_OUTPUT_CHARS} chars truncated]"
    return text


def register_system_tools(registry, workspace) -> None:
    """
    Register file, shell and git tools scoped to a workspace directory.

    The directory is created if missing.
    """
    root = Path(workspace).resolve()
    root.mkdir(parents=True, exist_ok=True)

    def resolve(path: str) -> Path:
        target = (root / (path or ".")).resolve()
        if target != root and root not in target.parents:
            raise WorkspaceError(f"Path escapes workspace: {path}")
        return target

    def run(argv, cwd: str = None, shell: bool = False) -> ToolResult:
        try:
            workdir = resolve(cwd) if cwd else root
        except WorkspaceError as e:
            return ToolResult(success=False, error=str(e))

        try:
            proc = subprocess.run(
                argv,
                cwd=workdir,
                shell=shell,
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            return ToolResult(success=False, error=f"Command timed out after {COMMAND_TIMEOUT_SECONDS}s")
        except OSError as e:
            return ToolResult(success=False, error=str(e))

        data = {
            "exit_code": proc.returncode,
            "stdout": _truncate(proc.stdout),
            "stderr": _truncate(proc.stderr),
        }
        if proc.returncode != 0:
            return ToolResult(success=False, data=data,
                              error=data["stderr"] or f"Exit code {proc.returncode}")
        return ToolResult(success=True, data=data)

    def read_file(path: str) -> ToolResult:
        try:
            target = resolve(path)
        except WorkspaceError as e:
            return ToolResult(success=False, error=str(e))
        if not target.is_file():
            return ToolResult(success=False, error=f"File not found: {path}")
        if target.stat().st_size > MAX_READ_BYTES:
            return ToolResult(success=False, error=f"File too large: {path}")
        return ToolResult(success=True, data=target.read_text(encoding="utf-8", errors="replace"))

    def write_file(path: str, content: str) -> ToolResult:
        try:
            target = resolve(path)
        except WorkspaceError as e:
            return ToolResult(success=False, error=str(e))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        return ToolResult(
            success=True,
            data={"path": str(target.relative_to(root)), "bytes": len(content.encode("utf-8"))},
            side_effects=[f"wrote {target.relative_to(root)}"],
        )

    def list_files(path: str = ".") -> ToolResult:
        try:
            target = resolve(path)
        except WorkspaceError as e:
            return ToolResult(success=False, error=str(e))
        if not target.is_dir():
            return ToolResult(success=False, error=f"Not a directory: {path}")

        entries = []
        for child in sorted(target.iterdir())[:MAX_LIST_ENTRIES]:
            entries.append({
                "name": child.name + ("/" if child.is_dir() else ""),
                "size": child.stat().st_size if child.is_file() else None,
            })
        return ToolResult(success=True, data={"path": str(target.relative_to(root)) or ".", "entries": entries})

    def run_shell(command: str, cwd: str = None) -> ToolResult:
        try:
            check_command(command)
        except ValueError as e:
            logger.warn('Blocked shell command', command=command[:200])
            return ToolResult(success=False, error=str(e))
        return run(command, cwd=cwd, shell=True)

    def git(args: str, cwd: str = None) -> ToolResult:
        try:
            check_command(f"git {args}")
            argv = ["git"] + shlex.split(args)
        except ValueError as e:
            return ToolResult(success=False, error=str(e))
        return run(argv, cwd=cwd)

    registry.register(FunctionTool(
        name="read_file",
        description="Read a text file from the workspace.",
        category=ToolCategory.SYSTEM,
        func=read_file,
        parameters=[
            ToolParameter("path", "string", "Path relative to the workspace"),
        ],
    ))

    registry.register(FunctionTool(
        name="write_file",
        description="Write content to a file in the workspace, creating directories as needed.",
        category=ToolCategory.SYSTEM,
        func=write_file,
        parameters=[
            ToolParameter("path", "string", "Path relative to the workspace"),
            ToolParameter("content", "string", "Content to write"),
        ],
    ))

    registry.register(FunctionTool(
        name="list_files",
        description="List the entries of a workspace directory.",
        category=ToolCategory.SYSTEM,
        func=list_files,
        parameters=[
            ToolParameter("path", "string", "Directory relative to the workspace", required=False, default="."),
        ],
    ))

    registry.register(FunctionTool(
        name="run_shell",
        description="Run a shell command in the workspace and return stdout/stderr. Destructive commands are refused.",
        category=ToolCategory.SYSTEM,
        func=run_shell,
        parameters=[
            ToolParameter("command", "string", "Shell command to run"),
            ToolParameter("cwd", "string", "Working directory relative to the workspace", required=False),
        ],
    ))

    registry.register(FunctionTool(
        name="git",
        description='Run a git command in the workspace, e.g. args="status" or args="log --oneline -5".',
        category=ToolCategory.SYSTEM,
        func=git,
        parameters=[
            ToolParameter("args", "string", "Arguments after `git`"),
            ToolParameter("cwd", "string", "Repository directory relative to the workspace", required=False),
        ],
    ))
