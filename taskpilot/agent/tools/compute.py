"""
Compute tools: sandboxed scripts, arithmetic and clock.
"""

import ast
from datetime import datetime, timezone as dt_timezone
import json
import math
import operator
import os
import subprocess
import sys
import tempfile
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .base import FunctionTool, ToolCategory, ToolParameter, ToolResult


SCRIPT_TIMEOUT_SECONDS = 5
MAX_SCRIPT_TIMEOUT_SECONDS = 25
MAX_EXPONENT = 1000
MAX_RESULT_BITS = 100_000
MAX_FACTORIAL = 1000

# Runs inside the child interpreter. Reads code from stdin, writes one JSON
# line with result and captured print output to stdout.
SCRIPT_RUNNER = r'''
import ast, builtins as _b, json, sys, types

ALLOWED_MODULES = ["math", "json", "statistics", "random", "datetime", "re", "itertools", "collections", "functools", "string"]
HIDDEN_MEMBERS = {"string": {"Formatter"}}
BLOCKED_ATTRIBUTES = {
    "gi_frame", "gi_code", "gi_yieldfrom", "cr_frame", "cr_code", "cr_await",
    "ag_frame", "ag_code", "ag_await", "f_globals", "f_locals", "f_builtins",
    "f_back", "f_code", "tb_frame", "tb_next",
}
SAFE_NAMES = [
    "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter", "float",
    "format", "frozenset", "int", "isinstance", "len", "list", "map", "max", "min",
    "pow", "range", "repr", "reversed", "round", "set", "sorted", "str", "sum",
    "tuple", "zip", "chr", "ord", "hex", "bin", "hash", "iter", "next", "slice",
    "Exception", "ValueError", "TypeError", "KeyError", "IndexError", "ZeroDivisionError",
    "StopIteration", "ArithmeticError",
]

class SandboxError(Exception):
    pass

def check(tree):
    for node in ast.walk(tree):
        if isinstance(node, ast.Attribute) and (node.attr.startswith("_") or node.attr in BLOCKED_ATTRIBUTES):
            raise SandboxError(f"access to attribute '{node.attr}' is not allowed")
        if isinstance(node, ast.Name) and node.id.startswith("__"):
            raise SandboxError(f"access to name '{node.id}' is not allowed")
        if isinstance(node, ast.alias) and node.name.startswith("_"):
            raise SandboxError(f"import of '{node.name}' is not allowed")

def proxy(name):
    module = _b.__import__(name)
    hidden = HIDDEN_MEMBERS.get(name, set())
    return types.SimpleNamespace(**{
        key: value for key, value in vars(module).items()
        if not key.startswith("_") and key not in hidden and not isinstance(value, types.ModuleType)
    })

modules = {name: proxy(name) for name in ALLOWED_MODULES}
logs = []

def _print(*args, sep=" ", end="\n", **_):
    logs.append(sep.join(str(a) for a in args))

def _import(name, globals=None, locals=None, fromlist=(), level=0):
    if level or name not in modules:
        raise ImportError(f"import of '{name}' is not allowed")
    return modules[name]

safe = {n: getattr(_b, n) for n in SAFE_NAMES if hasattr(_b, n)}
safe["print"] = _print
safe["__import__"] = _import
scope = {"__builtins__": safe, "__name__": "__sandbox__"}

source = sys.stdin.read()
try:
    tree = ast.parse(source, "<script>", "exec")
    check(tree)
    exec(compile(tree, "<script>", "exec"), scope)
except BaseException as e:
    sys.stdout.write(json.dumps({"ok": False, "error": f"{type(e).__name__}: {e}", "logs": logs}))
    sys.exit(0)

result = scope.get("result")
try:
    json.dumps(result)
except (TypeError, ValueError):
    result = repr(result)
sys.stdout.write(json.dumps({"ok": True, "result": result, "logs": logs}))
'''

# The child sees no parent environment variables
SCRIPT_ENV = {"PATH": os.defpath, "LANG": "C.UTF-8"}


def run_script(code: str, timeout_seconds: int = SCRIPT_TIMEOUT_SECONDS) -> ToolResult:
    """
    Execute Python code in an isolated child interpreter.

    The code sees a restricted builtins scope and copies of the public
    members of a whitelist of modules. Private and frame attributes are
    rejected before the code runs, and print() is captured. Assigning to
    `result` returns a value. The child runs in an empty temporary directory
    with a bare environment and is killed when the timeout expires.
    """
    timeout = max(1, min(int(timeout_seconds), MAX_SCRIPT_TIMEOUT_SECONDS))
    with tempfile.TemporaryDirectory(prefix="taskpilot-script-") as workdir:
        try:
            proc = subprocess.run(
                [sys.executable, "-I", "-c", SCRIPT_RUNNER],
                input=code,
                capture_output=True,
                encoding="utf-8",
                cwd=workdir,
                env=SCRIPT_ENV,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            return ToolResult(success=False, error=f"Script timed out after {timeout}s")

    try:
        payload = json.loads(proc.stdout.strip().splitlines()[-1])
    except (IndexError, ValueError):
        stderr = proc.stderr.strip()[-500:]
        return ToolResult(success=False, error=f"Script runner failed (exit {proc.returncode}): {stderr}")

    data = {"result": payload.get("result"), "logs": payload.get("logs", [])}
    if not payload.get("ok"):
        return ToolResult(success=False, data=data, error=payload.get("error"))
    return ToolResult(success=True, data=data)


BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}

UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}

CONSTANTS = {
    "pi": math.pi,
    "e": math.e,
    "tau": math.tau,
    "inf": math.inf,
}

FUNCTIONS = {
    "sqrt": math.sqrt,
    "cbrt": lambda x: math.copysign(abs(x) ** (1 / 3), x),
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "log": math.log,
    "log10": math.log10,
    "log2": math.log2,
    "ln": math.log,
    "exp": math.exp,
    "abs": abs,
    "round": round,
    "floor": math.floor,
    "ceil": math.ceil,
    "min": min,
    "max": max,
    "pow": pow,
    "factorial": math.factorial,
    "hypot": math.hypot,
    "degrees": math.degrees,
    "radians": math.radians,
}


def evaluate_expression(expression: str):
    """Evaluate an arithmetic expression without executing arbitrary code."""
    tree = ast.parse(expression.replace("^", "**"), mode="eval")
    return _eval_node(tree.body)


def _check_power(base, exponent) -> None:
    """Refuse powers whose result would be too large to compute quickly."""
    if abs(exponent) > MAX_EXPONENT:
        raise ValueError(f"Exponent too large: {exponent}")
    if isinstance(base, int) and isinstance(exponent, int) and abs(base).bit_length() * abs(exponent) > MAX_RESULT_BITS:
        raise ValueError("Result too large")


def _eval_node(node):
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value

    if isinstance(node, ast.BinOp) and type(node.op) in BIN_OPS:
        left = _eval_node(node.left)
        right = _eval_node(node.right)
        if isinstance(node.op, ast.Pow):
            _check_power(left, right)
        return BIN_OPS[type(node.op)](left, right)

    if isinstance(node, ast.UnaryOp) and type(node.op) in UNARY_OPS:
        return UNARY_OPS[type(node.op)](_eval_node(node.operand))

    if isinstance(node, ast.Name):
        if node.id in CONSTANTS:
            return CONSTANTS[node.id]
        raise ValueError(f"Unknown name: {node.id}")

    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name):
        func = FUNCTIONS.get(node.func.id)
        if func is None or node.keywords:
            raise ValueError(f"Unsupported function: {node.func.id}")
        args = [_eval_node(arg) for arg in node.args]
        if node.func.id == "pow" and len(args) >= 2:
            _check_power(args[0], args[1])
        if node.func.id == "factorial" and args and abs(args[0]) > MAX_FACTORIAL:
            raise ValueError(f"Factorial argument too large: {args[0]}")
        return func(*args)

    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def calculate(expression: str) -> ToolResult:
    try:
        value = evaluate_expression(expression)
    except (SyntaxError, ValueError, TypeError, ZeroDivisionError, OverflowError) as e:
        return ToolResult(success=False, error=f"Cannot evaluate '{expression}': {e}")

    if isinstance(value, float) and value.is_integer() and abs(value) < 1e15:
        value = int(value)
    return ToolResult(success=True, data={"expression": expression, "result": value})


def get_time(timezone: str = "UTC") -> ToolResult:
    try:
        tz = ZoneInfo(timezone) if timezone and timezone != "UTC" else dt_timezone.utc
    except (ZoneInfoNotFoundError, ValueError):
        return ToolResult(success=False, error=f"Unknown timezone: {timezone}")

    now = datetime.now(tz)
    return ToolResult(success=True, data={
        "iso": now.isoformat(),
        "unix": int(now.timestamp() * 1000),
        "formatted": now.strftime("%A, %B %d, %Y %I:%M:%S %p %Z"),
        "timezone": timezone or "UTC",
    })


def register_compute_tools(registry) -> None:
    registry.register(FunctionTool(
        name="run_script",
        description=(
            "Execute Python code in a sandbox. print() output is captured; "
            "assign to `result` to return a value. Only math, json, statistics, "
            "random, datetime, re, itertools, collections, functools and string can be imported."
        ),
        category=ToolCategory.COMPUTE,
        func=run_script,
        parameters=[
            ToolParameter("code", "string", "Python code to execute"),
            ToolParameter("timeout_seconds", "integer", "Hard time limit (default 5, max 25)",
                          required=False, default=SCRIPT_TIMEOUT_SECONDS),
        ],
    ))

    registry.register(FunctionTool(
        name="calculate",
        description='Evaluate a math expression safely (e.g. "2*(3+4)", "sqrt(16)", "2^10").',
        category=ToolCategory.COMPUTE,
        func=calculate,
        parameters=[
            ToolParameter("expression", "string", "Math expression"),
        ],
    ))

    registry.register(FunctionTool(
        name="get_time",
        description="Get the current date and time in an IANA timezone.",
        category=ToolCategory.COMPUTE,
        func=get_time,
        parameters=[
            ToolParameter("timezone", "string", "Timezone (e.g. America/New_York)", required=False, default="UTC"),
        ],
    ))
