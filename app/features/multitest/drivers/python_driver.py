"""Python driver synthesis.

The learner's module is parsed, its entry point is lifted into a case
function, and a driver loop is appended that runs that function once per
test case with its own stdin and a captured stdout. Four program shapes
are recognised, tried in this order:

* ``if __name__ == "__main__":`` guard: the guard body becomes the case
  function and the names it binds are declared ``global`` so module-level
  helpers still see them;
* top-level calls to zero-argument functions (``main()``): the calls are
  removed and become the case function;
* a top-level ``solve()`` that nothing calls: the case function calls it;
* a plain script: every statement except imports, functions and classes
  moves into the case function.
"""

from __future__ import annotations

import ast
import logging
from typing import List, Optional, Set, Tuple

from ..errors import SynthesisError
from ..schemas import Batch, Language
from .base import DriverSynthesizer, split_input_lines

logger = logging.getLogger(__name__)

DRIVER_HOOK = "__multitest_driver__"
CASE_FUNCTION = "__multitest_case__"
RESERVED_PREFIXES = ("_mt_", "_Mt", "__multitest")

SHAPE_GUARD = "main_guard"
SHAPE_ENTRY_CALL = "entry_call"
SHAPE_BARE = "bare_solve"
SHAPE_SCRIPT = "script"

_PRELUDE = '''
import contextlib as _mt_contextlib
import io as _mt_io
import sys as _mt_sys
import time as _mt_time
import traceback as _mt_traceback

_MT_BOUNDARY = {boundary!r}


class _MtBinaryStdin:
    def __init__(self, owner):
        self._mt_owner = owner

    def read(self, *args):
        return self._mt_owner._mt_current.read(*args).encode("utf-8")

    def readline(self, *args):
        return self._mt_owner._mt_current.readline(*args).encode("utf-8")

    def readlines(self, *args):
        return [line.encode("utf-8") for line in self._mt_owner._mt_current.readlines(*args)]

    def __iter__(self):
        return self

    def __next__(self):
        line = self.readline()
        if not line:
            raise StopIteration
        return line


class _MtStdin:
    def __init__(self):
        self._mt_current = _mt_io.StringIO("")
        self.buffer = _MtBinaryStdin(self)

    def _mt_load(self, data):
        self._mt_current = _mt_io.StringIO(data)

    def read(self, *args):
        return self._mt_current.read(*args)

    def readline(self, *args):
        return self._mt_current.readline(*args)

    def readlines(self, *args):
        return self._mt_current.readlines(*args)

    def __iter__(self):
        return self

    def __next__(self):
        line = self._mt_current.readline()
        if not line:
            raise StopIteration
        return line

    def __getattr__(self, name):
        return getattr(self._mt_current, name)


_mt_raw = _mt_sys.stdin.read()
_mt_stdout = _mt_sys.stdout
_mt_stdin = _MtStdin()
_mt_sys.stdin = _mt_stdin
'''

_DRIVER = '''
def __multitest_driver__():
    _mt_lines = _mt_raw.split("\\n")
    _mt_count = int(_mt_lines[0]) if _mt_lines[0].strip() else 0
    _mt_pos = 1
    for _mt_index in range(_mt_count):
        _mt_size = int(_mt_lines[_mt_pos])
        _mt_case = _mt_lines[_mt_pos + 1:_mt_pos + 1 + _mt_size]
        _mt_pos += 1 + _mt_size
        _mt_stdin._mt_load("".join(_mt_line + "\\n" for _mt_line in _mt_case))
        _mt_sys.stdin = _mt_stdin
        _mt_bytes = _mt_io.BytesIO()
        _mt_capture = _mt_io.TextIOWrapper(_mt_bytes, encoding="utf-8", newline="\\n", write_through=True)
        _mt_status = "ok"
        _mt_started = _mt_time.perf_counter()
        try:
            with _mt_contextlib.redirect_stdout(_mt_capture):
                __multitest_case__()
        except SystemExit as _mt_exit:
            if _mt_exit.code not in (None, 0):
                _mt_status = "error:SystemExit"
        except Exception as _mt_error:
            _mt_status = "error:" + type(_mt_error).__name__
            _mt_traceback.print_exc(file=_mt_sys.__stderr__)
        _mt_elapsed = _mt_time.perf_counter() - _mt_started
        _mt_capture.flush()
        _mt_payload = _mt_bytes.getvalue().decode("utf-8", "replace")
        _mt_capture.detach()
        if _mt_payload and not _mt_payload.endswith("\\n"):
            _mt_payload += "\\n"
        _mt_stdout.write("%s%s %s %.6f\\n" % (_mt_payload, _MT_BOUNDARY, _mt_status, _mt_elapsed))
        _mt_stdout.flush()


if __name__ == "__main__":
    __multitest_driver__()
'''


def _is_reserved(name: Optional[str]) -> bool:
    return bool(name) and name.startswith(RESERVED_PREFIXES)


def _is_main_guard(node: ast.stmt) -> bool:
    if not isinstance(node, ast.If):
        return False
    test = node.test
    if not (isinstance(test, ast.Compare) and len(test.ops) == 1 and isinstance(test.ops[0], ast.Eq)):
        return False
    left, right = test.left, test.comparators[0]

    def _is_name(n):
        return isinstance(n, ast.Name) and n.id == "__name__"

    def _is_main(n):
        return isinstance(n, ast.Constant) and n.value == "__main__"

    return (_is_name(left) and _is_main(right)) or (_is_main(left) and _is_name(right))


def _required_params(fn: ast.FunctionDef | ast.AsyncFunctionDef) -> int:
    args = fn.args
    positional = len(args.posonlyargs) + len(args.args) - len(args.defaults)
    kwonly = sum(1 for default in args.kw_defaults if default is None)
    return positional + kwonly


def _calls_name(stmts: List[ast.stmt], name: str) -> bool:
    return any(
        isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and node.func.id == name
        for stmt in stmts
        for node in ast.walk(stmt)
    )


def _identifiers(tree: ast.AST):
    for node in ast.walk(tree):
        if isinstance(node, ast.Name):
            yield node.id
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            yield node.name
        elif isinstance(node, ast.arg):
            yield node.arg
        elif isinstance(node, ast.alias):
            yield node.asname or node.name.split(".")[0]
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            yield from node.names
        elif isinstance(node, ast.ExceptHandler) and node.name:
            yield node.name
        elif isinstance(node, (ast.MatchAs, ast.MatchStar)) and node.name:
            yield node.name
        elif isinstance(node, ast.MatchMapping) and node.rest:
            yield node.rest


class _GlobalBinder(ast.NodeTransformer):
    """Rewrites a module-level block so it can run inside a function.

    Collects every name the block binds in its own scope, drops existing
    ``global`` statements and strips annotations from annotated names
    (an annotated name cannot be declared global).
    """

    def __init__(self) -> None:
        self.names: Set[str] = set()

    def _bind_def(self, node):
        self.names.add(node.name)
        return node

    visit_FunctionDef = _bind_def
    visit_AsyncFunctionDef = _bind_def
    visit_ClassDef = _bind_def

    def visit_Lambda(self, node):
        return node

    def visit_comprehension(self, node):
        # comprehension targets are local to the comprehension
        node.iter = self.visit(node.iter)
        node.ifs = [self.visit(cond) for cond in node.ifs]
        return node

    def visit_Global(self, node):
        self.names.update(node.names)
        return ast.Pass()

    def visit_Name(self, node):
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.names.add(node.id)
        return node

    def visit_AnnAssign(self, node):
        self.generic_visit(node)
        if isinstance(node.target, ast.Name):
            if node.value is None:
                return ast.Pass()
            return ast.Assign(targets=[node.target], value=node.value)
        return node

    def _bind_alias(self, node):
        for alias in node.names:
            if alias.name != "*":
                self.names.add(alias.asname or alias.name.split(".")[0])
        return node

    visit_Import = _bind_alias
    visit_ImportFrom = _bind_alias

    def visit_MatchAs(self, node):
        if node.name:
            self.names.add(node.name)
        return self.generic_visit(node)

    def visit_MatchStar(self, node):
        if node.name:
            self.names.add(node.name)
        return node

    def visit_MatchMapping(self, node):
        if node.rest:
            self.names.add(node.rest)
        return self.generic_visit(node)


class PythonDriverSynthesizer(DriverSynthesizer):
    language = Language.PYTHON

    def build_stdin(self, batch: Batch) -> str:
        parts = [f"{batch.size}\n"]
        for tc in batch.test_cases:
            lines = split_input_lines(tc.input)
            parts.append(f"{len(lines)}\n")
            parts.extend(f"{line}\n" for line in lines)
        return "".join(parts)

    def build_source(self, source: str, boundary: str) -> Tuple[str, str]:
        tree = self._parse(source)
        for name in _identifiers(tree):
            if _is_reserved(name):
                raise SynthesisError(f"identifier {name!r} is reserved for the test driver; please rename it")

        head, body = self._split_head(tree.body)
        case_body, body, shape = self._lift_entry(body)

        case_fn = ast.parse(f"def {CASE_FUNCTION}():\n    pass\n").body[0]
        case_fn.body = case_body or [ast.Pass()]

        module = ast.Module(
            body=head
            + ast.parse(_PRELUDE.format(boundary=boundary)).body
            + body
            + [case_fn]
            + ast.parse(_DRIVER).body,
            type_ignores=[],
        )
        code = ast.unparse(ast.fix_missing_locations(module)) + "\n"
        self._validate(code)
        return code, shape

    @staticmethod
    def _parse(source: str) -> ast.Module:
        try:
            return ast.parse(source)
        except SyntaxError as exc:
            raise SynthesisError(f"syntax error at line {exc.lineno}: {exc.msg}") from exc
        except ValueError as exc:
            raise SynthesisError(f"source could not be parsed: {exc}") from exc

    @staticmethod
    def _split_head(stmts: List[ast.stmt]) -> Tuple[List[ast.stmt], List[ast.stmt]]:
        """Separate the docstring and ``__future__`` imports, which must stay first."""
        idx = 0
        if stmts and isinstance(stmts[0], ast.Expr) and isinstance(stmts[0].value, ast.Constant) \
                and isinstance(stmts[0].value.value, str):
            idx = 1
        while idx < len(stmts) and isinstance(stmts[idx], ast.ImportFrom) and stmts[idx].module == "__future__":
            idx += 1
        return stmts[:idx], stmts[idx:]

    def _lift_entry(self, body: List[ast.stmt]) -> Tuple[List[ast.stmt], List[ast.stmt], str]:
        guards = [stmt for stmt in body if _is_main_guard(stmt)]
        if guards:
            rest = [stmt for stmt in body if not _is_main_guard(stmt)]
            lifted: List[ast.stmt] = [s for guard in guards for s in guard.body]
            # wildcard imports are only legal at module level
            star = [s for s in lifted if isinstance(s, ast.ImportFrom) and any(a.name == "*" for a in s.names)]
            lifted = [s for s in lifted if s not in star]
            return self._as_function_body(lifted), rest + star, SHAPE_GUARD

        keep = (ast.Import, ast.ImportFrom, ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)
        statements = [stmt for stmt in body if not isinstance(stmt, keep)]
        definitions = [stmt for stmt in body if isinstance(stmt, keep)]
        functions = {
            stmt.name: stmt for stmt in body if isinstance(stmt, ast.FunctionDef)
        }

        def _entry_call(stmt: ast.stmt) -> bool:
            if not (isinstance(stmt, ast.Expr) and isinstance(stmt.value, ast.Call)):
                return False
            call = stmt.value
            return (
                isinstance(call.func, ast.Name)
                and not call.args
                and not call.keywords
                and call.func.id in functions
                and _required_params(functions[call.func.id]) == 0
            )

        # top-level code such as `n = int(input())` reads stdin too, so it runs per case
        if any(_entry_call(stmt) for stmt in statements):
            return self._as_function_body(statements), definitions, SHAPE_ENTRY_CALL

        solve = functions.get("solve")
        if solve is not None and _required_params(solve) == 0 and not _calls_name(statements, "solve"):
            call = ast.Expr(value=ast.Call(func=ast.Name(id="solve", ctx=ast.Load()), args=[], keywords=[]))
            return [call], body, SHAPE_BARE

        if statements:
            return self._as_function_body(statements), definitions, SHAPE_SCRIPT

        if solve is not None:
            raise SynthesisError("solve() must not require parameters; read the test case from stdin instead")
        raise SynthesisError(
            "no entry point found: add an `if __name__ == \"__main__\":` block, a main() call or a solve() function"
        )

    @staticmethod
    def _as_function_body(stmts: List[ast.stmt]) -> List[ast.stmt]:
        binder = _GlobalBinder()
        rewritten = [binder.visit(stmt) for stmt in stmts]
        if binder.names:
            return [ast.Global(names=sorted(binder.names))] + rewritten
        return rewritten

    @staticmethod
    def _validate(code: str) -> None:
        try:
            tree = ast.parse(code)
        except SyntaxError as exc:
            raise SynthesisError(f"generated driver does not compile: {exc.msg} (line {exc.lineno})") from exc
        hooks = [n for n in tree.body if isinstance(n, ast.FunctionDef) and n.name == DRIVER_HOOK]
        guards = [n for n in tree.body if _is_main_guard(n)]
        if len(hooks) != 1 or len(guards) != 1:
            raise SynthesisError(
                f"generated driver is malformed ({len(hooks)} driver hooks, {len(guards)} main guards)"
            )
