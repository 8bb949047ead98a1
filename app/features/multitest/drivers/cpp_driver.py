"""C++ driver synthesis.

C++ is not parsed; a small lexer finds top-level ``main`` / ``solve``
definitions while skipping comments, literals and preprocessor lines. A
learner ``main`` is renamed and called once per case by a generated
``main``; otherwise a parameterless ``solve`` is called directly.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..errors import SynthesisError
from ..schemas import Batch, Language
from .base import DriverSynthesizer

logger = logging.getLogger(__name__)

RESERVED_PREFIX = "multitest_"
USER_MAIN = "multitest_user_main_"

SHAPE_USER_MAIN = "user_main"
SHAPE_BARE = "bare_solve"

_IDENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_RAW_STRING = re.compile(r'(?:u8|[uUL])?R"([^()\\\s]{0,16})\(')
_PUNCT = "(){};,"


@dataclass(frozen=True)
class Token:
    kind: str  # ident | punct | literal | other
    text: str
    start: int
    end: int


def tokenize(source: str) -> List[Token]:
    """Identifiers and structural punctuation of a C++ translation unit."""
    tokens: List[Token] = []
    i, n = 0, len(source)
    at_line_start = True
    while i < n:
        ch = source[i]
        if ch == "\n":
            at_line_start = True
            i += 1
            continue
        if ch in " \t\r\f\v":
            i += 1
            continue
        if ch == "#" and at_line_start:
            # preprocessor directive, honouring line continuations
            while i < n and source[i] != "\n":
                if source[i] == "\\" and i + 1 < n and source[i + 1] == "\n":
                    i += 2
                    continue
                i += 1
            continue
        at_line_start = False
        if source.startswith("//", i):
            j = source.find("\n", i)
            i = n if j < 0 else j
            continue
        if source.startswith("/*", i):
            j = source.find("*/", i + 2)
            if j < 0:
                raise SynthesisError("unterminated block comment")
            i = j + 2
            continue
        raw = _RAW_STRING.match(source, i)
        if raw:
            terminator = ")" + raw.group(1) + '"'
            j = source.find(terminator, raw.end())
            if j < 0:
                raise SynthesisError("unterminated raw string literal")
            tokens.append(Token("literal", source[i:j + len(terminator)], i, j + len(terminator)))
            i = j + len(terminator)
            continue
        if ch in "\"'":
            j = i + 1
            while j < n and source[j] != ch:
                if source[j] == "\\":
                    j += 1
                elif source[j] == "\n":
                    raise SynthesisError("unterminated string or character literal")
                j += 1
            if j >= n:
                raise SynthesisError("unterminated string or character literal")
            tokens.append(Token("literal", source[i:j + 1], i, j + 1))
            i = j + 1
            continue
        m = _IDENT.match(source, i)
        if m:
            # encoding prefixes glue onto a following literal (u8"...", L'x')
            if m.end() < n and source[m.end()] in "\"'" and m.group() in ("u8", "u", "U", "L"):
                i = m.end()
                continue
            tokens.append(Token("ident", m.group(), i, m.end()))
            i = m.end()
            continue
        if ch.isdigit():
            j = i + 1
            while j < n and (source[j].isalnum() or source[j] in "._'"):
                j += 1
            tokens.append(Token("other", source[i:j], i, j))
            i = j
            continue
        tokens.append(Token("punct" if ch in _PUNCT else "other", ch, i, i + 1))
        i += 1
    return tokens


@dataclass(frozen=True)
class FunctionDefinition:
    name: str
    return_type: Optional[str]
    params: Tuple[str, ...]
    name_token: Token


def find_top_level_definitions(tokens: List[Token], names: Tuple[str, ...]) -> List[FunctionDefinition]:
    """Definitions (``name(...) ... {``) of the given names at brace depth 0."""
    found: List[FunctionDefinition] = []
    depth = 0
    idx = 0
    while idx < len(tokens):
        tok = tokens[idx]
        if tok.text == "{":
            depth += 1
        elif tok.text == "}":
            depth = max(0, depth - 1)
        elif depth == 0 and tok.kind == "ident" and tok.text in names \
                and idx + 1 < len(tokens) and tokens[idx + 1].text == "(":
            close = _matching_paren(tokens, idx + 1)
            if close is not None and _opens_body(tokens, close + 1):
                params = tuple(t.text for t in tokens[idx + 2:close])
                prev = tokens[idx - 1] if idx > 0 else None
                found.append(FunctionDefinition(
                    name=tok.text,
                    return_type=prev.text if prev is not None and prev.kind == "ident" else None,
                    params=params,
                    name_token=tok,
                ))
        idx += 1
    return found


def _matching_paren(tokens: List[Token], open_idx: int) -> Optional[int]:
    level = 0
    for j in range(open_idx, len(tokens)):
        if tokens[j].text == "(":
            level += 1
        elif tokens[j].text == ")":
            level -= 1
            if level == 0:
                return j
    return None


def _opens_body(tokens: List[Token], idx: int) -> bool:
    # skip trailing specifiers such as noexcept or a trailing return type
    while idx < len(tokens) and tokens[idx].text not in ("{", ";", "(", ")", "}"):
        idx += 1
    return idx < len(tokens) and tokens[idx].text == "{"


def _has_no_params(params: Tuple[str, ...]) -> bool:
    return params == () or params == ("void",)


_DRIVER_TEMPLATE = """

// ---- multitest driver ----
#ifdef int
#undef int
#endif
#include <chrono>
#include <cstdio>
#include <exception>
#include <iostream>

int main() {{
{io_setup}    long long multitest_count_ = 0;
    if (!(std::cin >> multitest_count_)) return 0;
    for (long long multitest_i_ = 0; multitest_i_ < multitest_count_; ++multitest_i_) {{
        const char* multitest_status_ = "ok";
        auto multitest_start_ = std::chrono::steady_clock::now();
        try {{
{invoke}
        }} catch (const std::exception&) {{
            multitest_status_ = "error:exception";
        }} catch (...) {{
            multitest_status_ = "error:unknown";
        }}
        double multitest_elapsed_ = std::chrono::duration<double>(std::chrono::steady_clock::now() - multitest_start_).count();
        std::cout.flush();
        std::fflush(stdout);
        std::printf("\\n%s %s %.6f\\n", "{boundary}", multitest_status_, multitest_elapsed_);
        std::fflush(stdout);
    }}
    return 0;
}}
"""


class CppDriverSynthesizer(DriverSynthesizer):
    language = Language.CPP

    def build_stdin(self, batch: Batch) -> str:
        parts = [f"{batch.size}\n"]
        for tc in batch.test_cases:
            text = tc.input.replace("\r\n", "\n")
            if text and not text.endswith("\n"):
                text += "\n"
            parts.append(text)
        return "".join(parts)

    def build_source(self, source: str, boundary: str) -> Tuple[str, str]:
        tokens = tokenize(source)
        for tok in tokens:
            if tok.kind == "ident" and tok.text.startswith(RESERVED_PREFIX):
                raise SynthesisError(f"identifier {tok.text!r} is reserved for the test driver; please rename it")

        definitions = find_top_level_definitions(tokens, ("main", "solve"))
        mains = [d for d in definitions if d.name == "main"]
        solves = [d for d in definitions if d.name == "solve"]
        if len(mains) > 1:
            raise SynthesisError("more than one main() definition found")

        if mains:
            user_main = mains[0]
            if not _has_no_params(user_main.params):
                raise SynthesisError("main() must not take parameters (argc/argv are not available per test case)")
            body = self._rename_main(source, tokens)
            if user_main.return_type == "void":
                invoke = f"            {USER_MAIN}();"
            else:
                invoke = (
                    f"            if ({USER_MAIN}() != 0) {{\n"
                    f'                multitest_status_ = "error:NonZeroReturn";\n'
                    f"            }}"
                )
            shape = SHAPE_USER_MAIN
        elif solves:
            if not any(_has_no_params(d.params) for d in solves):
                raise SynthesisError("solve() must not take parameters; read the test case from std::cin instead")
            body = source
            invoke = "            solve();"
            shape = SHAPE_BARE
        else:
            raise SynthesisError("no entry point found: define main() or void solve()")

        # a learner that unsyncs iostreams must do so before the driver reads the case count
        unsynced = any(tok.kind == "ident" and tok.text == "sync_with_stdio" for tok in tokens)
        io_setup = "    std::ios_base::sync_with_stdio(false);\n    std::cin.tie(nullptr);\n" if unsynced else ""
        driver = _DRIVER_TEMPLATE.format(io_setup=io_setup, invoke=invoke, boundary=boundary)
        code = body.rstrip("\n") + "\n" + driver
        self._validate(code)
        return code, shape

    @staticmethod
    def _rename_main(source: str, tokens: List[Token]) -> str:
        out: List[str] = []
        last = 0
        for tok in tokens:
            if tok.kind == "ident" and tok.text == "main":
                out.append(source[last:tok.start])
                out.append(USER_MAIN)
                last = tok.end
        out.append(source[last:])
        return "".join(out)

    @staticmethod
    def _validate(code: str) -> None:
        mains = [d for d in find_top_level_definitions(tokenize(code), ("main",))]
        if len(mains) != 1:
            raise SynthesisError(f"generated driver is malformed ({len(mains)} main definitions)")
