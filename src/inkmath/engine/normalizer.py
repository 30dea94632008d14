"""
LaTeX -> evaluable arithmetic string.

Only a small subset of LaTeX is understood: fractions, roots, powers, the
usual multiplication/division glyphs and decorative spacing. Anything outside
the allow-list makes `normalize` return None; it never raises.
"""

from __future__ import annotations

import re

ALLOWED_RE = re.compile(r"^[0-9+\-*/^().,a-zA-Z]*$")

# Spacing / sizing commands that carry no arithmetic meaning.
_DECORATIVE_RE = re.compile(
    r"\\(?:displaystyle|textstyle|qquad|quad|left|right)(?![a-zA-Z])|\\[,;:! ]"
)

_GLYPHS = {
    "·": "*",
    "×": "*",
    "÷": "/",
    "−": "-",
}

_COMMANDS = {
    "cdot": "*",
    "times": "*",
    "div": "/",
    "pi": "pi",
}

_FRACS = ("frac", "dfrac", "tfrac")


def _strip(latex: str) -> str:
    s = latex.strip()
    if len(s) >= 2 and s[0] == "$" and s[-1] == "$":
        s = s.strip("$")
    s = _DECORATIVE_RE.sub("", s)
    for glyph, repl in _GLYPHS.items():
        s = s.replace(glyph, repl)
    return s


def _read_group(s: str, i: int, open_ch: str = "{", close_ch: str = "}") -> tuple[str, int]:
    """
    Read a braced group starting at s[i]; returns (inner, index after group).

    A non-brace character is a one-character group (`\\frac12`). An unbalanced
    group swallows the rest of the string.
    """
    while i < len(s) and s[i].isspace():
        i += 1
    if i >= len(s):
        return "", i
    if s[i] != open_ch:
        return s[i], i + 1
    depth = 0
    for j in range(i, len(s)):
        if s[j] == open_ch:
            depth += 1
        elif s[j] == close_ch:
            depth -= 1
            if depth == 0:
                return s[i + 1 : j], j + 1
    return s[i + 1 :], len(s)


def _read_command(s: str, i: int) -> tuple[str, int]:
    """s[i] is a backslash; returns (command name, index after it)."""
    j = i + 1
    while j < len(s) and s[j].isalpha():
        j += 1
    return s[i + 1 : j], j


def _rewrite(s: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(s):
        ch = s[i]
        if ch == "\\":
            name, j = _read_command(s, i)
            if name in _FRACS:
                num, j = _read_group(s, j)
                den, j = _read_group(s, j)
                out.append(f"({_rewrite(num)})/({_rewrite(den)})")
            elif name == "sqrt":
                if j < len(s) and s[j] == "[":
                    index, j = _read_group(s, j, "[", "]")
                    arg, j = _read_group(s, j)
                    out.append(f"root({_rewrite(index)},{_rewrite(arg)})")
                else:
                    arg, j = _read_group(s, j)
                    out.append(f"sqrt({_rewrite(arg)})")
            elif name in _COMMANDS:
                out.append(_COMMANDS[name])
            else:
                # unknown command: keep the backslash so validation rejects it
                if not name:
                    j = min(i + 2, len(s))
                out.append(s[i:j])
            i = j
        elif ch == "^" and i + 1 < len(s) and s[i + 1] == "{":
            arg, j = _read_group(s, i + 1)
            out.append(f"^({_rewrite(arg)})")
            i = j
        elif ch.isspace():
            i += 1
        elif ch == "{":
            out.append("(")
            i += 1
        elif ch == "}":
            out.append(")")
            i += 1
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def normalize(latex: str | None) -> str | None:
    """
    Convert recognized LaTeX into a sanitized arithmetic string, or None.

    Only the left-hand side of an equation is kept: "2x+5=15" normalizes the
    same as "2x+5".
    """
    if not latex:
        return None
    s = latex.split("=", 1)[0]
    s = _strip(s)
    if not s:
        return None
    s = _rewrite(s)
    if not s or not ALLOWED_RE.match(s):
        return None
    return s
