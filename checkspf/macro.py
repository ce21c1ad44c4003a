# -*- coding: utf-8 -*-
"""SPF macro-string parsing and expansion (RFC 7208 § 7)"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import TYPE_CHECKING, NamedTuple, Optional, Union
from urllib.parse import quote

from checkspf._constants import MAX_DOMAIN_LENGTH, MAX_LABEL_LENGTH
from checkspf.exceptions import SPFMacroError

if TYPE_CHECKING:
    from checkspf.spf import EvaluationContext

"""Copyright 2019-2025 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

MACRO_LETTERS = set("slodiphv")
EXPLANATION_MACRO_LETTERS = set("crt")
MACRO_DELIMS = ".-+,/_="

MACRO_BODY_REGEX = re.compile(
    rf"^(?P<letter>[a-z])(?P<digits>\d*)(?P<reverse>r?)(?P<delimiters>[{re.escape(MACRO_DELIMS)}]*)$",
    re.IGNORECASE,
)

ESCAPES = {"%": "%", "_": " ", "-": "%20"}


class Literal(NamedTuple):
    text: str


class MacroToken(NamedTuple):
    letter: str
    digits: Optional[int] = None
    reverse: bool = False
    delimiters: str = ""
    url_encode: bool = False

    def __str__(self):
        letter = self.letter.upper() if self.url_encode else self.letter
        digits = "" if self.digits is None else str(self.digits)
        reverse = "r" if self.reverse else ""
        return f"%{{{letter}{digits}{reverse}{self.delimiters}}}"


MacroString = tuple[Union[Literal, MacroToken], ...]


def _raise_macro_syntax_error(value: str, pos: int, message: str) -> None:
    raise SPFMacroError(f"{message} at position {pos} in macro-string: {value}")


def parse_macro_string(value: str, *, explanation: bool = False) -> MacroString:
    """
    Parses a domain-spec or explanation string into a macro-string

    Adjacent literal text, including expanded escapes, is merged into a
    single :class:`Literal`.

    Args:
        value (str): The raw macro-string
        explanation (bool): Allow the ``c``, ``r`` and ``t`` macros, which
                            are only valid in explanation strings

    Returns:
        tuple: A sequence of :class:`Literal` and :class:`MacroToken`

    Raises:
        :exc:`checkspf.exceptions.SPFMacroError`
    """
    segments = []
    literal = []
    i = 0
    length = len(value)
    while i < length:
        ch = value[i]
        if ch != "%":
            literal.append(ch)
            i += 1
            continue
        if i + 1 >= length:
            _raise_macro_syntax_error(value, i, "Dangling %")
        next_ch = value[i + 1]
        if next_ch in ESCAPES:
            literal.append(ESCAPES[next_ch])
            i += 2
            continue
        if next_ch != "{":
            _raise_macro_syntax_error(value, i, f"Invalid escape %{next_ch}")
        close = value.find("}", i + 2)
        if close == -1:
            _raise_macro_syntax_error(value, i, "Unterminated macro")
        body = value[i + 2 : close]
        match = MACRO_BODY_REGEX.match(body)
        if match is None:
            _raise_macro_syntax_error(value, i, f"Invalid macro %{{{body}}}")
        letter = match.group("letter")
        allowed = MACRO_LETTERS
        if explanation:
            allowed = MACRO_LETTERS | EXPLANATION_MACRO_LETTERS
        if letter.lower() not in allowed:
            _raise_macro_syntax_error(value, i + 2, f"Unknown macro letter {letter}")
        digits = None
        if match.group("digits"):
            digits = int(match.group("digits"))
            if digits == 0:
                _raise_macro_syntax_error(value, i + 3, "Zero digit transformer")
        if literal:
            segments.append(Literal("".join(literal)))
            literal = []
        segments.append(
            MacroToken(
                letter=letter.lower(),
                digits=digits,
                reverse=bool(match.group("reverse")),
                delimiters=match.group("delimiters"),
                url_encode=letter.isupper(),
            )
        )
        i = close + 1
    if literal:
        segments.append(Literal("".join(literal)))
    return tuple(segments)


def macro_string_to_text(macro_string: MacroString) -> str:
    """Serializes a macro-string back to record text"""
    text = []
    for segment in macro_string:
        if isinstance(segment, Literal):
            text.append(segment.text.replace("%", "%%").replace(" ", "%_"))
        else:
            text.append(str(segment))
    return "".join(text)


def _macro_value(letter: str, context: EvaluationContext) -> str:
    ip = context.ip_address
    if letter == "s":
        return context.sender
    if letter == "l":
        return context.local_part
    if letter == "o":
        return context.sender_domain
    if letter == "d":
        return context.domain
    if letter == "i":
        if isinstance(ip, ipaddress.IPv6Address):
            return ".".join(ip.exploded.replace(":", ""))
        return str(ip)
    if letter == "p":
        # Validated domain names are never looked up for the p macro
        return "unknown"
    if letter == "v":
        return "ip6" if isinstance(ip, ipaddress.IPv6Address) else "in-addr"
    if letter == "h":
        return context.helo
    if letter == "c":
        return str(ip)
    if letter == "r":
        return context.receiver
    if letter == "t":
        return str(context.timestamp)
    raise SPFMacroError(f"Unknown macro letter {letter}")


def _transform(value: str, token: MacroToken) -> str:
    delimiters = token.delimiters or "."
    parts = re.split(f"[{re.escape(delimiters)}]", value)
    if token.reverse:
        parts.reverse()
    if token.digits is not None:
        parts = parts[-token.digits :]
    return ".".join(parts)


def expand_macro(
    macro_string: Union[str, MacroString],
    context: EvaluationContext,
    *,
    explanation: bool = False,
) -> str:
    """
    Expands a macro-string against an evaluation context

    Args:
        macro_string: A raw or parsed macro-string
        context (EvaluationContext): The sender, HELO and current domain
        explanation (bool): The macro-string is an explanation string

    Returns:
        str: The expanded text

    Raises:
        :exc:`checkspf.exceptions.SPFMacroError`
    """
    if isinstance(macro_string, str):
        macro_string = parse_macro_string(macro_string, explanation=explanation)
    expanded = []
    for segment in macro_string:
        if isinstance(segment, Literal):
            expanded.append(segment.text)
            continue
        if segment.letter in EXPLANATION_MACRO_LETTERS and not explanation:
            raise SPFMacroError(
                f"The {segment.letter} macro is only allowed in explanations"
            )
        value = _transform(_macro_value(segment.letter, context), segment)
        if segment.url_encode:
            value = quote(value, safe="")
        expanded.append(value)
    return "".join(expanded)


def truncate_domain(domain: str) -> str:
    """
    Drops leftmost labels until a domain name is no longer than 253
    characters and has no label longer than 63 characters (RFC 7208 § 7.3)

    Args:
        domain (str): An expanded domain name

    Returns:
        str: The truncated domain name, without a trailing dot; empty if
             no labels survive
    """
    domain = domain[:-1] if domain.endswith(".") else domain
    labels = domain.split(".")
    while labels and (
        len(".".join(labels)) > MAX_DOMAIN_LENGTH
        or any(len(label) > MAX_LABEL_LENGTH for label in labels)
    ):
        labels.pop(0)
    truncated = ".".join(labels)
    if truncated != domain:
        logging.debug(f"Truncated expanded domain {domain} to {truncated}")
    return truncated


def expand_domain_spec(
    domain_spec: Union[str, MacroString], context: EvaluationContext
) -> str:
    """Expands a domain-spec and truncates it for use as a DNS query name"""
    return truncate_domain(expand_macro(domain_spec, context))
