# -*- coding: utf-8 -*-
"""SPF record selection, parsing and serialization"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import NamedTuple, Optional, Union

import pyleri

from checkspf._constants import SYNTAX_ERROR_MARKER
from checkspf.exceptions import (
    MultipleSPFRTXTRecords,
    SPFRecordNotFound,
    SPFSyntaxError,
)
from checkspf.macro import (
    Literal,
    MacroString,
    macro_string_to_text,
    parse_macro_string,
)

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

SPF_VERSION_TAG_REGEX_STRING = "v=spf1"
SPF_TERM_REGEX_STRING = r"[+\-~?]?[a-z][a-z0-9_.\-]*(?:[:=/][!-~]*)?"

# https://datatracker.ietf.org/doc/html/rfc7208#section-4.5
#
# The version section is terminated by either an SP character or the end
# of the record. A record with a version section of "v=spf10" does not
# match and is discarded.
SPF_VERSION_REGEX = re.compile(r"^v=spf1(?:\s|$)", re.IGNORECASE)

TERM_REGEX = re.compile(
    r"^(?P<qualifier>[+\-~?]?)(?P<name>[a-z][a-z0-9_.\-]*)(?P<rest>.*)$",
    re.IGNORECASE,
)
ADDRESS_REGEX = re.compile(r"^(?P<address>[^/]+)(?:/(?P<cidr>\d+))?$")
DUAL_CIDR_REGEX = re.compile(
    r"^(?P<domain>.*?)(?:/(?P<cidr4>\d+))?(?://(?P<cidr6>\d+))?$"
)
# toplabel = ( *alphanum ALPHA *alphanum ) /
#            ( 1*alphanum "-" *( alphanum / "-" ) alphanum )
DOMAIN_END_REGEX = re.compile(
    r"\.(?:[a-z0-9]*[a-z][a-z0-9]*|[a-z0-9]+-[a-z0-9\-]*[a-z0-9])\.?$",
    re.IGNORECASE,
)

MECHANISMS = ("all", "include", "a", "mx", "ptr", "ip4", "ip6", "exists")

spf_qualifiers: dict[str, str] = {
    "?": "neutral",
    "+": "pass",
    "-": "fail",
    "~": "softfail",
}


class _SPFGrammar(pyleri.Grammar):
    """Defines Pyleri grammar for SPF records"""

    version_tag = pyleri.Regex(SPF_VERSION_TAG_REGEX_STRING, re.IGNORECASE)
    term = pyleri.Regex(SPF_TERM_REGEX_STRING, re.IGNORECASE)

    START = pyleri.Sequence(version_tag, pyleri.Repeat(term))


class Mechanism(NamedTuple):
    qualifier: str
    name: str
    domain_spec: Optional[MacroString] = None
    cidr4: Optional[int] = None
    cidr6: Optional[int] = None
    network: Optional[Union[ipaddress.IPv4Address, ipaddress.IPv6Address]] = None

    @property
    def result(self) -> str:
        return spf_qualifiers[self.qualifier]

    def __str__(self):
        text = "" if self.qualifier == "+" else self.qualifier
        text += self.name
        if self.network is not None:
            text += f":{self.network}"
        elif self.domain_spec is not None:
            text += f":{macro_string_to_text(self.domain_spec)}"
        if self.cidr4 is not None:
            text += f"/{self.cidr4}"
        if self.cidr6 is not None:
            text += f"/{self.cidr6}" if self.name == "ip6" else f"//{self.cidr6}"
        return text


class Modifier(NamedTuple):
    name: str
    value: MacroString

    def __str__(self):
        return f"{self.name}={macro_string_to_text(self.value)}"


Directive = Union[Mechanism, Modifier]


def select_spf_record(txt_records: list[str], domain: str) -> str:
    """
    Selects the SPF record among the TXT records of a domain

    Args:
        txt_records (list): TXT records, each with its strings joined
        domain (str): The domain the records belong to

    Returns:
        str: The SPF record

    Raises:
        :exc:`checkspf.exceptions.SPFRecordNotFound`
        :exc:`checkspf.exceptions.MultipleSPFRTXTRecords`
    """
    spf_txt_records = [r for r in txt_records if SPF_VERSION_REGEX.match(r)]
    if len(spf_txt_records) > 1:
        raise MultipleSPFRTXTRecords(
            f"{domain}: The domain has multiple SPF TXT records"
        )
    if len(spf_txt_records) == 0:
        raise SPFRecordNotFound("An SPF record does not exist.", domain)
    return spf_txt_records[0]


def _mark(record: str, pos: int, syntax_error_marker: str) -> str:
    return record[:pos] + syntax_error_marker + record[pos:]


def _parse_cidr(value: Optional[str], maximum: int, term: str) -> Optional[int]:
    if value is None:
        return None
    if (len(value) > 1 and value.startswith("0")) or int(value) > maximum:
        raise SPFSyntaxError(f"Invalid CIDR length /{value} in {term}")
    return int(value)


def _parse_domain_spec(value: str, term: str) -> MacroString:
    if value == "":
        raise SPFSyntaxError(f"{term}: A domain-spec is required")
    domain_spec = parse_macro_string(value)
    last = domain_spec[-1]
    if isinstance(last, Literal) and not DOMAIN_END_REGEX.search(last.text):
        raise SPFSyntaxError(f"{term}: {value} is not a valid domain-spec")
    return domain_spec


def _parse_address(
    value: str, term: str, ipv6: bool
) -> tuple[Union[ipaddress.IPv4Address, ipaddress.IPv6Address], Optional[int]]:
    family = "ipv6" if ipv6 else "ipv4"
    match = ADDRESS_REGEX.match(value)
    if match is None:
        raise SPFSyntaxError(f"{value} is not a valid {family} value.")
    try:
        address = ipaddress.ip_address(match.group("address"))
    except ValueError:
        raise SPFSyntaxError(f"{value} is not a valid {family} value.")
    if isinstance(address, ipaddress.IPv6Address) != ipv6:
        other = "ipv4" if ipv6 else "ipv6"
        raise SPFSyntaxError(
            f"{value} is not a valid {family} value.\nLooks like {other}."
        )
    cidr = _parse_cidr(match.group("cidr"), address.max_prefixlen, term)
    return address, cidr


def _parse_mechanism(qualifier: str, name: str, rest: str, term: str) -> Mechanism:
    if name == "all":
        if rest:
            raise SPFSyntaxError(f"{term}: The all mechanism takes no argument")
        return Mechanism(qualifier, name)

    if name in ("ip4", "ip6"):
        if not rest.startswith(":"):
            raise SPFSyntaxError(f"{term}: The {name} mechanism requires a value")
        network, cidr = _parse_address(rest[1:], term, ipv6=name == "ip6")
        if name == "ip4":
            return Mechanism(qualifier, name, cidr4=cidr, network=network)
        return Mechanism(qualifier, name, cidr6=cidr, network=network)

    if name in ("a", "mx"):
        if rest and rest[0] not in ":/":
            raise SPFSyntaxError(f"Unknown mechanism in {term}")
        match = DUAL_CIDR_REGEX.match(rest)
        domain = match.group("domain")
        domain_spec = None
        if domain.startswith(":"):
            domain_spec = _parse_domain_spec(domain[1:], term)
        elif domain:
            raise SPFSyntaxError(f"{term}: Invalid CIDR length")
        return Mechanism(
            qualifier,
            name,
            domain_spec=domain_spec,
            cidr4=_parse_cidr(match.group("cidr4"), 32, term),
            cidr6=_parse_cidr(match.group("cidr6"), 128, term),
        )

    # include, exists and ptr take a domain-spec and no CIDR length
    if rest == "" and name == "ptr":
        return Mechanism(qualifier, name)
    if not rest.startswith(":"):
        if rest.startswith("/"):
            raise SPFSyntaxError(f"{term}: The {name} mechanism takes no CIDR length")
        raise SPFSyntaxError(f"{term}: The {name} mechanism requires a domain-spec")
    return Mechanism(qualifier, name, domain_spec=_parse_domain_spec(rest[1:], term))


def parse_record(
    record: str,
    *,
    syntax_error_marker: str = SYNTAX_ERROR_MARKER,
) -> list[Directive]:
    """
    Parses an SPF record into an ordered list of directives

    Args:
        record (str): An SPF record
        syntax_error_marker (str): The maker for pointing out syntax errors

    Returns:
        list: :class:`Mechanism` and :class:`Modifier` tuples, in record order

    Raises:
        :exc:`checkspf.exceptions.SPFSyntaxError`
    """
    logging.debug(f"Parsing the SPF record {record}")
    if not SPF_VERSION_REGEX.match(record):
        raise SPFSyntaxError(f"The record does not begin with v=spf1: {record}")
    for pos, char in enumerate(record):
        if not char.isascii():
            raise SPFSyntaxError(
                f"Non-ASCII character at position {pos} "
                f"(marked with {syntax_error_marker}) in: "
                f"{_mark(record, pos, syntax_error_marker)}"
            )

    parsed_record = _SPFGrammar().parse(record)
    if not parsed_record.is_valid:
        pos = parsed_record.pos
        expecting: list[str] = list(
            map(lambda x: str(x).strip('"'), list(parsed_record.expecting))
        )
        expecting_str = " or ".join(expecting)
        raise SPFSyntaxError(
            f"Expected {expecting_str} at position {pos} "
            f"(marked with {syntax_error_marker}) in: "
            f"{_mark(record, pos, syntax_error_marker)}"
        )

    directives: list[Directive] = []
    seen_modifiers = set()
    for term in record.split()[1:]:
        match = TERM_REGEX.match(term)
        if match is None:
            raise SPFSyntaxError(f"Invalid term: {term}")
        qualifier = match.group("qualifier") or "+"
        name = match.group("name").lower()
        rest = match.group("rest")

        if rest.startswith("="):
            if match.group("qualifier"):
                raise SPFSyntaxError(f"{term}: Modifiers cannot have a qualifier")
            value = rest[1:]
            if name in ("redirect", "exp"):
                if name in seen_modifiers:
                    raise SPFSyntaxError(f"Multiple {name} modifiers")
                seen_modifiers.add(name)
                directives.append(Modifier(name, _parse_domain_spec(value, term)))
            else:
                directives.append(Modifier(name, parse_macro_string(value)))
            continue

        if name not in MECHANISMS:
            raise SPFSyntaxError(f"Unknown mechanism {name} in {term}")
        directives.append(_parse_mechanism(qualifier, name, rest, term))

    return directives


def serialize_record(directives: list[Directive]) -> str:
    """Serializes a list of directives back into SPF record text"""
    return " ".join(["v=spf1"] + [str(directive) for directive in directives])


def get_mechanisms(directives: list[Directive]) -> list[Mechanism]:
    return [d for d in directives if isinstance(d, Mechanism)]


def get_modifier(directives: list[Directive], name: str) -> Optional[Modifier]:
    for directive in directives:
        if isinstance(directive, Modifier) and directive.name == name:
            return directive
    return None
