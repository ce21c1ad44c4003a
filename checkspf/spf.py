# -*- coding: utf-8 -*-
"""Sender Policy framework (SPF) record evaluation"""

from __future__ import annotations

import logging
import time
from typing import NamedTuple, Optional, TypedDict, Union
from collections.abc import Sequence

import dns.resolver
from dns.nameserver import Nameserver

from checkspf._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    MAX_DNS_LOOKUPS,
    MAX_MX_EXAMINED,
    MAX_PTR_NAMES,
    MAX_RECURSION_DEPTH,
    MAX_VOID_DNS_LOOKUPS,
)
from checkspf.cidr import IPAddress, address_in_network, parse_ip_address
from checkspf.exceptions import (
    SPFError,
    SPFInvalidDomain,
    SPFRecordNotFound,
    SPFRecursionLimitExceeded,
    SPFTempError,
    SPFTooManyDNSLookups,
    SPFTooManyMXRecords,
    SPFTooManyVoidDNSLookups,
)
from checkspf.explanation import render_explanation
from checkspf.macro import MacroString, expand_domain_spec
from checkspf.record import (
    Directive,
    Mechanism,
    Modifier,
    get_mechanisms,
    get_modifier,
    parse_record,
    select_spf_record,
)
from checkspf.utils import (
    DNSException,
    DNSExceptionNXDOMAIN,
    DNSResolver,
    Resolver,
    is_valid_domain,
    normalize_domain,
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

PASS = "pass"
FAIL = "fail"
SOFTFAIL = "softfail"
NEUTRAL = "neutral"
NONE = "none"
TEMPERROR = "temperror"
PERMERROR = "permerror"


class Limits(NamedTuple):
    """Processing limits applied to a single SPF check (RFC 7208 § 4.6.4)"""

    max_dns_lookups: int = MAX_DNS_LOOKUPS
    max_void_dns_lookups: int = MAX_VOID_DNS_LOOKUPS
    max_mx_examined: int = MAX_MX_EXAMINED
    max_recursion_depth: int = MAX_RECURSION_DEPTH
    max_ptr_names: int = MAX_PTR_NAMES
    # Count the A/AAAA lookups of each MX host against max_dns_lookups
    count_mx_address_lookups: bool = False
    # Count the TXT lookup of the checked domain against max_dns_lookups
    count_initial_lookup: bool = True


class _SPFCheckResultOptionalFields(TypedDict, total=False):
    error: str


class SPFCheckResult(_SPFCheckResultOptionalFields):
    result: str
    explanation: Union[str, None]
    domain: str
    record: Union[str, None]
    dns_lookups: int
    void_dns_lookups: int


class _Outcome(NamedTuple):
    result: str
    domain: str
    exp: Optional[Modifier]


class EvaluationContext(object):
    """The state of one SPF check, shared by every record it evaluates

    The lookup counters are owned by a single check and are never shared
    between checks.
    """

    def __init__(
        self,
        ip_address: Union[str, IPAddress],
        sender: str,
        helo: str,
        *,
        domain: Optional[str] = None,
        receiver: str = "unknown",
        limits: Optional[Limits] = None,
        deadline: Optional[float] = None,
        timestamp: Optional[int] = None,
    ):
        """
        Args:
            ip_address: The IP address of the SMTP client
            sender (str): The envelope-from (MAIL FROM) address; may be empty
            helo (str): The HELO/EHLO domain
            domain (str): The domain to check, by default the domain of the
                          sender
            receiver (str): The host name of the receiving MTA
            limits (Limits): Processing limits
            deadline (float): A :func:`time.monotonic` value after which
                              DNS queries fail
            timestamp (int): The current time, for the ``t`` macro
        """
        self.ip_address = parse_ip_address(ip_address)
        self.helo = helo.rstrip(".")
        if not sender:
            sender = f"postmaster@{self.helo}"
        if "@" in sender:
            local_part, _, sender_domain = sender.rpartition("@")
        else:
            local_part, sender_domain = "", sender
        if not local_part:
            local_part = "postmaster"
        self.local_part = local_part
        self.sender_domain = normalize_domain(sender_domain.rstrip("."))
        self.sender = f"{self.local_part}@{self.sender_domain}"
        self.domain = normalize_domain((domain or self.sender_domain).rstrip("."))
        self.receiver = receiver
        self.limits = limits or Limits()
        self.deadline = deadline
        self.timestamp = int(time.time()) if timestamp is None else timestamp
        self.dns_lookups = 0
        self.void_dns_lookups = 0
        self.recursion_depth = 0

    def count_dns_lookup(self, term: str):
        maximum = self.limits.max_dns_lookups
        if self.dns_lookups >= maximum:
            logging.debug(f"DNS lookup limit reached at {term}")
            raise SPFTooManyDNSLookups(
                f"{term}: Evaluating the SPF record requires more than "
                f"{maximum} DNS lookups (RFC 7208 § 4.6.4)",
                dns_lookups=self.dns_lookups,
            )
        self.dns_lookups += 1

    def count_void_lookup(self, term: str):
        maximum = self.limits.max_void_dns_lookups
        if self.void_dns_lookups >= maximum:
            logging.debug(f"Void DNS lookup limit reached at {term}")
            raise SPFTooManyVoidDNSLookups(
                f"{term}: Evaluating the SPF record has more than "
                f"{maximum} void DNS lookups (RFC 7208 § 4.6.4)",
                void_dns_lookups=self.void_dns_lookups,
            )
        self.void_dns_lookups += 1

    def descend(self, term: str):
        if self.recursion_depth >= self.limits.max_recursion_depth:
            raise SPFRecursionLimitExceeded(
                f"{term}: include and redirect are nested more than "
                f"{self.limits.max_recursion_depth} levels deep"
            )
        self.recursion_depth += 1


def _query(lookup, name: str, context: EvaluationContext) -> list:
    """Runs a resolver lookup; NXDOMAIN becomes an empty answer and other
    DNS errors become :exc:`SPFTempError`"""
    try:
        return lookup(name, deadline=context.deadline)
    except DNSExceptionNXDOMAIN:
        return []
    except DNSException as error:
        raise SPFTempError(f"{name}: {error}")


def _lookup_addresses(
    name: str, context: EvaluationContext, resolver: Resolver
) -> list[str]:
    if context.ip_address.version == 6:
        return _query(resolver.lookup_aaaa, name, context)
    return _query(resolver.lookup_a, name, context)


def _get_target(
    domain_spec: Optional[MacroString], context: EvaluationContext, term: str
) -> str:
    if domain_spec is None:
        return context.domain
    target = expand_domain_spec(domain_spec, context)
    if not is_valid_domain(target, multi_label=False):
        raise SPFInvalidDomain(f"{term}: {target!r} is not a valid domain name")
    return normalize_domain(target)


def _cidr_for(mechanism: Mechanism, context: EvaluationContext) -> int:
    if context.ip_address.version == 6:
        return 128 if mechanism.cidr6 is None else mechanism.cidr6
    return 32 if mechanism.cidr4 is None else mechanism.cidr4


def _any_address_matches(
    addresses: list[str], cidr: int, context: EvaluationContext
) -> bool:
    for address in addresses:
        try:
            if address_in_network(context.ip_address, address, cidr):
                return True
        except ValueError:
            logging.debug(f"Ignoring invalid address {address}")
    return False


def _get_record(domain: str, context: EvaluationContext, resolver: Resolver) -> str:
    logging.debug(f"Checking for a SPF record on {domain}")
    try:
        txt_records = resolver.lookup_txt(domain, deadline=context.deadline)
    except DNSExceptionNXDOMAIN:
        raise SPFRecordNotFound("The domain does not exist.", domain)
    except DNSException as error:
        raise SPFTempError(f"{domain}: {error}")
    return select_spf_record(txt_records, domain)


def _evaluate_include(
    mechanism: Mechanism, term: str, context: EvaluationContext, resolver: Resolver
) -> bool:
    target = _get_target(mechanism.domain_spec, context, term)
    context.descend(term)
    try:
        outcome = _evaluate_domain(target, context, resolver)
    except SPFRecordNotFound as error:
        raise SPFError(f"{term}: {error}")
    finally:
        context.recursion_depth -= 1
    logging.debug(f"{term} evaluated to {outcome.result}")
    return outcome.result == PASS


def _evaluate_mx(
    mechanism: Mechanism, term: str, context: EvaluationContext, resolver: Resolver
) -> bool:
    target = _get_target(mechanism.domain_spec, context, term)
    hosts = _query(resolver.lookup_mx, target, context)
    if len(hosts) == 0:
        context.count_void_lookup(term)
        return False
    maximum = context.limits.max_mx_examined
    if len(hosts) > maximum:
        raise SPFTooManyMXRecords(
            f"{term}: {target} has more than {maximum} MX records "
            "(RFC 7208 § 4.6.4)"
        )
    cidr = _cidr_for(mechanism, context)
    for _preference, hostname in hosts:
        if not hostname:
            continue
        if context.limits.count_mx_address_lookups:
            context.count_dns_lookup(f"{term} ({hostname})")
        addresses = _lookup_addresses(hostname, context, resolver)
        if _any_address_matches(addresses, cidr, context):
            return True
    return False


def _evaluate_ptr(
    mechanism: Mechanism, term: str, context: EvaluationContext, resolver: Resolver
) -> bool:
    target = _get_target(mechanism.domain_spec, context, term)
    hostnames = _query(resolver.lookup_ptr, str(context.ip_address), context)
    if len(hostnames) == 0:
        context.count_void_lookup(term)
        return False
    for hostname in hostnames[: context.limits.max_ptr_names]:
        hostname = normalize_domain(hostname.rstrip("."))
        if hostname != target and not hostname.endswith(f".{target}"):
            continue
        # A DNS error while validating a name skips that name (RFC 7208 § 5.5)
        try:
            addresses = _lookup_addresses(hostname, context, resolver)
        except SPFTempError as error:
            logging.debug(f"Skipping PTR name {hostname}: {error}")
            continue
        if _any_address_matches(addresses, context.ip_address.max_prefixlen, context):
            return True
    return False


def _mechanism_matches(
    mechanism: Mechanism, context: EvaluationContext, resolver: Resolver
) -> bool:
    term = str(mechanism)
    name = mechanism.name
    logging.debug(f"Evaluating {term} for {context.domain}")

    if name == "all":
        return True

    if name in ("ip4", "ip6"):
        cidr = mechanism.cidr4 if name == "ip4" else mechanism.cidr6
        if cidr is None:
            cidr = mechanism.network.max_prefixlen
        return address_in_network(context.ip_address, mechanism.network, cidr)

    context.count_dns_lookup(term)

    if name == "include":
        return _evaluate_include(mechanism, term, context, resolver)

    if name == "mx":
        return _evaluate_mx(mechanism, term, context, resolver)

    if name == "ptr":
        return _evaluate_ptr(mechanism, term, context, resolver)

    target = _get_target(mechanism.domain_spec, context, term)
    if name == "exists":
        # exists always queries A records, whatever the client's address family
        addresses = _query(resolver.lookup_a, target, context)
    else:
        addresses = _lookup_addresses(target, context, resolver)
    if len(addresses) == 0:
        context.count_void_lookup(term)
        return False
    if name == "exists":
        return True
    return _any_address_matches(addresses, _cidr_for(mechanism, context), context)


def evaluate_record(
    directives: list[Directive],
    context: EvaluationContext,
    resolver: Resolver,
) -> _Outcome:
    """
    Evaluates parsed directives for ``context.domain``

    Mechanisms are evaluated left to right and the first match wins. If no
    mechanism matches, a redirect modifier is followed, otherwise the
    result is neutral.

    Raises:
        :exc:`checkspf.exceptions.SPFError`
    """
    domain = context.domain
    exp = get_modifier(directives, "exp")
    for mechanism in get_mechanisms(directives):
        if _mechanism_matches(mechanism, context, resolver):
            logging.debug(f"{mechanism} matched on {domain}: {mechanism.result}")
            return _Outcome(mechanism.result, domain, exp)

    redirect = get_modifier(directives, "redirect")
    if redirect is None:
        return _Outcome(NEUTRAL, domain, exp)

    term = str(redirect)
    context.count_dns_lookup(term)
    target = _get_target(redirect.value, context, term)
    context.descend(term)
    try:
        return _evaluate_domain(target, context, resolver)
    except SPFRecordNotFound as error:
        raise SPFError(f"{term}: {error}")
    finally:
        context.recursion_depth -= 1


def _evaluate_domain(
    domain: str,
    context: EvaluationContext,
    resolver: Resolver,
    record: Optional[str] = None,
) -> _Outcome:
    if record is None:
        record = _get_record(domain, context, resolver)
    directives = parse_record(record)
    previous_domain = context.domain
    context.domain = domain
    try:
        return evaluate_record(directives, context, resolver)
    finally:
        context.domain = previous_domain


def check_spf(
    ip_address: Union[str, IPAddress],
    sender: str,
    helo: str,
    *,
    domain: Optional[str] = None,
    resolver: Optional[Resolver] = None,
    limits: Optional[Limits] = None,
    receiver: str = "unknown",
    lifetime: Optional[float] = None,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    dns_resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
) -> SPFCheckResult:
    """
    Checks if a client IP address is authorized to send mail for a domain

    Args:
        ip_address (str): The IP address of the SMTP client
        sender (str): The envelope-from (MAIL FROM) address; may be empty
        helo (str): The HELO/EHLO domain
        domain (str): The domain to check, by default the domain of the
                      sender (or the HELO domain when the sender is empty)
        resolver (Resolver): The DNS lookups to use; a
                             :class:`checkspf.utils.DNSResolver` by default
        limits (Limits): Processing limits
        receiver (str): The host name of the receiving MTA, for explanations
        lifetime (float): Number of seconds the whole check may take
        nameservers (list): A list of nameservers to query
        dns_resolver (dns.resolver.Resolver): A resolver object to use for
                                              DNS requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query
                               after a timeout

    Returns:
        dict: A ``dict`` with the following keys:
            - ``result`` - ``pass``, ``fail``, ``softfail``, ``neutral``,
              ``none``, ``temperror`` or ``permerror``
            - ``explanation`` - The explanation for a ``fail``, or ``None``
            - ``domain`` - The checked domain
            - ``record`` - The SPF record of the checked domain, or ``None``
            - ``dns_lookups`` - The number of DNS lookups counted
            - ``void_dns_lookups`` - The number of void DNS lookups counted

        If the result is caused by an error, the dictionary will also have
        an ``error`` key with the error message.

    Raises:
        :exc:`ValueError` if ``ip_address`` is not an IP address
    """
    if resolver is None:
        resolver = DNSResolver(
            nameservers=nameservers,
            resolver=dns_resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
        )
    deadline = None
    if lifetime is not None:
        deadline = time.monotonic() + lifetime
    context = EvaluationContext(
        ip_address,
        sender,
        helo,
        domain=domain,
        receiver=receiver,
        limits=limits,
        deadline=deadline,
    )
    domain = context.domain
    spf_results: SPFCheckResult = {
        "result": NONE,
        "explanation": None,
        "domain": domain,
        "record": None,
        "dns_lookups": 0,
        "void_dns_lookups": 0,
    }
    logging.debug(f"Checking SPF for {context.ip_address} on {domain}")
    try:
        if not is_valid_domain(domain):
            raise SPFRecordNotFound(f"{domain!r} is not a valid domain name", domain)
        if context.limits.count_initial_lookup:
            context.count_dns_lookup(domain)
        record = _get_record(domain, context, resolver)
        spf_results["record"] = record
        outcome = _evaluate_domain(domain, context, resolver, record=record)
        spf_results["result"] = outcome.result
        if outcome.result == FAIL and outcome.exp is not None:
            spf_results["explanation"] = render_explanation(
                outcome.exp.value, outcome.domain, context, resolver
            )
    except SPFError as error:
        logging.debug(f"SPF check for {domain} ended with {error.result}: {error}")
        spf_results["result"] = error.result
        spf_results["error"] = str(error)

    spf_results["dns_lookups"] = context.dns_lookups
    spf_results["void_dns_lookups"] = context.void_dns_lookups
    return spf_results


def check_host(
    ip_address: Union[str, IPAddress],
    domain: str,
    sender: str,
    helo: str = "",
    **kwargs,
) -> str:
    """
    The ``check_host()`` function of RFC 7208 § 4

    Args:
        ip_address (str): The IP address of the SMTP client
        domain (str): The domain to check
        sender (str): The envelope-from (MAIL FROM) address
        helo (str): The HELO/EHLO domain
        **kwargs: Passed to :func:`check_spf`

    Returns:
        str: The SPF result
    """
    return check_spf(ip_address, sender, helo, domain=domain, **kwargs)["result"]
