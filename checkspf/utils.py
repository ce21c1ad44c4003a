# -*- coding: utf-8 -*-
"""DNS utility functions"""

from __future__ import annotations

import logging
import re
import time
import unicodedata
from typing import Optional, Protocol
from collections.abc import Sequence

import dns.exception
import dns.resolver
import dns.reversename
from dns.nameserver import Nameserver
from expiringdict import ExpiringDict

from checkspf._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    DNS_CACHE_MAX_AGE_SECONDS,
    DNS_CACHE_MAX_LEN,
    MAX_DOMAIN_LENGTH,
    MAX_LABEL_LENGTH,
)

"""Copyright 2019-2023 Sean Whalen

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

   https://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License."""

DNS_CACHE = ExpiringDict(
    max_len=DNS_CACHE_MAX_LEN, max_age_seconds=DNS_CACHE_MAX_AGE_SECONDS
)

ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")  # includes ZWSP, ZWNJ, ZWJ, BOM


class DNSException(Exception):
    """Raised when a general DNS error occurs"""

    def __init__(self, error):
        if isinstance(error, dns.exception.Timeout) and "timeout" in error.kwargs:
            error.kwargs["timeout"] = round(error.kwargs["timeout"], 1)
        Exception.__init__(self, str(error))


class DNSExceptionNXDOMAIN(DNSException):
    """Raised when a NXDOMAIN DNS error (RCODE:3) occurs"""


class DNSTempFailure(DNSException):
    """Raised when a DNS query times out, fails with SERVFAIL, or runs past
    the deadline of the check"""


class Resolver(Protocol):
    """The DNS lookups the SPF engine depends on

    Each method returns a list, which is empty when the name exists but
    has no records of the requested type, or raises
    :exc:`DNSExceptionNXDOMAIN`, :exc:`DNSTempFailure` or
    :exc:`DNSException`. ``deadline`` is an absolute
    :func:`time.monotonic` value, or ``None``.
    """

    def lookup_txt(
        self, domain: str, *, deadline: Optional[float] = None
    ) -> list[str]: ...

    def lookup_a(
        self, domain: str, *, deadline: Optional[float] = None
    ) -> list[str]: ...

    def lookup_aaaa(
        self, domain: str, *, deadline: Optional[float] = None
    ) -> list[str]: ...

    def lookup_mx(
        self, domain: str, *, deadline: Optional[float] = None
    ) -> list[tuple[int, str]]: ...

    def lookup_ptr(
        self, ip_address: str, *, deadline: Optional[float] = None
    ) -> list[str]: ...


def normalize_domain(domain: str) -> str:
    """
    Normalize an input domain by removing zero-width characters and lowering it

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: A normalized domain
    """
    # 1. Normalize Unicode (NFC form for consistency)
    domain = unicodedata.normalize("NFC", domain)
    # 2. Remove zero-width and similar hidden chars
    domain = ZERO_WIDTH_RE.sub("", domain)
    # 3. Lowercase for case-insensitivity (domains are case-insensitive)
    return domain.lower()


def is_valid_domain(domain: str, *, multi_label: bool = True) -> bool:
    """
    Checks that a domain name is usable as an SPF query target

    Args:
        domain (str): A domain name, optionally with a trailing dot
        multi_label (bool): Require at least two labels

    Returns:
        bool: ``False`` for empty labels, overlong labels or names
    """
    domain = domain[:-1] if domain.endswith(".") else domain
    if not domain or len(domain) > MAX_DOMAIN_LENGTH:
        return False
    labels = domain.split(".")
    if multi_label and len(labels) < 2:
        return False
    for label in labels:
        if not label or len(label) > MAX_LABEL_LENGTH:
            return False
    return True


def _get_lifetime(timeout: float, deadline: Optional[float]) -> float:
    if deadline is None:
        return timeout
    remaining = deadline - time.monotonic()
    if remaining <= 0:
        raise DNSTempFailure("The deadline for the SPF check has passed.")
    return min(timeout, remaining)


def query_dns(
    domain: str,
    record_type: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    deadline: Optional[float] = None,
    _attempt: int = 0,
    cache: Optional[ExpiringDict] = None,
) -> list[str]:
    """
    Queries DNS

    Args:
        domain (str): The domain or subdomain to query about
        record_type (str): The record type to query for
        nameservers (list): A list of one or more nameservers to use
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): Sets the DNS timeout in seconds
        timeout_retries (int): The number of times to reattempt a query after a timeout
        deadline (float): A :func:`time.monotonic` value that no query may outlive
        cache (ExpiringDict): Cache storage

    Returns:
        list: A list of answers

    Raises:
        :exc:`dns.exception.DNSException`
        :exc:`checkspf.utils.DNSTempFailure`
    """
    domain = normalize_domain(domain)
    record_type = record_type.upper()
    cache_key = f"{domain}_{record_type}"
    if cache is None:
        cache = DNS_CACHE
    if isinstance(cache, ExpiringDict):
        records = cache.get(cache_key)
        if isinstance(records, list):
            return records
    if not resolver:
        resolver = dns.resolver.Resolver()
        timeout = float(timeout)
        if nameservers is not None:
            resolver.nameservers = nameservers
        resolver.timeout = timeout
        resolver.lifetime = timeout
    lifetime = _get_lifetime(timeout, deadline)
    try:
        answers = resolver.resolve(domain, record_type, lifetime=lifetime)
    except dns.resolver.LifetimeTimeout as e:
        _attempt += 1
        if _attempt > timeout_retries:
            raise e
        return query_dns(
            domain,
            record_type,
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            deadline=deadline,
            _attempt=_attempt,
            cache=cache,
        )
    if record_type == "TXT":
        # Join each sequence of byte chunks into a single bytes object
        resource_records = [b"".join(r.strings) for r in answers if r.strings]
        records = [r.decode("utf-8", errors="replace") for r in resource_records]
    else:
        records = list(
            map(
                lambda r: r.to_text().rstrip("."),
                answers,
            )
        )
    if type(cache) is ExpiringDict:
        cache[cache_key] = records

    return records


def _query(domain: str, record_type: str, **kwargs) -> list[str]:
    """Runs :func:`query_dns` and maps dnspython errors onto this module's
    exception taxonomy"""
    try:
        return query_dns(domain, record_type, **kwargs)
    except dns.resolver.NXDOMAIN:
        raise DNSExceptionNXDOMAIN("The domain does not exist.")
    except dns.resolver.NoAnswer:
        return []
    except DNSTempFailure:
        raise
    except (dns.exception.Timeout, dns.resolver.NoNameservers) as error:
        raise DNSTempFailure(error)
    except Exception as error:
        raise DNSException(error)


def get_txt_records(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    deadline: Optional[float] = None,
    cache: Optional[ExpiringDict] = None,
) -> list[str]:
    """
    Queries DNS for TXT records

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        deadline (float): A :func:`time.monotonic` value that no query may outlive
        cache (ExpiringDict): Cache storage

    Returns:
        list: A list of TXT records, with the strings of each record joined

    Raises:
        :exc:`checkspf.utils.DNSException`
    """
    logging.debug(f"Getting TXT records for {domain}")
    return _query(
        domain,
        "TXT",
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
        deadline=deadline,
        cache=cache,
    )


def get_a_records(
    domain: str,
    *,
    ipv6: bool = False,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    deadline: Optional[float] = None,
    cache: Optional[ExpiringDict] = None,
) -> list[str]:
    """
    Queries DNS for A or AAAA records

    Args:
        domain (str): A domain name
        ipv6 (bool): Query for AAAA records instead of A records
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        deadline (float): A :func:`time.monotonic` value that no query may outlive
        cache (ExpiringDict): Cache storage

    Returns:
        list: A sorted list of IP addresses

    Raises:
        :exc:`checkspf.utils.DNSException`
    """
    qt = "AAAA" if ipv6 else "A"
    logging.debug(f"Getting {qt} records for {domain}")
    addresses = _query(
        domain,
        qt,
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
        deadline=deadline,
        cache=cache,
    )
    return sorted(addresses)


def get_mx_records(
    domain: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    deadline: Optional[float] = None,
    cache: Optional[ExpiringDict] = None,
) -> list[tuple[int, str]]:
    """
    Queries DNS for a list of Mail Exchange hosts

    Args:
        domain (str): A domain name
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        deadline (float): A :func:`time.monotonic` value that no query may outlive
        cache (ExpiringDict): Cache storage

    Returns:
        list: A list of ``(preference, hostname)`` tuples, sorted by preference

    Raises:
        :exc:`checkspf.utils.DNSException`
    """
    hosts = []
    logging.debug(f"Checking for MX records on {domain}")
    answers = _query(
        domain,
        "MX",
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
        deadline=deadline,
        cache=cache,
    )
    if answers == ["0 "]:
        logging.debug('"No Service" MX record found')
        return []
    for record in answers:
        record = record.split(" ")
        preference = int(record[0])
        hostname = record[1].rstrip(".").strip().lower()
        hosts.append((preference, hostname))
    return sorted(hosts)


def get_reverse_dns(
    ip_address: str,
    *,
    nameservers: Optional[Sequence[str | Nameserver]] = None,
    resolver: Optional[dns.resolver.Resolver] = None,
    timeout: float = DEFAULT_DNS_TIMEOUT,
    timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
    deadline: Optional[float] = None,
    cache: Optional[ExpiringDict] = None,
) -> list[str]:
    """
    Queries for an IP addresses reverse DNS hostname(s)

    Args:
        ip_address (str): An IPv4 or IPv6 address
        nameservers (list): A list of nameservers to query
        resolver (dns.resolver.Resolver): A resolver object to use for DNS
                                          requests
        timeout (float): number of seconds to wait for an answer from DNS
        timeout_retries (int): The number of times to reattempt a query after a timeout
        deadline (float): A :func:`time.monotonic` value that no query may outlive
        cache (ExpiringDict): Cache storage

    Returns:
        list: A list of reverse DNS hostnames

    Raises:
        :exc:`checkspf.utils.DNSException`
    """
    name = str(dns.reversename.from_address(ip_address))
    logging.debug(f"Getting PTR records for {ip_address}")
    hostnames = _query(
        name,
        "PTR",
        nameservers=nameservers,
        resolver=resolver,
        timeout=timeout,
        timeout_retries=timeout_retries,
        deadline=deadline,
        cache=cache,
    )
    return list(map(lambda h: h.lower(), hostnames))


class DNSResolver(object):
    """A :class:`Resolver` backed by dnspython and an expiring cache"""

    def __init__(
        self,
        *,
        nameservers: Optional[Sequence[str | Nameserver]] = None,
        resolver: Optional[dns.resolver.Resolver] = None,
        timeout: float = DEFAULT_DNS_TIMEOUT,
        timeout_retries: int = DEFAULT_DNS_TIMEOUT_RETRIES,
        cache: Optional[ExpiringDict] = None,
    ):
        """
        Args:
            nameservers (list): A list of nameservers to query
            resolver (dns.resolver.Resolver): A resolver object to use for
                                              DNS requests
            timeout (float): number of seconds to wait for an answer from DNS
            timeout_retries (int): The number of times to reattempt a query
                                   after a timeout
            cache (ExpiringDict): Cache storage, the module cache by default
        """
        self._options = dict(
            nameservers=nameservers,
            resolver=resolver,
            timeout=timeout,
            timeout_retries=timeout_retries,
            cache=cache,
        )

    def lookup_txt(self, domain, *, deadline=None):
        return get_txt_records(domain, deadline=deadline, **self._options)

    def lookup_a(self, domain, *, deadline=None):
        return get_a_records(domain, deadline=deadline, **self._options)

    def lookup_aaaa(self, domain, *, deadline=None):
        return get_a_records(domain, ipv6=True, deadline=deadline, **self._options)

    def lookup_mx(self, domain, *, deadline=None):
        return get_mx_records(domain, deadline=deadline, **self._options)

    def lookup_ptr(self, ip_address, *, deadline=None):
        return get_reverse_dns(ip_address, deadline=deadline, **self._options)
