# -*- coding: utf-8 -*-
"""Address and network matching for the ip4, ip6, a and mx mechanisms"""

from __future__ import annotations

import ipaddress
from typing import Union

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

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def parse_ip_address(ip_address: Union[str, IPAddress]) -> IPAddress:
    """
    Parses a sender IP address, unwrapping IPv4-mapped IPv6 addresses

    Args:
        ip_address: An IPv4 or IPv6 address

    Returns:
        An ``ipaddress`` address object

    Raises:
        :exc:`ValueError`
    """
    address = ipaddress.ip_address(ip_address)
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
        return address.ipv4_mapped
    return address


def address_in_network(
    address: Union[str, IPAddress],
    network: Union[str, IPAddress],
    prefix_length: int,
) -> bool:
    """
    Checks if an address falls within ``network/prefix_length``

    Addresses of different families never match. Host bits set in
    ``network`` are ignored.

    Args:
        address: The candidate address
        network: The network address
        prefix_length (int): The number of leading bits to compare

    Returns:
        bool: ``True`` if the address is in the network

    Raises:
        :exc:`ValueError` if the prefix length is out of range for the
        network's family
    """
    address = parse_ip_address(address)
    network = ipaddress.ip_address(network)
    if not 0 <= prefix_length <= network.max_prefixlen:
        raise ValueError(
            f"/{prefix_length} is not a valid prefix length for {network}"
        )
    if address.version != network.version:
        return False
    host_bits = network.max_prefixlen - prefix_length
    return int(address) >> host_bits == int(network) >> host_bits
