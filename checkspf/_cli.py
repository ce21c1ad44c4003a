#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Checks if an IP address is authorized to send mail for a domain using SPF"""

from __future__ import annotations

import json
import logging
from argparse import ArgumentParser
from typing import Optional

from checkspf import __version__, check_spf
from checkspf._constants import (
    DEFAULT_DNS_TIMEOUT,
    DEFAULT_DNS_TIMEOUT_RETRIES,
    MAX_DNS_LOOKUPS,
    MAX_VOID_DNS_LOOKUPS,
)
from checkspf.spf import Limits

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


def _build_arg_parser() -> ArgumentParser:
    arg_parser = ArgumentParser(description=__doc__)
    arg_parser.add_argument("ip_address", help="the IP address of the SMTP client")
    arg_parser.add_argument(
        "sender", help="the envelope-from (MAIL FROM) address, may be empty"
    )
    arg_parser.add_argument(
        "helo", nargs="?", default="", help="the HELO/EHLO domain of the client"
    )
    arg_parser.add_argument(
        "-d",
        "--domain",
        help="the domain to check (default: the domain of the sender)",
    )
    arg_parser.add_argument(
        "-r",
        "--receiver",
        default="unknown",
        help="the host name of the receiving MTA, used in explanations",
    )
    arg_parser.add_argument(
        "-f",
        "--format",
        default="json",
        help="specify JSON or text screen output format",
    )
    arg_parser.add_argument(
        "-n", "--nameserver", nargs="+", help="nameservers to query"
    )
    arg_parser.add_argument(
        "-t",
        "--timeout",
        help="number of seconds to wait for an answer from DNS "
        f"(default {DEFAULT_DNS_TIMEOUT})",
        type=float,
        default=DEFAULT_DNS_TIMEOUT,
    )
    arg_parser.add_argument(
        "--timeout-retries",
        help="number of times to reattempt a query after a timeout "
        f"(default {DEFAULT_DNS_TIMEOUT_RETRIES})",
        type=int,
        default=DEFAULT_DNS_TIMEOUT_RETRIES,
    )
    arg_parser.add_argument(
        "-l",
        "--lifetime",
        help="number of seconds the whole check may take (default unlimited)",
        type=float,
    )
    arg_parser.add_argument(
        "--max-dns-lookups",
        help=f"maximum number of DNS lookups (default {MAX_DNS_LOOKUPS})",
        type=int,
        default=MAX_DNS_LOOKUPS,
    )
    arg_parser.add_argument(
        "--max-void-dns-lookups",
        help=f"maximum number of void DNS lookups (default {MAX_VOID_DNS_LOOKUPS})",
        type=int,
        default=MAX_VOID_DNS_LOOKUPS,
    )
    arg_parser.add_argument(
        "--count-mx-address-lookups",
        action="store_true",
        help="count the address lookups of MX hosts against the DNS lookup limit",
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)
    arg_parser.add_argument(
        "--debug", action="store_true", help="enable debugging output"
    )
    return arg_parser


def _main(argv: Optional[list[str]] = None):
    """Called when the module in executed"""
    arg_parser = _build_arg_parser()
    args = arg_parser.parse_args(argv)

    logging_format = "%(asctime)s - %(levelname)s: %(message)s"
    logging.basicConfig(level=logging.WARNING, format=logging_format)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug output enabled")

    limits = Limits(
        max_dns_lookups=args.max_dns_lookups,
        max_void_dns_lookups=args.max_void_dns_lookups,
        count_mx_address_lookups=args.count_mx_address_lookups,
    )
    try:
        results = check_spf(
            args.ip_address,
            args.sender,
            args.helo,
            domain=args.domain,
            limits=limits,
            receiver=args.receiver,
            lifetime=args.lifetime,
            nameservers=args.nameserver,
            timeout=args.timeout,
            timeout_retries=args.timeout_retries,
        )
    except ValueError as error:
        arg_parser.error(str(error))

    if args.format.lower() == "text":
        output = results["result"]
        if results["explanation"]:
            output = f"{output}: {results['explanation']}"
        elif "error" in results:
            output = f"{output}: {results['error']}"
    else:
        output = json.dumps(results, indent=2, ensure_ascii=False)
    print(output)


if __name__ == "__main__":
    _main()
