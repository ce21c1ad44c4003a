# -*- coding: utf-8 -*-

"""Evaluates Sender Policy Framework (SPF) records"""

from __future__ import annotations

import checkspf._constants
from checkspf.cidr import address_in_network
from checkspf.exceptions import (
    MultipleSPFRTXTRecords,
    SPFError,
    SPFInvalidDomain,
    SPFMacroError,
    SPFRecordNotFound,
    SPFRecursionLimitExceeded,
    SPFSyntaxError,
    SPFTempError,
    SPFTooManyDNSLookups,
    SPFTooManyMXRecords,
    SPFTooManyVoidDNSLookups,
)
from checkspf.macro import expand_macro, parse_macro_string
from checkspf.record import (
    Mechanism,
    Modifier,
    parse_record,
    select_spf_record,
    serialize_record,
)
from checkspf.spf import (
    FAIL,
    NEUTRAL,
    NONE,
    PASS,
    PERMERROR,
    SOFTFAIL,
    TEMPERROR,
    EvaluationContext,
    Limits,
    SPFCheckResult,
    check_host,
    check_spf,
)
from checkspf.utils import (
    DNSException,
    DNSExceptionNXDOMAIN,
    DNSResolver,
    DNSTempFailure,
    Resolver,
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


__version__ = checkspf._constants.__version__

__all__ = [
    "__version__",
    "address_in_network",
    "check_host",
    "check_spf",
    "expand_macro",
    "parse_macro_string",
    "parse_record",
    "select_spf_record",
    "serialize_record",
    "DNSException",
    "DNSExceptionNXDOMAIN",
    "DNSResolver",
    "DNSTempFailure",
    "EvaluationContext",
    "Limits",
    "Mechanism",
    "Modifier",
    "MultipleSPFRTXTRecords",
    "Resolver",
    "SPFCheckResult",
    "SPFError",
    "SPFInvalidDomain",
    "SPFMacroError",
    "SPFRecordNotFound",
    "SPFRecursionLimitExceeded",
    "SPFSyntaxError",
    "SPFTempError",
    "SPFTooManyDNSLookups",
    "SPFTooManyMXRecords",
    "SPFTooManyVoidDNSLookups",
    "PASS",
    "FAIL",
    "SOFTFAIL",
    "NEUTRAL",
    "NONE",
    "TEMPERROR",
    "PERMERROR",
]
