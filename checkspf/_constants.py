# -*- coding: utf-8 -*-
"""Constant values"""

from __future__ import annotations
import os

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

__version__ = "1.0.0"

SYNTAX_ERROR_MARKER = "➞"
DEFAULT_DNS_TIMEOUT = 2.0
DEFAULT_DNS_TIMEOUT_RETRIES = 2
CACHE_MAX_LEN = 200000
CACHE_MAX_AGE_SECONDS = 1800

# RFC 7208 § 4.6.4
MAX_DNS_LOOKUPS = 10
MAX_VOID_DNS_LOOKUPS = 2
MAX_MX_EXAMINED = 10
MAX_PTR_NAMES = 10
MAX_RECURSION_DEPTH = 10

# RFC 7208 § 7.3
MAX_DOMAIN_LENGTH = 253
MAX_LABEL_LENGTH = 63

env = os.environ

if "CACHE_MAX_LEN" in env:
    CACHE_MAX_LEN = int(env["CACHE_MAX_LEN"])
if "CACHE_MAX_AGE_SECONDS" in env:
    CACHE_MAX_AGE_SECONDS = int(env["CACHE_MAX_AGE_SECONDS"])

DNS_CACHE_MAX_LEN = CACHE_MAX_LEN
if "DNS_CACHE_MAX_LEN" in env:
    DNS_CACHE_MAX_LEN = int(env["DNS_CACHE_MAX_LEN"])
DNS_CACHE_MAX_AGE_SECONDS = CACHE_MAX_AGE_SECONDS
if "DNS_CACHE_MAX_AGE_SECONDS" in env:
    DNS_CACHE_MAX_AGE_SECONDS = int(env["DNS_CACHE_MAX_AGE_SECONDS"])

if "SPF_MAX_DNS_LOOKUPS" in env:
    MAX_DNS_LOOKUPS = int(env["SPF_MAX_DNS_LOOKUPS"])
if "SPF_MAX_VOID_DNS_LOOKUPS" in env:
    MAX_VOID_DNS_LOOKUPS = int(env["SPF_MAX_VOID_DNS_LOOKUPS"])
if "SPF_MAX_MX_EXAMINED" in env:
    MAX_MX_EXAMINED = int(env["SPF_MAX_MX_EXAMINED"])
if "SPF_MAX_RECURSION_DEPTH" in env:
    MAX_RECURSION_DEPTH = int(env["SPF_MAX_RECURSION_DEPTH"])
