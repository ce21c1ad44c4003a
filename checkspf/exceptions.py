# -*- coding: utf-8 -*-
"""Exceptions raised while evaluating SPF records"""

from __future__ import annotations

from typing import Optional, Union

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


class SPFError(Exception):
    """Raised when a fatal SPF error occurs"""

    result = "permerror"

    def __init__(self, msg: str, data: Optional[dict] = None):
        """
        Args:
            msg (str): The error message
            data (dict): A dictionary of data to include in the output
        """
        self.data = data
        Exception.__init__(self, msg)


class SPFRecordNotFound(SPFError):
    """Raised when an SPF record could not be found"""

    result = "none"

    def __init__(self, error: Union[Exception, str], domain: str):
        self.error = error
        self.domain = domain
        SPFError.__init__(self, str(error))

    def __str__(self):
        return str(self.error)


class MultipleSPFRTXTRecords(SPFError):
    """Raised when multiple TXT spf1 records are found"""


class SPFSyntaxError(SPFError):
    """Raised when an SPF syntax error is found"""


class SPFMacroError(SPFSyntaxError):
    """Raised when a macro-string is malformed or cannot be expanded"""


class SPFInvalidDomain(SPFError):
    """Raised when a mechanism or modifier targets an unusable domain name"""


class SPFTooManyDNSLookups(SPFError):
    """Raised when an SPF record requires too many DNS lookups (10 max)"""

    def __init__(self, *args, **kwargs):
        data = {"dns_lookups": kwargs["dns_lookups"]}
        SPFError.__init__(self, args[0], data=data)


class SPFTooManyVoidDNSLookups(SPFError):
    """Raised when an SPF record requires too many void DNS lookups (2 max)"""

    def __init__(self, *args, **kwargs):
        data = {"void_dns_lookups": kwargs["void_dns_lookups"]}
        SPFError.__init__(self, args[0], data=data)


class SPFTooManyMXRecords(SPFError):
    """Raised when an mx mechanism points to more than 10 MX records"""


class SPFRecursionLimitExceeded(SPFError):
    """Raised when include and redirect nest deeper than allowed"""


class SPFTempError(SPFError):
    """Raised when a transient DNS failure interrupts the evaluation"""

    result = "temperror"
