# -*- coding: utf-8 -*-
"""Explanation strings for SPF fail results (RFC 7208 § 6.2)"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from checkspf.exceptions import SPFError
from checkspf.macro import MacroString, expand_domain_spec, expand_macro
from checkspf.utils import DNSException, is_valid_domain

if TYPE_CHECKING:
    from checkspf.spf import EvaluationContext
    from checkspf.utils import Resolver

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


def render_explanation(
    exp: MacroString,
    domain: str,
    context: EvaluationContext,
    resolver: Resolver,
) -> Optional[str]:
    """
    Fetches and expands the explanation string an exp modifier points to

    The TXT lookup is not counted against any lookup limit. Errors are
    logged and never change the SPF result.

    Args:
        exp (tuple): The domain-spec of the exp modifier
        domain (str): The domain of the record that holds the exp modifier
        context (EvaluationContext): The state of the check
        resolver (Resolver): The DNS lookups to use

    Returns:
        str: The explanation, or ``None``
    """
    previous_domain = context.domain
    context.domain = domain
    try:
        target = expand_domain_spec(exp, context)
        if not is_valid_domain(target, multi_label=False):
            logging.debug(f"Invalid exp domain {target!r} on {domain}")
            return None
        txt_records = resolver.lookup_txt(target, deadline=context.deadline)
        if len(txt_records) != 1:
            logging.debug(
                f"Expected one TXT record at exp value {target}, "
                f"found {len(txt_records)}"
            )
            return None
        explanation = expand_macro(txt_records[0], context, explanation=True)
        if not explanation.isascii():
            logging.debug(f"Ignoring non-ASCII explanation at {target}")
            return None
        return explanation
    except (SPFError, DNSException) as error:
        logging.debug(f"Failed to get the explanation for {domain}: {error}")
        return None
    finally:
        context.domain = previous_domain
