#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import io
import json
import time
import unittest
from contextlib import redirect_stdout
from types import SimpleNamespace
from unittest import mock

import dns.resolver
from expiringdict import ExpiringDict

import checkspf
import checkspf._cli
import checkspf.cidr
import checkspf.macro
import checkspf.record
import checkspf.spf
import checkspf.utils
from checkspf.macro import Literal, MacroToken
from checkspf.utils import DNSExceptionNXDOMAIN, DNSTempFailure


class FakeResolver(object):
    """An in-memory resolver keyed by record type and query name

    Names that are not listed raise NXDOMAIN. An exception instance as a
    value is raised instead of answering. A deadline in the past is a
    temporary failure.
    """

    def __init__(self, txt=None, a=None, aaaa=None, mx=None, ptr=None):
        self.records = {
            "TXT": txt or {},
            "A": a or {},
            "AAAA": aaaa or {},
            "MX": mx or {},
            "PTR": ptr or {},
        }
        self.queries = []

    def _lookup(self, record_type, name, deadline):
        self.queries.append((record_type, name))
        if deadline is not None and deadline <= time.monotonic():
            raise DNSTempFailure("The deadline for the SPF check has passed.")
        value = self.records[record_type].get(name.lower())
        if value is None:
            raise DNSExceptionNXDOMAIN("The domain does not exist.")
        if isinstance(value, Exception):
            raise value
        return list(value)

    def lookup_txt(self, domain, *, deadline=None):
        return self._lookup("TXT", domain, deadline)

    def lookup_a(self, domain, *, deadline=None):
        return self._lookup("A", domain, deadline)

    def lookup_aaaa(self, domain, *, deadline=None):
        return self._lookup("AAAA", domain, deadline)

    def lookup_mx(self, domain, *, deadline=None):
        return self._lookup("MX", domain, deadline)

    def lookup_ptr(self, ip_address, *, deadline=None):
        return self._lookup("PTR", ip_address, deadline)


def check(
    resolver, ip_address, sender="user@example.com", helo="mail.example.com", **kwargs
):
    return checkspf.check_spf(ip_address, sender, helo, resolver=resolver, **kwargs)


def include_chain(length, last_record="v=spf1 +all"):
    """example.com includes l1.example.com, which includes l2.example.com..."""
    txt = {"example.com": ["v=spf1 include:l1.example.com -all"]}
    for i in range(1, length):
        txt[f"l{i}.example.com"] = [f"v=spf1 include:l{i + 1}.example.com -all"]
    txt[f"l{length}.example.com"] = [last_record]
    return FakeResolver(txt=txt)


class TestAddressMatching(unittest.TestCase):
    def testNetworkBoundary(self):
        """Addresses just outside a /28 do not match"""
        match = checkspf.cidr.address_in_network
        self.assertFalse(match("203.0.113.17", "203.0.113.0", 28))
        self.assertTrue(match("203.0.113.15", "203.0.113.0", 28))

    def testNonByteAlignedPrefix(self):
        match = checkspf.cidr.address_in_network
        self.assertTrue(match("192.0.2.130", "192.0.2.128", 25))
        self.assertFalse(match("192.0.2.127", "192.0.2.128", 25))
        self.assertTrue(match("2001:db8::1", "2001:db8::", 33))
        self.assertFalse(match("2001:db8:8000::1", "2001:db8::", 33))

    def testZeroPrefixMatchesWholeFamily(self):
        match = checkspf.cidr.address_in_network
        self.assertTrue(match("8.8.8.8", "192.0.2.0", 0))
        self.assertTrue(match("255.255.255.255", "0.0.0.0", 0))
        self.assertTrue(match("::1", "2001:db8::", 0))
        self.assertFalse(match("::1", "192.0.2.0", 0))

    def testFamilyMismatchIsNotAnError(self):
        match = checkspf.cidr.address_in_network
        self.assertFalse(match("2001:db8::1", "192.0.2.0", 24))
        self.assertFalse(match("192.0.2.1", "2001:db8::", 32))

    def testIPv4MappedIPv6Address(self):
        """IPv4-mapped IPv6 client addresses are evaluated as IPv4"""
        self.assertTrue(
            checkspf.cidr.address_in_network("::ffff:192.0.2.1", "192.0.2.0", 24)
        )

    def testInvalidPrefixLength(self):
        self.assertRaises(
            ValueError,
            checkspf.cidr.address_in_network,
            "192.0.2.1",
            "192.0.2.0",
            33,
        )


class TestMacros(unittest.TestCase):
    def setUp(self):
        self.context = checkspf.EvaluationContext(
            "192.0.2.3",
            "strong-bad@email.example.com",
            "mx.example.org",
            domain="email.example.com",
            receiver="mx.example.net",
            timestamp=1234567890,
        )

    def testLocalPartAndDomains(self):
        self.assertEqual(
            checkspf.expand_macro("%{l}.%{o}.%{d}", self.context),
            "strong-bad.email.example.com.email.example.com",
        )

    def testRFCExamples(self):
        """The examples of RFC 7208 § 7.4"""
        examples = {
            "%{s}": "strong-bad@email.example.com",
            "%{o}": "email.example.com",
            "%{d}": "email.example.com",
            "%{d4}": "email.example.com",
            "%{d3}": "email.example.com",
            "%{d2}": "example.com",
            "%{d1}": "com",
            "%{dr}": "com.example.email",
            "%{d2r}": "example.email",
            "%{l}": "strong-bad",
            "%{l-}": "strong.bad",
            "%{lr}": "strong-bad",
            "%{lr-}": "bad.strong",
            "%{l1r-}": "strong",
            "%{ir}.%{v}._spf.%{d2}": "3.2.0.192.in-addr._spf.example.com",
            "%{lr-}.lp._spf.%{d2}": "bad.strong.lp._spf.example.com",
            "%{lr-}.lp.%{ir}.%{v}._spf.%{d2}": (
                "bad.strong.lp.3.2.0.192.in-addr._spf.example.com"
            ),
            "%{ir}.%{v}.%{l1r-}.lp._spf.%{d2}": (
                "3.2.0.192.in-addr.strong.lp._spf.example.com"
            ),
            "%{d2}.trusted-domains.example.net": (
                "example.com.trusted-domains.example.net"
            ),
        }
        for macro_string, expected in examples.items():
            with self.subTest(macro_string=macro_string):
                self.assertEqual(
                    checkspf.expand_macro(macro_string, self.context), expected
                )

    def testIPv6Client(self):
        context = checkspf.EvaluationContext(
            "2001:db8::cb01", "strong-bad@email.example.com", "mx.example.org"
        )
        self.assertEqual(
            checkspf.expand_macro("%{ir}.%{v}._spf.%{d2}", context),
            "1.0.b.c.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.0.8.b.d.0.1.0.0.2"
            ".ip6._spf.example.com",
        )

    def testEscapes(self):
        self.assertEqual(checkspf.expand_macro("a%%b%_c%-d", self.context), "a%b c%20d")

    def testUppercaseMacrosAreURLEncoded(self):
        self.assertEqual(
            checkspf.expand_macro("%{S}", self.context),
            "strong-bad%40email.example.com",
        )

    def testConstantMacros(self):
        self.assertEqual(checkspf.expand_macro("%{p}", self.context), "unknown")
        self.assertEqual(checkspf.expand_macro("%{v}", self.context), "in-addr")
        self.assertEqual(checkspf.expand_macro("%{h}", self.context), "mx.example.org")

    def testExplanationOnlyMacros(self):
        expand = checkspf.expand_macro
        self.assertEqual(expand("%{c}", self.context, explanation=True), "192.0.2.3")
        self.assertEqual(
            expand("%{r}", self.context, explanation=True), "mx.example.net"
        )
        self.assertEqual(expand("%{t}", self.context, explanation=True), "1234567890")
        for macro_string in ("%{c}", "%{r}", "%{t}"):
            with self.subTest(macro_string=macro_string):
                self.assertRaises(
                    checkspf.SPFMacroError, expand, macro_string, self.context
                )

    def testMalformedMacros(self):
        for macro_string in ("%", "a%", "%x", "%{d", "%{}", "%{q}", "%{d0}", "%{d!}"):
            with self.subTest(macro_string=macro_string):
                self.assertRaises(
                    checkspf.SPFMacroError,
                    checkspf.expand_macro,
                    macro_string,
                    self.context,
                )

    def testEmptySender(self):
        """An empty envelope-from becomes postmaster@<HELO domain>"""
        context = checkspf.EvaluationContext("192.0.2.3", "", "mx.example.org")
        self.assertEqual(context.sender, "postmaster@mx.example.org")
        self.assertEqual(context.domain, "mx.example.org")
        self.assertEqual(checkspf.expand_macro("%{l}", context), "postmaster")

    def testParsedMacroString(self):
        parsed = checkspf.parse_macro_string("%{ir}.%{v}._spf.%{D2}")
        self.assertEqual(
            parsed,
            (
                MacroToken("i", reverse=True),
                Literal("."),
                MacroToken("v"),
                Literal("._spf."),
                MacroToken("d", digits=2, url_encode=True),
            ),
        )
        self.assertEqual(
            checkspf.macro.macro_string_to_text(parsed), "%{ir}.%{v}._spf.%{D2}"
        )

    def testDomainTruncation(self):
        label = "a" * 63
        long_domain = ".".join([label] * 5)
        self.assertEqual(
            checkspf.macro.truncate_domain(long_domain), ".".join([label] * 3)
        )
        self.assertEqual(
            checkspf.macro.truncate_domain("x" * 70 + ".example.com."), "example.com"
        )
        self.assertEqual(checkspf.macro.truncate_domain("example.com"), "example.com")


class TestRecordParsing(unittest.TestCase):
    def testSelectSPFRecord(self):
        select = checkspf.select_spf_record
        self.assertEqual(
            select(["google-site-verification=abc", "v=spf1 -all"], "example.com"),
            "v=spf1 -all",
        )
        self.assertEqual(select(["V=SPF1 -all"], "example.com"), "V=SPF1 -all")
        self.assertEqual(select(["v=spf1"], "example.com"), "v=spf1")

    def testNoSPFRecord(self):
        """Records with a version of v=spf10 or none at all are not SPF records"""
        self.assertRaises(
            checkspf.SPFRecordNotFound,
            checkspf.select_spf_record,
            ["v=spf10 -all", "v=spf1-all", "hello"],
            "example.com",
        )

    def testMultipleSPFRecords(self):
        self.assertRaises(
            checkspf.MultipleSPFRTXTRecords,
            checkspf.select_spf_record,
            ["v=spf1 -all", "v=spf1 +all"],
            "example.com",
        )

    def testParseRecord(self):
        directives = checkspf.parse_record(
            "v=spf1 ip4:192.0.2.0/24 mx ?include:_spf.example.com ~all"
        )
        self.assertEqual(
            [(d.qualifier, d.name) for d in directives],
            [("+", "ip4"), ("+", "mx"), ("?", "include"), ("~", "all")],
        )
        self.assertEqual(directives[0].cidr4, 24)
        self.assertEqual(str(directives[0].network), "192.0.2.0")
        self.assertEqual(directives[2].domain_spec, (Literal("_spf.example.com"),))
        self.assertEqual(directives[3].result, "softfail")
        # Unqualified mechanisms are stored with an explicit +
        self.assertEqual(directives[1].result, "pass")
        self.assertEqual(str(directives[1]), "mx")

    def testUppercaseSPFMechanism(self):
        """Treat uppercase SPF mechanisms as valid"""
        directives = checkspf.parse_record("v=spf1 IP4:147.75.8.208 -ALL")
        self.assertEqual([d.name for d in directives], ["ip4", "all"])

    def testDualCIDRLength(self):
        directives = checkspf.parse_record(
            "v=spf1 a:example.com/24//64 mx/26 a//64 ip6:2001:db8::/32"
        )
        self.assertEqual((directives[0].cidr4, directives[0].cidr6), (24, 64))
        self.assertEqual(directives[0].domain_spec, (Literal("example.com"),))
        self.assertEqual((directives[1].cidr4, directives[1].cidr6), (26, None))
        self.assertEqual((directives[2].cidr4, directives[2].cidr6), (None, 64))
        self.assertEqual(directives[3].cidr6, 32)

    def testModifiers(self):
        directives = checkspf.parse_record(
            "v=spf1 redirect=_spf.example.com exp=explain.%{d} foo=bar"
        )
        self.assertEqual(
            directives,
            [
                checkspf.Modifier("redirect", (Literal("_spf.example.com"),)),
                checkspf.Modifier("exp", (Literal("explain."), MacroToken("d"))),
                checkspf.Modifier("foo", (Literal("bar"),)),
            ],
        )

    def testExtraWhitespace(self):
        directives = checkspf.parse_record("v=spf1  ip4:192.0.2.1 \t -all ")
        self.assertEqual(len(directives), 2)

    def testSPFSyntaxErrors(self):
        """SPF record syntax errors raise SPFSyntaxError"""
        records = [
            "v=spf1 mx a:mail.cohaesio.net include: trustpilotservice.com ~all",
            "v=spf1 foo:bar -all",
            "v=spf1 -all:example.com",
            "v=spf1 redirect=a.example.com redirect=b.example.com",
            "v=spf1 exp=a.example.com exp=b.example.com -all",
            "v=spf1 -redirect=a.example.com",
            "v=spf1 redirect=",
            "v=spf1 include:",
            "v=spf1 exists",
            "v=spf1 include:example.com/24 -all",
            "v=spf1 ptr/24 -all",
            "v=spf1 a/33 -all",
            "v=spf1 a//129 -all",
            "v=spf1 a/024 -all",
            "v=spf1 a:foo -all",
            "v=spf1 a:%{q}.example.com -all",
            "v=spf1 a:exämple.com -all",
            "v=spf1 ip4 -all",
            "v=spf1 a:example.com! -all",
            "v=spf1 foo=%{x}",
            "v=spf10 -all",
        ]
        for record in records:
            with self.subTest(record=record):
                self.assertRaises(
                    checkspf.SPFSyntaxError, checkspf.parse_record, record
                )

    def testSPFInvalidIPv4(self):
        """Invalid ipv4 SPF mechanism values raise SPFSyntaxError"""
        records = [
            "v=spf1 ip4:78.46.96.236 +ip4:relay.mailchannels.net ~all",
            "v=spf1 ip4:1200:0000:AB00:1234:0000:2552:7777:1313 ~all",
            "v=spf1 ip4:78.46.96.236/99 ~all",
        ]
        for record in records:
            with self.subTest(record=record):
                self.assertRaises(
                    checkspf.SPFSyntaxError, checkspf.parse_record, record
                )

    def testSPFInvalidIPv6(self):
        """Invalid ipv6 SPF mechanism values raise SPFSyntaxError"""
        records = [
            "v=spf1 ip6:1200:0000:AB00:1234:O000:2552:7777:1313 ~all",
            "v=spf1 ip6:78.46.96.236 ~all",
            "v=spf1 ip6:2001:db8::/129 ~all",
        ]
        for record in records:
            with self.subTest(record=record):
                self.assertRaises(
                    checkspf.SPFSyntaxError, checkspf.parse_record, record
                )

    def testReserializedRecordParsesTheSame(self):
        records = [
            "v=spf1 -all +ip4:1.2.3.0/24",
            "v=spf1 ip4:192.0.2.0/24 ip6:2001:db8::/32 a mx/24//64 ~all",
            "v=spf1 +a:mail.example.com/28 -mx:example.net//48 ?ptr ptr:example.org",
            "v=spf1 exists:%{ir}.%{l1r+-}._spf.%{d} include:_spf.example.com -all",
            "v=spf1 redirect=%{D2}._spf.example.com exp=exp.%{d} foo=a%%b%_c",
            "V=SPF1 IP4:192.0.2.1 INCLUDE:Example.COM ~ALL",
        ]
        for record in records:
            with self.subTest(record=record):
                directives = checkspf.parse_record(record)
                reserialized = checkspf.serialize_record(directives)
                self.assertEqual(checkspf.parse_record(reserialized), directives)


class TestEvaluation(unittest.TestCase):
    def testFirstMatchWins(self):
        resolver = FakeResolver(txt={"example.com": ["v=spf1 -all +ip4:1.2.3.0/24"]})
        for ip_address in ("1.2.3.4", "198.51.100.1", "2001:db8::1"):
            with self.subTest(ip_address=ip_address):
                self.assertEqual(check(resolver, ip_address)["result"], "fail")

    def testIP4Mechanism(self):
        resolver = FakeResolver(txt={"example.com": ["v=spf1 ip4:192.0.2.0/24 -all"]})
        results = check(resolver, "192.0.2.5")
        self.assertEqual(results["result"], "pass")
        self.assertEqual(results["record"], "v=spf1 ip4:192.0.2.0/24 -all")
        self.assertEqual(results["dns_lookups"], 1)
        self.assertNotIn("error", results)
        self.assertEqual(check(resolver, "198.51.100.1")["result"], "fail")
        self.assertEqual(check(resolver, "2001:db8::1")["result"], "fail")

    def testIP6Mechanism(self):
        resolver = FakeResolver(txt={"example.com": ["v=spf1 ip6:2001:db8::/32 ~all"]})
        self.assertEqual(check(resolver, "2001:db8:1::5")["result"], "pass")
        self.assertEqual(check(resolver, "2001:db9::5")["result"], "softfail")
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "softfail")

    def testNoRecord(self):
        """No TXT record at all results in none"""
        resolver = FakeResolver(
            txt={"example.net": ["some other text"], "example.org": []}
        )
        for sender in ("a@example.com", "a@example.net", "a@example.org"):
            with self.subTest(sender=sender):
                results = check(resolver, "192.0.2.1", sender=sender)
                self.assertEqual(results["result"], "none")

    def testMalformedDomain(self):
        resolver = FakeResolver()
        results = check(resolver, "192.0.2.1", sender="a@localhost")
        self.assertEqual(results["result"], "none")
        self.assertEqual(resolver.queries, [])

    def testMultipleRecords(self):
        resolver = FakeResolver(txt={"example.com": ["v=spf1 -all", "v=spf1 +all"]})
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "permerror")

    def testSyntaxErrorIsPermError(self):
        resolver = FakeResolver(txt={"example.com": ["v=spf1 ip4:192.0.2.300 -all"]})
        results = check(resolver, "192.0.2.1")
        self.assertEqual(results["result"], "permerror")
        self.assertIn("192.0.2.300", results["error"])

    def testNeutralWhenNothingMatches(self):
        """A record without a match or redirect is neutral, not none"""
        resolver = FakeResolver(txt={"example.com": ["v=spf1 ip4:192.0.2.0/24"]})
        self.assertEqual(check(resolver, "198.51.100.1")["result"], "neutral")

    def testUnknownModifiersAreIgnored(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 foo=bar.%{d} ip4:192.0.2.0/24 -all"]}
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "pass")

    def testAMechanism(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 a a:other.example.com/24 -all"]},
            a={"example.com": ["192.0.2.10"], "other.example.com": ["198.51.100.1"]},
            aaaa={"example.com": ["2001:db8::10"]},
        )
        self.assertEqual(check(resolver, "192.0.2.10")["result"], "pass")
        self.assertEqual(check(resolver, "198.51.100.200")["result"], "pass")
        self.assertEqual(check(resolver, "192.0.2.11")["result"], "fail")
        self.assertEqual(check(resolver, "2001:db8::10")["result"], "pass")

    def testAMechanismQueriesByAddressFamily(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 a -all"]},
            a={"example.com": ["192.0.2.10"]},
            aaaa={"example.com": ["2001:db8::10"]},
        )
        check(resolver, "2001:db8::10")
        self.assertIn(("AAAA", "example.com"), resolver.queries)
        self.assertNotIn(("A", "example.com"), resolver.queries)

    def testMXMechanism(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 mx -all"]},
            mx={"example.com": [(10, "mx1.example.com"), (20, "mx2.example.com")]},
            a={"mx1.example.com": ["192.0.2.21"], "mx2.example.com": ["192.0.2.20"]},
        )
        results = check(resolver, "192.0.2.20")
        self.assertEqual(results["result"], "pass")
        self.assertEqual(results["dns_lookups"], 2)
        self.assertEqual(check(resolver, "192.0.2.22")["result"], "fail")

    def testMXAddressLookupsCanBeCounted(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 mx -all"]},
            mx={"example.com": [(10, "mx1.example.com"), (20, "mx2.example.com")]},
            a={"mx1.example.com": ["192.0.2.21"], "mx2.example.com": ["192.0.2.20"]},
        )
        limits = checkspf.Limits(count_mx_address_lookups=True)
        results = check(resolver, "198.51.100.1", limits=limits)
        self.assertEqual(results["result"], "fail")
        self.assertEqual(results["dns_lookups"], 4)

    def testTooManyMXRecords(self):
        hosts = [(i, f"mx{i}.example.com") for i in range(11)]
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 mx -all"]}, mx={"example.com": hosts}
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "permerror")

    def testPTRMechanism(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 ptr -all"]},
            ptr={
                "192.0.2.5": ["mail.example.com", "other.example.net"],
                "192.0.2.6": ["forged.example.com"],
                "192.0.2.7": ["mail.example.net"],
            },
            a={
                "mail.example.com": ["192.0.2.5"],
                "forged.example.com": ["198.51.100.6"],
                "mail.example.net": ["192.0.2.7"],
            },
        )
        self.assertEqual(check(resolver, "192.0.2.5")["result"], "pass")
        # The name does not map back to the client
        self.assertEqual(check(resolver, "192.0.2.6")["result"], "fail")
        # The name is not within the target domain
        self.assertEqual(check(resolver, "192.0.2.7")["result"], "fail")

    def testExistsMechanism(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 exists:%{ir}.list.example.com -all"]},
            a={"5.2.0.192.list.example.com": ["127.0.0.2"]},
        )
        self.assertEqual(check(resolver, "192.0.2.5")["result"], "pass")
        results = check(resolver, "192.0.2.6")
        self.assertEqual(results["result"], "fail")
        self.assertEqual(results["void_dns_lookups"], 1)

    def testPMacroDoesNotQueryPTR(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 exists:%{p}.example.com -all"]},
            a={"unknown.example.com": ["127.0.0.1"]},
        )
        self.assertEqual(check(resolver, "192.0.2.5")["result"], "pass")
        self.assertNotIn("PTR", [record_type for record_type, _ in resolver.queries])

    def testIncludePass(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 include:_spf.example.net -all"],
                "_spf.example.net": ["v=spf1 ip4:192.0.2.0/24 -all"],
            }
        )
        results = check(resolver, "192.0.2.1")
        self.assertEqual(results["result"], "pass")
        self.assertEqual(results["dns_lookups"], 2)
        self.assertEqual(check(resolver, "198.51.100.1")["result"], "fail")

    def testIncludeSoftFailDoesNotMatch(self):
        """The scan continues after an include that does not pass"""
        resolver = FakeResolver(
            txt={
                "example.com": [
                    "v=spf1 include:soft.example.com ip4:192.0.2.0/24 -all"
                ],
                "soft.example.com": ["v=spf1 ~all"],
            }
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "pass")
        self.assertEqual(check(resolver, "198.51.100.1")["result"], "fail")

    def testIncludeFailAndNeutralDoNotMatch(self):
        """fail, softfail and neutral inside an include all fall through"""
        for inner_record in ("v=spf1 -all", "v=spf1 ~all", "v=spf1 ?all", "v=spf1"):
            with self.subTest(inner_record=inner_record):
                resolver = FakeResolver(
                    txt={
                        "example.com": ["v=spf1 include:i.example.com +all"],
                        "i.example.com": [inner_record],
                    }
                )
                results = check(resolver, "192.0.2.1")
                self.assertEqual(results["result"], "pass")
                self.assertEqual(results["dns_lookups"], 2)

    def testIncludeWithoutRecordIsPermError(self):
        resolver = FakeResolver(
            txt={
                "example.com": [
                    "v=spf1 include:missing.example.com include:none.example.com -all"
                ],
                "none.example.com": ["not spf"],
            }
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "permerror")
        resolver.records["TXT"]["missing.example.com"] = []
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "permerror")

    def testIncludeTempErrorPropagates(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 include:a.example.com -all"],
                "a.example.com": ["v=spf1 include:b.example.com -all"],
                "b.example.com": DNSTempFailure("SERVFAIL"),
            }
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "temperror")

    def testIncludePermErrorPropagates(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 include:a.example.com +all"],
                "a.example.com": ["v=spf1 bogus -all"],
            }
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "permerror")

    def testRedirect(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 ip4:198.51.100.0/24 redirect=_spf.example.com"],
                "_spf.example.com": ["v=spf1 ip4:192.0.2.0/24 ~all"],
            }
        )
        self.assertEqual(check(resolver, "198.51.100.1")["result"], "pass")
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "pass")
        results = check(resolver, "203.0.113.1")
        self.assertEqual(results["result"], "softfail")
        self.assertEqual(results["dns_lookups"], 2)
        self.assertEqual(
            results["record"], "v=spf1 ip4:198.51.100.0/24 redirect=_spf.example.com"
        )

    def testRedirectIsNotUsedAfterAll(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 -all redirect=_spf.example.com"],
                "_spf.example.com": ["v=spf1 +all"],
            }
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "fail")
        self.assertNotIn(("TXT", "_spf.example.com"), resolver.queries)

    def testRedirectWithoutRecordIsPermError(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 redirect=missing.example.com"]}
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "permerror")

    def testRedirectTempErrorPropagates(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 redirect=_spf.example.com"],
                "_spf.example.com": DNSTempFailure("SERVFAIL"),
            }
        )
        results = check(resolver, "192.0.2.1")
        self.assertEqual(results["result"], "temperror")
        self.assertIn("SERVFAIL", results["error"])

    def testRedirectPermErrorPropagates(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 redirect=_spf.example.com"],
                "_spf.example.com": ["v=spf1 bogus"],
            }
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "permerror")

    def testTooManyDNSLookups(self):
        """Eleven nested includes are a permerror, never a temperror"""
        results = check(include_chain(11), "192.0.2.1")
        self.assertEqual(results["result"], "permerror")
        self.assertEqual(results["dns_lookups"], 10)
        self.assertIn("DNS lookups", results["error"])

    def testLookupLimitBoundary(self):
        """The record lookup of the checked domain counts towards the limit"""
        results = check(include_chain(9), "192.0.2.1")
        self.assertEqual(results["result"], "pass")
        self.assertEqual(results["dns_lookups"], 10)
        self.assertEqual(check(include_chain(10), "192.0.2.1")["result"], "permerror")
        limits = checkspf.Limits(count_initial_lookup=False)
        results = check(include_chain(10), "192.0.2.1", limits=limits)
        self.assertEqual(results["result"], "pass")

    def testTooManyVoidLookups(self):
        """The third void lookup is a permerror, even across includes"""
        resolver = FakeResolver(
            txt={
                "example.com": [
                    "v=spf1 a:nx1.example.com include:inc.example.com -all"
                ],
                "inc.example.com": [
                    "v=spf1 mx:nx2.example.com exists:nx3.example.com ~all"
                ],
            }
        )
        results = check(resolver, "192.0.2.1")
        self.assertEqual(results["result"], "permerror")
        self.assertEqual(results["void_dns_lookups"], 2)

    def testTwoVoidLookupsAreTolerated(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 a:nx1.example.com ptr ip4:192.0.2.0/24 -all"]},
            ptr={"192.0.2.1": []},
        )
        results = check(resolver, "192.0.2.1")
        self.assertEqual(results["result"], "pass")
        self.assertEqual(results["void_dns_lookups"], 2)

    def testTempErrorAbortsTheScan(self):
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 a:broken.example.com a:ok.example.com -all"]},
            a={
                "broken.example.com": DNSTempFailure("timeout"),
                "ok.example.com": ["192.0.2.1"],
            },
        )
        self.assertEqual(check(resolver, "192.0.2.1")["result"], "temperror")
        self.assertNotIn(("A", "ok.example.com"), resolver.queries)

    def testRecordLookupTempError(self):
        resolver = FakeResolver(txt={"example.com": DNSTempFailure("timeout")})
        results = check(resolver, "192.0.2.1")
        self.assertEqual(results["result"], "temperror")
        self.assertIn("timeout", results["error"])

    def testLifetimeExpiryIsTempError(self):
        """Every resolver call receives the deadline of the check"""
        resolver = FakeResolver(
            txt={"example.com": ["v=spf1 a -all"]},
            a={"example.com": ["192.0.2.1"]},
        )
        results = check(resolver, "192.0.2.1", lifetime=-1)
        self.assertEqual(results["result"], "temperror")
        self.assertIn("deadline", results["error"])
        self.assertEqual(check(resolver, "192.0.2.1", lifetime=60)["result"], "pass")

    def testLookupLimitErrorData(self):
        """The error data and the counter report the same number of lookups"""
        context = checkspf.EvaluationContext(
            "192.0.2.1",
            "user@example.com",
            "mail.example.com",
            limits=checkspf.Limits(max_dns_lookups=1, max_void_dns_lookups=1),
        )
        context.count_dns_lookup("a")
        with self.assertRaises(checkspf.SPFTooManyDNSLookups) as cm:
            context.count_dns_lookup("mx")
        self.assertEqual(cm.exception.data, {"dns_lookups": 1})
        self.assertEqual(context.dns_lookups, 1)
        context.count_void_lookup("a")
        with self.assertRaises(checkspf.SPFTooManyVoidDNSLookups) as cm:
            context.count_void_lookup("mx")
        self.assertEqual(cm.exception.data, {"void_dns_lookups": 1})
        self.assertEqual(context.void_dns_lookups, 1)

    def testRecursionDepthLimit(self):
        limits = checkspf.Limits(max_dns_lookups=50, max_recursion_depth=2)
        results = check(include_chain(3), "192.0.2.1", limits=limits)
        self.assertEqual(results["result"], "permerror")
        self.assertIn("nested", results["error"])
        results = check(include_chain(2), "192.0.2.1", limits=limits)
        self.assertEqual(results["result"], "pass")

    def testInvalidIPAddress(self):
        self.assertRaises(ValueError, check, FakeResolver(), "192.0.2.256")

    def testCheckHost(self):
        resolver = FakeResolver(txt={"example.org": ["v=spf1 ip4:192.0.2.0/24 -all"]})
        self.assertEqual(
            checkspf.check_host(
                "192.0.2.1", "example.org", "user@example.com", resolver=resolver
            ),
            "pass",
        )

    def testEmptySenderChecksHELO(self):
        resolver = FakeResolver(
            txt={"mail.example.com": ["v=spf1 a -all"]},
            a={"mail.example.com": ["192.0.2.1"]},
        )
        results = check(resolver, "192.0.2.1", sender="")
        self.assertEqual(results["domain"], "mail.example.com")
        self.assertEqual(results["result"], "pass")


class TestExplanation(unittest.TestCase):
    def testExplanation(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 ip4:192.0.2.0/24 -all exp=explain.example.com"],
                "explain.example.com": [
                    "%{i} is not one of %{d}'s designated mail servers."
                ],
            }
        )
        results = check(resolver, "198.51.100.99")
        self.assertEqual(results["result"], "fail")
        self.assertEqual(
            results["explanation"],
            "198.51.100.99 is not one of example.com's designated mail servers.",
        )
        self.assertEqual(results["dns_lookups"], 1)
        self.assertIsNone(check(resolver, "192.0.2.1")["explanation"])

    def testExplanationOnlyOnFail(self):
        resolver = FakeResolver(
            txt={
                "example.com": ["v=spf1 ~all exp=explain.example.com"],
                "explain.example.com": ["Not allowed"],
            }
        )
        results = check(resolver, "192.0.2.1")
        self.assertEqual(results["result"], "softfail")
        self.assertIsNone(results["explanation"])
        self.assertNotIn(("TXT", "explain.example.com"), resolver.queries)

    def testExplanationErrorsAreIgnored(self):
        explanations = {
            "missing": None,
            "bad-macro": ["You are %{q}"],
            "two-records": ["One", "Two"],
            "temperror": DNSTempFailure("timeout"),
        }
        for name, value in explanations.items():
            with self.subTest(name=name):
                txt = {"example.com": [f"v=spf1 -all exp={name}.example.com"]}
                if value is not None:
                    txt[f"{name}.example.com"] = value
                results = check(FakeResolver(txt=txt), "192.0.2.1")
                self.assertEqual(results["result"], "fail")
                self.assertIsNone(results["explanation"])

    def testRedirectedRecordExplanation(self):
        """The explanation comes from the record that produced the fail"""
        resolver = FakeResolver(
            txt={
                "example.com": [
                    "v=spf1 redirect=_spf.example.com exp=outer.example.com"
                ],
                "_spf.example.com": ["v=spf1 -all exp=inner.example.com"],
                "outer.example.com": ["outer"],
                "inner.example.com": ["%{d} via %{o} for %{c} at %{r}"],
            }
        )
        results = check(resolver, "192.0.2.1", receiver="mx.example.net")
        self.assertEqual(results["result"], "fail")
        self.assertEqual(
            results["explanation"],
            "_spf.example.com via example.com for 192.0.2.1 at mx.example.net",
        )


class TestDNSResolver(unittest.TestCase):
    def setUp(self):
        self.dns_resolver = mock.Mock()
        self.resolver = checkspf.DNSResolver(
            resolver=self.dns_resolver,
            cache=ExpiringDict(max_len=100, max_age_seconds=60),
        )

    def testTXTRecordsAreJoined(self):
        self.dns_resolver.resolve.return_value = [
            SimpleNamespace(strings=[b"v=spf1 ", b"-all"]),
            SimpleNamespace(strings=[b"hello"]),
        ]
        self.assertEqual(
            self.resolver.lookup_txt("example.com"), ["v=spf1 -all", "hello"]
        )

    def testMXRecords(self):
        self.dns_resolver.resolve.return_value = [
            mock.Mock(**{"to_text.return_value": "20 MX2.example.com."}),
            mock.Mock(**{"to_text.return_value": "10 mx1.example.com."}),
        ]
        self.assertEqual(
            self.resolver.lookup_mx("example.com"),
            [(10, "mx1.example.com"), (20, "mx2.example.com")],
        )

    def testAnswersAreCached(self):
        self.dns_resolver.resolve.return_value = [
            mock.Mock(**{"to_text.return_value": "192.0.2.1"})
        ]
        self.assertEqual(self.resolver.lookup_a("example.com"), ["192.0.2.1"])
        self.assertEqual(self.resolver.lookup_a("example.com"), ["192.0.2.1"])
        self.assertEqual(self.dns_resolver.resolve.call_count, 1)

    def testNXDOMAIN(self):
        self.dns_resolver.resolve.side_effect = dns.resolver.NXDOMAIN()
        self.assertRaises(
            DNSExceptionNXDOMAIN, self.resolver.lookup_txt, "example.com"
        )

    def testNoAnswer(self):
        self.dns_resolver.resolve.side_effect = dns.resolver.NoAnswer()
        self.assertEqual(self.resolver.lookup_aaaa("example.com"), [])

    def testTimeoutIsTempFailure(self):
        self.dns_resolver.resolve.side_effect = dns.resolver.LifetimeTimeout(
            timeout=2.0, errors=[]
        )
        self.assertRaises(DNSTempFailure, self.resolver.lookup_a, "example.com")
        # The first attempt and two retries
        self.assertEqual(self.dns_resolver.resolve.call_count, 3)

    def testServerFailureIsTempFailure(self):
        self.dns_resolver.resolve.side_effect = dns.resolver.NoNameservers()
        self.assertRaises(DNSTempFailure, self.resolver.lookup_mx, "example.com")

    def testExpiredDeadline(self):
        self.assertRaises(
            DNSTempFailure,
            self.resolver.lookup_txt,
            "example.com",
            deadline=time.monotonic() - 1,
        )
        self.dns_resolver.resolve.assert_not_called()

    def testIsValidDomain(self):
        self.assertTrue(checkspf.utils.is_valid_domain("example.com."))
        self.assertFalse(checkspf.utils.is_valid_domain("example..com"))
        self.assertFalse(checkspf.utils.is_valid_domain("localhost"))
        self.assertTrue(checkspf.utils.is_valid_domain("localhost", multi_label=False))
        self.assertFalse(checkspf.utils.is_valid_domain("a" * 64 + ".com"))


class TestCLI(unittest.TestCase):
    def testJSONOutput(self):
        results = {
            "result": "pass",
            "explanation": None,
            "domain": "example.com",
            "record": "v=spf1 +all",
            "dns_lookups": 1,
            "void_dns_lookups": 0,
        }
        stdout = io.StringIO()
        with mock.patch.object(
            checkspf._cli, "check_spf", return_value=results
        ) as check_spf, redirect_stdout(stdout):
            checkspf._cli._main(
                [
                    "192.0.2.1",
                    "user@example.com",
                    "mail.example.com",
                    "--max-dns-lookups",
                    "5",
                ]
            )
        self.assertEqual(json.loads(stdout.getvalue()), results)
        self.assertEqual(check_spf.call_args.kwargs["limits"].max_dns_lookups, 5)

    def testTextOutput(self):
        results = {
            "result": "fail",
            "explanation": "Go away",
            "domain": "example.com",
            "record": "v=spf1 -all",
            "dns_lookups": 1,
            "void_dns_lookups": 0,
        }
        stdout = io.StringIO()
        with mock.patch.object(
            checkspf._cli, "check_spf", return_value=results
        ), redirect_stdout(stdout):
            checkspf._cli._main(["192.0.2.1", "user@example.com", "-f", "text"])
        self.assertEqual(stdout.getvalue().strip(), "fail: Go away")

    def testInvalidIPAddress(self):
        with redirect_stdout(io.StringIO()), mock.patch("sys.stderr", io.StringIO()):
            self.assertRaises(
                SystemExit, checkspf._cli._main, ["not-an-ip", "user@example.com"]
            )


if __name__ == "__main__":
    unittest.main(verbosity=2)
