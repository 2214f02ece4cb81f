#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""Automated tests"""

import io
import json
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest import mock

import requests

import spfwalk
import spfwalk._cli
import spfwalk.dmarc
import spfwalk.spf
import spfwalk.utils
from spfwalk._constants import DEFAULT_RESOLVER_URL


def _response(status_code=200, body=None, text=None):
    response = requests.Response()
    response.status_code = status_code
    response.encoding = "utf-8"
    response.url = DEFAULT_RESOLVER_URL
    if text is None:
        text = json.dumps(body)
    response._content = text.encode("utf-8")
    return response


def _answer(name, data, record_type=16):
    return {"name": name, "type": record_type, "TTL": 300, "data": data}


class FakeSession(object):
    """Answers DNS JSON queries from a dictionary of TXT records"""

    def __init__(self, zones, responses=None):
        self.zones = zones
        self.responses = responses or {}
        self.queries = []
        self.headers = {}

    def get(self, url, params=None, headers=None, timeout=None):
        name = params["name"]
        self.queries.append(name)
        self.last_url = url
        self.last_params = params
        self.last_headers = headers
        if name in self.responses:
            return self.responses[name]
        body = {
            "Status": 0,
            "TC": False,
            "Question": [{"name": name, "type": 16}],
        }
        if name in self.zones:
            body["Answer"] = [
                _answer(name, f'"{record}"') for record in self.zones[name]
            ]
        else:
            body["Status"] = 3
        return _response(body=body)

    def close(self):
        pass


class Test(unittest.TestCase):
    def testFindRecordNoMatch(self):
        """A missing record is returned as None, not raised"""
        answers = [
            _answer("example.com", '"google-site-verification=abc"'),
            _answer("example.com", '"MS=ms12345"'),
        ]
        self.assertIsNone(spfwalk.utils.find_record(answers, "v=spf1 "))
        self.assertIsNone(spfwalk.utils.find_record([], "v=spf1 "))

    def testFindRecordLastMatchWins(self):
        """When several records match, the last one listed is used"""
        answers = [
            _answer("example.com", '"v=spf1 ip4:192.0.2.1 -all"'),
            _answer("example.com", '"unrelated"'),
            _answer("example.com", '"v=spf1 ip4:192.0.2.2 -all"'),
        ]
        self.assertEqual(
            spfwalk.utils.find_record(answers, "v=spf1 "),
            "v=spf1 ip4:192.0.2.2 -all",
        )

    def testFindRecordQuotedAndUnquoted(self):
        """Quoted and unquoted TXT data extract the same record"""
        quoted = [_answer("example.com", ' "v=spf1 include:a.com -all" ')]
        unquoted = [_answer("example.com", "v=spf1 include:a.com -all")]
        self.assertEqual(
            spfwalk.utils.find_record(quoted, "v=spf1 "),
            spfwalk.utils.find_record(unquoted, "v=spf1 "),
        )

    def testFindRecordKeepsCase(self):
        """Prefixes match without regard to case, and the record keeps its case"""
        answers = [_answer("_dmarc.example.com", '"V=DMARC1; p=reject"')]
        self.assertEqual(
            spfwalk.utils.find_record(answers, "v=dmarc1;"), "V=DMARC1; p=reject"
        )

    def testFindRecordSplitTXTStrings(self):
        """Only the outer pair of quotes is removed from split TXT strings"""
        answers = [_answer("example.com", '"v=spf1 ip4:192.0.2.1" "-all"')]
        self.assertEqual(
            spfwalk.utils.find_record(answers, "v=spf1 "),
            'v=spf1 ip4:192.0.2.1" "-all',
        )

    def testSplitSPFParts(self):
        self.assertEqual(
            spfwalk.spf.split_spf_parts("v=spf1 include:a.com -all"),
            ["v=spf1", "include:a.com", "-all"],
        )
        self.assertEqual(
            spfwalk.spf.split_spf_parts("v=spf1  ip4:192.0.2.1\t~all"),
            ["v=spf1", "ip4:192.0.2.1", "~all"],
        )

    def testSplitEmptySPFRecord(self):
        """An empty record splits into one empty term"""
        self.assertEqual(spfwalk.spf.split_spf_parts(""), [""])

    def testSplitDMARCParts(self):
        self.assertEqual(
            spfwalk.dmarc.split_dmarc_parts(
                "v=DMARC1; p=reject; rua=mailto:x@y.com;"
            ),
            {"v": "DMARC1", "p": "reject", "rua": "mailto:x@y.com"},
        )

    def testSplitDMARCPartsDuplicateTag(self):
        """The last occurrence of a duplicate tag wins"""
        self.assertEqual(
            spfwalk.dmarc.split_dmarc_parts("v=DMARC1; p=none; p=quarantine"),
            {"v": "DMARC1", "p": "quarantine"},
        )

    def testSplitDMARCPartsTagWithoutValue(self):
        """A segment without an equals sign becomes a tag with an empty value"""
        self.assertEqual(
            spfwalk.dmarc.split_dmarc_parts("v=DMARC1; p=none; adkim"),
            {"v": "DMARC1", "p": "none", "adkim": ""},
        )

    def testSplitDMARCPartsValueWithEquals(self):
        """Only the first equals sign separates a tag from its value"""
        self.assertEqual(
            spfwalk.dmarc.split_dmarc_parts("v=DMARC1; ruf=mailto:a=b@example.com"),
            {"v": "DMARC1", "ruf": "mailto:a=b@example.com"},
        )

    def testQueryDoHRequest(self):
        """DNS JSON queries carry the name, type, cd flag and Accept header"""
        session = FakeSession({"example.com": ["v=spf1 -all"]})
        response = spfwalk.utils.query_doh("Example.com", "txt", session=session)
        self.assertEqual(session.last_url, DEFAULT_RESOLVER_URL)
        self.assertEqual(
            session.last_params, {"name": "example.com", "type": "TXT", "cd": "0"}
        )
        self.assertEqual(session.last_headers["Accept"], "application/dns-json")
        self.assertEqual(response["Status"], 0)
        self.assertEqual(response["Answer"][0]["data"], '"v=spf1 -all"')
        self.assertEqual(response["Question"], [{"name": "example.com", "type": 16}])

    def testQueryDoHNXDOMAIN(self):
        """A response without answers decodes to an empty answer list"""
        session = FakeSession({})
        response = spfwalk.utils.query_doh("missing.example", session=session)
        self.assertEqual(response["Status"], 3)
        self.assertEqual(response["Answer"], [])

    def testQueryDoHUnknownType(self):
        session = FakeSession({})
        self.assertRaises(
            spfwalk.utils.ResolverError,
            spfwalk.utils.query_doh,
            "example.com",
            "NOTATYPE",
            session=session,
        )
        self.assertEqual(session.queries, [])

    def testQueryDoHHTTPError(self):
        """An HTTP error status raises ResolverError with the response body"""
        session = FakeSession(
            {}, responses={"example.com": _response(500, text="rate limited")}
        )
        with self.assertRaises(spfwalk.utils.ResolverError) as context:
            spfwalk.utils.query_doh("example.com", session=session)
        self.assertEqual(str(context.exception), "rate limited")
        self.assertEqual(context.exception.status_code, 500)

    def testQueryDoHConnectionError(self):
        session = FakeSession({})
        session.get = mock.Mock(
            side_effect=requests.exceptions.ConnectionError("connection refused")
        )
        with self.assertRaises(spfwalk.utils.ResolverError) as context:
            spfwalk.utils.query_doh("example.com", session=session)
        self.assertIn("connection refused", str(context.exception))
        self.assertIsNone(context.exception.status_code)

    def testQueryDoHInvalidJSON(self):
        session = FakeSession(
            {}, responses={"example.com": _response(200, text="<html></html>")}
        )
        self.assertRaises(
            spfwalk.utils.DecodeError,
            spfwalk.utils.query_doh,
            "example.com",
            session=session,
        )

    def testQueryDoHUnexpectedShape(self):
        """JSON that is not a DNS JSON response raises DecodeError"""
        bodies = [
            [],
            {"Question": []},
            {"Status": "0"},
            {"Status": 0, "Answer": {}},
            {"Status": 0, "Answer": [{"name": "example.com", "type": 16}]},
            {"Status": 0, "Answer": [{"name": "a", "type": 16, "TTL": 1, "data": 1}]},
        ]
        for body in bodies:
            session = FakeSession(
                {}, responses={"example.com": _response(200, body=body)}
            )
            self.assertRaises(
                spfwalk.utils.DecodeError,
                spfwalk.utils.query_doh,
                "example.com",
                session=session,
            )

    def testParseDoHResponseDropsExtraFields(self):
        payload = {
            "Status": 0,
            "AD": True,
            "Question": [{"name": "example.com", "type": 16}],
            "Answer": [
                {
                    "name": "example.com",
                    "type": 16,
                    "TTL": 300,
                    "data": '"v=spf1 -all"',
                    "extra": 1,
                }
            ],
        }
        response = spfwalk.utils.parse_doh_response(payload)
        self.assertEqual(set(response.keys()), {"Status", "Question", "Answer"})
        self.assertNotIn("extra", response["Answer"][0])

    def testQuerySPFRecord(self):
        session = FakeSession(
            {"example.com": ["MS=ms12345", "v=spf1 ip4:192.0.2.1 -all"]}
        )
        self.assertEqual(
            spfwalk.spf.query_spf_record("example.com", session=session),
            "v=spf1 ip4:192.0.2.1 -all",
        )
        self.assertIsNone(spfwalk.spf.query_spf_record("none.example", session=session))

    def testExpandIncludes(self):
        """Includes are expanded, including the includes of includes"""
        session = FakeSession(
            {
                "example.com": ["v=spf1 include:sub.com -all"],
                "sub.com": ["v=spf1 include:deep.sub.com ip4:192.0.2.0/24 ~all"],
                "deep.sub.com": ["v=spf1 ip6:2001:db8::/32 -all"],
            }
        )
        results = spfwalk.spf.expand_spf_record("example.com", session=session)
        self.assertEqual(
            list(results["parts"].keys()), ["example.com", "sub.com", "deep.sub.com"]
        )
        self.assertEqual(
            results["parts"]["sub.com"],
            ["v=spf1", "include:deep.sub.com", "ip4:192.0.2.0/24", "~all"],
        )
        self.assertEqual(
            results["records"],
            {
                "v=spf1 include:sub.com -all",
                "v=spf1 include:deep.sub.com ip4:192.0.2.0/24 ~all",
                "v=spf1 ip6:2001:db8::/32 -all",
            },
        )

    def testExpandBreadthFirst(self):
        session = FakeSession(
            {
                "example.com": ["v=spf1 include:a.com include:b.com -all"],
                "a.com": ["v=spf1 include:c.com -all"],
                "b.com": ["v=spf1 -all"],
                "c.com": ["v=spf1 -all"],
            }
        )
        results = spfwalk.spf.expand_spf_record("example.com", session=session)
        self.assertEqual(session.queries, ["example.com", "a.com", "b.com", "c.com"])
        self.assertEqual(
            list(results["parts"].keys()), ["example.com", "a.com", "b.com", "c.com"]
        )
        self.assertEqual(len(results["records"]), 3)

    def testExpandDuplicateIncludes(self):
        """A domain included twice is queried twice but has one entry"""
        session = FakeSession(
            {
                "example.com": ["v=spf1 include:a.com include:b.com -all"],
                "a.com": ["v=spf1 include:shared.com -all"],
                "b.com": ["v=spf1 include:shared.com -all"],
                "shared.com": ["v=spf1 ip4:192.0.2.1 -all"],
            }
        )
        results = spfwalk.spf.expand_spf_record("example.com", session=session)
        self.assertEqual(session.queries.count("shared.com"), 2)
        self.assertEqual(list(results["parts"].keys()).count("shared.com"), 1)
        self.assertEqual(len(results["records"]), 3)

    def testExpandRedirect(self):
        """A redirect restarts the expansion at the redirect target"""
        zones = {
            "example.com": ["v=spf1 redirect=other.com"],
            "other.com": ["v=spf1 include:sub.other.com -all"],
            "sub.other.com": ["v=spf1 ip4:192.0.2.0/24 -all"],
        }
        results = spfwalk.spf.expand_spf_record(
            "example.com", session=FakeSession(zones)
        )
        expected = spfwalk.spf.expand_spf_record(
            "other.com", already_redirected=True, session=FakeSession(zones)
        )
        self.assertEqual(results, expected)
        self.assertNotIn("example.com", results["parts"])
        self.assertNotIn("v=spf1 redirect=other.com", results["records"])

    def testExpandRedirectFollowedOnce(self):
        """Only one redirect is followed"""
        session = FakeSession(
            {
                "example.com": ["v=spf1 redirect=a.com"],
                "a.com": ["v=spf1 redirect=b.com"],
                "b.com": ["v=spf1 -all"],
            }
        )
        results = spfwalk.spf.expand_spf_record("example.com", session=session)
        self.assertEqual(results["parts"], {"a.com": ["v=spf1", "redirect=b.com"]})
        self.assertEqual(results["records"], {"v=spf1 redirect=b.com"})
        self.assertNotIn("b.com", session.queries)

    def testExpandRedirectAlreadyRedirected(self):
        session = FakeSession({"example.com": ["v=spf1 redirect=other.com"]})
        results = spfwalk.spf.expand_spf_record(
            "example.com", already_redirected=True, session=session
        )
        self.assertEqual(
            results["parts"], {"example.com": ["v=spf1", "redirect=other.com"]}
        )
        self.assertEqual(session.queries, ["example.com"])

    def testExpandRedirectWithOtherTerms(self):
        """A redirect is only followed when it is the only term after the
        version tag"""
        session = FakeSession(
            {
                "example.com": ["v=spf1 redirect=other.com all"],
                "other.com": ["v=spf1 -all"],
            }
        )
        results = spfwalk.spf.expand_spf_record("example.com", session=session)
        self.assertEqual(
            results["parts"],
            {"example.com": ["v=spf1", "redirect=other.com", "all"]},
        )
        self.assertEqual(session.queries, ["example.com"])

    def testExpandExcludedIncludes(self):
        """Includes ending with an excluded suffix are never queried"""
        session = FakeSession(
            {
                "example.com": [
                    "v=spf1 include:_spf.google.com "
                    "include:spf.protection.outlook.com include:sub.com -all"
                ],
                "sub.com": ["v=spf1 -all"],
            }
        )
        results = spfwalk.spf.expand_spf_record(
            "example.com",
            ["google.com", "protection.outlook.com"],
            session=session,
        )
        self.assertEqual(list(results["parts"].keys()), ["example.com", "sub.com"])
        self.assertNotIn("_spf.google.com", session.queries)
        self.assertNotIn("spf.protection.outlook.com", session.queries)

    def testCheckSPFDefaultExclusions(self):
        session = FakeSession(
            {
                "example.com": [
                    "v=spf1 include:amazonses.com include:mail.qualtrics.com "
                    "include:sub.com -all"
                ],
                "sub.com": ["v=spf1 -all"],
            }
        )
        results = spfwalk.spf.check_spf("example.com", session=session)
        self.assertEqual(list(results["parts"].keys()), ["example.com", "sub.com"])

    def testExpandMissingSPFRecord(self):
        """A domain without an SPF record maps to a single empty term"""
        session = FakeSession(
            {
                "example.com": ["v=spf1 include:nospf.com -all"],
                "nospf.com": ["google-site-verification=abc"],
            }
        )
        results = spfwalk.spf.expand_spf_record("example.com", session=session)
        self.assertEqual(results["parts"]["nospf.com"], [""])
        self.assertIn("", results["records"])

    def testExpandResolverError(self):
        """A resolver error aborts the whole expansion"""
        session = FakeSession(
            {"example.com": ["v=spf1 include:sub.com -all"]},
            responses={"sub.com": _response(500, text="rate limited")},
        )
        with self.assertRaises(spfwalk.utils.ResolverError) as context:
            spfwalk.spf.expand_spf_record("example.com", session=session)
        self.assertEqual(str(context.exception), "rate limited")

    def testCheckDMARC(self):
        session = FakeSession(
            {"_dmarc.example.com": ["v=DMARC1; p=reject; rua=mailto:x@y.com;"]}
        )
        results = spfwalk.dmarc.check_dmarc("example.com", session=session)
        self.assertEqual(results["record"], "v=DMARC1; p=reject; rua=mailto:x@y.com;")
        self.assertEqual(results["location"], "example.com")
        self.assertEqual(
            results["parts"], {"v": "DMARC1", "p": "reject", "rua": "mailto:x@y.com"}
        )

    def testCheckDMARCMissing(self):
        session = FakeSession({"_dmarc.example.com": ["v=spf1 -all"]})
        results = spfwalk.dmarc.check_dmarc("example.com", session=session)
        self.assertEqual(results, {"record": None, "location": None, "parts": {}})

    def testCheckDMARCBaseDomainFallback(self):
        zones = {"_dmarc.example.com": ["v=DMARC1; p=quarantine"]}

        results = spfwalk.dmarc.check_dmarc(
            "mail.example.com", session=FakeSession(zones)
        )
        self.assertIsNone(results["record"])

        session = FakeSession(zones)
        results = spfwalk.dmarc.check_dmarc(
            "mail.example.com", base_domain_fallback=True, session=session
        )
        self.assertEqual(results["record"], "v=DMARC1; p=quarantine")
        self.assertEqual(results["location"], "example.com")
        self.assertEqual(
            session.queries, ["_dmarc.mail.example.com", "_dmarc.example.com"]
        )

    def testGetBaseDomain(self):
        self.assertEqual(spfwalk.utils.get_base_domain("foo.example.com"), "example.com")
        self.assertEqual(
            spfwalk.utils.get_base_domain("mail.example.co.uk"), "example.co.uk"
        )

    def testCheckDomain(self):
        session = FakeSession(
            {
                "example.com": ["v=spf1 include:_spf.google.com include:sub.com -all"],
                "sub.com": ["v=spf1 ip4:192.0.2.1 -all"],
                "_dmarc.example.com": ["v=DMARC1; p=none"],
            }
        )
        results = spfwalk.check_domain("Example.com.", session=session)
        self.assertEqual(results["domain"], "example.com")
        self.assertEqual(
            results["spfParts"],
            {
                "example.com": [
                    "v=spf1",
                    "include:_spf.google.com",
                    "include:sub.com",
                    "-all",
                ],
                "sub.com": ["v=spf1", "ip4:192.0.2.1", "-all"],
            },
        )
        self.assertEqual(results["dmarcRecord"], "v=DMARC1; p=none")
        self.assertEqual(results["dmarcParts"], {"v": "DMARC1", "p": "none"})

    def testResultsToJSON(self):
        results = {
            "domain": "example.com",
            "spfRecord": {"v=spf1 -all", ""},
            "spfParts": {"example.com": ["v=spf1", "-all"], "nospf.com": [""]},
            "dmarcRecord": None,
            "dmarcParts": {},
        }
        parsed = json.loads(spfwalk.results_to_json(results))
        self.assertEqual(parsed["spfRecord"], ["", "v=spf1 -all"])
        self.assertEqual(parsed["spfParts"]["nospf.com"], [""])
        self.assertIsNone(parsed["dmarcRecord"])

    def testResultsToCSV(self):
        results = {
            "domain": "example.com",
            "spfRecord": {"v=spf1 include:sub.com -all", "v=spf1 -all"},
            "spfParts": {
                "example.com": ["v=spf1", "include:sub.com", "-all"],
                "sub.com": ["v=spf1", "-all"],
            },
            "dmarcRecord": "v=DMARC1; p=none",
            "dmarcParts": {"v": "DMARC1", "p": "none"},
        }
        lines = spfwalk.results_to_csv(results).splitlines()
        self.assertEqual(lines[0], "domain,spf_domain,spf_parts,dmarc_record")
        self.assertEqual(
            lines[1],
            "example.com,example.com,v=spf1 include:sub.com -all,v=DMARC1; p=none",
        )
        self.assertEqual(len(lines), 3)

    def testCLI(self):
        results = {
            "domain": "hotmail.com",
            "spfRecord": {"v=spf1 -all"},
            "spfParts": {"hotmail.com": ["v=spf1", "-all"]},
            "dmarcRecord": None,
            "dmarcParts": {},
        }
        stdout = io.StringIO()
        with mock.patch.object(
            spfwalk._cli, "check_domain", return_value=results
        ) as check_domain, redirect_stdout(stdout):
            spfwalk._cli._main([])
        self.assertEqual(check_domain.call_args[0][0], "hotmail.com")
        output = json.loads(stdout.getvalue())
        self.assertEqual(output["spfRecord"], ["v=spf1 -all"])
        self.assertEqual(
            set(output.keys()),
            {"domain", "spfRecord", "spfParts", "dmarcRecord", "dmarcParts"},
        )

    def testCLIEmptyExclusionList(self):
        """Passing -e without suffixes follows every include"""
        results = {
            "domain": "example.com",
            "spfRecord": {"v=spf1 -all"},
            "spfParts": {"example.com": ["v=spf1", "-all"]},
            "dmarcRecord": None,
            "dmarcParts": {},
        }
        stdout = io.StringIO()
        with mock.patch.object(
            spfwalk._cli, "check_domain", return_value=results
        ) as check_domain, redirect_stdout(stdout):
            spfwalk._cli._main(["example.com", "-e"])
        self.assertEqual(check_domain.call_args[1]["exclude"], [])

    def testCLIOutputFile(self):
        results = {
            "domain": "example.com",
            "spfRecord": {"v=spf1 -all"},
            "spfParts": {"example.com": ["v=spf1", "-all"]},
            "dmarcRecord": None,
            "dmarcParts": {},
        }
        with tempfile.TemporaryDirectory() as directory:
            path = os.path.join(directory, "results.json")
            with mock.patch.object(spfwalk._cli, "check_domain", return_value=results):
                spfwalk._cli._main(["example.com", "-o", path])
            with open(path, encoding="utf-8") as output_file:
                self.assertEqual(json.load(output_file)["domain"], "example.com")

    def testCLIResolverError(self):
        """An unhandled resolver error exits with a non-zero status"""
        error = spfwalk.utils.ResolverError("rate limited", status_code=500)
        with mock.patch.object(spfwalk._cli, "check_domain", side_effect=error):
            with self.assertRaises(SystemExit) as context:
                spfwalk._cli._main(["example.com"])
        self.assertEqual(context.exception.code, 1)


if __name__ == "__main__":
    unittest.main(verbosity=2)
