# -*- coding: utf-8 -*-
"""DNS-over-HTTPS utility functions"""

from __future__ import annotations

import logging
import re
import unicodedata
from typing import Optional, TypedDict
from collections.abc import Iterable

import dns.rcode
import dns.rdatatype
import publicsuffixlist
import requests

from spfwalk._constants import DEFAULT_RESOLVER_URL, DOH_CONTENT_TYPE, USER_AGENT

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

ZERO_WIDTH_RE = re.compile(r"[\u200B-\u200D\uFEFF]")  # includes ZWSP, ZWNJ, ZWJ, BOM
PSL = publicsuffixlist.PublicSuffixList()


class DoHQuestion(TypedDict):
    name: str
    type: int


class DoHAnswer(TypedDict):
    name: str
    type: int
    TTL: int
    data: str


class DoHResponse(TypedDict):
    Status: int
    Question: list[DoHQuestion]
    Answer: list[DoHAnswer]


class DoHError(Exception):
    """Raised when a DNS-over-HTTPS query fails"""


class ResolverError(DoHError):
    """Raised when the resolver cannot be reached or answers with an HTTP
    error status"""

    def __init__(self, msg: str, status_code: Optional[int] = None):
        """
        Args:
            msg (str): The error message, or the response body text
            status_code (int): The HTTP status code, if a response arrived
        """
        self.status_code = status_code
        Exception.__init__(self, msg)


class DecodeError(DoHError):
    """Raised when a resolver response is not JSON or is not shaped like a
    DNS JSON response"""


def get_base_domain(domain: str) -> str:
    """
    Gets the base domain name for the given domain

    .. note::
        Results are based on a list of public domain suffixes at
        https://publicsuffix.org/list/public_suffix_list.dat.

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: The base domain of the given domain

    """
    domain = normalize_domain(domain)
    return PSL.privatesuffix(domain) or domain


def normalize_domain(domain: str) -> str:
    """
    Normalize an input domain by removing zero-width characters and lowering it

    Args:
        domain (str): A domain or subdomain

    Returns:
        str: A normalized domain
    """
    domain = unicodedata.normalize("NFC", domain)
    domain = ZERO_WIDTH_RE.sub("", domain)
    return domain.lower()


def _check_fields(item: object, fields: dict[str, type], where: str) -> dict:
    if not isinstance(item, dict):
        raise DecodeError(f"Expected an object for {where}")
    for field, field_type in fields.items():
        value = item.get(field)
        # bool is a subclass of int, but never a valid DNS number
        if not isinstance(value, field_type) or isinstance(value, bool):
            raise DecodeError(
                f"Expected {where}.{field} to be {field_type.__name__}, "
                f"got {value!r}"
            )
    return item


def parse_doh_response(payload: object) -> DoHResponse:
    """
    Validates a decoded DNS JSON payload and returns it as a
    :class:`DoHResponse`

    Args:
        payload: The object produced by decoding the response body

    Returns:
        dict: A ``DoHResponse`` with ``Status``, ``Question`` and ``Answer``
              keys. ``Answer`` is an empty list when the resolver omitted it.

    Raises:
        :exc:`spfwalk.utils.DecodeError`
    """
    _check_fields(payload, {"Status": int}, "response")
    questions = payload.get("Question", [])
    answers = payload.get("Answer", [])
    if not isinstance(questions, list):
        raise DecodeError("Expected response.Question to be a list")
    if not isinstance(answers, list):
        raise DecodeError("Expected response.Answer to be a list")
    question_fields = {"name": str, "type": int}
    answer_fields = {"name": str, "type": int, "TTL": int, "data": str}

    response: DoHResponse = {
        "Status": payload["Status"],
        "Question": [],
        "Answer": [],
    }
    for question in questions:
        _check_fields(question, question_fields, "Question")
        response["Question"].append(
            {"name": question["name"], "type": question["type"]}
        )
    for answer in answers:
        _check_fields(answer, answer_fields, "Answer")
        response["Answer"].append(
            {
                "name": answer["name"],
                "type": answer["type"],
                "TTL": answer["TTL"],
                "data": answer["data"],
            }
        )
    return response


def query_doh(
    name: str,
    record_type: str = "TXT",
    *,
    resolver_url: str = DEFAULT_RESOLVER_URL,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> DoHResponse:
    """
    Queries a DNS-over-HTTPS resolver using the DNS JSON format

    Args:
        name (str): The domain or subdomain to query about
        record_type (str): The record type to query for
        resolver_url (str): The DNS JSON endpoint of the resolver
        session (requests.Session): A session to send the request with
        timeout (float): Number of seconds to wait for the resolver. ``None``
                         leaves it to the transport.

    Returns:
        dict: A ``DoHResponse``

    Raises:
        :exc:`spfwalk.utils.ResolverError`
        :exc:`spfwalk.utils.DecodeError`
    """
    name = normalize_domain(name)
    try:
        record_type = dns.rdatatype.to_text(dns.rdatatype.from_text(record_type))
    except dns.rdatatype.UnknownRdatatype:
        raise ResolverError(f"Unknown DNS record type: {record_type}")

    params = {"name": name, "type": record_type, "cd": "0"}
    headers = {"Accept": DOH_CONTENT_TYPE}
    close_session = False
    if session is None:
        session = requests.Session()
        session.headers = {"User-Agent": USER_AGENT}
        close_session = True

    logging.debug(f"Querying {resolver_url} for {record_type} records on {name}")
    try:
        response = session.get(
            resolver_url, params=params, headers=headers, timeout=timeout
        )
        response.raise_for_status()
    except requests.exceptions.HTTPError as error:
        raise ResolverError(
            error.response.text, status_code=error.response.status_code
        )
    except requests.exceptions.RequestException as error:
        raise ResolverError(str(error))
    finally:
        if close_session:
            session.close()

    try:
        payload = response.json()
    except ValueError as error:
        raise DecodeError(f"The resolver did not return valid JSON: {error}")
    results = parse_doh_response(payload)

    if results["Status"] != 0:
        try:
            rcode = dns.rcode.to_text(results["Status"])
        except (dns.rcode.UnknownRcode, ValueError):
            rcode = str(results["Status"])
        logging.debug(f"{record_type} query on {name} returned {rcode}")

    return results


def strip_txt_data(data: str) -> str:
    """
    Removes surrounding whitespace and one pair of surrounding quotes from
    the data of a TXT answer

    Quotes between several character-strings, such as
    ``"v=spf1 ip4:192.0.2.1" "-all"``, are left in place.

    Args:
        data (str): The ``data`` field of a DNS JSON answer

    Returns:
        str: The unquoted TXT value
    """
    data = data.strip()
    if len(data) >= 2 and data.startswith('"') and data.endswith('"'):
        data = data[1:-1]
    return data.strip()


def find_record(answers: Iterable[DoHAnswer], prefix: str) -> Optional[str]:
    """
    Finds the TXT record that begins with the given prefix

    The comparison ignores case, but the returned record keeps its original
    casing. If more than one record matches, the last one listed wins.

    Args:
        answers (list): ``DoHAnswer`` dictionaries
        prefix (str): The record prefix, e.g. ``v=spf1``

    Returns:
        str: The matching record, or ``None`` if no record matches
    """
    prefix = prefix.lower()
    record = None
    for answer in answers:
        value = strip_txt_data(answer["data"])
        if value.lower().startswith(prefix):
            record = value
    return record
