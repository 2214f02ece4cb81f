# -*- coding: utf-8 -*-

"""Expands SPF records and looks up DMARC records over DNS-over-HTTPS"""

from __future__ import annotations

import json
import logging
from csv import DictWriter
from io import StringIO
from typing import Optional, TypedDict, Union
from collections.abc import Sequence

import requests

import spfwalk._constants
from spfwalk._constants import DEFAULT_RESOLVER_URL, USER_AGENT
from spfwalk.dmarc import check_dmarc
from spfwalk.spf import check_spf
from spfwalk.utils import normalize_domain

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


__version__ = spfwalk._constants.__version__


class DomainResults(TypedDict):
    domain: str
    spfRecord: set[str]
    spfParts: dict[str, list[str]]
    dmarcRecord: Union[str, None]
    dmarcParts: dict[str, str]


def check_domain(
    domain: str,
    *,
    exclude: Optional[Sequence[str]] = None,
    base_domain_fallback: bool = False,
    resolver_url: str = DEFAULT_RESOLVER_URL,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> DomainResults:
    """
    Expands the SPF record of a domain and looks up its DMARC record

    Args:
        domain (str): A domain name
        exclude (list): Suffixes of SPF include targets that should not be
                        followed. Defaults to a list of large third-party
                        senders.
        base_domain_fallback (bool): Look for a DMARC record at the base
                                     domain when a subdomain has none
        resolver_url (str): The DNS JSON endpoint of the resolver
        session (requests.Session): A session to send requests with
        timeout (float): Number of seconds to wait for the resolver

    Returns:
        dict: A ``dict`` with the following keys:

        - ``domain`` - The domain name
        - ``spfRecord`` - The ``set`` of SPF records seen during expansion
        - ``spfParts`` - SPF record terms by domain name
          (see :func:`spfwalk.spf.expand_spf_record`)
        - ``dmarcRecord`` - The DMARC record, or ``None``
        - ``dmarcParts`` - DMARC tags and values

    Raises:
        :exc:`spfwalk.utils.ResolverError`
        :exc:`spfwalk.utils.DecodeError`
    """
    domain = normalize_domain(domain.rstrip(".\r\n").strip())
    logging.debug(f"Checking: {domain}")
    close_session = False
    if session is None:
        session = requests.Session()
        session.headers = {"User-Agent": USER_AGENT}
        close_session = True
    try:
        spf = check_spf(
            domain,
            exclude=exclude,
            resolver_url=resolver_url,
            session=session,
            timeout=timeout,
        )
        dmarc = check_dmarc(
            domain,
            base_domain_fallback=base_domain_fallback,
            resolver_url=resolver_url,
            session=session,
            timeout=timeout,
        )
    finally:
        if close_session:
            session.close()

    results: DomainResults = {
        "domain": domain,
        "spfRecord": spf["records"],
        "spfParts": spf["parts"],
        "dmarcRecord": dmarc["record"],
        "dmarcParts": dmarc["parts"],
    }
    return results


def _json_default(value: object) -> object:
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def results_to_json(
    results: Union[DomainResults, list[DomainResults]],
) -> str:
    """
    Converts a dictionary of results or list of results to a JSON string

    Sets of records are written as sorted lists.

    Args:
        results (dict): A dictionary of results

    Returns:
        str: Results in JSON format
    """
    return json.dumps(results, ensure_ascii=False, indent=2, default=_json_default)


def results_to_csv_rows(
    results: Union[DomainResults, list[DomainResults]],
) -> list[dict]:
    """
    Converts a results dictionary or list of dictionaries and returns a
    list of CSV row dictionaries, one per expanded SPF domain

    Args:
        results (dict): A dictionary of results

    Returns:
        list: A list of CSV row dictionaries
    """
    rows = []

    if type(results) is dict:
        results = [results]

    for result in results:
        for spf_domain, parts in result["spfParts"].items():
            row = {
                "domain": result["domain"],
                "spf_domain": spf_domain,
                "spf_parts": " ".join(parts),
                "dmarc_record": result["dmarcRecord"],
            }
            rows.append(row)
    return rows


def results_to_csv(results: Union[DomainResults, list[DomainResults]]) -> str:
    """
    Converts a dictionary of results to CSV

    Args:
        results (dict): A dictionary of results

    Returns:
        str: A CSV of results
    """
    fields = ["domain", "spf_domain", "spf_parts", "dmarc_record"]
    output = StringIO(newline="\n")
    writer = DictWriter(output, fieldnames=fields)
    writer.writeheader()
    rows = results_to_csv_rows(results)
    writer.writerows(rows)
    output.flush()

    return output.getvalue()


def output_to_file(path: str, content: str):
    """
    Write given content to the given path

    Args:
        path (str): A file path
        content (str): JSON or CSV text
    """
    with open(
        path, "w", newline="\n", encoding="utf-8", errors="ignore"
    ) as output_file:
        output_file.write(content)
