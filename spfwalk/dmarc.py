# -*- coding: utf-8 -*-
"""DMARC record lookup"""

from __future__ import annotations

import logging
from typing import Optional, TypedDict, Union

import requests

from spfwalk._constants import DEFAULT_RESOLVER_URL, DMARC_TXT_PREFIX
from spfwalk.utils import find_record, get_base_domain, normalize_domain, query_doh

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


class DMARCResults(TypedDict):
    record: Union[str, None]
    location: Union[str, None]
    parts: dict[str, str]


def split_dmarc_parts(record: str) -> dict[str, str]:
    """
    Splits a DMARC record into a dictionary of tags and values

    One trailing ``;`` is ignored. A segment without ``=`` is kept as a tag
    with an empty value.

    Args:
        record (str): A DMARC record

    Returns:
        dict: Tag names and their values, with surrounding whitespace removed
    """
    if record.endswith(";"):
        record = record[:-1]
    parts = {}
    for segment in record.split(";"):
        tag, _, value = segment.partition("=")
        parts[tag.strip()] = value.strip()
    return parts


def query_dmarc_record(
    domain: str,
    *,
    resolver_url: str = DEFAULT_RESOLVER_URL,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> Optional[str]:
    """
    Queries DNS over HTTPS for the DMARC record of a domain

    Args:
        domain (str): A domain name
        resolver_url (str): The DNS JSON endpoint of the resolver
        session (requests.Session): A session to send requests with
        timeout (float): Number of seconds to wait for the resolver

    Returns:
        str: The DMARC record, or ``None`` if the domain does not publish one

    Raises:
        :exc:`spfwalk.utils.ResolverError`
        :exc:`spfwalk.utils.DecodeError`
    """
    target = f"_dmarc.{domain}"
    logging.debug(f"Checking for a DMARC record at {target}")
    response = query_doh(
        target,
        "TXT",
        resolver_url=resolver_url,
        session=session,
        timeout=timeout,
    )
    return find_record(response["Answer"], DMARC_TXT_PREFIX)


def check_dmarc(
    domain: str,
    *,
    base_domain_fallback: bool = False,
    resolver_url: str = DEFAULT_RESOLVER_URL,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> DMARCResults:
    """
    Looks up and splits the DMARC record of a domain

    Args:
        domain (str): A domain name
        base_domain_fallback (bool): Query the base domain when a subdomain
                                     does not publish a record
        resolver_url (str): The DNS JSON endpoint of the resolver
        session (requests.Session): A session to send requests with
        timeout (float): Number of seconds to wait for the resolver

    Returns:
        dict: A ``dict`` with the following keys:
            - ``record`` - The DMARC record string, or ``None``
            - ``location`` - The domain the record was found at, or ``None``
            - ``parts`` - The tags and values of the record
              (see :func:`spfwalk.dmarc.split_dmarc_parts`)

    Raises:
        :exc:`spfwalk.utils.ResolverError`
        :exc:`spfwalk.utils.DecodeError`
    """
    location = domain
    record = query_dmarc_record(
        domain, resolver_url=resolver_url, session=session, timeout=timeout
    )
    if record is None and base_domain_fallback:
        base_domain = get_base_domain(domain)
        if base_domain != normalize_domain(domain):
            logging.debug(
                f"No DMARC record for {domain}, checking base domain {base_domain}"
            )
            location = base_domain
            record = query_dmarc_record(
                base_domain,
                resolver_url=resolver_url,
                session=session,
                timeout=timeout,
            )

    results: DMARCResults = {"record": record, "location": None, "parts": {}}
    if record is not None:
        results["location"] = location
        results["parts"] = split_dmarc_parts(record)
    return results
