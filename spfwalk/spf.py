# -*- coding: utf-8 -*-
"""Sender Policy framework (SPF) record expansion"""

from __future__ import annotations

import logging
import re
from collections import deque
from typing import Optional, TypedDict
from collections.abc import Sequence

import requests

from spfwalk._constants import (
    DEFAULT_EXCLUDED_INCLUDES,
    DEFAULT_RESOLVER_URL,
    SPF_TXT_PREFIX,
)
from spfwalk.utils import find_record, query_doh

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

WHITESPACE_REGEX = re.compile(r"\s+")
INCLUDE_PREFIX = "include:"
REDIRECT_PREFIX = "redirect="


class SPFExpansion(TypedDict):
    parts: dict[str, list[str]]
    records: set[str]


def split_spf_parts(record: str) -> list[str]:
    """
    Splits an SPF record into its whitespace-separated terms

    An empty record yields a single empty term.

    Args:
        record (str): An SPF record

    Returns:
        list: The terms of the record, version tag included
    """
    return WHITESPACE_REGEX.split(record)


def query_spf_record(
    domain: str,
    *,
    resolver_url: str = DEFAULT_RESOLVER_URL,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> Optional[str]:
    """
    Queries DNS over HTTPS for an SPF record

    Args:
        domain (str): A domain name
        resolver_url (str): The DNS JSON endpoint of the resolver
        session (requests.Session): A session to send requests with
        timeout (float): Number of seconds to wait for the resolver

    Returns:
        str: The SPF record, or ``None`` if the domain does not publish one

    Raises:
        :exc:`spfwalk.utils.ResolverError`
        :exc:`spfwalk.utils.DecodeError`
    """
    logging.debug(f"Checking for a SPF record on {domain}")
    response = query_doh(
        domain,
        "TXT",
        resolver_url=resolver_url,
        session=session,
        timeout=timeout,
    )
    return find_record(response["Answer"], SPF_TXT_PREFIX)


def _get_redirect(parts: list[str]) -> Optional[str]:
    # Only a record made of the version tag and a lone redirect is followed
    redirects = [part for part in parts if part.startswith(REDIRECT_PREFIX)]
    if len(redirects) == 1 and len(parts) == 2:
        return redirects[0][len(REDIRECT_PREFIX) :]
    return None


def _get_includes(parts: list[str], exclude: Sequence[str]) -> list[str]:
    includes = []
    for part in parts:
        if not part.startswith(INCLUDE_PREFIX):
            continue
        include = part[len(INCLUDE_PREFIX) :]
        if any(include.endswith(suffix) for suffix in exclude):
            logging.debug(f"Not following excluded include {include}")
            continue
        includes.append(include)
    return includes


def expand_spf_record(
    domain: str,
    exclude: Optional[Sequence[str]] = None,
    already_redirected: bool = False,
    *,
    resolver_url: str = DEFAULT_RESOLVER_URL,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> SPFExpansion:
    """
    Expands the SPF record of a domain by following its ``include``
    mechanisms and ``redirect`` modifier

    Domains are queried breadth-first. A record consisting only of the version
    tag and a ``redirect`` modifier restarts the expansion at the redirect
    target, and the work done so far is discarded. Only one redirect is
    followed. Includes that end with a suffix in ``exclude`` are not followed.

    .. note::
        Include loops are not detected. A domain that is included more than
        once is queried again each time, and its entry in ``parts`` is
        overwritten.

    Args:
        domain (str): A domain name
        exclude (list): Suffixes of include targets that should not be followed
        already_redirected (bool): A redirect has already been followed
        resolver_url (str): The DNS JSON endpoint of the resolver
        session (requests.Session): A session to send requests with
        timeout (float): Number of seconds to wait for the resolver

    Returns:
        dict: A ``dict`` with the following keys:
            - ``parts`` - A ``dict`` of domain names and the terms of their
              SPF records, in the order the domains were queried
            - ``records`` - A ``set`` of the SPF records seen, including an
              empty string for any domain without one

    Raises:
        :exc:`spfwalk.utils.ResolverError`
        :exc:`spfwalk.utils.DecodeError`
    """
    if exclude is None:
        exclude = []
    queue = deque([domain])
    results: SPFExpansion = {"parts": {}, "records": set()}

    while queue:
        current = queue.popleft()
        record = query_spf_record(
            current,
            resolver_url=resolver_url,
            session=session,
            timeout=timeout,
        )
        if record is None:
            logging.debug(f"{current} does not have a SPF record")
            record = ""
        parts = split_spf_parts(record)
        results["parts"][current] = parts
        results["records"].add(record)

        redirect = _get_redirect(parts)
        if redirect is not None and not already_redirected:
            logging.debug(f"Following the redirect from {current} to {redirect}")
            return expand_spf_record(
                redirect,
                exclude,
                True,
                resolver_url=resolver_url,
                session=session,
                timeout=timeout,
            )

        includes = _get_includes(parts, exclude)
        if includes:
            logging.debug(f"Queueing includes of {current}: {', '.join(includes)}")
        queue.extend(includes)

    return results


def check_spf(
    domain: str,
    *,
    exclude: Optional[Sequence[str]] = None,
    resolver_url: str = DEFAULT_RESOLVER_URL,
    session: Optional[requests.Session] = None,
    timeout: Optional[float] = None,
) -> SPFExpansion:
    """
    Expands the SPF record of a domain, skipping the default list of
    third-party senders when no exclusion list is given

    Args:
        domain (str): A domain name
        exclude (list): Suffixes of include targets that should not be followed
        resolver_url (str): The DNS JSON endpoint of the resolver
        session (requests.Session): A session to send requests with
        timeout (float): Number of seconds to wait for the resolver

    Returns:
        dict: See :func:`spfwalk.spf.expand_spf_record`

    Raises:
        :exc:`spfwalk.utils.ResolverError`
        :exc:`spfwalk.utils.DecodeError`
    """
    if exclude is None:
        exclude = DEFAULT_EXCLUDED_INCLUDES
    return expand_spf_record(
        domain,
        exclude,
        resolver_url=resolver_url,
        session=session,
        timeout=timeout,
    )
