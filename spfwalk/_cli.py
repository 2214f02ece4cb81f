#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""Expands SPF records and looks up DMARC records over DNS-over-HTTPS"""

from __future__ import annotations

import sys
from argparse import ArgumentParser

import logging

from spfwalk import (
    __version__,
    check_domain,
    results_to_json,
    results_to_csv,
    output_to_file,
)
from spfwalk._constants import (
    DEFAULT_DOMAIN,
    DEFAULT_EXCLUDED_INCLUDES,
    DEFAULT_RESOLVER_URL,
)
from spfwalk.utils import DoHError

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


def _main(argv=None):
    """Called when the module in executed"""
    arg_parser = ArgumentParser(description=__doc__)
    arg_parser.add_argument(
        "domain",
        nargs="?",
        default=DEFAULT_DOMAIN,
        help=f"the domain to check (default {DEFAULT_DOMAIN})",
    )
    arg_parser.add_argument(
        "-r",
        "--resolver",
        default=DEFAULT_RESOLVER_URL,
        help=f"DNS JSON endpoint to query (default {DEFAULT_RESOLVER_URL})",
    )
    arg_parser.add_argument(
        "-e",
        "--exclude",
        nargs="*",
        default=DEFAULT_EXCLUDED_INCLUDES,
        help="SPF include suffixes that should not be followed "
        f"(default {' '.join(DEFAULT_EXCLUDED_INCLUDES)})",
    )
    arg_parser.add_argument(
        "-m",
        "--base-domain-fallback",
        action="store_true",
        help="look for a DMARC record at the base domain "
        "when a subdomain does not have one",
    )
    arg_parser.add_argument(
        "-f",
        "--format",
        default="json",
        help="specify JSON or CSV screen output format",
    )
    arg_parser.add_argument(
        "-o",
        "--output",
        nargs="+",
        help="one or more file paths to output to "
        "(must end in .json or .csv) "
        "(silences screen output)",
    )
    arg_parser.add_argument(
        "-t",
        "--timeout",
        help="number of seconds to wait for the resolver (default: no limit)",
        type=float,
        default=None,
    )
    arg_parser.add_argument("-v", "--version", action="version", version=__version__)
    arg_parser.add_argument(
        "--debug", action="store_true", help="enable debugging output"
    )

    args = arg_parser.parse_args(argv)

    logging_format = "%(asctime)s - %(levelname)s: %(message)s"
    logging.basicConfig(level=logging.WARNING, format=logging_format)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
        logging.debug("Debug output enabled")

    try:
        results = check_domain(
            args.domain,
            exclude=args.exclude,
            base_domain_fallback=args.base_domain_fallback,
            resolver_url=args.resolver,
            timeout=args.timeout,
        )
    except DoHError as error:
        logging.error(str(error))
        sys.exit(1)

    if args.output is None:
        if args.format.lower() == "csv":
            print(results_to_csv(results))
        else:
            print(results_to_json(results))
    else:
        for path in args.output:
            if path.lower().endswith(".json"):
                output_to_file(path, results_to_json(results))
            elif path.lower().endswith(".csv"):
                output_to_file(path, results_to_csv(results))
            else:
                logging.error(f"Output path {path} must end in .json or .csv")


if __name__ == "__main__":
    _main()
