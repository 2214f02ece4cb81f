# -*- coding: utf-8 -*-
"""Constant values"""

from __future__ import annotations
import platform
import os

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

__version__ = "1.0.0"

OS = platform.system()
OS_RELEASE = platform.release()
USER_AGENT = f"Mozilla/5.0 (({OS} {OS_RELEASE})) spfwalk/{__version__}"
DOH_CONTENT_TYPE = "application/dns-json"
DEFAULT_RESOLVER_URL = "https://cloudflare-dns.com/dns-query"
DEFAULT_DOMAIN = "hotmail.com"
SPF_TXT_PREFIX = "v=spf1 "
DMARC_TXT_PREFIX = "v=dmarc1;"

# Third-party senders whose own SPF structure is not worth following
DEFAULT_EXCLUDED_INCLUDES = [
    "amazonses.com",
    "brightspace.com",
    "google.com",
    "protection.outlook.com",
    "qualtrics.com",
]

env = os.environ

if "SPFWALK_RESOLVER_URL" in env:
    DEFAULT_RESOLVER_URL = env["SPFWALK_RESOLVER_URL"]
if "SPFWALK_EXCLUDE" in env:
    DEFAULT_EXCLUDED_INCLUDES = [
        suffix.strip()
        for suffix in env["SPFWALK_EXCLUDE"].split(",")
        if suffix.strip()
    ]
