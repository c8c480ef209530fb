# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Most commonly used functions shared across all modules.
"""

import re
from math import log

NONALPHANUM = re.compile(r"([^a-zA-Z\d]+)")
CFN_EXPORT_DELIMITER = "::"


def define_title(*parts: str) -> str:
    """
    Returns a CFN compatible logical name from the given parts, i.e. ("api-v2", "Service") -> apiv2Service
    """
    return "".join(NONALPHANUM.sub("", str(part)) for part in parts)


def clpow2(x):
    """
    Function to return the closest power of two from given x

    :param x: Number to look the closest power of two for

    :returns: int() closest power of two
    """
    return pow(2, int(log(x, 2) + 0.5))
