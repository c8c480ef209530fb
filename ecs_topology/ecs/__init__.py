# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Compute units: the Fargate task definition of each service, with its execution role and logs
"""
