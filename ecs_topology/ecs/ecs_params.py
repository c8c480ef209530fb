# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Constants shared by the ECS builders
"""

FARGATE_LAUNCH_TYPE = "FARGATE"
NETWORK_MODE = "awsvpc"

SECRET_ENV_NAME = "SECRET"
LOG_RETENTION_DAYS = 30

DEFAULT_TIER = "default"
HEAVY_TIER = "heavy"

FARGATE_MODES = {
    256: [2**i for i in [9, 10, 11]],
    512: [(2**10) * i for i in range(1, 5)],
    1024: [(2**10) * i for i in range(2, 9)],
    2048: [(2**10) * i for i in range(4, 17)],
    4096: [(2**10) * i for i in range(8, 33)],
    8192: [(2**10) * i for i in range(16, 61, 4)],
    16384: [(2**10) * i for i in range(32, 121, 8)],
}
