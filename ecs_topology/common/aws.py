# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Common functions to get AWS sessions
"""

import boto3
from botocore.exceptions import ClientError
from compose_x_common.aws import get_assume_role_session

from ecs_topology.common.logging import LOG


def get_cross_role_session(session, arn, region_name=None, session_name=None):
    """
    Function to override the settings session to an assumed role session for lookups

    :param boto3.session.Session session: The original session fetching the credentials for the role
    :param str arn:
    :param str region_name: Name of region for session
    :param str session_name: Override name of the session
    :return: boto3 session from lookup settings
    :rtype: boto3.session.Session
    """
    if not session_name:
        session_name = "EcsTopology@Lookup"
    try:
        return get_assume_role_session(
            session, arn, session_name=session_name, region=region_name
        )
    except ClientError:
        LOG.error(f"Failed to use the Role ARN {arn}")
        raise


def set_session_region(session, region_name=None):
    """
    Returns a session using the same credentials as session, in region_name.
    The session is returned as-is when region_name is not set or is already its region.

    :param boto3.session.Session session:
    :param str region_name:
    :rtype: boto3.session.Session
    """
    if not region_name or session.region_name == region_name:
        return session
    credentials = session.get_credentials()
    if credentials is None:
        return boto3.session.Session(region_name=region_name)
    credentials = credentials.get_frozen_credentials()
    return boto3.session.Session(
        aws_access_key_id=credentials.access_key,
        aws_secret_access_key=credentials.secret_key,
        aws_session_token=credentials.token,
        region_name=region_name,
    )
