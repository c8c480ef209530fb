# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Execution role of the compute units, used by the ECS agent to pull the image, ship logs and fetch the secret.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ecs_topology.services.service_descriptor import ServiceDescriptor

from troposphere import GetAtt, Sub
from troposphere.iam import Policy, Role
from troposphere.logs import LogGroup

from ecs_topology.common import define_title
from ecs_topology.iam import policy_document, service_role_trust_policy


def ecr_pull_statements(repository_name: str) -> list:
    return [
        {
            "Sid": "AllowEcrAuthorization",
            "Effect": "Allow",
            "Action": ["ecr:GetAuthorizationToken"],
            "Resource": ["*"],
        },
        {
            "Sid": "AllowEcrPull",
            "Effect": "Allow",
            "Action": [
                "ecr:BatchCheckLayerAvailability",
                "ecr:GetDownloadUrlForLayer",
                "ecr:BatchGetImage",
            ],
            "Resource": [
                Sub(
                    f"arn:${{AWS::Partition}}:ecr:${{AWS::Region}}:${{AWS::AccountId}}:repository/{repository_name}"
                )
            ],
        },
    ]


def logs_statements(log_group: LogGroup) -> list:
    return [
        {
            "Sid": "AllowCloudWatchLoggingToSpecificLogGroup",
            "Effect": "Allow",
            "Action": ["logs:CreateLogStream", "logs:PutLogEvents"],
            "Resource": [GetAtt(log_group, "Arn")],
        }
    ]


def secret_statements(secret_arn: str) -> list:
    return [
        {
            "Sid": "AllowSecretValueRetrieval",
            "Effect": "Allow",
            "Action": ["secretsmanager:GetSecretValue"],
            "Resource": [secret_arn],
        }
    ]


def define_execution_role(
    descriptor: ServiceDescriptor, log_group: LogGroup, secret_arn: str = None
) -> Role:
    """
    Creates the task execution role for the service, with only the permissions its container needs

    :param descriptor: the service
    :param log_group: the service log group
    :param secret_arn: resolved ARN of the service secret, if any
    """
    policies = [
        Policy(
            PolicyName="CloudWatchLogsAccess",
            PolicyDocument=policy_document(logs_statements(log_group)),
        )
    ]
    if descriptor.image_source.requires_registry_access:
        policies.append(
            Policy(
                PolicyName="EcrPullAccess",
                PolicyDocument=policy_document(
                    ecr_pull_statements(descriptor.image_source.repository_name)
                ),
            )
        )
    if secret_arn:
        policies.append(
            Policy(
                PolicyName="SecretAccess",
                PolicyDocument=policy_document(secret_statements(secret_arn)),
            )
        )
    return Role(
        define_title(descriptor.id, "ExecutionRole"),
        AssumeRolePolicyDocument=service_role_trust_policy("ecs-tasks"),
        Policies=policies,
    )
