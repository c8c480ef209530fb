# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Builds the compute unit of a service: the Fargate task definition running its only container,
the execution role and the log group of the container.

Each compute unit only uses resources named after its service id, so building one never affects another.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from troposphere import Tags
    from ecs_topology.ecs.resolvers import ReferencesResolver
    from ecs_topology.services.service_descriptor import ServiceDescriptor

from troposphere import AWS_REGION, GetAtt, Ref, Sub
from troposphere.ecs import (
    ContainerDefinition,
    Environment,
    LogConfiguration,
    PortMapping,
)
from troposphere.ecs import Secret as EcsSecret
from troposphere.ecs import TaskDefinition
from troposphere.logs import LogGroup

from ecs_topology.common import define_title
from ecs_topology.common.logging import LOG
from ecs_topology.common.tagging import tag_resource
from ecs_topology.ecs.compute_sizing import ComputeQuota, ComputeSizing
from ecs_topology.ecs.ecs_params import (
    FARGATE_LAUNCH_TYPE,
    LOG_RETENTION_DAYS,
    NETWORK_MODE,
    SECRET_ENV_NAME,
)
from ecs_topology.ecs.task_iam import define_execution_role
from ecs_topology.exceptions import TopologyConfigurationError


class ComputeUnit:
    """
    The compute resources of one service. Built once, never changed: tagging returns a new ComputeUnit.

    :ivar ServiceDescriptor descriptor: the service the unit is built from
    :ivar ComputeQuota quota: CPU / RAM of the task
    :ivar str secret_arn: ARN of the secret exposed as SECRET, None without secret
    :ivar troposphere.ecs.TaskDefinition task_definition:
    :ivar troposphere.iam.Role execution_role:
    :ivar troposphere.logs.LogGroup log_group:
    """

    def __init__(
        self,
        descriptor: ServiceDescriptor,
        quota: ComputeQuota,
        task_definition: TaskDefinition,
        execution_role,
        log_group: LogGroup,
        secret_arn: str = None,
    ):
        self.descriptor = descriptor
        self.quota = quota
        self.task_definition = task_definition
        self.execution_role = execution_role
        self.log_group = log_group
        self.secret_arn = secret_arn

    def __repr__(self):
        return f"ComputeUnit({self.service_id}, {self.quota!r})"

    @property
    def service_id(self) -> str:
        return self.descriptor.id

    @property
    def container_name(self) -> str:
        return container_name(self.descriptor)

    @property
    def container_port(self) -> int:
        return self.descriptor.container_port

    @property
    def container_definition(self) -> ContainerDefinition:
        return self.task_definition.ContainerDefinitions[0]

    @property
    def environment(self) -> dict:
        """Plain environment variables of the container, secret excluded"""
        return {
            env.Name: env.Value
            for env in self.container_definition.properties.get("Environment", [])
        }

    @property
    def secrets(self) -> list:
        return list(self.container_definition.properties.get("Secrets", []))

    @property
    def resources(self) -> list:
        return [self.log_group, self.execution_role, self.task_definition]

    def copy_with(self, **changes) -> ComputeUnit:
        """Returns a new ComputeUnit with the given resources replaced"""
        attributes = {
            "descriptor": self.descriptor,
            "quota": self.quota,
            "task_definition": self.task_definition,
            "execution_role": self.execution_role,
            "log_group": self.log_group,
            "secret_arn": self.secret_arn,
        }
        attributes.update(changes)
        return ComputeUnit(**attributes)


def container_name(descriptor: ServiceDescriptor) -> str:
    return define_title(descriptor.id, "Container")


def define_image(descriptor: ServiceDescriptor, resolver: ReferencesResolver):
    """
    Returns the image URI of the container. Private images are checked to exist when lookups are enabled.

    :raises ImageResolutionError:
    """
    resolver.resolve_image(descriptor.image_source)
    return descriptor.image_source.image_uri


def define_secret(
    descriptor: ServiceDescriptor, resolver: ReferencesResolver
) -> str | None:
    """
    Resolves the service secret, if it has one. Without secret reference, the resolver is not called at all.

    :raises SecretResolutionError:
    """
    if not descriptor.has_secret:
        return None
    if SECRET_ENV_NAME in descriptor.environment:
        raise TopologyConfigurationError(
            f"{descriptor.id} - environment variable {SECRET_ENV_NAME} conflicts with the service secret"
        )
    return resolver.resolve_secret(descriptor.secret_reference)


def define_log_group(descriptor: ServiceDescriptor) -> LogGroup:
    return LogGroup(
        define_title(descriptor.id, "LogGroup"),
        LogGroupName=Sub(f"/ecs/${{AWS::StackName}}/{descriptor.id}"),
        RetentionInDays=LOG_RETENTION_DAYS,
    )


def define_container(
    descriptor: ServiceDescriptor, image, log_group: LogGroup, secret_arn: str = None
) -> ContainerDefinition:
    props = {
        "Name": container_name(descriptor),
        "Image": image,
        "Essential": True,
        "Environment": [
            Environment(Name=name, Value=value)
            for name, value in descriptor.environment.items()
        ],
        "PortMappings": [
            PortMapping(ContainerPort=descriptor.container_port, Protocol="tcp")
        ],
        "LogConfiguration": LogConfiguration(
            LogDriver="awslogs",
            Options={
                "awslogs-group": Ref(log_group),
                "awslogs-region": Ref(AWS_REGION),
                "awslogs-stream-prefix": descriptor.id,
            },
        ),
    }
    if secret_arn:
        props["Secrets"] = [EcsSecret(Name=SECRET_ENV_NAME, ValueFrom=secret_arn)]
    return ContainerDefinition(**props)


def build_compute_unit(
    descriptor: ServiceDescriptor,
    tags: Tags | None,
    resolver: ReferencesResolver,
    sizing: ComputeSizing = None,
) -> ComputeUnit:
    """
    Builds the compute unit of the service, then tags it.

    :param descriptor: the service
    :param tags: the shared tags, applied to the compute unit resources
    :param resolver: resolves the secret and image
    :param sizing: the tiers of the services, default sizing if not set
    :raises ResolutionError: no compute unit is built when the secret or image cannot be resolved
    """
    if sizing is None:
        sizing = ComputeSizing()
    quota = sizing.quota_for(descriptor.id)
    image = define_image(descriptor, resolver)
    secret_arn = define_secret(descriptor, resolver)
    log_group = define_log_group(descriptor)
    execution_role = define_execution_role(descriptor, log_group, secret_arn)
    task_definition = TaskDefinition(
        define_title(descriptor.id, "TaskDefinition"),
        Family=Sub(f"${{AWS::StackName}}-{descriptor.id}"),
        Cpu=str(quota.cpu),
        Memory=str(quota.memory),
        NetworkMode=NETWORK_MODE,
        RequiresCompatibilities=[FARGATE_LAUNCH_TYPE],
        ExecutionRoleArn=GetAtt(execution_role, "Arn"),
        ContainerDefinitions=[define_container(descriptor, image, log_group, secret_arn)],
    )
    unit = ComputeUnit(
        descriptor, quota, task_definition, execution_role, log_group, secret_arn
    )
    LOG.info(
        f"{descriptor.id} - Compute unit {quota!r} from {descriptor.image_source!r}"
        f"{' with secret' if secret_arn else ''}"
    )
    return tag_compute_unit(unit, tags)


def tag_compute_unit(unit: ComputeUnit, tags: Tags | None) -> ComputeUnit:
    """
    Returns a copy of the compute unit with the tags applied to its resources

    :param ComputeUnit unit:
    :param troposphere.Tags tags:
    """
    if tags is None:
        return unit
    return unit.copy_with(
        task_definition=tag_resource(unit.task_definition, tags),
        execution_role=tag_resource(unit.execution_role, tags),
        log_group=tag_resource(unit.log_group, tags),
    )
