#  SPDX-License-Identifier: MPL-2.0
#  Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Service descriptors: what one deployable service is, before any resource gets built for it.

.. code-block:: yaml

    Services:
      - id: users
        imageSource:
          repositoryName: users-api
        containerPort: 8080
        environment:
          LOG_LEVEL: info
        secretArn: arn:aws:secretsmanager:eu-west-1:012345678912:secret:users-api-Xa3Dd1
        conditions:
          - /users*
        healthCheckPath: /users/health
"""

from __future__ import annotations

from types import MappingProxyType

from compose_x_common.compose_x_common import keyisset, set_else_none

from ecs_topology.common import define_title
from ecs_topology.common.logging import LOG
from ecs_topology.exceptions import (
    DuplicateDiscoveryName,
    DuplicateServiceId,
    TopologyConfigurationError,
)
from ecs_topology.services.service_image import (
    PrivateImage,
    PublicImage,
    define_image_source,
)


class ServiceDescriptor:
    """
    Immutable description of a deployable service.

    :ivar str id: unique identifier of the service within the topology
    :ivar image_source: PrivateImage or PublicImage
    :ivar int container_port: port the service listens on
    :ivar environment: read-only mapping of environment variables
    :ivar str secret_reference: optional secret ARN/name, None when not set
    :ivar tuple routing_conditions: ALB path patterns, in order
    :ivar str health_check_path:
    :ivar str discovery_name: hostname in the private namespace
    """

    __slots__ = (
        "_id",
        "_image_source",
        "_container_port",
        "_environment",
        "_secret_reference",
        "_routing_conditions",
        "_health_check_path",
        "_discovery_name",
    )

    def __init__(
        self,
        service_id: str,
        image_source: PrivateImage | PublicImage,
        container_port: int,
        routing_conditions,
        health_check_path: str,
        environment: dict = None,
        secret_reference: str = None,
        discovery_name: str = None,
    ):
        if not isinstance(service_id, str) or not define_title(service_id):
            raise TopologyConfigurationError(
                "Service id must be a string with at least one alphanumeric character. Got",
                service_id,
            )
        if not isinstance(image_source, (PrivateImage, PublicImage)):
            raise TopologyConfigurationError(
                f"{service_id} - image_source must be one of",
                (PrivateImage, PublicImage),
                "Got",
                type(image_source),
            )
        if (
            isinstance(container_port, bool)
            or not isinstance(container_port, int)
            or not (1 <= container_port <= 65535)
        ):
            raise TopologyConfigurationError(
                f"{service_id} - containerPort must be an integer in [1, 65535]. Got",
                container_port,
            )
        if isinstance(routing_conditions, str):
            routing_conditions = [routing_conditions]
        environment = environment if environment else {}
        for key, value in environment.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise TopologyConfigurationError(
                    f"{service_id} - environment keys and values must be strings. Got",
                    key,
                    value,
                )
        object.__setattr__(self, "_id", service_id)
        object.__setattr__(self, "_image_source", image_source)
        object.__setattr__(self, "_container_port", container_port)
        object.__setattr__(self, "_environment", MappingProxyType(dict(environment)))
        object.__setattr__(
            self, "_secret_reference", secret_reference if secret_reference else None
        )
        object.__setattr__(self, "_routing_conditions", tuple(routing_conditions))
        object.__setattr__(self, "_health_check_path", health_check_path)
        object.__setattr__(
            self,
            "_discovery_name",
            discovery_name
            if discovery_name
            else image_source.default_discovery_name.lower(),
        )

    def __setattr__(self, key, value):
        raise AttributeError(f"{type(self).__name__} is immutable. Cannot set {key}")

    def __repr__(self):
        return f"ServiceDescriptor({self.id}, {self.image_source!r}, {self.container_port})"

    def __eq__(self, other):
        if not isinstance(other, ServiceDescriptor):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash(self.id)

    @property
    def id(self) -> str:
        return self._id

    @property
    def image_source(self) -> PrivateImage | PublicImage:
        return self._image_source

    @property
    def container_port(self) -> int:
        return self._container_port

    @property
    def environment(self) -> MappingProxyType:
        return self._environment

    @property
    def secret_reference(self) -> str | None:
        return self._secret_reference

    @property
    def has_secret(self) -> bool:
        return self._secret_reference is not None

    @property
    def routing_conditions(self) -> tuple:
        return self._routing_conditions

    @property
    def health_check_path(self) -> str:
        return self._health_check_path

    @property
    def discovery_name(self) -> str:
        return self._discovery_name

    @classmethod
    def from_definition(cls, definition: dict) -> ServiceDescriptor:
        """
        Creates the descriptor from a Services[] entry of the topology file
        """
        return cls(
            definition["id"],
            define_image_source(definition["imageSource"]),
            definition["containerPort"],
            definition["conditions"],
            definition["healthCheckPath"],
            environment=set_else_none("environment", definition, alt_value={}),
            secret_reference=set_else_none("secretArn", definition),
            discovery_name=set_else_none("discoveryName", definition),
        )

    def to_dict(self) -> dict:
        """Renders the descriptor back to its topology file definition."""
        definition = {"id": self.id}
        if isinstance(self.image_source, PrivateImage):
            definition["imageSource"] = {
                "repositoryName": self.image_source.repository_name
            }
        else:
            definition["imageSource"] = {
                "namespace": self.image_source.namespace,
                "imageName": self.image_source.image_name,
            }
        definition["containerPort"] = self.container_port
        if self.environment:
            definition["environment"] = dict(self.environment)
        if self.has_secret:
            definition["secretArn"] = self.secret_reference
        definition["conditions"] = list(self.routing_conditions)
        definition["healthCheckPath"] = self.health_check_path
        definition["discoveryName"] = self.discovery_name
        return definition


def validate_unique_descriptors(descriptors: list[ServiceDescriptor]) -> None:
    """
    Checks that no two descriptors share the same id or discovery name.
    Resources are named after the alphanumeric characters of the id, so api-v2 and apiv2 collide.

    :raises DuplicateServiceId:
    :raises DuplicateDiscoveryName:
    """
    titles = {}
    hostnames = {}
    for descriptor in descriptors:
        title = define_title(descriptor.id)
        if title in titles and titles[title] == descriptor.id:
            raise DuplicateServiceId(
                f"Service id {descriptor.id} is defined more than once"
            )
        elif title in titles:
            raise DuplicateServiceId(
                f"Services {titles[title]} and {descriptor.id} both name their resources {title}"
            )
        titles[title] = descriptor.id
        if descriptor.discovery_name in hostnames:
            raise DuplicateDiscoveryName(
                f"Services {hostnames[descriptor.discovery_name]} and {descriptor.id} "
                f"both register as {descriptor.discovery_name}. Set discoveryName to differentiate them."
            )
        hostnames[descriptor.discovery_name] = descriptor.id


def import_descriptors(services_definitions: list) -> list[ServiceDescriptor]:
    """
    Creates the ServiceDescriptor for each service definition, preserving the input order.
    """
    if not isinstance(services_definitions, list) or not services_definitions:
        raise TopologyConfigurationError(
            "Services must be a non-empty list. Got", services_definitions
        )
    descriptors = []
    for definition in services_definitions:
        if not keyisset("id", definition):
            raise TopologyConfigurationError(
                "All services must have an id. Got", definition
            )
        descriptors.append(ServiceDescriptor.from_definition(definition))
        LOG.debug(f"Imported service {descriptors[-1]}")
    validate_unique_descriptors(descriptors)
    return descriptors
