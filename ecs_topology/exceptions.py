#  SPDX-License-Identifier: MPL-2.0
#  Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Custom exceptions for ecs-topology
"""


class TopologyBaseException(Exception):
    """
    Top class for ECS Topology Exceptions
    """

    def __init__(self, msg, *args):
        super().__init__(msg, *args)


class TopologyConfigurationError(TopologyBaseException):
    """
    The services definition is not valid and nothing can be built from it
    """


class InvalidDescriptor(TopologyConfigurationError):
    """
    Input file does not validate against the topology JSON schema
    """


class DuplicateServiceId(TopologyConfigurationError):
    """
    Two services share the same id in the same topology
    """


class DuplicateDiscoveryName(TopologyConfigurationError):
    """
    Two services would register the same hostname in the private namespace
    """


class InvalidImageSource(TopologyConfigurationError):
    """
    Service image is neither a private repository nor a public image, or both
    """


class InvalidRoutingCondition(TopologyConfigurationError):
    """
    Path pattern is not accepted by the Application Load Balancer
    """


class PriorityCollision(TopologyConfigurationError):
    """
    Two listener rules would share the same priority, or the priority is out of range
    """


class InvalidComputeQuota(TopologyConfigurationError):
    """
    CPU / RAM combination is not a valid Fargate configuration
    """


class ResolutionError(TopologyBaseException):
    """
    An external reference (secret, image) could not be resolved
    """


class SecretResolutionError(ResolutionError):
    """
    The secret store could not resolve the secret reference
    """


class ImageResolutionError(ResolutionError):
    """
    The registry has no image for the repository at the expected tag
    """


class QuotaError(TopologyBaseException):
    """
    Request exceeds what the topology supports, i.e. availability zones count
    """


class CompilationError(TopologyBaseException):
    """
    A compilation stage was started before the stage it depends on completed,
    or two resources of the topology got the same logical name
    """
