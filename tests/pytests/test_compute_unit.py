# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille<john@compose-x.io>

from pytest import fixture, raises
from troposphere import Tags

from ecs_topology.ecs.compute_sizing import ComputeQuota, ComputeSizing
from ecs_topology.ecs.compute_unit import build_compute_unit, tag_compute_unit
from ecs_topology.ecs.resolvers import ReferencesResolver
from ecs_topology.exceptions import (
    InvalidComputeQuota,
    SecretResolutionError,
    TopologyConfigurationError,
)
from ecs_topology.services.service_descriptor import ServiceDescriptor
from ecs_topology.services.service_image import PrivateImage, PublicImage

SECRET_ARN = "arn:aws:secretsmanager:us-east-1:012345678912:secret:bot-service-ZY9VSs"


class RecordingResolver(ReferencesResolver):
    """Offline resolver keeping track of the secrets it was asked for"""

    def __init__(self):
        super().__init__(lookup=False)
        self.secrets_requested = []

    def resolve_secret(self, secret_reference):
        self.secrets_requested.append(secret_reference)
        return super().resolve_secret(secret_reference)


@fixture
def resolver():
    return RecordingResolver()


@fixture
def bot_service():
    return ServiceDescriptor(
        "BotService",
        PrivateImage("bot-service"),
        80,
        ["/bot*"],
        "/bot/health",
        environment={"LOG_LEVEL": "debug"},
        secret_reference=SECRET_ARN,
    )


@fixture
def nginx_service():
    return ServiceDescriptor(
        "Nginx", PublicImage("library", "nginx"), 8080, ["/static*"], "/"
    )


def test_default_sizing(bot_service, resolver):
    unit = build_compute_unit(bot_service, None, resolver)
    assert unit.quota == ComputeQuota(512, 2048)
    assert unit.task_definition.Cpu == "512"
    assert unit.task_definition.Memory == "2048"


def test_heavy_sizing_from_table(bot_service, nginx_service, resolver):
    sizing = ComputeSizing.from_definition({"Services": {"BotService": "heavy"}})
    heavy = build_compute_unit(bot_service, None, resolver, sizing)
    default = build_compute_unit(nginx_service, None, resolver, sizing)
    assert heavy.quota == ComputeQuota(2048, 8192)
    assert default.quota == ComputeQuota(512, 2048)
    assert heavy.quota.cpu > default.quota.cpu
    assert heavy.quota.memory > default.quota.memory


def test_custom_tiers():
    sizing = ComputeSizing.from_definition(
        {
            "Tiers": {"xl": {"Cpu": 4096, "Memory": 16384}},
            "Services": {"Embeddings": "xl"},
        }
    )
    assert sizing.tier_for("Embeddings") == "xl"
    assert sizing.tier_for("Unknown") == "default"
    assert sizing.quota_for("Embeddings") == ComputeQuota(4096, 16384)


def test_invalid_sizing():
    with raises(InvalidComputeQuota):
        ComputeQuota(512, 8192)
    with raises(InvalidComputeQuota):
        ComputeQuota(300, 1024)
    with raises(TopologyConfigurationError):
        ComputeSizing(services_tiers={"BotService": "gigantic"})


def test_secret_binding(bot_service, resolver):
    unit = build_compute_unit(bot_service, None, resolver)
    assert resolver.secrets_requested == [SECRET_ARN]
    assert unit.secret_arn == SECRET_ARN
    assert [secret.to_dict() for secret in unit.secrets] == [
        {"Name": "SECRET", "ValueFrom": SECRET_ARN}
    ]
    assert unit.environment == {"LOG_LEVEL": "debug"}
    role_policies = [
        policy.PolicyName for policy in unit.execution_role.Policies
    ]
    assert "SecretAccess" in role_policies
    assert "EcrPullAccess" in role_policies


def test_no_secret(nginx_service, resolver):
    unit = build_compute_unit(nginx_service, None, resolver)
    assert resolver.secrets_requested == []
    assert unit.secret_arn is None
    assert unit.secrets == []
    assert "Secrets" not in unit.container_definition.to_dict()
    role_policies = [
        policy.PolicyName for policy in unit.execution_role.Policies
    ]
    assert role_policies == ["CloudWatchLogsAccess"]


def test_invalid_secret_offline(nginx_service):
    descriptor = ServiceDescriptor(
        "Nginx",
        PublicImage("library", "nginx"),
        8080,
        ["/static*"],
        "/",
        secret_reference="not-an-arn",
    )
    with raises(SecretResolutionError):
        build_compute_unit(descriptor, None, ReferencesResolver(lookup=False))


def test_secret_env_conflict(resolver):
    descriptor = ServiceDescriptor(
        "Nginx",
        PublicImage("library", "nginx"),
        8080,
        ["/static*"],
        "/",
        environment={"SECRET": "plain"},
        secret_reference=SECRET_ARN,
    )
    with raises(TopologyConfigurationError):
        build_compute_unit(descriptor, None, resolver)


def test_container_definition(nginx_service, resolver):
    unit = build_compute_unit(nginx_service, None, resolver)
    container = unit.container_definition.to_dict()
    assert container["Name"] == "NginxContainer"
    assert container["Image"] == "library/nginx"
    assert container["PortMappings"] == [{"ContainerPort": 8080, "Protocol": "tcp"}]
    assert container["LogConfiguration"]["LogDriver"] == "awslogs"
    assert container["LogConfiguration"]["Options"]["awslogs-stream-prefix"] == "Nginx"
    task_definition = unit.task_definition.to_dict()["Properties"]
    assert task_definition["RequiresCompatibilities"] == ["FARGATE"]
    assert task_definition["NetworkMode"] == "awsvpc"


def test_compute_unit_tags(bot_service, resolver):
    tags = Tags(costcentre="starter-app")
    untagged = build_compute_unit(bot_service, None, resolver)
    tagged = tag_compute_unit(untagged, tags)
    assert tagged is not untagged
    assert not hasattr(untagged.task_definition, "Tags")
    assert tagged.task_definition.Tags.to_dict() == [
        {"Key": "costcentre", "Value": "starter-app"}
    ]
    assert tagged.execution_role.Tags.to_dict() == [
        {"Key": "costcentre", "Value": "starter-app"}
    ]
    built_tagged = build_compute_unit(bot_service, tags, resolver)
    assert built_tagged.task_definition.to_dict() == tagged.task_definition.to_dict()
