# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille<john@compose-x.io>

from pytest import fixture, raises

from ecs_topology.exceptions import (
    DuplicateDiscoveryName,
    DuplicateServiceId,
    InvalidImageSource,
    TopologyConfigurationError,
)
from ecs_topology.services.service_descriptor import (
    ServiceDescriptor,
    import_descriptors,
)
from ecs_topology.services.service_image import (
    PrivateImage,
    PublicImage,
    define_image_source,
)


@fixture
def services_definitions():
    return [
        {
            "id": "WorkspaceService",
            "imageSource": {"repositoryName": "workspace-service"},
            "containerPort": 80,
            "conditions": ["/workspaces*"],
            "secretArn": "arn:aws:secretsmanager:us-east-1:012345678912:secret:workspace-service-8IHfUx",
            "healthCheckPath": "/workspaces/health",
        },
        {
            "id": "Embeddings",
            "imageSource": {
                "namespace": "zohaibazam58",
                "imageName": "langchain-embedding-service",
            },
            "containerPort": 8080,
            "environment": {"LOG_LEVEL": "info"},
            "secretArn": "",
            "conditions": "/embeddings*",
            "healthCheckPath": "/embeddings/health",
        },
    ]


def test_import_descriptors(services_definitions):
    descriptors = import_descriptors(services_definitions)
    assert [descriptor.id for descriptor in descriptors] == [
        "WorkspaceService",
        "Embeddings",
    ]
    workspace, embeddings = descriptors
    assert isinstance(workspace.image_source, PrivateImage)
    assert workspace.has_secret
    assert workspace.discovery_name == "workspace-service"
    assert isinstance(embeddings.image_source, PublicImage)
    assert embeddings.image_source.image_uri == "zohaibazam58/langchain-embedding-service"
    assert embeddings.routing_conditions == ("/embeddings*",)
    assert embeddings.environment["LOG_LEVEL"] == "info"


def test_empty_secret_is_absent(services_definitions):
    embeddings = import_descriptors(services_definitions)[1]
    assert embeddings.secret_reference is None
    assert not embeddings.has_secret
    assert "secretArn" not in embeddings.to_dict()


def test_descriptor_is_immutable(services_definitions):
    descriptor = import_descriptors(services_definitions)[0]
    with raises(AttributeError):
        descriptor.container_port = 8080
    with raises(TypeError):
        descriptor.environment["NEW"] = "value"


def test_descriptor_round_trip(services_definitions):
    descriptor = import_descriptors(services_definitions)[0]
    assert ServiceDescriptor.from_definition(descriptor.to_dict()) == descriptor


def test_duplicate_ids(services_definitions):
    services_definitions[1]["id"] = "WorkspaceService"
    with raises(DuplicateServiceId):
        import_descriptors(services_definitions)


def test_duplicate_discovery_names(services_definitions):
    services_definitions[1]["discoveryName"] = "workspace-service"
    with raises(DuplicateDiscoveryName):
        import_descriptors(services_definitions)


def test_invalid_ports():
    for port in [0, 65536, "80", True]:
        with raises(TopologyConfigurationError):
            ServiceDescriptor(
                "api", PublicImage("library", "nginx"), port, ["/api*"], "/health"
            )


def test_no_services():
    with raises(TopologyConfigurationError):
        import_descriptors([])


def test_image_sources():
    assert define_image_source({"repositoryName": "org/users-api"}) == PrivateImage(
        "org/users-api"
    )
    assert PrivateImage("org/users-api").default_discovery_name == "users-api"
    assert define_image_source(
        {"namespace": "library", "imageName": "nginx"}
    ) == PublicImage("library", "nginx")
    with raises(InvalidImageSource):
        define_image_source(
            {"repositoryName": "users-api", "namespace": "library", "imageName": "nginx"}
        )
    with raises(InvalidImageSource):
        define_image_source({})
    with raises(InvalidImageSource):
        define_image_source({"imageName": "nginx"})


def test_private_image_uri():
    image_uri = PrivateImage("users-api").image_uri.to_dict()
    assert image_uri == {
        "Fn::Sub": "${AWS::AccountId}.dkr.ecr.${AWS::Region}.${AWS::URLSuffix}/users-api:latest"
    }


def test_ids_naming_the_same_resources(services_definitions):
    services_definitions[0]["id"] = "api-v2"
    services_definitions[1]["id"] = "api_v2"
    with raises(DuplicateServiceId):
        import_descriptors(services_definitions)
    services_definitions[1]["id"] = "apiv2"
    with raises(DuplicateServiceId):
        import_descriptors(services_definitions)
    services_definitions[1]["id"] = "api-v3"
    descriptors = import_descriptors(services_definitions)
    assert [descriptor.id for descriptor in descriptors] == ["api-v2", "api-v3"]


def test_id_without_alphanumeric_characters():
    with raises(TopologyConfigurationError):
        ServiceDescriptor(
            "--", PublicImage("library", "nginx"), 80, ["/api*"], "/health"
        )
