# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille<john@compose-x.io>

import json
from copy import deepcopy
from os import path

import boto3
import placebo
import yaml
from pytest import fixture, raises
from troposphere import Tags

from ecs_topology.common.settings import TopologySettings
from ecs_topology.ecs.resolvers import ReferencesResolver
from ecs_topology.exceptions import (
    CompilationError,
    DuplicateServiceId,
    QuotaError,
    SecretResolutionError,
)
from ecs_topology.services.service_descriptor import (
    ServiceDescriptor,
    import_descriptors,
)
from ecs_topology.topology import (
    CompileStage,
    TopologyCompiler,
    compile_from_settings,
    compile_topology,
)

HERE = path.abspath(path.dirname(__file__))
SECRET_ARN = "arn:aws:secretsmanager:us-east-1:012345678912:secret:workspace-service-8IHfUx"


def get_content(file_name="services.yml"):
    with open(f"{HERE}/../../use-cases/{file_name}") as topology_fd:
        return yaml.safe_load(topology_fd.read())


def get_settings(content, session=None, lookup=False):
    kwargs = {
        TopologySettings.name_arg: "test",
        TopologySettings.command_arg: TopologySettings.render_arg,
        TopologySettings.format_arg: "yaml",
    }
    if not lookup:
        kwargs[TopologySettings.no_lookup_arg] = True
    if session is None:
        session = boto3.session.Session(region_name="us-east-1")
    return TopologySettings(content=content, session=session, **kwargs)


@fixture
def a_b_descriptors():
    return import_descriptors(
        [
            {
                "id": "A",
                "imageSource": {"repositoryName": "a-service"},
                "containerPort": 80,
                "conditions": ["/a*"],
                "healthCheckPath": "/a/health",
            },
            {
                "id": "B",
                "imageSource": {"repositoryName": "b-service"},
                "containerPort": 80,
                "conditions": ["/b*"],
                "healthCheckPath": "/b/health",
            },
        ]
    )


def test_compile_a_b(a_b_descriptors):
    topology, entry_address = TopologyCompiler("test", a_b_descriptors).compile()
    assert entry_address.to_dict() == {"Fn::GetAtt": ["testLoadBalancer", "DNSName"]}
    assert [
        (rule.priority, rule.conditions, rule.service_id)
        for rule in topology.routing_layer.rules
    ] == [(10, ("/a*",), "A"), (20, ("/b*",), "B"), (30, ("/*",), None)]
    template = topology.template.to_dict()
    rules = {
        title: resource["Properties"]["Priority"]
        for title, resource in template["Resources"].items()
        if resource["Type"] == "AWS::ElasticLoadBalancingV2::ListenerRule"
    }
    assert rules == {"AListenerRule": 10, "BListenerRule": 20, "testCatchAllRule": 30}
    assert template["Outputs"]["testDNS"]["Value"] == {
        "Fn::GetAtt": ["testLoadBalancer", "DNSName"]
    }
    assert template["Outputs"]["testDNS"]["Export"] == {
        "Name": {"Fn::Sub": "${AWS::StackName}::testDNS"}
    }


def test_compile_is_deterministic():
    first, _ = compile_from_settings(get_settings(get_content()))
    second, _ = compile_from_settings(get_settings(get_content()))
    assert first.template.to_json() == second.template.to_json()


def test_compile_use_case():
    topology, _ = compile_from_settings(get_settings(get_content()))
    assert [unit.service_id for unit in topology.compute_units] == [
        "WorkspaceService",
        "DatasetService",
        "BotService",
        "Embeddings",
    ]
    assert topology.compute_unit("BotService").quota.cpu == 2048
    assert topology.compute_unit("BotService").secrets == []
    assert topology.compute_unit("Embeddings").quota.cpu == 512
    assert len(topology.routing_layer.rules) == 5
    assert topology.routing_layer.catch_all_rule.priority == 50
    outputs = topology.template.to_dict()["Outputs"]
    assert outputs["RecordStoreTableName"]["Value"] == "ncbp-table"
    assert outputs["BlobStoreBucketArn"]["Value"] == "arn:aws:s3:::ncbp-bucket"


def test_tags_applied_to_resources():
    topology, _ = compile_from_settings(get_settings(get_content()))
    resources = topology.template.to_dict()["Resources"]
    for title in [
        "testVpc",
        "testCluster",
        "testLoadBalancer",
        "WorkspaceServiceTaskDefinition",
        "WorkspaceServiceFargateService",
    ]:
        tags = {
            tag["Key"]: tag["Value"] for tag in resources[title]["Properties"]["Tags"]
        }
        assert tags["WorkspaceService"] == "starter-app"
        assert tags["DatasetService"] == "starter-app"


def test_secret_never_rendered_as_value():
    topology, _ = compile_from_settings(get_settings(get_content()))
    container = topology.template.to_dict()["Resources"][
        "WorkspaceServiceTaskDefinition"
    ]["Properties"]["ContainerDefinitions"][0]
    assert container["Secrets"] == [{"Name": "SECRET", "ValueFrom": SECRET_ARN}]
    assert "SECRET" not in [env["Name"] for env in container["Environment"]]


def test_secret_change_is_isolated():
    content = get_content()
    changed_content = deepcopy(content)
    changed_content["Services"][1][
        "secretArn"
    ] = "arn:aws:secretsmanager:us-east-1:012345678912:secret:datasets-v2-Ab12Cd"
    original, _ = compile_from_settings(get_settings(content))
    changed, _ = compile_from_settings(get_settings(changed_content))
    for original_unit, changed_unit in zip(
        original.compute_units, changed.compute_units
    ):
        if original_unit.service_id == "DatasetService":
            assert original_unit.secret_arn != changed_unit.secret_arn
            assert original_unit.environment == changed_unit.environment
            continue
        assert (
            original_unit.task_definition.to_dict()
            == changed_unit.task_definition.to_dict()
        )
    assert [rule.listener_rule.to_dict() for rule in original.routing_layer.rules] == [
        rule.listener_rule.to_dict() for rule in changed.routing_layer.rules
    ]


def test_compile_with_lookup():
    session = boto3.session.Session(region_name="eu-west-1")
    pill = placebo.attach(session, data_path=f"{HERE}/placebo/lookup")
    pill.playback()
    content = get_content()
    content["Services"][0]["secretArn"] = "workspace-service"
    topology, _ = compile_from_settings(
        get_settings(content, session=session, lookup=True)
    )
    assert (
        topology.compute_unit("WorkspaceService").secret_arn
        == "arn:aws:secretsmanager:eu-west-1:012345678912:secret:workspace-service-8IHfUx"
    )


def test_resolution_error_aborts_compile(a_b_descriptors):
    broken = ServiceDescriptor(
        "C",
        a_b_descriptors[0].image_source,
        80,
        ["/c*"],
        "/c/health",
        secret_reference="c-service",
        discovery_name="c-service",
    )
    compiler = TopologyCompiler("test", a_b_descriptors + [broken])
    with raises(SecretResolutionError):
        compiler.compile()
    assert compiler.stage == CompileStage.CLUSTER_READY
    assert compiler.routing_layer is None


def test_duplicate_ids_abort_compile(a_b_descriptors):
    compiler = TopologyCompiler("test", a_b_descriptors + [a_b_descriptors[0]])
    with raises(DuplicateServiceId):
        compiler.compile()
    assert compiler.stage == CompileStage.UNINITIALIZED


def test_availability_zones_quota(a_b_descriptors):
    compiler = TopologyCompiler(
        "test", a_b_descriptors, network_config={"AvailabilityZones": 3}
    )
    with raises(QuotaError):
        compiler.compile()


def test_stages_order(a_b_descriptors):
    compiler = TopologyCompiler("test", a_b_descriptors)
    with raises(CompilationError):
        compiler.build_cluster()
    with raises(CompilationError):
        compiler.build_routing()
    compiler.build_network()
    assert compiler.stage == CompileStage.NETWORK_READY
    with raises(CompilationError):
        compiler.build_network()
    compiler.build_cluster()
    compiler.build_compute_units()
    compiler.build_routing()
    topology = compiler.assemble()
    assert compiler.stage == CompileStage.COMPILED
    assert len(topology.scheduled_services) == 2


def test_compile_topology_with_tags_definition(a_b_descriptors):
    settings = get_settings(get_content())
    topology, _ = compile_topology(
        a_b_descriptors, [{"name": "owner", "value": "platform"}], settings
    )
    task_definition = topology.template.to_dict()["Resources"]["ATaskDefinition"]
    assert task_definition["Properties"]["Tags"] == [
        {"Key": "owner", "Value": "platform"}
    ]
    topology, _ = compile_topology(a_b_descriptors, Tags(owner="platform"), settings)
    assert json.loads(topology.template.to_json())["Resources"]["ATaskDefinition"][
        "Properties"
    ]["Tags"] == [{"Key": "owner", "Value": "platform"}]


def test_resolver_defaults_offline(a_b_descriptors):
    compiler = TopologyCompiler("test", a_b_descriptors)
    assert isinstance(compiler.resolver, ReferencesResolver)
    assert not compiler.resolver.lookup


def test_ids_with_separators(a_b_descriptors):
    separated = ServiceDescriptor(
        "a-v2",
        a_b_descriptors[0].image_source,
        80,
        ["/v2/a*"],
        "/v2/a/health",
        discovery_name="a-v2",
    )
    compiler = TopologyCompiler("test", a_b_descriptors + [separated])
    topology, _ = compiler.compile()
    assert len(topology.routing_layer.rules) == 4
    assert "av2TaskDefinition" in topology.template.resources

    colliding = ServiceDescriptor(
        "av2",
        a_b_descriptors[1].image_source,
        80,
        ["/v2/b*"],
        "/v2/b/health",
        discovery_name="av2",
    )
    compiler = TopologyCompiler("test", a_b_descriptors + [separated, colliding])
    with raises(DuplicateServiceId):
        compiler.compile()
    assert compiler.stage == CompileStage.UNINITIALIZED


def test_compute_units_tagged_once():
    topology, _ = compile_from_settings(get_settings(get_content()))
    unit = topology.compute_unit("WorkspaceService")
    for resource in unit.resources:
        assert topology.template.resources[resource.title] is resource
    keys = [
        tag["Key"]
        for tag in unit.task_definition.to_dict()["Properties"]["Tags"]
    ]
    assert sorted(keys) == ["DatasetService", "WorkspaceService"]
