# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Compiles the services descriptors into the topology template.

The stages run in order, each one needing the result of the previous one:

* network: VPC and subnets across two AZs
* cluster: ECS Cluster, private DNS namespace, services security group
* compute units: task definition of each service, in the services order
* routing: load balancer, one listener rule per service, catch-all rule
* compiled: services scheduled, resources tagged, template rendered

Any error stops the compilation. Resources are only added to the template once every stage succeeded,
so a failed compilation never returns a partial template.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ecs_topology.common.settings import TopologySettings
    from ecs_topology.ecs.compute_unit import ComputeUnit

from compose_x_common.compose_x_common import set_else_none
from troposphere import Export, Output, Sub, Tags, Template

from ecs_topology.collaborators import define_collaborators_outputs
from ecs_topology.common import CFN_EXPORT_DELIMITER, define_title
from ecs_topology.common.logging import LOG
from ecs_topology.common.tagging import define_tags, tag_resource
from ecs_topology.common.troposphere_tools import (
    add_outputs,
    add_resource,
    init_template,
)
from ecs_topology.ecs.compute_sizing import ComputeSizing
from ecs_topology.ecs.compute_unit import build_compute_unit
from ecs_topology.ecs.resolvers import ReferencesResolver
from ecs_topology.ecs_cluster import EcsCluster, build_cluster
from ecs_topology.elbv2 import RoutingLayer, build_routing_layer
from ecs_topology.exceptions import CompilationError
from ecs_topology.services.service_descriptor import (
    ServiceDescriptor,
    import_descriptors,
    validate_unique_descriptors,
)
from ecs_topology.vpc import AZS_COUNT, TopologyNetwork, build_network


class CompileStage(Enum):
    UNINITIALIZED = 0
    NETWORK_READY = 1
    CLUSTER_READY = 2
    COMPUTE_UNITS_READY = 3
    ROUTING_READY = 4
    COMPILED = 5


class Topology:
    """
    The compiled topology.

    :ivar str topology_id:
    :ivar TopologyNetwork network:
    :ivar EcsCluster cluster:
    :ivar list[ComputeUnit] compute_units: in the services order
    :ivar RoutingLayer routing_layer:
    :ivar list scheduled_services:
    :ivar troposphere.Template template: the rendered template
    """

    def __init__(
        self,
        topology_id: str,
        network: TopologyNetwork,
        cluster: EcsCluster,
        compute_units: list,
        routing_layer: RoutingLayer,
        scheduled_services: list,
        template: Template,
    ):
        self.topology_id = topology_id
        self.network = network
        self.cluster = cluster
        self.compute_units = compute_units
        self.routing_layer = routing_layer
        self.scheduled_services = scheduled_services
        self.template = template

    def __repr__(self):
        return f"Topology({self.topology_id}, {[unit.service_id for unit in self.compute_units]})"

    @property
    def entry_address(self):
        return self.routing_layer.entry_address

    @property
    def entry_output_name(self) -> str:
        return define_title(self.topology_id, "DNS")

    def compute_unit(self, service_id: str) -> ComputeUnit:
        for unit in self.compute_units:
            if unit.service_id == service_id:
                return unit
        raise KeyError(f"No compute unit for service {service_id}")


class TopologyCompiler:
    """
    Runs the compilation stages for a list of services.

    :ivar CompileStage stage: the last stage completed
    """

    def __init__(
        self,
        topology_id: str,
        descriptors: list[ServiceDescriptor],
        tags: Tags = None,
        resolver: ReferencesResolver = None,
        sizing: ComputeSizing = None,
        network_config: dict = None,
        collaborators: dict = None,
    ):
        self.topology_id = topology_id
        self.descriptors = list(descriptors)
        self.tags = tags
        self.resolver = resolver if resolver else ReferencesResolver(lookup=False)
        self.sizing = sizing if sizing else ComputeSizing()
        self.network_config = network_config if network_config else {}
        self.collaborators = collaborators if collaborators else {}
        self.stage = CompileStage.UNINITIALIZED
        self.network = None
        self.cluster = None
        self.compute_units = []
        self.routing_layer = None

    def __repr__(self):
        return f"TopologyCompiler({self.topology_id}, {self.stage.name})"

    def require(self, expected: CompileStage, next_stage: CompileStage) -> None:
        """
        :raises CompilationError: the current stage is not the one the next stage requires
        """
        if self.stage != expected:
            raise CompilationError(
                f"{self.topology_id} - Cannot move to {next_stage.name} from {self.stage.name}."
                f" Requires {expected.name}"
            )

    def complete(self, stage: CompileStage) -> None:
        self.stage = stage
        LOG.debug(f"{self.topology_id} - {stage.name}")

    def build_network(self) -> TopologyNetwork:
        self.require(CompileStage.UNINITIALIZED, CompileStage.NETWORK_READY)
        validate_unique_descriptors(self.descriptors)
        self.network = build_network(
            self.topology_id,
            vpc_cidr=set_else_none("VpcCidr", self.network_config),
            single_nat=set_else_none("SingleNat", self.network_config, alt_value=True),
            availability_zones=set_else_none(
                "AvailabilityZones", self.network_config, alt_value=AZS_COUNT
            ),
        )
        self.complete(CompileStage.NETWORK_READY)
        return self.network

    def build_cluster(self) -> EcsCluster:
        self.require(CompileStage.NETWORK_READY, CompileStage.CLUSTER_READY)
        self.cluster = build_cluster(
            self.topology_id,
            self.network,
            [descriptor.container_port for descriptor in self.descriptors],
            namespace_name=set_else_none("NamespaceName", self.network_config),
        )
        self.complete(CompileStage.CLUSTER_READY)
        return self.cluster

    def build_compute_units(self) -> list:
        self.require(CompileStage.CLUSTER_READY, CompileStage.COMPUTE_UNITS_READY)
        self.compute_units = [
            build_compute_unit(descriptor, self.tags, self.resolver, self.sizing)
            for descriptor in self.descriptors
        ]
        self.complete(CompileStage.COMPUTE_UNITS_READY)
        return self.compute_units

    def build_routing(self) -> RoutingLayer:
        self.require(CompileStage.COMPUTE_UNITS_READY, CompileStage.ROUTING_READY)
        self.routing_layer = build_routing_layer(
            self.topology_id,
            self.network,
            self.compute_units,
            self.descriptors,
            services_security_group=self.cluster.security_group,
        )
        self.complete(CompileStage.ROUTING_READY)
        return self.routing_layer

    def assemble(self) -> Topology:
        """
        Schedules the services, tags every resource and renders the template.
        Compute units come tagged from build_compute_unit, the other resources are tagged here.
        """
        self.require(CompileStage.ROUTING_READY, CompileStage.COMPILED)
        scheduled_services = [
            self.cluster.schedule(
                unit,
                self.routing_layer.rule_for(unit.service_id).target_group,
                depends_on=[
                    self.routing_layer.rule_for(unit.service_id).listener_rule.title
                ],
            )
            for unit in self.compute_units
        ]
        template = init_template(
            f"ECS Topology {self.topology_id} - {len(self.descriptors)} services"
        )
        resources = self.network.resources + self.cluster.resources
        resources += self.routing_layer.resources
        for scheduled in scheduled_services:
            resources += scheduled.resources
        for resource in resources:
            add_resource(template, tag_resource(resource, self.tags))
        for unit in self.compute_units:
            for resource in unit.resources:
                add_resource(template, resource)
        add_outputs(template, self.define_outputs())
        self.complete(CompileStage.COMPILED)
        return Topology(
            self.topology_id,
            self.network,
            self.cluster,
            self.compute_units,
            self.routing_layer,
            scheduled_services,
            template,
        )

    def define_outputs(self) -> list:
        entry_output_name = define_title(self.topology_id, "DNS")
        outputs = [
            Output(
                entry_output_name,
                Description="DNS name of the load balancer routing to the services",
                Value=self.routing_layer.entry_address,
                Export=Export(
                    Sub(
                        f"${{AWS::StackName}}{CFN_EXPORT_DELIMITER}{entry_output_name}"
                    )
                ),
            )
        ]
        return outputs + define_collaborators_outputs(self.collaborators)

    def compile(self) -> tuple[Topology, object]:
        """
        Runs all the stages, in order.

        :return: the topology and its entry address
        :raises TopologyBaseException: the error of the stage that failed
        """
        stages = [
            self.build_network,
            self.build_cluster,
            self.build_compute_units,
            self.build_routing,
            self.assemble,
        ]
        topology = None
        for stage in stages:
            try:
                topology = stage()
            except Exception:
                LOG.error(
                    f"{self.topology_id} - Compilation failed after {self.stage.name} in {stage.__name__}"
                )
                raise
        LOG.info(
            f"{self.topology_id} - Compiled {len(self.compute_units)} services,"
            f" {len(self.routing_layer.rules)} routing rules"
        )
        return topology, topology.entry_address


def compile_topology(
    descriptors: list[ServiceDescriptor], tags, settings: TopologySettings
) -> tuple[Topology, object]:
    """
    Compiles the services into the topology.

    :param descriptors: the services, in routing order
    :param tags: the shared tags, as troposphere Tags or as defined in the topology file
    :param settings: the execution settings
    :return: the topology and its entry address
    """
    if tags is not None and not isinstance(tags, Tags):
        tags = define_tags(tags)
    compiler = TopologyCompiler(
        settings.name,
        descriptors,
        tags=tags,
        resolver=ReferencesResolver(settings.session, lookup=settings.lookup),
        sizing=ComputeSizing.from_definition(settings.sizing_definition),
        network_config=settings.network_definition,
        collaborators=settings.collaborators_definition,
    )
    return compiler.compile()


def compile_from_settings(settings: TopologySettings) -> tuple[Topology, object]:
    """
    Compiles the topology defined in the settings content
    """
    descriptors = import_descriptors(settings.services_definitions)
    LOG.info(f"Services to process {[descriptor.id for descriptor in descriptors]}")
    return compile_topology(descriptors, settings.tags_definition, settings)
