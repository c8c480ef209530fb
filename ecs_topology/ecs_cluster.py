# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
The ECS Cluster of the topology, with the private DNS namespace the services register into,
and the security group shared by all the services tasks.

Tasks in the shared security group can reach each other on the services ports, and only on these.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from troposphere.elasticloadbalancingv2 import TargetGroup
    from ecs_topology.ecs.compute_unit import ComputeUnit
    from ecs_topology.vpc import TopologyNetwork

from troposphere import GetAtt, Ref, Sub, Tags
from troposphere.ec2 import SecurityGroup, SecurityGroupIngress
from troposphere.ecs import (
    AwsvpcConfiguration,
    Cluster,
    ClusterSetting,
    DeploymentCircuitBreaker,
    DeploymentConfiguration,
    LoadBalancer,
    NetworkConfiguration,
    Service,
    ServiceRegistry,
)
from troposphere.servicediscovery import (
    DnsConfig,
    DnsRecord,
    HealthCheckCustomConfig,
    PrivateDnsNamespace,
)
from troposphere.servicediscovery import Service as DiscoveryService

from ecs_topology.common import define_title
from ecs_topology.common.logging import LOG
from ecs_topology.ecs.ecs_params import FARGATE_LAUNCH_TYPE

DEFAULT_NAMESPACE_NAME = "services"
DEFAULT_DESIRED_COUNT = 1
DNS_RECORD_TTL = 60


class ScheduledService:
    """
    The Fargate service running a compute unit, and its service discovery registration
    """

    def __init__(self, unit: ComputeUnit, service: Service, discovery_service):
        self.unit = unit
        self.service = service
        self.discovery_service = discovery_service

    def __repr__(self):
        return f"{self.service.title}({self.unit.descriptor.discovery_name})"

    @property
    def resources(self) -> list:
        return [self.discovery_service, self.service]


class EcsCluster:
    """
    Class holding the cluster, the namespace and the shared security group.

    :ivar troposphere.ecs.Cluster cluster:
    :ivar troposphere.servicediscovery.PrivateDnsNamespace namespace:
    :ivar troposphere.ec2.SecurityGroup security_group: the services tasks security group
    :ivar list ingress_rules: self-referencing ingress, one per service port
    """

    def __init__(
        self,
        topology_id: str,
        network: TopologyNetwork,
        cluster: Cluster,
        namespace: PrivateDnsNamespace,
        security_group: SecurityGroup,
        ingress_rules: list,
        service_ports: list,
    ):
        self.topology_id = topology_id
        self.network = network
        self.cluster = cluster
        self.namespace = namespace
        self.security_group = security_group
        self.ingress_rules = ingress_rules
        self.service_ports = service_ports

    def __repr__(self):
        return self.cluster.title

    @property
    def cluster_id(self) -> Ref:
        return Ref(self.cluster)

    @property
    def security_group_id(self) -> GetAtt:
        return GetAtt(self.security_group, "GroupId")

    @property
    def resources(self) -> list:
        return [self.cluster, self.namespace, self.security_group] + list(
            self.ingress_rules
        )

    def schedule(
        self,
        unit: ComputeUnit,
        target_group: TargetGroup,
        depends_on: list = None,
    ) -> ScheduledService:
        """
        Creates the Fargate service of the compute unit, registered in the namespace and behind its target group

        :param unit: the compute unit to run
        :param target_group: the target group the service tasks register into
        :param depends_on: titles of the resources the service must wait for, i.e. the listener rule
        """
        descriptor = unit.descriptor
        discovery_service = DiscoveryService(
            define_title(descriptor.id, "DiscoveryService"),
            Name=descriptor.discovery_name,
            NamespaceId=Ref(self.namespace),
            DnsConfig=DnsConfig(
                RoutingPolicy="MULTIVALUE",
                DnsRecords=[DnsRecord(TTL=DNS_RECORD_TTL, Type="A")],
            ),
            HealthCheckCustomConfig=HealthCheckCustomConfig(FailureThreshold=1),
        )
        props = {
            "Cluster": self.cluster_id,
            "TaskDefinition": Ref(unit.task_definition),
            "LaunchType": FARGATE_LAUNCH_TYPE,
            "DesiredCount": DEFAULT_DESIRED_COUNT,
            "DeploymentConfiguration": DeploymentConfiguration(
                DeploymentCircuitBreaker=DeploymentCircuitBreaker(
                    Enable=True, Rollback=True
                ),
                MinimumHealthyPercent=100,
                MaximumPercent=200,
            ),
            "NetworkConfiguration": NetworkConfiguration(
                AwsvpcConfiguration=AwsvpcConfiguration(
                    Subnets=self.network.app_subnets_ids,
                    SecurityGroups=[self.security_group_id],
                    AssignPublicIp="DISABLED",
                )
            ),
            "LoadBalancers": [
                LoadBalancer(
                    ContainerName=unit.container_name,
                    ContainerPort=unit.container_port,
                    TargetGroupArn=Ref(target_group),
                )
            ],
            "ServiceRegistries": [
                ServiceRegistry(RegistryArn=GetAtt(discovery_service, "Arn"))
            ],
            "PropagateTags": "SERVICE",
        }
        if depends_on:
            props["DependsOn"] = list(depends_on)
        service = Service(define_title(descriptor.id, "FargateService"), **props)
        LOG.info(
            f"{descriptor.id} - Scheduled as {descriptor.discovery_name}.{self.namespace.Name}"
        )
        return ScheduledService(unit, service, discovery_service)


def define_cluster_security_group(
    topology_id: str, network: TopologyNetwork, service_ports: list
) -> tuple[SecurityGroup, list]:
    """
    Creates the services security group and a self-referencing ingress rule for each distinct service port
    """
    security_group = SecurityGroup(
        define_title(topology_id, "ServicesSecurityGroup"),
        GroupDescription=Sub(f"${{AWS::StackName}} - {topology_id} services"),
        VpcId=network.vpc_id,
        Tags=Tags(Name=Sub(f"${{AWS::StackName}}-{topology_id}-services")),
    )
    ingress_rules = [
        SecurityGroupIngress(
            define_title(topology_id, "ServicesIngressFromSelf", port),
            GroupId=GetAtt(security_group, "GroupId"),
            SourceSecurityGroupId=GetAtt(security_group, "GroupId"),
            IpProtocol="tcp",
            FromPort=port,
            ToPort=port,
            Description=f"Services to services on port {port}",
        )
        for port in service_ports
    ]
    return security_group, ingress_rules


def build_cluster(
    topology_id: str,
    network: TopologyNetwork,
    service_ports,
    namespace_name: str = None,
) -> EcsCluster:
    """
    Creates the ECS Cluster, the private DNS namespace in the topology VPC and the services security group.

    :param str topology_id: name of the topology
    :param network: the topology network
    :param service_ports: ports the services listen on. Duplicates are ignored.
    :param str namespace_name: defaults to services
    """
    if namespace_name is None:
        namespace_name = DEFAULT_NAMESPACE_NAME
    ports = sorted(set(service_ports))
    cluster = Cluster(
        define_title(topology_id, "Cluster"),
        ClusterSettings=[ClusterSetting(Name="containerInsights", Value="enabled")],
        CapacityProviders=[FARGATE_LAUNCH_TYPE],
    )
    namespace = PrivateDnsNamespace(
        define_title(topology_id, "DnsNamespace"),
        Name=namespace_name,
        Vpc=network.vpc_id,
        Description=Sub(f"${{AWS::StackName}} - {topology_id} services discovery"),
    )
    security_group, ingress_rules = define_cluster_security_group(
        topology_id, network, ports
    )
    LOG.info(
        f"{topology_id} - Cluster with namespace {namespace_name}, services ports {ports}"
    )
    return EcsCluster(
        topology_id,
        network,
        cluster,
        namespace,
        security_group,
        ingress_rules,
        ports,
    )
