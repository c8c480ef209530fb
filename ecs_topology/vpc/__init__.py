# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
The topology network: one VPC spread across two availability zones.

RTB -> Route Table

Public subnets: all subnets use the same RTB, route to 0.0.0.0/0 via the InternetGateway
App subnets: each subnet has its own RTB, each RTB points to the NAT Gateway of its AZ, or to the single
shared NAT Gateway.

The number of AZs is fixed to two in order to stay under the account EIP / NAT Gateways quotas.
"""

from __future__ import annotations

import ipaddress

from troposphere import AWS_REGION, GetAtt, GetAZs, Ref, Select, Sub, Tags
from troposphere.ec2 import (
    EIP,
    VPC,
    InternetGateway,
    NatGateway,
    Route,
    RouteTable,
    Subnet,
    SubnetRouteTableAssociation,
    VPCGatewayAttachment,
)

from ecs_topology.common import define_title
from ecs_topology.common.logging import LOG
from ecs_topology.exceptions import QuotaError, TopologyConfigurationError
from ecs_topology.vpc.vpc_maths import get_subnet_layers

DEFAULT_VPC_CIDR = "10.0.0.0/16"
MAX_VPC_PREFIX = 24
AZS_COUNT = 2
AZ_INDEXES = ["a", "b"]


class TopologyNetwork:
    """
    Holds the network resources of the topology.

    :ivar troposphere.ec2.VPC vpc:
    :ivar list[troposphere.ec2.Subnet] public_subnets: subnets the load balancer is deployed to
    :ivar list[troposphere.ec2.Subnet] app_subnets: subnets the services tasks run in
    """

    def __init__(
        self,
        vpc,
        internet_gateway,
        public_subnets,
        app_subnets,
        nat_gateways,
        resources,
    ):
        self.vpc = vpc
        self.internet_gateway = internet_gateway
        self.public_subnets = public_subnets
        self.app_subnets = app_subnets
        self.nat_gateways = nat_gateways
        self._resources = resources

    def __repr__(self):
        return f"{self.vpc.title}({self.vpc.CidrBlock})"

    @property
    def vpc_id(self) -> Ref:
        return Ref(self.vpc)

    @property
    def public_subnets_ids(self) -> list:
        return [Ref(subnet) for subnet in self.public_subnets]

    @property
    def app_subnets_ids(self) -> list:
        return [Ref(subnet) for subnet in self.app_subnets]

    @property
    def resources(self) -> list:
        return list(self._resources)


def validate_vpc_cidr(vpc_cidr: str) -> ipaddress.IPv4Network:
    try:
        vpc_net = ipaddress.IPv4Network(vpc_cidr)
    except ValueError as error:
        raise TopologyConfigurationError(
            f"VPC CIDR {vpc_cidr} is not a valid network"
        ) from error
    if vpc_net.prefixlen > MAX_VPC_PREFIX:
        raise TopologyConfigurationError(
            f"VPC CIDR {vpc_cidr} is too small. Prefix must be /{MAX_VPC_PREFIX} or larger"
        )
    return vpc_net


def build_public_layer(
    topology_id, vpc, igw, attachment, cidrs, single_nat
) -> tuple[list, list, list]:
    """
    Creates the public subnets, their route table and the NAT Gateways.

    :return: the subnets, the NAT Gateways and all the resources created
    """
    rtb = RouteTable(
        define_title(topology_id, "PublicRtb"),
        VpcId=Ref(vpc),
        Tags=Tags(Name=Sub(f"${{AWS::StackName}}-{topology_id}-public")),
    )
    route = Route(
        define_title(topology_id, "PublicDefaultRoute"),
        GatewayId=Ref(igw),
        RouteTableId=Ref(rtb),
        DestinationCidrBlock="0.0.0.0/0",
        DependsOn=[attachment.title],
    )
    resources = [rtb, route]
    subnets = []
    nats = []
    for count, (index, subnet_cidr) in enumerate(zip(AZ_INDEXES, cidrs)):
        subnet = Subnet(
            define_title(topology_id, "PublicSubnet", index.upper()),
            CidrBlock=subnet_cidr,
            VpcId=Ref(vpc),
            AvailabilityZone=Select(count, GetAZs(Ref(AWS_REGION))),
            MapPublicIpOnLaunch=True,
            Tags=Tags(Name=Sub(f"${{AWS::StackName}}-{topology_id}-public-{index}")),
        )
        resources.append(subnet)
        if (single_nat and not nats) or not single_nat:
            eip = EIP(
                define_title(topology_id, "NatGatewayEip", index.upper()),
                Domain="vpc",
                DependsOn=[attachment.title],
            )
            nat = NatGateway(
                define_title(topology_id, "NatGateway", index.upper()),
                AllocationId=GetAtt(eip, "AllocationId"),
                SubnetId=Ref(subnet),
            )
            nats.append(nat)
            resources += [eip, nat]
        resources.append(
            SubnetRouteTableAssociation(
                define_title(topology_id, "PublicSubnetRtbAssoc", index.upper()),
                RouteTableId=Ref(rtb),
                SubnetId=Ref(subnet),
            )
        )
        subnets.append(subnet)
    return subnets, nats, resources


def build_app_layer(topology_id, vpc, nats, cidrs) -> tuple[list, list]:
    """
    Creates the application subnets. Each subnet routes to the NAT Gateway of its AZ, or to the only one.

    :return: the subnets and all the resources created
    """
    resources = []
    subnets = []
    for count, (index, subnet_cidr) in enumerate(zip(AZ_INDEXES, cidrs)):
        subnet = Subnet(
            define_title(topology_id, "AppSubnet", index.upper()),
            CidrBlock=subnet_cidr,
            VpcId=Ref(vpc),
            AvailabilityZone=Select(count, GetAZs(Ref(AWS_REGION))),
            Tags=Tags(Name=Sub(f"${{AWS::StackName}}-{topology_id}-app-{index}")),
        )
        rtb = RouteTable(
            define_title(topology_id, "AppRtb", index.upper()),
            VpcId=Ref(vpc),
            Tags=Tags(Name=Sub(f"${{AWS::StackName}}-{topology_id}-app-{index}")),
        )
        nat = nats[count] if len(nats) > count else nats[0]
        route = Route(
            define_title(topology_id, "AppDefaultRoute", index.upper()),
            NatGatewayId=Ref(nat),
            RouteTableId=Ref(rtb),
            DestinationCidrBlock="0.0.0.0/0",
        )
        association = SubnetRouteTableAssociation(
            define_title(topology_id, "AppSubnetRtbAssoc", index.upper()),
            RouteTableId=Ref(rtb),
            SubnetId=Ref(subnet),
        )
        subnets.append(subnet)
        resources += [subnet, rtb, route, association]
    return subnets, resources


def build_network(
    topology_id: str,
    vpc_cidr: str = None,
    single_nat: bool = True,
    availability_zones: int = AZS_COUNT,
) -> TopologyNetwork:
    """
    Creates the VPC and its subnets for the topology.

    :param str topology_id: name of the topology, prefixes all the resources titles
    :param str vpc_cidr: defaults to 10.0.0.0/16
    :param bool single_nat: one NAT Gateway shared by the two AZs, or one per AZ
    :param int availability_zones: must be 2
    :raises QuotaError: when another number of AZs is requested
    """
    if availability_zones != AZS_COUNT:
        raise QuotaError(
            f"The topology is limited to {AZS_COUNT} availability zones. Got",
            availability_zones,
        )
    if vpc_cidr is None:
        vpc_cidr = DEFAULT_VPC_CIDR
    validate_vpc_cidr(vpc_cidr)
    layers = get_subnet_layers(vpc_cidr, AZS_COUNT)
    LOG.debug(f"{topology_id} - Subnets layers for {vpc_cidr}: {layers}")
    vpc = VPC(
        define_title(topology_id, "Vpc"),
        CidrBlock=vpc_cidr,
        EnableDnsHostnames=True,
        EnableDnsSupport=True,
        Tags=Tags(Name=Sub(f"${{AWS::StackName}}-{topology_id}")),
    )
    igw = InternetGateway(define_title(topology_id, "InternetGateway"))
    attachment = VPCGatewayAttachment(
        define_title(topology_id, "VpcGatewayAttachment"),
        InternetGatewayId=Ref(igw),
        VpcId=Ref(vpc),
    )
    public_subnets, nats, public_resources = build_public_layer(
        topology_id, vpc, igw, attachment, layers["pub"], single_nat
    )
    app_subnets, app_resources = build_app_layer(topology_id, vpc, nats, layers["app"])
    LOG.info(
        f"{topology_id} - Network {vpc_cidr} across {AZS_COUNT} AZs with {len(nats)} NAT Gateway(s)"
    )
    return TopologyNetwork(
        vpc,
        igw,
        public_subnets,
        app_subnets,
        nats,
        [vpc, igw, attachment] + public_resources + app_resources,
    )
