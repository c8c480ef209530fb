# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Layered subnets calculator for the topology VPC: each AZ range is cut in two halves, the app subnet and the public subnet
"""

import ipaddress

from ecs_topology.common import clpow2


def prefix_for_size(size: int) -> int:
    """
    Returns the network prefix length that holds `size` addresses, i.e. 65536 -> 16
    """
    return 32 - int(size).bit_length() + 1


def cut_per_az(az_cidr, layers_cidr):
    """Subdivide the range of one AZ into the layers

    :param az_cidr: CIDR to split
    :param layers_cidr: dict() getting updated with layers
    """
    app_range, public_range = az_cidr.subnets(prefixlen_diff=1)
    layers_cidr["app"].append(app_range)
    layers_cidr["pub"].append(public_range)


def get_subnets(cidr, azs):
    """
    Get the lists of Subnets CIDRs, per layer

    :param str cidr: the VPC CIDR
    :param int azs: number of AZs to spread the subnets across
    """
    vpc_net = ipaddress.IPv4Network(f"{cidr}")
    number_ips = int(vpc_net.num_addresses - 2)

    layers_cidr = {"app": [], "pub": []}

    ips_per_az = number_ips / azs
    azs_prefix = max(prefix_for_size(clpow2(ips_per_az)), vpc_net.prefixlen)
    subnets_per_az = list(vpc_net.subnets(new_prefix=azs_prefix))[:azs]

    for az in subnets_per_az:
        cut_per_az(az, layers_cidr)
    return layers_cidr


def get_subnet_layers(cidr, azs):
    """
    Get Subnets layers based on number of AZs, as strings
    """
    layers = get_subnets(cidr, azs)
    return {layer: [f"{subnet}" for subnet in subnets] for layer, subnets in layers.items()}
