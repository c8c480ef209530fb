# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
The routing layer: one internet-facing Application Load Balancer shared by all the services.

The HTTP listener has one rule per service, in the order the services are defined, and a catch-all rule
returning 404 after all of them. Rules are evaluated by priority, the first rule to match wins.

* service at index i: priority 10 + 10 * i, forward to the service target group
* catch-all: priority 10 + 10 * N, path /*, fixed 404 Not Found
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ecs_topology.ecs.compute_unit import ComputeUnit
    from ecs_topology.services.service_descriptor import ServiceDescriptor
    from ecs_topology.vpc import TopologyNetwork

from troposphere import GetAtt, Ref, Sub, Tags
from troposphere.ec2 import SecurityGroup, SecurityGroupIngress, SecurityGroupRule
from troposphere.elasticloadbalancingv2 import (
    Action,
    Condition,
    FixedResponseConfig,
    ForwardConfig,
    Listener,
    ListenerRule,
    ListenerRuleAction,
    LoadBalancer,
    LoadBalancerAttributes,
    Matcher,
    PathPatternConfig,
    TargetGroup,
    TargetGroupAttribute,
    TargetGroupTuple,
)

from ecs_topology.common import define_title
from ecs_topology.common.logging import LOG
from ecs_topology.exceptions import InvalidRoutingCondition, PriorityCollision

LB_IDLE_TIMEOUT_SECONDS = 900
LISTENER_PORT = 80

FIRST_PRIORITY = 10
PRIORITY_STEP = 10
MIN_PRIORITY = 1
MAX_PRIORITY = 50000

HEALTHCHECK_INTERVAL_SECONDS = 60
HEALTHCHECK_TIMEOUT_SECONDS = 30
HEALTHY_THRESHOLD = 3
UNHEALTHY_THRESHOLD = 3
HEALTHCHECK_CODES = "200"
STICKINESS_DURATION_SECONDS = 86400
DEREGISTRATION_DELAY_SECONDS = 60

CATCH_ALL_PATH = "/*"
NOT_FOUND_CODE = "404"
NOT_FOUND_BODY = "Not Found"

MAX_PATTERN_LENGTH = 128
MAX_PATTERNS_PER_RULE = 5
PATH_PATTERN_RE = re.compile(r"^/[A-Za-z0-9_\-.$/~\"'@:+&*?]*$")


def rule_priority(index: int) -> int:
    """Priority of the listener rule of the service at `index` in the services list"""
    return FIRST_PRIORITY + PRIORITY_STEP * index


def validate_path_pattern(pattern: str) -> str:
    """
    Validates the path pattern is accepted by the ALB.

    :raises InvalidRoutingCondition:
    """
    if not isinstance(pattern, str):
        raise InvalidRoutingCondition(
            "Path pattern must be a string. Got", type(pattern)
        )
    if len(pattern) > MAX_PATTERN_LENGTH:
        raise InvalidRoutingCondition(
            f"Path pattern {pattern} is longer than {MAX_PATTERN_LENGTH} characters"
        )
    if not PATH_PATTERN_RE.match(pattern):
        raise InvalidRoutingCondition(
            f"Path pattern {pattern} is invalid. It must start with / and use only",
            PATH_PATTERN_RE.pattern,
        )
    return pattern


def validate_conditions(service_id: str, conditions) -> tuple:
    """
    :raises InvalidRoutingCondition: no condition, too many, or an invalid one
    """
    if not conditions:
        raise InvalidRoutingCondition(
            f"{service_id} - At least one path pattern is required"
        )
    if len(conditions) > MAX_PATTERNS_PER_RULE:
        raise InvalidRoutingCondition(
            f"{service_id} - At most {MAX_PATTERNS_PER_RULE} path patterns per rule. Got",
            len(conditions),
        )
    return tuple(validate_path_pattern(pattern) for pattern in conditions)


def pattern_to_regex(pattern: str) -> re.Pattern:
    """
    Translates an ALB path pattern into a regular expression: * matches 0 or more characters,
    ? exactly one. Matching is case-sensitive.
    """
    translated = []
    for char in pattern:
        if char == "*":
            translated.append(".*")
        elif char == "?":
            translated.append(".")
        else:
            translated.append(re.escape(char))
    return re.compile(r"^" + "".join(translated) + r"$", re.DOTALL)


class RoutingRule:
    """
    One listener rule. The catch-all rule has no service and no target group.

    :ivar int priority:
    :ivar tuple conditions: path patterns
    :ivar str service_id: the service to forward to, None for the catch-all
    :ivar troposphere.elasticloadbalancingv2.TargetGroup target_group:
    :ivar troposphere.elasticloadbalancingv2.ListenerRule listener_rule:
    """

    def __init__(
        self,
        priority: int,
        conditions,
        listener_rule: ListenerRule,
        service_id: str = None,
        target_group: TargetGroup = None,
    ):
        self.priority = priority
        self.conditions = tuple(conditions)
        self.listener_rule = listener_rule
        self.service_id = service_id
        self.target_group = target_group
        self._patterns = [pattern_to_regex(pattern) for pattern in self.conditions]

    def __repr__(self):
        target = self.service_id if self.service_id else NOT_FOUND_CODE
        return f"{self.priority}:{list(self.conditions)}->{target}"

    @property
    def is_catch_all(self) -> bool:
        return self.service_id is None

    def matches(self, path: str) -> bool:
        return any(pattern.match(path) for pattern in self._patterns)


class RoutingLayer:
    """
    The shared load balancer, its listener, and the listener rules ordered by priority.

    :ivar troposphere.elasticloadbalancingv2.LoadBalancer load_balancer:
    :ivar troposphere.ec2.SecurityGroup security_group: the load balancer security group
    :ivar troposphere.elasticloadbalancingv2.Listener listener:
    :ivar list[RoutingRule] rules:
    :ivar list services_ingress: ingress from the load balancer to the services security group
    """

    def __init__(
        self,
        load_balancer: LoadBalancer,
        security_group: SecurityGroup,
        listener: Listener,
        rules: list,
        services_ingress: list = None,
    ):
        self.load_balancer = load_balancer
        self.security_group = security_group
        self.listener = listener
        self.rules = sorted(rules, key=lambda rule: rule.priority)
        self.services_ingress = services_ingress if services_ingress else []
        validate_rules_priorities(self.rules)

    def __repr__(self):
        return f"{self.load_balancer.title}({self.rules})"

    @property
    def entry_address(self) -> GetAtt:
        return GetAtt(self.load_balancer, "DNSName")

    @property
    def service_rules(self) -> list:
        return [rule for rule in self.rules if not rule.is_catch_all]

    @property
    def catch_all_rule(self) -> RoutingRule:
        return [rule for rule in self.rules if rule.is_catch_all][0]

    def rule_for(self, service_id: str) -> RoutingRule:
        for rule in self.service_rules:
            if rule.service_id == service_id:
                return rule
        raise KeyError(f"No routing rule for service {service_id}")

    def resolve(self, path: str) -> RoutingRule:
        """
        Returns the rule the request path is routed by: the first rule, by priority, that matches.
        """
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return self.catch_all_rule

    @property
    def resources(self) -> list:
        resources = [self.security_group, self.load_balancer, self.listener]
        resources += self.services_ingress
        for rule in self.rules:
            if rule.target_group is not None:
                resources.append(rule.target_group)
            resources.append(rule.listener_rule)
        return resources


def validate_rules_priorities(rules: list) -> None:
    """
    Checks priorities are unique, within the ALB range, and that the catch-all rule has the highest priority.

    :raises PriorityCollision:
    """
    seen = {}
    for rule in rules:
        if not (MIN_PRIORITY <= rule.priority <= MAX_PRIORITY):
            raise PriorityCollision(
                f"Priority {rule.priority} of {rule!r} must be in [{MIN_PRIORITY}, {MAX_PRIORITY}]"
            )
        if rule.priority in seen:
            raise PriorityCollision(
                f"Rules {seen[rule.priority]!r} and {rule!r} share priority {rule.priority}"
            )
        seen[rule.priority] = rule
    catch_all = [rule for rule in rules if rule.is_catch_all]
    if len(catch_all) != 1:
        raise PriorityCollision(
            "There must be exactly one catch-all rule. Got", len(catch_all)
        )
    if any(
        rule.priority > catch_all[0].priority for rule in rules if not rule.is_catch_all
    ):
        raise PriorityCollision(
            f"The catch-all rule must have the highest priority. Got {catch_all[0].priority}"
        )


def warn_overlapping_conditions(descriptors: list) -> None:
    """
    Logs a warning when two services use the same path pattern: the earlier service always wins.
    """
    owners = {}
    for descriptor in descriptors:
        for pattern in descriptor.routing_conditions:
            if pattern in owners and owners[pattern] != descriptor.id:
                LOG.warning(
                    f"{descriptor.id} - path {pattern} is already routed to {owners[pattern]}."
                    f" Requests will always go to {owners[pattern]}"
                )
            else:
                owners.setdefault(pattern, descriptor.id)


def not_found_action(rule_action: bool = False):
    """
    Fixed 404 response. Listener rules take a ListenerRuleAction, the listener default actions an Action.
    """
    action_class = Action if not rule_action else ListenerRuleAction
    return action_class(
        Type="fixed-response",
        FixedResponseConfig=FixedResponseConfig(
            ContentType="text/plain",
            MessageBody=NOT_FOUND_BODY,
            StatusCode=NOT_FOUND_CODE,
        ),
    )


def define_target_group(
    descriptor: ServiceDescriptor, network: TopologyNetwork
) -> TargetGroup:
    """
    Target group of the service tasks, health checked on the service health check path, with sticky sessions
    """
    return TargetGroup(
        define_title(descriptor.id, "TargetGroup"),
        Port=descriptor.container_port,
        Protocol="HTTP",
        TargetType="ip",
        VpcId=network.vpc_id,
        HealthCheckEnabled=True,
        HealthCheckProtocol="HTTP",
        HealthCheckPath=descriptor.health_check_path,
        HealthCheckIntervalSeconds=HEALTHCHECK_INTERVAL_SECONDS,
        HealthCheckTimeoutSeconds=HEALTHCHECK_TIMEOUT_SECONDS,
        HealthyThresholdCount=HEALTHY_THRESHOLD,
        UnhealthyThresholdCount=UNHEALTHY_THRESHOLD,
        Matcher=Matcher(HttpCode=HEALTHCHECK_CODES),
        TargetGroupAttributes=[
            TargetGroupAttribute(Key="stickiness.enabled", Value="true"),
            TargetGroupAttribute(Key="stickiness.type", Value="lb_cookie"),
            TargetGroupAttribute(
                Key="stickiness.lb_cookie.duration_seconds",
                Value=str(STICKINESS_DURATION_SECONDS),
            ),
            TargetGroupAttribute(
                Key="deregistration_delay.timeout_seconds",
                Value=str(DEREGISTRATION_DELAY_SECONDS),
            ),
        ],
    )


def define_service_rule(
    descriptor: ServiceDescriptor,
    index: int,
    listener: Listener,
    target_group: TargetGroup,
) -> RoutingRule:
    conditions = validate_conditions(descriptor.id, descriptor.routing_conditions)
    priority = rule_priority(index)
    listener_rule = ListenerRule(
        define_title(descriptor.id, "ListenerRule"),
        ListenerArn=Ref(listener),
        Priority=priority,
        Conditions=[
            Condition(
                Field="path-pattern",
                PathPatternConfig=PathPatternConfig(Values=list(conditions)),
            )
        ],
        Actions=[
            ListenerRuleAction(
                Type="forward",
                ForwardConfig=ForwardConfig(
                    TargetGroups=[TargetGroupTuple(TargetGroupArn=Ref(target_group))]
                ),
            )
        ],
    )
    return RoutingRule(
        priority,
        conditions,
        listener_rule,
        service_id=descriptor.id,
        target_group=target_group,
    )


def define_catch_all_rule(
    topology_id: str, priority: int, listener: Listener
) -> RoutingRule:
    listener_rule = ListenerRule(
        define_title(topology_id, "CatchAllRule"),
        ListenerArn=Ref(listener),
        Priority=priority,
        Conditions=[
            Condition(
                Field="path-pattern",
                PathPatternConfig=PathPatternConfig(Values=[CATCH_ALL_PATH]),
            )
        ],
        Actions=[not_found_action(rule_action=True)],
    )
    return RoutingRule(priority, [CATCH_ALL_PATH], listener_rule)


def define_services_ingress(
    topology_id: str, lb_security_group: SecurityGroup, services_security_group, ports
) -> list:
    """
    Allows the load balancer to reach the services tasks on their ports
    """
    return [
        SecurityGroupIngress(
            define_title(topology_id, "ServicesIngressFromLb", port),
            GroupId=GetAtt(services_security_group, "GroupId"),
            SourceSecurityGroupId=GetAtt(lb_security_group, "GroupId"),
            IpProtocol="tcp",
            FromPort=port,
            ToPort=port,
            Description=f"Load balancer to services on port {port}",
        )
        for port in sorted(set(ports))
    ]


def build_routing_layer(
    topology_id: str,
    network: TopologyNetwork,
    compute_units: list[ComputeUnit],
    descriptors: list[ServiceDescriptor],
    services_security_group: SecurityGroup = None,
) -> RoutingLayer:
    """
    Creates the load balancer and one listener rule per service, in the services order, then the catch-all rule.

    :param str topology_id: name of the topology
    :param network: the topology network. The load balancer goes in the public subnets.
    :param compute_units: compute units, in the same order as the descriptors
    :param descriptors: the services
    :param services_security_group: when set, the load balancer is allowed in on the services ports
    :raises InvalidRoutingCondition:
    :raises PriorityCollision:
    """
    if len(compute_units) != len(descriptors):
        raise ValueError(
            "There must be one compute unit per service. Got",
            len(compute_units),
            len(descriptors),
        )
    warn_overlapping_conditions(descriptors)
    lb_security_group = SecurityGroup(
        define_title(topology_id, "LoadBalancerSecurityGroup"),
        GroupDescription=Sub(f"${{AWS::StackName}} - {topology_id} load balancer"),
        VpcId=network.vpc_id,
        SecurityGroupIngress=[
            SecurityGroupRule(
                CidrIp="0.0.0.0/0",
                IpProtocol="tcp",
                FromPort=LISTENER_PORT,
                ToPort=LISTENER_PORT,
                Description="HTTP from anywhere",
            )
        ],
        Tags=Tags(Name=Sub(f"${{AWS::StackName}}-{topology_id}-lb")),
    )
    load_balancer = LoadBalancer(
        define_title(topology_id, "LoadBalancer"),
        Scheme="internet-facing",
        Type="application",
        IpAddressType="ipv4",
        Subnets=network.public_subnets_ids,
        SecurityGroups=[GetAtt(lb_security_group, "GroupId")],
        LoadBalancerAttributes=[
            LoadBalancerAttributes(
                Key="idle_timeout.timeout_seconds", Value=str(LB_IDLE_TIMEOUT_SECONDS)
            ),
            LoadBalancerAttributes(Key="routing.http2.enabled", Value="true"),
        ],
    )
    listener = Listener(
        define_title(topology_id, "HttpListener"),
        LoadBalancerArn=Ref(load_balancer),
        Port=LISTENER_PORT,
        Protocol="HTTP",
        DefaultActions=[not_found_action()],
    )
    rules = []
    for index, (descriptor, unit) in enumerate(zip(descriptors, compute_units)):
        if unit.service_id != descriptor.id:
            raise ValueError(
                f"Compute unit {unit.service_id} does not match service {descriptor.id} at index {index}"
            )
        target_group = define_target_group(descriptor, network)
        rule = define_service_rule(descriptor, index, listener, target_group)
        LOG.info(f"{topology_id} - Rule {rule!r}")
        rules.append(rule)
    catch_all = define_catch_all_rule(
        topology_id, rule_priority(len(descriptors)), listener
    )
    LOG.info(f"{topology_id} - Rule {catch_all!r}")
    rules.append(catch_all)
    services_ingress = []
    if services_security_group is not None:
        services_ingress = define_services_ingress(
            topology_id,
            lb_security_group,
            services_security_group,
            [unit.container_port for unit in compute_units],
        )
    return RoutingLayer(
        load_balancer, lb_security_group, listener, rules, services_ingress
    )
