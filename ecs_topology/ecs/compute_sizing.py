# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Table-driven CPU / RAM sizing of the services tasks.

Services are sized from their tier, and tiers from the Fargate supported combinations.
Services not listed get the ``default`` tier.

.. code-block:: yaml

    Sizing:
      Tiers:
        heavy:
          Cpu: 4096
          Memory: 16384
      Services:
        BotService: heavy
"""

from __future__ import annotations

from types import MappingProxyType

from compose_x_common.compose_x_common import set_else_none

from ecs_topology.common.logging import LOG
from ecs_topology.ecs.ecs_params import DEFAULT_TIER, FARGATE_MODES, HEAVY_TIER
from ecs_topology.exceptions import InvalidComputeQuota, TopologyConfigurationError


class ComputeQuota:
    """
    CPU units and memory (MiB) of a Fargate task
    """

    __slots__ = ("_cpu", "_memory")

    def __init__(self, cpu: int, memory: int):
        if cpu not in FARGATE_MODES:
            raise InvalidComputeQuota(
                f"CPU {cpu} is not a valid Fargate CPU value. Valid values",
                list(FARGATE_MODES.keys()),
            )
        if memory not in FARGATE_MODES[cpu]:
            raise InvalidComputeQuota(
                f"Memory {memory} is not valid for CPU {cpu}. Valid values",
                FARGATE_MODES[cpu],
            )
        object.__setattr__(self, "_cpu", cpu)
        object.__setattr__(self, "_memory", memory)

    def __setattr__(self, key, value):
        raise AttributeError(f"{type(self).__name__} is immutable. Cannot set {key}")

    def __repr__(self):
        return f"{self.cpu}!{self.memory}"

    def __eq__(self, other):
        if not isinstance(other, ComputeQuota):
            return NotImplemented
        return (self.cpu, self.memory) == (other.cpu, other.memory)

    def __hash__(self):
        return hash((self.cpu, self.memory))

    @property
    def cpu(self) -> int:
        return self._cpu

    @property
    def memory(self) -> int:
        return self._memory


DEFAULT_TIERS = MappingProxyType(
    {
        DEFAULT_TIER: ComputeQuota(512, 2048),
        HEAVY_TIER: ComputeQuota(2048, 8192),
    }
)


class ComputeSizing:
    """
    Maps the services ids to a tier, and tiers to a ComputeQuota.

    :ivar tiers: tier name to ComputeQuota
    :ivar services_tiers: service id to tier name
    """

    def __init__(self, tiers: dict = None, services_tiers: dict = None):
        self.tiers = dict(DEFAULT_TIERS)
        if tiers:
            self.tiers.update(tiers)
        self.services_tiers = dict(services_tiers) if services_tiers else {}
        for service_id, tier in self.services_tiers.items():
            if tier not in self.tiers:
                raise TopologyConfigurationError(
                    f"Service {service_id} is set to tier {tier} which is not defined. Defined tiers",
                    list(self.tiers.keys()),
                )

    def __repr__(self):
        return f"ComputeSizing({self.tiers}, {self.services_tiers})"

    def tier_for(self, service_id: str) -> str:
        return self.services_tiers.get(service_id, DEFAULT_TIER)

    def quota_for(self, service_id: str) -> ComputeQuota:
        tier = self.tier_for(service_id)
        LOG.debug(f"{service_id} - tier {tier} - {self.tiers[tier]}")
        return self.tiers[tier]

    @classmethod
    def from_definition(cls, sizing_definition: dict = None) -> ComputeSizing:
        """
        Creates the sizing from the Sizing section of the topology file
        """
        if not sizing_definition:
            return cls()
        tiers = {
            name: ComputeQuota(tier_def["Cpu"], tier_def["Memory"])
            for name, tier_def in set_else_none(
                "Tiers", sizing_definition, alt_value={}
            ).items()
        }
        return cls(
            tiers, set_else_none("Services", sizing_definition, alt_value={})
        )
