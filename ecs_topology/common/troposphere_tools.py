# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Functions to add troposphere objects to a template, without silently overriding existing ones.
"""

from __future__ import annotations

from troposphere import AWSObject, Output, Template

from ecs_topology.common.logging import LOG
from ecs_topology.exceptions import CompilationError


def init_template(description: str = None) -> Template:
    template = Template(description if description else "ECS Topology")
    template.set_version()
    return template


def add_resource(template: Template, resource: AWSObject, replace: bool = False):
    """
    Adds the resource to the template.

    :raises CompilationError: when a resource with the same title exists and replace is False
    """
    if resource.title not in template.resources:
        template.add_resource(resource)
    elif replace:
        LOG.debug(f"Replacing {resource.title} in template")
        template.resources[resource.title] = resource
    else:
        raise CompilationError(
            f"There is already a resource {resource.title} in the template",
            template.resources[resource.title].resource_type,
        )
    return resource


def add_outputs(template: Template, outputs: list[Output]):
    """Adds outputs to the template. Outputs with an existing title are ignored."""
    for output in outputs:
        if output.title in template.outputs:
            LOG.debug(f"Output {output.title} already present. Skipping")
            continue
        template.add_output(output)
