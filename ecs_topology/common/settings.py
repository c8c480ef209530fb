# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Module for the TopologySettings class
"""

from __future__ import annotations

from copy import deepcopy
from datetime import datetime as dt

import boto3
import jsonschema
import yaml
from compose_x_common.aws import validate_iam_role_arn
from compose_x_common.compose_x_common import keyisset, set_else_none

from ecs_topology.common.aws import get_cross_role_session, set_session_region
from ecs_topology.common.logging import LOG
from ecs_topology.exceptions import InvalidDescriptor
from ecs_topology.specs import REGISTRY, TOPOLOGY_SCHEMA_ID


def validate_topology_definition(content: dict) -> None:
    """
    Validates the topology content against the JSON schema

    :raises InvalidDescriptor: with the jsonschema error as cause
    """
    schema = REGISTRY.contents(TOPOLOGY_SCHEMA_ID)
    validator_cls = jsonschema.validators.validator_for(schema)
    validator = validator_cls(schema, registry=REGISTRY)
    try:
        validator.validate(content)
    except jsonschema.exceptions.ValidationError as error:
        path = "/".join(str(part) for part in error.absolute_path)
        LOG.error(f"Topology definition is invalid at /{path}: {error.message}")
        raise InvalidDescriptor(
            f"Topology definition is invalid at /{path}", error.message
        ) from error


def load_topology_file(file_path: str) -> dict:
    """
    Loads a YAML topology file
    """
    with open(file_path) as topology_fd:
        content = yaml.safe_load(topology_fd.read())
    if not isinstance(content, dict):
        raise InvalidDescriptor(
            f"{file_path} must contain a mapping. Got", type(content)
        )
    return content


class TopologySettings:
    """
    Class to handle the settings to use for the topology compilation.

    :ivar boto3.session.Session session: session used for lookups
    :ivar dict content: the topology definition, validated
    :ivar bool lookup: whether the secrets and images are looked up in AWS
    """

    name_arg = "Name"
    command_arg = "command"
    input_file_arg = "TopologyFile"
    output_dir_arg = "OutputDirectory"
    format_arg = "TemplateFormat"
    region_arg = "RegionName"
    arn_arg = "RoleArn"
    profile_arg = "ProfileName"
    no_lookup_arg = "NoLookup"

    render_arg = "render"
    config_render_arg = "config"

    default_format = "json"
    allowed_formats = ["json", "yaml"]
    default_output_dir = f"/tmp/{dt.utcnow().strftime('%s')}"

    services_key = "Services"
    tags_key = "Tags"
    sizing_key = "Sizing"
    network_key = "Network"
    collaborators_key = "Collaborators"

    active_commands = [
        {
            "name": render_arg,
            "help": "Generates the CFN template for the topology and writes it locally",
        },
    ]
    validation_commands = [
        {
            "name": config_render_arg,
            "help": "Validates the topology file and prints the services definitions",
        }
    ]
    neutral_commands = [{"name": "version", "help": "ECS Topology Version"}]
    all_commands = active_commands + validation_commands + neutral_commands

    def __init__(self, content=None, session=None, **kwargs):
        self.__args = deepcopy(kwargs)
        self.session = boto3.session.Session()
        self.override_session(
            session,
            set_else_none(self.profile_arg, kwargs),
            set_else_none(self.region_arg, kwargs),
            kwargs,
        )
        self.aws_region = self.session.region_name
        self.name = set_else_none(self.name_arg, kwargs, alt_value="topology")
        self.lookup = not keyisset(self.no_lookup_arg, kwargs)
        self.input_file = set_else_none(self.input_file_arg, kwargs)
        self.format = self.default_format
        self.output_dir = self.default_output_dir
        self.set_output_settings(kwargs)
        self.content = {}
        self.set_content(content)

    def set_content(self, content: dict = None):
        """
        Sets the topology content from the given content, or from the input file, and validates it
        """
        if content is None and self.input_file:
            LOG.debug(f"Input file: {self.input_file}")
            content = load_topology_file(self.input_file)
        elif content is None:
            raise InvalidDescriptor("No topology content nor input file provided")
        LOG.info("Validating topology definition")
        validate_topology_definition(content)
        self.content = deepcopy(content)

    @property
    def services_definitions(self) -> list:
        return self.content[self.services_key]

    @property
    def tags_definition(self):
        return set_else_none(self.tags_key, self.content)

    @property
    def sizing_definition(self) -> dict:
        return set_else_none(self.sizing_key, self.content, alt_value={})

    @property
    def network_definition(self) -> dict:
        return set_else_none(self.network_key, self.content, alt_value={})

    @property
    def collaborators_definition(self) -> dict:
        return set_else_none(self.collaborators_key, self.content, alt_value={})

    def override_session(self, session, profile_name, region_name, kwargs):
        """
        Method to set the session based on input params. The lookups run in region_name when set.

        :param boto3.session.Session session: The session to override the API calls with
        :param str profile_name: Name of a profile configured in .aws/config
        :param str region_name: Region to build and look up resources in
        :param dict kwargs: CLI kwargs
        """
        if session:
            self.session = set_session_region(session, region_name)
        elif profile_name or region_name:
            self.session = boto3.session.Session(
                profile_name=profile_name, region_name=region_name
            )
        if keyisset(self.arn_arg, kwargs):
            validate_iam_role_arn(arn=kwargs[self.arn_arg])
            self.session = get_cross_role_session(
                self.session,
                kwargs[self.arn_arg],
                region_name=self.session.region_name,
                session_name=f"EcsTopology@{set_else_none(self.command_arg, kwargs, alt_value='render')}",
            )

    def set_output_settings(self, kwargs):
        """
        Method to set the output settings based on kwargs
        """
        if (
            keyisset(self.format_arg, kwargs)
            and kwargs[self.format_arg] in self.allowed_formats
        ):
            self.format = kwargs[self.format_arg]
        self.output_dir = set_else_none(
            self.output_dir_arg, kwargs, alt_value=self.default_output_dir
        )
