# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Console script for ecs_topology.
"""

import argparse
import logging
import sys

from ecs_topology import __version__
from ecs_topology.common.files import FileArtifact
from ecs_topology.common.logging import LOG
from ecs_topology.common.settings import TopologySettings
from ecs_topology.exceptions import TopologyBaseException
from ecs_topology.services.service_descriptor import import_descriptors
from ecs_topology.topology import compile_from_settings

VALID_LEVELS = [
    "FATAL",
    "CRITICAL",
    "ERROR",
    "WARNING",
    "WARN",
    "INFO",
    "DEBUG",
]


class ArgparseHelper(argparse._HelpAction):
    """
    Used to help print top level '--help' arguments from argparse
    when used with subparsers
    """

    def __call__(self, parser, namespace, values, option_string=None):
        parser.print_help()
        print()
        subparsers_actions = [
            action
            for action in parser._actions
            if isinstance(action, argparse._SubParsersAction)
        ]
        for subparsers_action in subparsers_actions:
            for choice, subparser in list(subparsers_action.choices.items()):
                if choice in [
                    cmd["name"] for cmd in TopologySettings.active_commands
                ] or choice in [
                    cmd["name"] for cmd in TopologySettings.validation_commands
                ]:
                    print(f"Command '{choice}'")
                    print(subparser.format_usage())
        parser.exit()


def main_parser():
    """
    Console script for ecs_topology.
    """
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "-h",
        "--help",
        action=ArgparseHelper,
        help="show this help message and exit",
    )

    cmd_parsers = parser.add_subparsers(
        dest=TopologySettings.command_arg, help="Command to execute."
    )
    base_command_parser = argparse.ArgumentParser(add_help=False)
    files_parser = argparse.ArgumentParser(add_help=False)
    files_parser.add_argument(
        "-f",
        "--topology-file",
        dest=TopologySettings.input_file_arg,
        required=True,
        help="Path to the topology services file",
    )
    files_parser.add_argument(
        "--loglevel", type=str, help="Log level. Defaults to INFO", required=False
    )
    base_command_parser.add_argument(
        "-d",
        "--output-dir",
        required=False,
        help="Output directory to write the template to.",
        type=str,
        dest=TopologySettings.output_dir_arg,
        default=TopologySettings.default_output_dir,
    )
    base_command_parser.add_argument(
        "-n",
        "--name",
        help="Name of your topology. Prefixes the resources names",
        required=True,
        type=str,
        dest=TopologySettings.name_arg,
    )
    base_command_parser.add_argument(
        "--format",
        help="Defines the format you want to use.",
        type=str,
        dest=TopologySettings.format_arg,
        choices=TopologySettings.allowed_formats,
        default=TopologySettings.default_format,
    )
    base_command_parser.add_argument(
        "--region",
        required=False,
        dest=TopologySettings.region_arg,
        help="Specify the region you want to build for. "
        "Defaults to the region from config or environment vars",
    )
    base_command_parser.add_argument(
        "--profile",
        required=False,
        dest=TopologySettings.profile_arg,
        help="AWS profile to use for the lookups",
    )
    base_command_parser.add_argument(
        "--role-arn",
        dest=TopologySettings.arn_arg,
        help="Allow you to run API calls using a specific IAM role, within same or for cross-account",
        required=False,
    )
    base_command_parser.add_argument(
        "--no-lookup",
        dest=TopologySettings.no_lookup_arg,
        action="store_true",
        default=False,
        help="Do not look up the secrets and images in AWS. Secrets must then be set with their full ARN.",
    )
    for command in TopologySettings.active_commands:
        cmd_parsers.add_parser(
            name=command["name"],
            help=command["help"],
            parents=[base_command_parser, files_parser],
        )
    for command in TopologySettings.validation_commands:
        cmd_parsers.add_parser(
            name=command["name"], help=command["help"], parents=[files_parser]
        )

    for command in TopologySettings.neutral_commands:
        cmd_parsers.add_parser(name=command["name"], help=command["help"])
    return parser


def set_log_level(loglevel: str) -> None:
    if loglevel.upper() in VALID_LEVELS:
        LOG.setLevel(logging.getLevelName(loglevel.upper()))
        LOG.handlers[0].setLevel(logging.getLevelName(loglevel.upper()))
    else:
        print(f"Log level value {loglevel} is invalid. Must be one of {VALID_LEVELS}")


def render_config(args) -> int:
    """
    Validates the topology file and prints the services as they will be compiled
    """
    settings = TopologySettings(**vars(args))
    descriptors = import_descriptors(settings.services_definitions)
    config = FileArtifact(
        "config",
        settings,
        file_format="yaml",
        content={
            TopologySettings.services_key: [
                descriptor.to_dict() for descriptor in descriptors
            ]
        },
    )
    print(config.body)
    return 0


def render(args) -> int:
    """
    Compiles the topology and writes the template to the output directory
    """
    settings = TopologySettings(**vars(args))
    LOG.debug(settings)
    topology, entry_address = compile_from_settings(settings)
    template_file = FileArtifact(settings.name, settings, template=topology.template)
    template_file.write()
    LOG.info(
        f"{settings.name} - Entry address exported as output {topology.entry_output_name}"
        f" {entry_address.to_dict()}"
    )
    return 0


def main(argv=None):
    """
    Main entry point for CLI
    :return: status code
    """
    parser = main_parser()
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)
    if getattr(args, "loglevel", None):
        set_log_level(args.loglevel)
    LOG.debug(args)
    command = getattr(args, TopologySettings.command_arg)
    if command == "version":
        print(__version__)
        return 0
    try:
        if command == TopologySettings.config_render_arg:
            return render_config(args)
        return render(args)
    except TopologyBaseException as error:
        LOG.error(error)
        return 1


if __name__ == "__main__":
    sys.exit(main())  # pragma: no cover
