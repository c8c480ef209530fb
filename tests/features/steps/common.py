#  -*- coding: utf-8 -*-
# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille<john@compose-x.io>

from os import path
from tempfile import mkdtemp

import boto3
from behave import given

from ecs_topology.common.settings import TopologySettings


def here():
    return path.abspath(path.dirname(__file__))


@given("I use {file_path} as my topology file")
def step_impl(context, file_path):
    """
    Function to import the topology file from use-cases.

    :param context:
    :param str file_path:
    """
    cases_path = path.abspath(f"{here()}/../../../{file_path}")
    context.settings = TopologySettings(
        session=boto3.session.Session(region_name="eu-west-1"),
        **{
            TopologySettings.name_arg: "test",
            TopologySettings.command_arg: TopologySettings.render_arg,
            TopologySettings.input_file_arg: cases_path,
            TopologySettings.output_dir_arg: mkdtemp(),
            TopologySettings.no_lookup_arg: True,
        },
    )
