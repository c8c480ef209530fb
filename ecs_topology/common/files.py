# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Functions to render the topology template and write it to the local filesystem
"""

from os import makedirs
from os.path import abspath

import json

import yaml

try:
    from yaml import CDumper as Dumper
except ImportError:
    from yaml import Dumper

from troposphere import Template

from ecs_topology.common.logging import LOG

JSON_MIME = "application/json"
YAML_MIME = "application/x-yaml"


class FileArtifact(object):
    """
    Class to handle files artifacts, such as the CFN template or the rendered configuration.

    :cvar str body: The content of the FileArtifact
    :cvar troposphere.Template template: the CFN template
    :cvar str file_name: the base name of the file
    :cvar str mime: MIME-type of the file
    :cvar str file_path: Output file path for the FileArtifact
    """

    mime = "text/plain"
    file_path = None

    def __init__(
        self, file_name, settings, file_format=None, template=None, content=None
    ):
        self.template = None
        self.content = None
        self.body = None
        if file_format is None:
            file_format = settings.format
        if template is not None and not isinstance(template, Template):
            raise TypeError("template must be of type", Template, "got", type(template))
        elif template is not None:
            self.template = template
        elif isinstance(content, (tuple, dict, str, list)):
            self.content = content
        else:
            raise TypeError(
                "content must be of type", tuple, dict, str, list, "Got", type(content)
            )
        if not isinstance(file_format, str):
            raise TypeError("format is of type", type(file_format), "expected", str)
        self.define_file_specs(file_name, file_format)
        self.output_dir = settings.output_dir
        self.file_path = f"{settings.output_dir}/{self.file_name}"

    def __repr__(self):
        return self.file_path

    def write(self):
        """
        Writes the file to the output directory, creating it if it does not exist yet
        """
        makedirs(self.output_dir, exist_ok=True)
        with open(self.file_path, "w") as template_fd:
            template_fd.write(self.body)
        LOG.info(f"{self.file_name} written successfully at {abspath(self.file_path)}")

    def define_body(self):
        """
        Method to define the body of the file artifact.
        """
        if isinstance(self.template, Template):
            if self.mime == YAML_MIME:
                self.body = self.template.to_yaml()
            else:
                self.body = self.template.to_json()
        elif isinstance(self.content, str):
            self.body = self.content
        elif self.mime == YAML_MIME:
            self.body = yaml.dump(self.content, Dumper=Dumper, sort_keys=False)
        else:
            self.body = json.dumps(self.content, indent=4)

    def define_file_specs(self, file_name, file_format):
        """
        Sets the file name extension and MIME type from the format
        """
        if file_format == "yaml":
            self.mime = YAML_MIME
            extension = "yaml"
        elif file_format == "json":
            self.mime = JSON_MIME
            extension = "json"
        else:
            raise ValueError("file format must be one of", ["json", "yaml"])
        if not file_name.endswith(extension):
            file_name = f"{file_name}.{extension}"
        self.file_name = file_name
        self.define_body()
