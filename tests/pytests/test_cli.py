# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille<john@compose-x.io>

import json
from os import path

import yaml

from ecs_topology import __version__
from ecs_topology.cli import main, main_parser

HERE = path.abspath(path.dirname(__file__))
USE_CASES = path.abspath(f"{HERE}/../../use-cases")


def test_parser_render_args():
    args = main_parser().parse_args(
        [
            "render",
            "-n",
            "test",
            "-f",
            f"{USE_CASES}/services.yml",
            "--format",
            "yaml",
            "--no-lookup",
        ]
    )
    assert args.Name == "test"
    assert args.TemplateFormat == "yaml"
    assert args.NoLookup


def test_render(tmp_path):
    assert (
        main(
            [
                "render",
                "-n",
                "test",
                "-f",
                f"{USE_CASES}/services.yml",
                "-d",
                str(tmp_path),
                "--no-lookup",
                "--region",
                "eu-west-1",
            ]
        )
        == 0
    )
    with open(tmp_path / "test.json") as template_fd:
        template = json.loads(template_fd.read())
    assert "testDNS" in template["Outputs"]
    assert template["Resources"]["testCatchAllRule"]["Properties"]["Priority"] == 50


def test_render_yaml(tmp_path):
    assert (
        main(
            [
                "render",
                "-n",
                "test",
                "-f",
                f"{USE_CASES}/overlapping.yml",
                "-d",
                str(tmp_path),
                "--format",
                "yaml",
                "--no-lookup",
                "--region",
                "eu-west-1",
            ]
        )
        == 0
    )
    assert (tmp_path / "test.yaml").exists()


def test_render_failure(tmp_path):
    assert (
        main(
            [
                "render",
                "-n",
                "test",
                "-f",
                f"{USE_CASES}/duplicate_ids.yml",
                "-d",
                str(tmp_path),
                "--no-lookup",
                "--region",
                "eu-west-1",
            ]
        )
        == 1
    )
    assert not (tmp_path / "test.json").exists()


def test_render_colliding_ids(tmp_path):
    assert (
        main(
            [
                "render",
                "-n",
                "test",
                "-f",
                f"{USE_CASES}/colliding_ids.yml",
                "-d",
                str(tmp_path),
                "--no-lookup",
            ]
        )
        == 1
    )
    assert not (tmp_path / "test.json").exists()


def test_config(capsys):
    assert main(["config", "-f", f"{USE_CASES}/services.yml"]) == 0
    output = capsys.readouterr().out
    config = yaml.safe_load(output[output.index("Services:") :])
    assert [service["id"] for service in config["Services"]] == [
        "WorkspaceService",
        "DatasetService",
        "BotService",
        "Embeddings",
    ]
    assert "secretArn" not in config["Services"][2]


def test_version(capsys):
    assert main(["version"]) == 0
    assert capsys.readouterr().out.strip() == __version__
