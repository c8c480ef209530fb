# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Shared tags applied to every resource of the topology that supports AWS Tags in CFN.

Tagging is a pass run once all the resources have been built: each resource is copied and the copy gets the tags,
so that the resources the builders returned are never changed after the fact.

Tags can be defined as a list, which allows names with special characters, i.e. *vpc::usage::ecsapps*

.. code-block:: yaml

    Tags:
      - name: costcentre
        value: lambda-my-aws
      - name: owner
        value: John Mille

or as a mapping

.. code-block:: yaml

    Tags:
      costcentre: lambda-my-aws
"""

from __future__ import annotations

import copy

from troposphere import AWSObject, Tags

from ecs_topology.common.logging import LOG


def define_tags(tags) -> Tags | None:
    """
    Function to generate the troposphere Tags from the Tags definition.
    When a tag name is defined more than once, the last value is kept.

    :param tags: tags as defined in the topology file
    :type tags: list or dict
    :return: Tags() or None
    :rtype: troposphere.Tags or None
    """
    tags_keys = ["name", "value"]
    rendered_tags = {}
    if isinstance(tags, list):
        for tag in tags:
            if not isinstance(tag, dict):
                raise TypeError("Tags must be of type", dict)
            elif not set(tag.keys()) == set(tags_keys):
                raise KeyError("Keys for tags must be", "value", "name")
            if tag["name"] in rendered_tags:
                LOG.warning(
                    f"Tag {tag['name']} is defined more than once. Using value {tag['value']}"
                )
            rendered_tags[tag["name"]] = str(tag["value"])
    elif isinstance(tags, dict):
        for name, value in tags.items():
            rendered_tags[name] = str(value)
    elif tags is not None:
        raise TypeError("Tags must be one of", (list, dict), "Got", type(tags))
    if rendered_tags:
        return Tags(rendered_tags)
    return None


def merge_tags_lists(x_data, y_data):
    """
    Merges two lists of rendered tags. Keys already present in x_data are kept
    """
    x_keys = [x["Key"] for x in x_data]
    result = [{a["Key"]: a["Value"]} for a in x_data]
    for tag in y_data:
        if tag["Key"] not in x_keys:
            result.append({tag["Key"]: tag["Value"]})
    return result


def supports_tags(resource) -> bool:
    return isinstance(resource, AWSObject) and "Tags" in resource.props


def tag_resource(resource, tags: Tags | None):
    """
    Returns a copy of the resource with the tags set. Resources not supporting Tags are returned as-is

    :param troposphere.AWSObject resource:
    :param troposphere.Tags tags:
    """
    if tags is None or not supports_tags(resource):
        return resource
    tagged = copy.deepcopy(resource)
    clean_tags = copy.deepcopy(tags)
    if hasattr(tagged, "Tags") and isinstance(getattr(tagged, "Tags"), Tags):
        existing_tags = getattr(tagged, "Tags").to_dict()
        result = merge_tags_lists(existing_tags, clean_tags.to_dict())
        setattr(tagged, "Tags", Tags(*result))
    else:
        LOG.debug(f"No existing tags. Adding tags to {tagged.title}")
        setattr(tagged, "Tags", clean_tags)
    return tagged
