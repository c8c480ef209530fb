# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Identifiers of the resources managed outside of the topology (record store table, blob store bucket).
They are only passed through as stack outputs.

.. code-block:: yaml

    Collaborators:
      RecordStore:
        TableName: ncbp-table
        TableArn: arn:aws:dynamodb:eu-west-1:012345678912:table/ncbp-table
      BlobStore:
        BucketArn: arn:aws:s3:::ncbp-bucket
"""

from __future__ import annotations

from compose_x_common.compose_x_common import keyisset, set_else_none
from troposphere import Output

RECORD_STORE_KEY = "RecordStore"
BLOB_STORE_KEY = "BlobStore"

COLLABORATORS_OUTPUTS = [
    (RECORD_STORE_KEY, "TableName", "RecordStoreTableName"),
    (RECORD_STORE_KEY, "TableArn", "RecordStoreTableArn"),
    (BLOB_STORE_KEY, "BucketArn", "BlobStoreBucketArn"),
]


def define_collaborators_outputs(collaborators: dict = None) -> list[Output]:
    """
    Returns the outputs for the collaborators identifiers that are set, values unchanged
    """
    outputs = []
    if not collaborators:
        return outputs
    for section, key, output_name in COLLABORATORS_OUTPUTS:
        section_definition = set_else_none(section, collaborators, alt_value={})
        if keyisset(key, section_definition):
            outputs.append(Output(output_name, Value=section_definition[key]))
    return outputs
