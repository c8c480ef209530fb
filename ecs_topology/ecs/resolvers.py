# SPDX-License-Identifier: MPL-2.0
# Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Resolves the services external references: the Secrets Manager secret and the private ECR image.

With lookups enabled, the secret is described (its value is never retrieved) and the image must exist at the latest tag.
Without lookups, the secret reference must be a well-formed ARN and images are trusted as-is.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from boto3.session import Session
    from ecs_topology.services.service_image import PrivateImage, PublicImage

from botocore.exceptions import BotoCoreError, ClientError

from ecs_topology.common.logging import LOG
from ecs_topology.exceptions import SecretResolutionError

SECRET_ARN_RE = re.compile(
    r"^arn:aws(?:-[a-z]+)*:secretsmanager:(?P<region>[\w-]+):(?P<account>[0-9]{12}):secret:"
    r"(?P<name>[\S]+)-[A-Za-z0-9]{6}$"
)


def get_name_from_arn(secret_arn: str) -> str:
    parts = SECRET_ARN_RE.match(secret_arn)
    if not parts:
        raise SecretResolutionError(
            "The secret ARN is invalid", secret_arn, "Expected", SECRET_ARN_RE.pattern
        )
    return parts.group("name")


def describe_secret(secret_reference: str, session: Session) -> dict:
    """
    Describes the secret to get its full ARN.

    :raises SecretResolutionError: the secret does not exist, or could not be described
    """
    try:
        client = session.client("secretsmanager")
    except BotoCoreError as error:
        raise SecretResolutionError(
            f"Unable to create the Secrets Manager client to resolve {secret_reference}"
        ) from error
    try:
        return client.describe_secret(SecretId=secret_reference)
    except client.exceptions.ResourceNotFoundException as error:
        raise SecretResolutionError(
            f"Secret {secret_reference} does not exist"
        ) from error
    except ClientError as error:
        LOG.error(
            f"Failed to describe secret {secret_reference}: {error.response['Error']['Code']}"
        )
        raise SecretResolutionError(
            f"Unable to resolve secret {secret_reference}"
        ) from error
    except BotoCoreError as error:
        LOG.error(f"Failed to describe secret {secret_reference}: {error}")
        raise SecretResolutionError(
            f"Unable to resolve secret {secret_reference}"
        ) from error


class ReferencesResolver:
    """
    Resolves secrets and images for the compute units.

    :ivar boto3.session.Session session:
    :ivar bool lookup: whether to call AWS APIs
    """

    def __init__(self, session: Session = None, lookup: bool = True):
        if lookup and session is None:
            raise ValueError("A boto3 session is required when lookup is enabled")
        self.session = session
        self.lookup = lookup

    def resolve_secret(self, secret_reference: str) -> str:
        """
        Returns the ARN of the secret to expose to the container.

        :raises SecretResolutionError:
        """
        LOG.debug(f"Resolving secret {secret_reference}")
        if not self.lookup:
            get_name_from_arn(secret_reference)
            return secret_reference
        secret_description = describe_secret(secret_reference, self.session)
        return secret_description["ARN"]

    def resolve_image(self, image_source: PrivateImage | PublicImage) -> None:
        """
        Validates the image exists, for private images only.

        :raises ImageResolutionError:
        """
        if not self.lookup or not image_source.requires_registry_access:
            return
        image_source.resolve(self.session)
