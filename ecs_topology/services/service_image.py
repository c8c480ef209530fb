#  SPDX-License-Identifier: MPL-2.0
#  Copyright 2020-2022 John Mille <john@compose-x.io>

"""
Image sources a service container is started from.

Private images live in the account ECR registry and are always deployed from the ``latest`` tag.
Public images are pulled by name from the public registry namespace.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from boto3.session import Session

from botocore.exceptions import BotoCoreError, ClientError
from compose_x_common.compose_x_common import keyisset
from troposphere import Sub

from ecs_topology.common.logging import LOG
from ecs_topology.exceptions import ImageResolutionError, InvalidImageSource

LATEST_TAG = "latest"


class PrivateImage:
    """
    Image stored in the ECR registry of the account/region the topology is deployed to
    """

    def __init__(self, repository_name: str):
        if not isinstance(repository_name, str) or not repository_name:
            raise InvalidImageSource(
                "repositoryName must be a non-empty string. Got", repository_name
            )
        self._repository_name = repository_name

    def __repr__(self):
        return f"ecr://{self.repository_name}:{LATEST_TAG}"

    def __eq__(self, other):
        return (
            isinstance(other, PrivateImage)
            and other.repository_name == self.repository_name
        )

    def __hash__(self):
        return hash(("private", self.repository_name))

    @property
    def repository_name(self) -> str:
        return self._repository_name

    @property
    def default_discovery_name(self) -> str:
        return self.repository_name.split("/")[-1]

    @property
    def image_uri(self) -> Sub:
        return Sub(
            f"${{AWS::AccountId}}.dkr.ecr.${{AWS::Region}}.${{AWS::URLSuffix}}/{self.repository_name}:{LATEST_TAG}"
        )

    @property
    def requires_registry_access(self) -> bool:
        return True

    def resolve(self, session: Session) -> dict:
        """
        Checks that the repository has an image tagged latest.

        :return: the image details from ECR
        :raises ImageResolutionError: the repository or the image does not exist, or ECR API call failed.
        """
        try:
            client = session.client("ecr")
        except BotoCoreError as error:
            raise ImageResolutionError(
                f"Unable to create the ECR client to resolve {self.repository_name}"
            ) from error
        try:
            images = client.describe_images(
                repositoryName=self.repository_name,
                imageIds=[{"imageTag": LATEST_TAG}],
            )
        except client.exceptions.RepositoryNotFoundException as error:
            raise ImageResolutionError(
                f"Repository {self.repository_name} does not exist"
            ) from error
        except client.exceptions.ImageNotFoundException as error:
            raise ImageResolutionError(
                f"No image tagged {LATEST_TAG} in repository {self.repository_name}"
            ) from error
        except ClientError as error:
            LOG.error(
                f"Failed to describe images of {self.repository_name}: {error.response['Error']['Code']}"
            )
            raise ImageResolutionError(
                f"Unable to resolve image for {self.repository_name}"
            ) from error
        except BotoCoreError as error:
            LOG.error(f"Failed to describe images of {self.repository_name}: {error}")
            raise ImageResolutionError(
                f"Unable to resolve image for {self.repository_name}"
            ) from error
        if not keyisset("imageDetails", images):
            raise ImageResolutionError(
                f"No image tagged {LATEST_TAG} in repository {self.repository_name}"
            )
        LOG.debug(
            f"{self.repository_name}:{LATEST_TAG} - {images['imageDetails'][0]['imageDigest']}"
        )
        return images["imageDetails"][0]


class PublicImage:
    """
    Image from a public registry, i.e. nginx/nginx
    """

    def __init__(self, namespace: str, image_name: str):
        if not namespace or not image_name:
            raise InvalidImageSource(
                "Public images require both namespace and imageName. Got",
                namespace,
                image_name,
            )
        self._namespace = namespace
        self._image_name = image_name

    def __repr__(self):
        return self.image_uri

    def __eq__(self, other):
        return isinstance(other, PublicImage) and other.image_uri == self.image_uri

    def __hash__(self):
        return hash(("public", self.image_uri))

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def image_name(self) -> str:
        return self._image_name

    @property
    def default_discovery_name(self) -> str:
        return self.image_name

    @property
    def image_uri(self) -> str:
        return f"{self.namespace}/{self.image_name}"

    @property
    def requires_registry_access(self) -> bool:
        return False

    def resolve(self, session: Session = None) -> None:
        """Public images are not looked up"""
        return None


def define_image_source(image_definition: dict) -> PrivateImage | PublicImage:
    """
    Returns the image source from the imageSource definition. Exactly one of private or public must be set.

    :raises InvalidImageSource: when the definition is neither, or both.
    """
    if not isinstance(image_definition, dict):
        raise InvalidImageSource(
            "imageSource must be a mapping. Got", type(image_definition)
        )
    is_private = keyisset("repositoryName", image_definition)
    is_public = keyisset("namespace", image_definition) or keyisset(
        "imageName", image_definition
    )
    if is_private and is_public:
        raise InvalidImageSource(
            "imageSource cannot be both private (repositoryName) and public (namespace/imageName)",
            image_definition,
        )
    elif is_private:
        return PrivateImage(image_definition["repositoryName"])
    elif is_public:
        return PublicImage(
            image_definition.get("namespace"), image_definition.get("imageName")
        )
    raise InvalidImageSource(
        "imageSource must define either repositoryName or namespace and imageName",
        image_definition,
    )
