"""
Registry Client
===============
Authenticate / push / pull / tag against an image registry via the Docker
SDK. Every call is keyed by (registry_address, repository, tag).

All operations here are safe to repeat: logging in twice, pushing an
already present layer, or pulling an image that is already local are
no-ops on the registry side. That is what lets the pipeline wrap them in
retrying guarded actions.
"""
import json
import logging

import docker
from docker.errors import APIError

from app.pipeline.variables import image_ref

logger = logging.getLogger(__name__)


class RegistryError(RuntimeError):
    pass


class RegistryClient:

    def __init__(self, client=None) -> None:
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = docker.from_env()
        return self._client

    def login(self, registry_address: str, username: str, password: str) -> None:
        host = registry_address.split("/", 1)[0]
        self.client.login(username=username, password=password, registry=host, reauth=True)
        logger.info("Authenticated against %s", host)

    def tag(self, source_ref: str, registry_address: str, repository: str, tag: str) -> str:
        image = self.client.images.get(source_ref)
        target_repo = f"{registry_address}/{repository}"
        if not image.tag(target_repo, tag=tag):
            raise RegistryError(f"Could not tag {source_ref} as {target_repo}:{tag}")
        return image_ref(registry_address, repository, tag)

    def push(self, registry_address: str, repository: str, tag: str) -> str:
        """
        Push one tag. The Docker API reports push errors inside the stream
        rather than as an HTTP failure, so the stream is scanned.
        """
        target_repo = f"{registry_address}/{repository}"
        logger.info("Pushing %s:%s", target_repo, tag)
        for line in self.client.images.push(target_repo, tag=tag, stream=True, decode=True):
            if isinstance(line, (bytes, str)):
                line = json.loads(line)
            if line.get("error"):
                raise RegistryError(f"Push of {target_repo}:{tag} failed: {line['error']}")
        return image_ref(registry_address, repository, tag)

    def pull(self, registry_address: str, repository: str, tag: str) -> str:
        target_repo = f"{registry_address}/{repository}"
        logger.info("Pulling %s:%s", target_repo, tag)
        try:
            self.client.images.pull(target_repo, tag=tag)
        except APIError as e:
            raise RegistryError(f"Pull of {target_repo}:{tag} failed: {e}") from e
        return image_ref(registry_address, repository, tag)
