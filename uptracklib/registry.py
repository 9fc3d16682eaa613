import json
from typing import Dict, List, Optional
from urllib.parse import parse_qs, quote, urlparse

import aiohttp
from aiohttp import ClientResponse, ClientTimeout
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_fixed

from uptracklib import constants, logutil
from uptracklib.cache import SingleFlightCache
from uptracklib.model import RawTag

_LOGGER = logutil.get_logger(__name__)


class RegistryError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, aiohttp.ClientConnectionError):
        return True
    return isinstance(error, RegistryError) and (error.status is None or error.status == 429 or error.status >= 500)


class DockerHubClient:
    """Lists repository tags through the Docker Hub v2 API"""

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        url: str = constants.DOCKER_HUB_API_URL,
        cache: Optional[SingleFlightCache] = None,
    ):
        self._api_url = url.rstrip('/')
        self._username = username
        self._password = password
        self._token: Optional[str] = None
        self._timeout = ClientTimeout(total=60 * 5)
        self._session: Optional[aiohttp.ClientSession] = None
        self._headers = {
            "Accept": "application/json",
        }
        self.cache = cache if cache is not None else SingleFlightCache(constants.DEFAULT_CACHE_SIZE)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    @staticmethod
    async def _raise_for_status(response: ClientResponse):
        if not response.ok:
            error_message = await response.text()
            response.release()
            raise RegistryError(
                f"{response.method} {response.url} failed with {response.status} {response.reason}: {error_message}",
                status=response.status,
            )

    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_fixed(10),
        retry=retry_if_exception(_is_retryable),
    )
    async def _make_request(self, method: str, path: str, **kwargs) -> Dict:
        headers = self._headers.copy()
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        async with self._get_session().request(method, self._api_url + path, headers=headers, **kwargs) as resp:
            await self._raise_for_status(resp)
            return await resp.json()

    async def login(self):
        """Exchange the username and password for an API token. Does nothing without credentials."""
        if not self._username or not self._password or self._token:
            return
        _LOGGER.info("Logging in to Docker Hub as %s", self._username)
        result = await self._make_request(
            aiohttp.hdrs.METH_POST, "/users/login", json={"username": self._username, "password": self._password}
        )
        self._token = result.get("token")
        if not self._token:
            raise RegistryError("Docker Hub login did not return a token")

    async def get_tags_page(
        self, namespace: str, name: str, page: int = 1, page_size: int = constants.DEFAULT_PAGE_SIZE
    ) -> Dict:
        path = f"/repositories/{quote(namespace)}/{quote(name)}/tags"
        return await self._make_request(aiohttp.hdrs.METH_GET, path, params={"page": page, "page_size": page_size})

    async def _list_tags(self, namespace: str, name: str, page_size: int, page_limit: int) -> List[RawTag]:
        await self.login()

        result = await self.get_tags_page(namespace, name, page=1, page_size=page_size)
        records = list(result.get("results") or [])

        # page_limit counts the pages fetched after the first one
        pages = 0
        while result.get("next") and (page_limit == 0 or pages < page_limit):
            query = parse_qs(urlparse(result["next"]).query)
            page = int(query.get("page", ["0"])[0])
            size = int(query.get("page_size", ["0"])[0]) or page_size
            result = await self.get_tags_page(namespace, name, page=page, page_size=size)
            records.extend(result.get("results") or [])
            pages += 1

        _LOGGER.info("Loaded %s tags of %s/%s", len(records), namespace, name)
        return [RawTag.from_dict(r) for r in records]

    async def list_tags(
        self, namespace: str, name: str, page_size: int = constants.DEFAULT_PAGE_SIZE, page_limit: int = 0
    ) -> List[RawTag]:
        """
        List all tags of a repository, following pagination.
        :param namespace: Repository namespace, "library" for official images
        :param name: Repository name
        :param page_size: Tags per page
        :param page_limit: Maximum number of pages fetched after the first one. 0 means no limit.
        :return: Tags in registry listing order
        :raises RegistryError: if Docker Hub returns an error after retries
        """
        key = json.dumps(
            {"namespace": namespace, "name": name, "page_size": page_size, "page_limit": page_limit}, sort_keys=True
        )
        return await self.cache.compute_if_absent(key, lambda: self._list_tags(namespace, name, page_size, page_limit))
