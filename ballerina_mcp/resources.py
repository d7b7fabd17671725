"""
MCP Resources.

Providers registered under a URI scheme and the manager that multiplexes
over them.
"""

import asyncio
import fnmatch
import inspect
import logging
import mimetypes
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .protocol import MCPErrorCode, MCPException, Resource, ResourceContent


logger = logging.getLogger(__name__)

WatchCallback = Callable[[Dict[str, Any]], None]
Unsubscribe = Callable[[], None]

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*)://")

DEFAULT_SCHEME = "file"


async def _call(operation, *args):
    result = operation(*args)
    if inspect.isawaitable(result):
        return await result
    return result


class ResourceProvider(ABC):
    """
    Supplies resources for one URI scheme.

    Providers may additionally define ``write(uri, content) -> bool`` and
    ``watch(uri, callback) -> unsubscribe``; the manager discovers them by
    attribute. Any method may be a coroutine.
    """

    @abstractmethod
    def list(self, filter: Optional[Any] = None) -> List[Resource]:
        pass

    @abstractmethod
    def read(self, uri: str) -> ResourceContent:
        pass


class ResourceManager:
    """Multiplexes resource operations over scheme-keyed providers."""

    def __init__(self):
        self._providers: Dict[str, ResourceProvider] = {}

    def add_provider(self, scheme: str, provider: ResourceProvider) -> None:
        if scheme in self._providers:
            logger.warning(f"Overwriting resource provider for scheme: {scheme}")
        self._providers[scheme] = provider
        logger.info(f"Registered resource provider for scheme: {scheme}")

    def remove_provider(self, scheme: str) -> bool:
        return self._providers.pop(scheme, None) is not None

    def get_provider(self, scheme: str) -> Optional[ResourceProvider]:
        return self._providers.get(scheme)

    @property
    def schemes(self) -> List[str]:
        return list(self._providers)

    @staticmethod
    def extract_scheme(uri: str) -> str:
        match = _SCHEME_RE.match(uri)
        return match.group(1) if match else DEFAULT_SCHEME

    async def list(self, filter: Optional[Any] = None) -> List[Resource]:
        """
        Resources from every provider, in provider registration order.

        A provider that fails, or answers with anything but resources, is
        logged and skipped; the others still answer.
        """
        providers = list(self._providers.items())
        results = await asyncio.gather(
            *(_call(provider.list, filter) for _, provider in providers),
            return_exceptions=True,
        )

        resources: List[Resource] = []
        for (scheme, _), result in zip(providers, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"Error listing resources from {scheme}: {result}",
                    exc_info=result,
                )
                continue
            try:
                items = list(result)
            except TypeError:
                logger.error(f"Error listing resources from {scheme}: got {type(result).__name__}")
                continue
            if not all(isinstance(item, Resource) for item in items):
                logger.error(f"Error listing resources from {scheme}: non-resource entries")
                continue
            resources.extend(items)
        return resources

    def _provider_for(self, uri: str) -> ResourceProvider:
        scheme = self.extract_scheme(uri)
        provider = self._providers.get(scheme)
        if provider is None:
            raise MCPException(
                MCPErrorCode.RESOURCE_NOT_FOUND,
                f"No provider for scheme: {scheme}",
                {"uri": uri},
            )
        return provider

    def _capability(self, uri: str, name: str) -> Callable:
        provider = self._provider_for(uri)
        operation = getattr(provider, name, None)
        if not callable(operation):
            raise MCPException(
                MCPErrorCode.SERVER_ERROR,
                f"{name.capitalize()} not supported for scheme: {self.extract_scheme(uri)}",
                {"uri": uri},
            )
        return operation

    async def read(self, uri: str) -> ResourceContent:
        return await _call(self._provider_for(uri).read, uri)

    async def write(self, uri: str, content: Any) -> bool:
        return await _call(self._capability(uri, "write"), uri, content)

    async def watch(self, uri: str, callback: WatchCallback) -> Unsubscribe:
        return await _call(self._capability(uri, "watch"), uri, callback)


class FileResourceProvider(ResourceProvider):
    """
    Files below a root directory.

    The ``filter`` for list() is a glob pattern relative to the root
    (default ``**/*``). Without ``allowed_paths`` only files below the root
    can be read or written.
    """

    def __init__(
        self,
        root: str = ".",
        allowed_paths: Optional[List[str]] = None,
        max_size: int = 10_000_000,
        max_results: int = 1000,
    ):
        self.root = os.path.abspath(root)
        self.allowed_paths = allowed_paths if allowed_paths is not None else [self.root]
        self.max_size = max_size
        self.max_results = max_results

    def _is_path_allowed(self, path: str) -> bool:
        real_path = os.path.realpath(path)
        for allowed in self.allowed_paths:
            allowed_real = os.path.realpath(allowed)
            if os.path.commonpath([real_path, allowed_real]) == allowed_real:
                return True
        return False

    def path_for(self, uri: str) -> str:
        path = uri[len("file://"):] if uri.startswith("file://") else uri
        if not os.path.isabs(path):
            path = os.path.join(self.root, path)
        return os.path.abspath(path)

    def uri_for(self, path: str) -> str:
        return Path(path).absolute().as_uri()

    def list(self, filter: Optional[Any] = None) -> List[Resource]:
        pattern = filter if isinstance(filter, str) and filter else "**/*"
        resources = []

        for match in sorted(Path(self.root).glob(pattern)):
            if not match.is_file() or any(part.startswith(".") for part in match.relative_to(self.root).parts):
                continue
            if not self._is_path_allowed(str(match)):
                continue

            mime_type, _ = mimetypes.guess_type(match.name)
            resources.append(
                Resource(
                    uri=self.uri_for(str(match)),
                    name=str(match.relative_to(self.root)),
                    mime_type=mime_type or "text/plain",
                    metadata={"size": match.stat().st_size},
                )
            )
            if len(resources) >= self.max_results:
                break

        return resources

    def read(self, uri: str) -> ResourceContent:
        path = self.path_for(uri)

        if not self._is_path_allowed(path):
            raise MCPException(MCPErrorCode.AUTHORIZATION_FAILED, f"Access denied: {path}")

        if not os.path.isfile(path):
            raise MCPException(MCPErrorCode.RESOURCE_NOT_FOUND, f"File not found: {path}")

        file_size = os.path.getsize(path)
        if file_size > self.max_size:
            raise MCPException(
                MCPErrorCode.SERVER_ERROR,
                f"File too large: {file_size} bytes (max: {self.max_size})",
            )

        with open(path, "r", encoding="utf-8") as f:
            data = f.read()

        mime_type, _ = mimetypes.guess_type(path)
        return ResourceContent(uri=uri, data=data, mime_type=mime_type or "text/plain")

    def write(self, uri: str, content: Any) -> bool:
        path = self.path_for(uri)

        if not self._is_path_allowed(path):
            raise MCPException(MCPErrorCode.AUTHORIZATION_FAILED, f"Access denied: {path}")

        parent = os.path.dirname(path)
        if parent and not os.path.exists(parent):
            os.makedirs(parent)

        with open(path, "w", encoding="utf-8") as f:
            f.write(content if isinstance(content, str) else str(content))
        return True


class MemoryResourceProvider(ResourceProvider):
    """In-memory resources with change notification."""

    def __init__(self, scheme: str = "mem", initial: Optional[Dict[str, Any]] = None):
        self.scheme = scheme
        self._data: Dict[str, Any] = {}
        self._watchers: Dict[str, List[WatchCallback]] = {}
        for name, value in (initial or {}).items():
            self._data[self._uri(name)] = value

    def _uri(self, name: str) -> str:
        prefix = f"{self.scheme}://"
        return name if name.startswith(prefix) else prefix + name

    def list(self, filter: Optional[Any] = None) -> List[Resource]:
        resources = []
        for uri in self._data:
            name = uri[len(self.scheme) + 3:]
            if isinstance(filter, str) and filter and not fnmatch.fnmatch(name, filter):
                continue
            resources.append(Resource(uri=uri, name=name))
        return resources

    def read(self, uri: str) -> ResourceContent:
        if uri not in self._data:
            raise MCPException(MCPErrorCode.RESOURCE_NOT_FOUND, f"Resource not found: {uri}")
        return ResourceContent(uri=uri, data=self._data[uri])

    def write(self, uri: str, content: Any) -> bool:
        event = "updated" if uri in self._data else "created"
        self._data[uri] = content
        self._notify(uri, {"type": event, "uri": uri})
        return True

    def watch(self, uri: str, callback: WatchCallback) -> Unsubscribe:
        callbacks = self._watchers.setdefault(uri, [])
        callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _notify(self, uri: str, event: Dict[str, Any]) -> None:
        for callback in list(self._watchers.get(uri, ())):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Watch callback for {uri} failed")
