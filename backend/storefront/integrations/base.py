from abc import ABC, abstractmethod
from typing import Optional

import httpx


class BaseConnector(ABC):
    """
    Abstract Base Class for outbound HTTP integrations.
    """

    def __init__(self, api_key: Optional[str], transport: Optional[httpx.AsyncBaseTransport] = None, **kwargs):
        self.api_key = api_key
        self.config = kwargs
        self._transport = transport

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """
        False when credentials are missing; callers skip the integration.
        """
        pass

    def _client(self, timeout: float = 30.0) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)
