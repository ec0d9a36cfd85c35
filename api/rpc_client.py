import asyncio
import itertools
from typing import Any, List, Optional

import aiohttp

from core.enums import SystemConstants
from core.exceptions import CallTimeoutError, FeeUnderpricedError, RpcError, TransportError
from core.logger import log_debug, SYSTEM_ACCOUNT


class JsonRpcClient:
    """
    Асинхронный JSON-RPC 2.0 клиент для EVM узлов.

    Особенности:
    - Одна HTTP сессия на все эндпоинты
    - Транспортные ошибки (соединение, таймаут, HTTP 5xx) -> TransportError
    - Ошибки узла -> RpcError, недостаточная комиссия -> FeeUnderpricedError
    - Повторы и смена эндпоинта НЕ здесь, а в ResilientCaller
    """

    def __init__(self, timeout_seconds: float = 30.0, chain_id: Optional[int] = None):
        self.timeout_seconds = timeout_seconds
        self.chain_id = chain_id
        self.session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    async def _ensure_session(self):
        """
        Обеспечение активной HTTP сессии.
        Создает сессию при первом вызове и переиспользует ее.
        """
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"Content-Type": "application/json"}
            )

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Закрытие HTTP сессии"""
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None

    async def request(self, url: str, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Выполняет один JSON-RPC вызов без повторов.

        Returns:
            Any: Поле result ответа

        Raises:
            TransportError: сеть недоступна, таймаут или ошибка сервера
            RpcError: узел вернул объект error
        """
        await self._ensure_session()
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}

        try:
            async with self.session.post(url, json=payload) as response:
                if response.status >= 500 or response.status == 429:
                    raise TransportError(f"server error: HTTP {response.status} от {url}")
                if response.status >= 400:
                    raise RpcError(f"HTTP {response.status} от {url}", code=response.status)
                try:
                    body = await response.json(content_type=None)
                except ValueError as err:
                    raise TransportError(f"server error: некорректный JSON от {url}") from err
        except asyncio.TimeoutError as err:
            raise CallTimeoutError(f"timeout: {method} на {url}") from err
        except aiohttp.ClientError as err:
            raise TransportError(f"network error: {err}") from err

        if not isinstance(body, dict):
            raise TransportError(f"server error: неожиданный ответ от {url}")

        error = body.get("error")
        if error:
            raise self._classify_error(error)

        log_debug(SYSTEM_ACCOUNT, f"{method} -> {url}", "rpc_client")
        return body.get("result")

    @staticmethod
    def _classify_error(error: Any) -> RpcError:
        if isinstance(error, dict):
            message = str(error.get("message", error))
            code = int(error.get("code", 0) or 0)
        else:
            message, code = str(error), 0

        lowered = message.lower()
        if any(marker in lowered for marker in SystemConstants.UNDERPRICED_MARKERS):
            return FeeUnderpricedError(message, code=code)
        return RpcError(message, code=code)

    async def probe_health(self, url: str) -> int:
        """
        Проверка эндпоинта: совпадение chain id и чтение номера блока.

        Returns:
            int: Номер последнего блока
        """
        if self.chain_id is not None:
            chain_id = int(await self.request(url, "eth_chainId"), 16)
            if chain_id != self.chain_id:
                raise RpcError(f"Неверный chain id {chain_id} у {url}, ожидался {self.chain_id}")
        return int(await self.request(url, "eth_blockNumber"), 16)
