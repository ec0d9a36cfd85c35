import asyncio
import json
import time
from typing import Any, Dict, Optional

import aiohttp

from core.enums import EventType, StepKind
from core.events import EventBus, StepCompletedEvent
from core.functions import DecimalEncoder, format_address
from core.logger import log_debug, log_warning
from core.settings_config import ReportingConfig

SWAP_TOKENS = {
    StepKind.SWAP_PRIOR_TO_USDC: ("PRIOR", "USDC"),
    StepKind.SWAP_USDC_TO_PRIOR: ("USDC", "PRIOR"),
}


class TransactionReporter:
    """
    Отправка подтверждённых транзакций во внешний API.

    Подписывается на StepCompletedEvent. Ошибки отправки только логируются
    и никогда не влияют на прогон кошелька.
    """

    def __init__(self, config: ReportingConfig, chain_id: int):
        self.config = config
        self.chain_id = chain_id
        self.session: Optional[aiohttp.ClientSession] = None
        self.stats = {"sent": 0, "failed": 0}

    async def _ensure_session(self):
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self.session = aiohttp.ClientSession(timeout=timeout, headers={"Content-Type": "application/json"})

    async def close(self):
        if self.session and not self.session.closed:
            await self.session.close()
            self.session = None

    async def attach(self, event_bus: EventBus):
        """Подписка на события подтверждённых шагов (только если отправка включена)"""
        if not self.config.enabled:
            return
        await event_bus.subscribe(EventType.STEP_COMPLETED, self.handle_step_completed)

    async def handle_step_completed(self, event: StepCompletedEvent):
        await self.report(self.build_payload(event), event.account)

    def build_payload(self, event: StepCompletedEvent) -> Dict[str, Any]:
        if event.step in SWAP_TOKENS:
            from_token, to_token = SWAP_TOKENS[event.step]
            return {
                "userId": event.account.lower(),
                "type": "swap",
                "txHash": event.tx_hash,
                "fromToken": from_token,
                "toToken": to_token,
                "fromAmount": "0.1",
                "toAmount": "0.2",
                "status": "completed",
                "blockNumber": event.block_number,
            }
        return {
            "wallet": event.account,
            "type": event.step.value,
            "hash": event.tx_hash,
            "chainId": self.chain_id,
            "timestamp": int(time.time() * 1000),
            "blockNumber": event.block_number,
            "gasUsed": event.gas_used,
            "maxFeeGwei": event.max_fee_gwei,
        }

    async def report(self, payload: Dict[str, Any], account: str) -> bool:
        await self._ensure_session()
        label = format_address(account)
        body = json.dumps(payload, cls=DecimalEncoder)
        try:
            async with self.session.post(self.config.endpoint_url, data=body) as response:
                if response.status in (200, 201):
                    self.stats["sent"] += 1
                    log_debug(label, f"Транзакция {payload.get('type')} отправлена в API", "report_client")
                    return True
                self.stats["failed"] += 1
                log_warning(label, f"API отчётов вернул статус {response.status}", "report_client")
                return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.stats["failed"] += 1
            log_warning(label, f"Ошибка отправки в API отчётов: {e!r}", "report_client")
            return False
