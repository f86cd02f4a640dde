import asyncio
import json
import logging
import urllib.request
from dataclasses import dataclass

from adrotator.config import settings
from adrotator.errors import PaymentFailure
from adrotator.utils import normalize_error_message


@dataclass
class PaymentReceipt:
    success: bool
    transaction_id: str | None = None
    timestamp: str | None = None


class CoinPaymentClient:
    def __init__(self, base_url: str | None = None, timeout_ms: int | None = None):
        self.logger = logging.getLogger("payment_client")
        self.base_url = (base_url or settings.coin_api_url).rstrip("/")
        self.timeout_seconds = max(1, timeout_ms or settings.coin_api_timeout_ms) / 1000

    async def charge_card(self, card_code: str, to_id: str, amount: float) -> PaymentReceipt:
        url = f"{self.base_url}/api/transfer/card"
        body = json.dumps({"cardCode": card_code, "toId": to_id, "amount": amount}).encode("utf-8")

        def _post_sync():
            req = urllib.request.Request(
                url,
                data=body,
                method="POST",
                headers={"Content-Type": "application/json"},
            )
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                data = resp.read().decode("utf-8")
                return json.loads(data)

        try:
            result = await asyncio.to_thread(_post_sync)
        except (OSError, ValueError) as e:
            # URLError, HTTPError and socket timeouts are all OSError
            raise PaymentFailure(f"payment request failed: {normalize_error_message(e)}") from e

        if not isinstance(result, dict) or not result.get("success"):
            raise PaymentFailure("payment declined", response=result if isinstance(result, dict) else None)

        tx_id = result.get("txId")
        self.logger.info("card charged to=%s amount=%s tx=%s", to_id, amount, tx_id)
        return PaymentReceipt(
            success=True,
            transaction_id=str(tx_id) if tx_id is not None else None,
            timestamp=result.get("date"),
        )
