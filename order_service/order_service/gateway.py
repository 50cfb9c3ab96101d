"""ZenoPay mobile-money gateway client."""

from dataclasses import dataclass
from typing import Optional

import requests

from .errors import PaymentError
from .logger import logger
from .schemas import Amounts, ShippingAddress


@dataclass
class GatewayResult:
    """Outcome of a payment initiation.

    Attributes:
        success: True when the gateway accepted the charge request
        transaction_id: Gateway order id, later echoed by the webhook
        status: Raw gateway status (``success`` on acceptance)
        message: Gateway or transport message
    """

    success: bool
    transaction_id: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None


class ZenoPayClient:
    """Synchronous client for the ZenoPay mobile-money API."""

    def __init__(
        self,
        api_url: str,
        status_url: str,
        account_id: str,
        api_key: str,
        secret_key: str,
        webhook_url: str,
        timeout: float = 30.0,
    ):
        self.api_url = api_url
        self.status_url = status_url
        self.account_id = account_id
        self.api_key = api_key
        self.secret_key = secret_key
        self.webhook_url = webhook_url
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings) -> "ZenoPayClient":
        return cls(
            api_url=settings.zenopay_api_url,
            status_url=settings.zenopay_status_url,
            account_id=settings.zenopay_account_id,
            api_key=settings.zenopay_api_key,
            secret_key=settings.zenopay_secret_key,
            webhook_url=settings.zenopay_webhook_url,
            timeout=settings.payment_gateway_timeout,
        )

    def initiate(self, amounts: Amounts, buyer: dict, shipping_address: ShippingAddress) -> GatewayResult:
        """Request a mobile-money charge for an order.

        The buyer's wallet is the shipping address phone number. Gateway and
        transport failures are reported through the result, never raised.

        Args:
            amounts: Order pricing; ``total`` is charged
            buyer: ``name`` and ``email`` of the paying user
            shipping_address: Address carrying the wallet phone number

        Returns:
            GatewayResult: The initiation outcome
        """
        data = {
            "buyer_email": buyer.get("email") or "",
            "buyer_name": buyer.get("name") or "",
            "buyer_phone": shipping_address.phone or "",
            "amount": str(amounts.total),
            "account_id": self.account_id,
            "api_key": self.api_key,
            "secret_key": self.secret_key,
            "webhook_url": self.webhook_url,
        }
        try:
            response = requests.post(self.api_url, data=data, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"ZenoPay payment initiation failed: {e}")
            return GatewayResult(success=False, message=str(e))

        status = body.get("status")
        result = GatewayResult(
            success=status == "success",
            transaction_id=body.get("order_id"),
            status=status,
            message=body.get("message"),
        )
        logger.info(f"ZenoPay initiation returned status={status} transaction_id={result.transaction_id}")
        return result

    def query_status(self, transaction_id: str) -> dict:
        """Ask the gateway for the current state of a payment.

        Args:
            transaction_id: Gateway order id

        Returns:
            dict: The provider's status document, unmodified

        Raises:
            PaymentError: If the gateway cannot be reached or answers with an error
        """
        data = {
            "check_status": 1,
            "order_id": transaction_id,
            "api_key": self.api_key,
            "secret_key": self.secret_key,
        }
        try:
            response = requests.post(self.status_url, data=data, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"ZenoPay status query for {transaction_id} failed: {e}")
            raise PaymentError("Failed to check payment status") from e
