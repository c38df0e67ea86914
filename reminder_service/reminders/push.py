import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from pywebpush import WebPushException, webpush

from reminder_service.core.config import settings
from .errors import DeliveryError, SubscriptionGoneError
from .schemas import ReminderPayload, SubscriptionPayload

logger = logging.getLogger(__name__)

GONE_STATUS_CODES = (404, 410)


class PushProvider(ABC):
    """Delivers one encrypted payload to one device."""

    @abstractmethod
    def send(self, subscription: SubscriptionPayload, reminder: ReminderPayload) -> None:  # pragma: no cover - interface contract
        """Raise DeliveryError (or SubscriptionGoneError) when the device cannot be reached."""
        raise NotImplementedError


class WebPushProvider(PushProvider):
    def __init__(
        self,
        vapid_private_key: Optional[str] = None,
        vapid_claims: Optional[Dict[str, str]] = None,
        ttl: Optional[int] = None,
    ):
        self.vapid_private_key = vapid_private_key if vapid_private_key is not None else settings.VAPID_PRIVATE_KEY
        self.vapid_claims = vapid_claims or {"sub": settings.VAPID_SUBJECT}
        self.ttl = ttl if ttl is not None else settings.PUSH_TTL_SECONDS
        if not self.vapid_private_key:
            logger.warning("[WebPush] No VAPID private key configured; push services may reject deliveries")

    def send(self, subscription: SubscriptionPayload, reminder: ReminderPayload) -> None:
        data = json.dumps(reminder.model_dump())
        kwargs: Dict[str, Any] = {
            "subscription_info": subscription.to_subscription_info(),
            "data": data,
            "ttl": self.ttl,
            "headers": {"Urgency": "high"},
        }
        if self.vapid_private_key:
            kwargs["vapid_private_key"] = self.vapid_private_key
            kwargs["vapid_claims"] = dict(self.vapid_claims)

        try:
            webpush(**kwargs)
        except WebPushException as e:
            status_code = e.response.status_code if getattr(e, "response", None) is not None else None
            if status_code in GONE_STATUS_CODES:
                raise SubscriptionGoneError(
                    f"Endpoint is gone ({status_code})",
                    endpoint=subscription.endpoint,
                    status_code=status_code,
                ) from e
            raise DeliveryError(str(e), endpoint=subscription.endpoint, status_code=status_code) from e
        except Exception as e:
            raise DeliveryError(repr(e), endpoint=subscription.endpoint) from e
        logger.debug(f"[WebPush] Delivered reminder #{reminder.id} to {subscription.endpoint[:40]}...")
