"""
Acknowledge / retry decisions for processed deliveries.

Every delivery is positively acknowledged exactly once. A failed handler on
a retryable subscription additionally republishes the delivery to the
delayed exchange before the acknowledgement.
"""

import logging
from enum import StrEnum
from typing import Callable

from libs.python.rmq_dispatch.config import SubscriptionParams
from libs.python.rmq_dispatch.delivery import Delivery
from libs.python.rmq_dispatch.dispatcher import DeliveryOutcome

logger = logging.getLogger(__name__)

Republisher = Callable[[Delivery, SubscriptionParams], None]


class AckAction(StrEnum):
    ACKNOWLEDGE = "acknowledge"
    REPUBLISH_THEN_ACKNOWLEDGE = "republish_then_acknowledge"


class AckController:
    """Maps delivery outcomes to ack actions and carries them out."""

    def __init__(self, republish: Republisher) -> None:
        """
        Args:
            republish: Sends a delivery's body and headers to the delayed
                exchange of a subscription
        """
        self._republish = republish

    def resolve(self, outcome: DeliveryOutcome, params: SubscriptionParams) -> AckAction:
        queue = params.queue_name

        if outcome == DeliveryOutcome.MISSING_TYPE_HEADER:
            logger.warning("Ignoring message on queue %s: message without type header", queue)
            return AckAction.ACKNOWLEDGE

        if outcome == DeliveryOutcome.NO_HANDLER_FOR_QUEUE:
            logger.warning("Ignoring message on queue %s: no handler registered for this queue", queue)
            return AckAction.ACKNOWLEDGE

        if outcome == DeliveryOutcome.TYPE_COERCION_FAILED:
            logger.error("Ignoring message on queue %s: failure type coercion", queue)
            return AckAction.ACKNOWLEDGE

        if outcome == DeliveryOutcome.HANDLER_SUCCEEDED:
            logger.info("Message on queue %s properly processed", queue)
            return AckAction.ACKNOWLEDGE

        if not params.retryable:
            logger.warning("Message on queue %s has no retry policy, purging message", queue)
            return AckAction.ACKNOWLEDGE

        logger.debug("Sending failed message on queue %s to the delayed exchange", queue)
        return AckAction.REPUBLISH_THEN_ACKNOWLEDGE

    def apply(self, action: AckAction, delivery: Delivery, params: SubscriptionParams) -> None:
        """Carry out an action. Always ends with one ``delivery.ack()``."""
        try:
            if action == AckAction.REPUBLISH_THEN_ACKNOWLEDGE:
                self._republish(delivery, params)
        except Exception as e:
            logger.error(
                "Failed to republish %r from queue %s for retry, message is lost: %s",
                delivery,
                params.queue_name,
                e,
            )
        finally:
            delivery.ack()
