"""
shared/utils/payment_gateway.py
Razorpay wrapper. Every outbound call goes through a per-operation circuit
breaker and runs in the threadpool since the SDK is blocking.
"""

import logging
from typing import Any, Callable, Dict, Optional

import razorpay
from pybreaker import CircuitBreaker, CircuitBreakerError, CircuitBreakerListener
from starlette.concurrency import run_in_threadpool

from config.settings import settings
from shared.exceptions import GatewayError, ServiceUnavailableError

logger = logging.getLogger(__name__)


# ── Resilience: Circuit Breaker ──────────────────────────────

class _LoggingListener(CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state):
        logger.warning(
            "Circuit breaker %s: %s -> %s",
            cb.name,
            getattr(old_state, "name", old_state),
            getattr(new_state, "name", new_state),
        )


class CircuitBreakerManager:
    """Manages circuit breakers for each downstream operation."""

    def __init__(self):
        self.breakers: Dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str) -> CircuitBreaker:
        if name not in self.breakers:
            self.breakers[name] = CircuitBreaker(
                fail_max=settings.GATEWAY_BREAKER_FAIL_MAX,
                reset_timeout=settings.GATEWAY_BREAKER_RESET_SECONDS,
                listeners=[_LoggingListener()],
                name=name,
            )
        return self.breakers[name]


circuit_breaker_manager = CircuitBreakerManager()


# ── Gateway ───────────────────────────────────────────────────

class RazorpayGateway:
    def __init__(self, client: Optional[razorpay.Client] = None):
        self.client = client or razorpay.Client(
            auth=(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        )

    async def _call(self, name: str, fn: Callable[..., Any], *args) -> Any:
        breaker = circuit_breaker_manager.get_breaker(f"razorpay.{name}")
        try:
            return await run_in_threadpool(breaker.call, fn, *args)
        except CircuitBreakerError:
            logger.error("Razorpay %s skipped: circuit open", name)
            raise ServiceUnavailableError("Payment service temporarily unavailable")
        except Exception as exc:
            logger.error("Razorpay %s failed: %s", name, exc)
            raise GatewayError(f"Payment gateway error: {exc}")

    async def create_order(self, amount_paise: int, receipt: str, notes: dict) -> dict:
        return await self._call(
            "order.create",
            self.client.order.create,
            {"amount": amount_paise, "currency": "INR", "receipt": receipt, "notes": notes},
        )

    async def refund(self, payment_id: str, amount_paise: int, notes: dict) -> dict:
        return await self._call(
            "payment.refund",
            self.client.payment.refund,
            payment_id,
            {"amount": amount_paise, "notes": notes},
        )


def get_payment_gateway() -> RazorpayGateway:
    """FastAPI dependency; overridden in tests."""
    return RazorpayGateway()
