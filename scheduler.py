"""
Scheduler Module

Runs the wrap/unwrap loop until stopped:

    pick operation -> fee quote -> submit -> confirm -> report -> wait

A failed transaction only fails its own cycle. Anything else escaping a
cycle triggers a fixed backoff before the loop resumes. Both waits are
interruptible, so stop() takes effect as soon as the in-flight
transaction (if any) has been confirmed.
"""

import time
import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from config import Config
from fee_oracle import FeeCache, FeeOracle, FeeQuote
from picker import OperationKind, OperationPicker, OperationRequest
from logging_utils import MetricsCollector, PerformanceMetrics
from utils import logger, format_amount, format_duration, format_tx_hash, sanitize_error_message


@dataclass
class SchedulerState:
    """Mutable state of one scheduler, touched only by its own loop and stop()."""
    running: bool = False
    operation_count: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    started_at: Optional[float] = None
    fee_cache: FeeCache = field(default_factory=FeeCache)

    @property
    def last_fee_quote(self) -> Optional[FeeQuote]:
        return self.fee_cache.quote

    @property
    def last_fee_update(self) -> float:
        return self.fee_cache.updated_at


class Scheduler:
    """Drives randomized wrap/unwrap cycles against a chain client."""

    def __init__(
        self,
        config: Config,
        client,
        fee_oracle: Optional[FeeOracle] = None,
        picker: Optional[OperationPicker] = None,
        metrics: Optional[MetricsCollector] = None,
        state: Optional[SchedulerState] = None,
    ):
        self.config = config
        self.client = client
        self.state = state or SchedulerState()
        self.fee_oracle = fee_oracle or FeeOracle.from_config(config, client, cache=self.state.fee_cache)
        self.picker = picker or OperationPicker()
        self.metrics = metrics or MetricsCollector()
        self._stop_event: Optional[asyncio.Event] = None
        self._loop_active = False

    @property
    def running(self) -> bool:
        return self.state.running

    async def start(self):
        """
        Run cycles until stop() is called.

        No-op while a loop is active, including one that was stopped but
        is still finishing its in-flight transaction.
        """
        if self._loop_active:
            logger.warning("Bot is already running!")
            return

        self._loop_active = True
        stop_event = asyncio.Event()
        self._stop_event = stop_event
        self.state.running = True
        self.state.started_at = time.time()

        logger.info(
            f"Starting wrap bot: {self.config.min_amount}-{self.config.max_amount} "
            f"{self.config.native_symbol} every {self.config.min_interval_minutes}-"
            f"{self.config.max_interval_minutes} minutes"
        )

        try:
            while not stop_event.is_set():
                try:
                    await self.run_cycle()

                    if stop_event.is_set():
                        break

                    interval_ms = self.picker.pick_interval_millis(
                        self.config.min_interval_minutes,
                        self.config.max_interval_minutes
                    )
                    logger.info(f"Next operation in {interval_ms / 60000:.1f} minutes...")
                    await self._wait(stop_event, interval_ms / 1000)

                except Exception as e:
                    logger.exception(f"Error in main loop: {sanitize_error_message(e)}")
                    if stop_event.is_set():
                        break
                    logger.info(f"Retrying in {format_duration(self.config.retry_backoff_seconds)}...")
                    await self._wait(stop_event, self.config.retry_backoff_seconds)
        finally:
            self.state.running = False
            self._loop_active = False

        logger.info(f"Wrap bot stopped after {self.state.operation_count} operations")

    def stop(self):
        """Request the loop to stop; safe to call at any time."""
        if self.state.running:
            logger.info("Stopping wrap bot...")
        self.state.running = False
        if self._stop_event is not None:
            self._stop_event.set()

    async def _wait(self, stop_event: asyncio.Event, seconds: float):
        """Sleep for ``seconds`` unless stop() is called first."""
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run_cycle(self) -> bool:
        """
        Execute a single wrap or unwrap.

        Returns True when the transaction was confirmed. Transaction
        failures are logged and reported as False; fee estimation errors
        propagate to the caller.
        """
        self.state.operation_count += 1
        number = self.state.operation_count

        request = self.picker.pick_operation(
            self.config.min_amount,
            self.config.max_amount,
            self.config.amount_decimals
        )
        symbol = self._symbol_for(request)
        logger.info(f"Operation #{number}: {request.kind.value.upper()} {format_amount(request.amount, symbol)}")

        quote = await asyncio.to_thread(self.fee_oracle.get_fee)

        metric = PerformanceMetrics(
            operation=request.kind.value,
            start_time=time.time(),
            amount=str(request.amount),
            fee_source=quote.source,
            max_fee_wei=quote.max_fee,
        )

        if request.kind is OperationKind.WRAP:
            submit = self.client.submit_wrap
        else:
            submit = self.client.submit_unwrap

        try:
            confirmation = await asyncio.to_thread(submit, request.amount, quote)
        except Exception as e:
            error = sanitize_error_message(e)
            self.state.failed_operations += 1
            metric.finalize(success=False, error=error)
            self.metrics.add_metric(metric)
            logger.error(f"{request.kind.value.capitalize()} failed: {error}")
            return False

        metric.tx_hash = confirmation.tx_hash
        metric.block_number = confirmation.block_number
        metric.gas_used = confirmation.gas_used
        metric.finalize(success=True)
        self.metrics.add_metric(metric)
        self.state.successful_operations += 1

        logger.info(
            f"{request.kind.value.capitalize()} successful! "
            f"TX: {format_tx_hash(confirmation.tx_hash)} Block: {confirmation.block_number}"
        )

        await self._report_balance()
        return True

    async def _report_balance(self):
        """Log the wrapped balance; failures never affect the cycle."""
        try:
            balance = await asyncio.to_thread(self.client.get_balance, self.client.address)
            logger.info(f"Current {self.config.wrapped_symbol} balance: {format_amount(balance, self.config.wrapped_symbol)}")
        except Exception as e:
            logger.debug(f"Balance report skipped: {sanitize_error_message(e)}")

    def _symbol_for(self, request: OperationRequest) -> str:
        if request.kind is OperationKind.WRAP:
            return self.config.native_symbol
        return self.config.wrapped_symbol

    def status(self) -> Dict[str, Any]:
        quote = self.state.last_fee_quote
        return {
            "running": self.state.running,
            "operation_count": self.state.operation_count,
            "successful_operations": self.state.successful_operations,
            "failed_operations": self.state.failed_operations,
            "wallet_address": self.client.address,
            "contract_address": self.config.wrapper_contract,
            "last_fee_quote": quote.to_dict() if quote else None,
            "last_fee_update": self.state.last_fee_update,
            "uptime": format_duration(time.time() - self.state.started_at) if self.state.started_at else None,
        }
