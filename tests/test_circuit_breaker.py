import asyncio
import unittest
from unittest.mock import patch, MagicMock, AsyncMock
import logging

from api.circuit_breaker import CircuitBreaker, CircuitBreakerManager
from api.error_handling import CircuitBreakerOpenException, RecordConflictError
from config.remote import CircuitBreakerState

# Disable logging for tests unless specifically testing log output
logging.disable(logging.CRITICAL)


class TestCircuitBreaker(unittest.TestCase):

    def setUp(self):
        self.mock_logger = MagicMock()
        self.logger_patch = patch('api.circuit_breaker.logging.getLogger', return_value=self.mock_logger)
        self.addCleanup(self.logger_patch.stop)
        self.logger_patch.start()

        self.failure_threshold = 2
        self.recovery_timeout = 10  # seconds

        self.cb = CircuitBreaker(
            "gs://bucket",
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
        )

    def test_initialization_defaults(self):
        cb = CircuitBreaker()
        self.assertEqual(cb.failure_threshold, 5)
        self.assertEqual(cb.recovery_timeout, 60)
        self.assertEqual(cb.state, CircuitBreakerState.CLOSED)

    def test_initialization_invalid_threshold(self):
        with self.assertRaisesRegex(ValueError, "failure_threshold must be at least 1"):
            CircuitBreaker(failure_threshold=0)

    def test_opens_after_threshold_failures(self):
        self.cb.record_failure()
        self.assertEqual(self.cb.state, CircuitBreakerState.CLOSED)
        self.assertTrue(self.cb.can_attempt())

        self.cb.record_failure()
        self.assertEqual(self.cb.state, CircuitBreakerState.OPEN)
        self.assertFalse(self.cb.can_attempt())
        self.mock_logger.warning.assert_called()

    def test_success_resets_failures(self):
        self.cb.record_failure()
        self.cb.record_success()
        self.assertEqual(self.cb.failure_count, 0)
        self.cb.record_failure()
        self.assertEqual(self.cb.state, CircuitBreakerState.CLOSED)

    @patch('api.circuit_breaker.time.time')
    def test_half_open_after_recovery_timeout(self, mock_time):
        mock_time.return_value = 1000.0
        self.cb.record_failure()
        self.cb.record_failure()
        self.assertFalse(self.cb.can_attempt())

        mock_time.return_value = 1000.0 + self.recovery_timeout
        self.assertTrue(self.cb.can_attempt())
        self.assertEqual(self.cb.state, CircuitBreakerState.HALF_OPEN)

    @patch('api.circuit_breaker.time.time')
    def test_half_open_failure_reopens(self, mock_time):
        mock_time.return_value = 1000.0
        self.cb.record_failure()
        self.cb.record_failure()
        mock_time.return_value = 1000.0 + self.recovery_timeout
        self.cb.can_attempt()

        self.cb.record_failure()
        self.assertEqual(self.cb.state, CircuitBreakerState.OPEN)

    @patch('api.circuit_breaker.time.time')
    def test_half_open_success_closes(self, mock_time):
        mock_time.return_value = 1000.0
        self.cb.record_failure()
        self.cb.record_failure()
        mock_time.return_value = 1000.0 + self.recovery_timeout
        self.cb.can_attempt()

        self.cb.record_success()
        self.assertEqual(self.cb.state, CircuitBreakerState.CLOSED)

    def test_guard_raises_when_open(self):
        self.cb.record_failure()
        self.cb.record_failure()
        with self.assertRaises(CircuitBreakerOpenException) as ctx:
            self.cb.guard()
        self.assertIn("gs://bucket", str(ctx.exception))

    def test_guard_passes_when_closed(self):
        self.cb.guard()

    def test_execute_records_retryable_failures(self):
        func = AsyncMock(side_effect=asyncio.TimeoutError())
        with self.assertRaises(asyncio.TimeoutError):
            asyncio.run(self.cb.execute(func, "Documents/recents.json"))
        func.assert_awaited_once_with("Documents/recents.json")
        self.assertEqual(self.cb.failure_count, 1)

    def test_execute_ignores_non_tripping_errors(self):
        func = AsyncMock(side_effect=RecordConflictError("changed", server_error_code="CONFLICT"))
        with self.assertRaises(RecordConflictError):
            asyncio.run(self.cb.execute(func))
        self.assertEqual(self.cb.failure_count, 0)

    def test_execute_success_closes_half_open(self):
        self.cb.record_failure()
        self.cb.record_failure()
        self.cb.opened_at -= self.recovery_timeout
        result = asyncio.run(self.cb.execute(AsyncMock(return_value="ok")))
        self.assertEqual(result, "ok")
        self.assertEqual(self.cb.state, CircuitBreakerState.CLOSED)

    def test_execute_skips_call_when_open(self):
        self.cb.record_failure()
        self.cb.record_failure()
        func = AsyncMock()
        with self.assertRaises(CircuitBreakerOpenException):
            asyncio.run(self.cb.execute(func))
        func.assert_not_awaited()


class TestCircuitBreakerManager(unittest.TestCase):

    def setUp(self):
        self.manager = CircuitBreakerManager()

    def test_breakers_are_per_endpoint(self):
        a = self.manager.get_breaker("a", failure_threshold=1)
        b = self.manager.get_breaker("b", failure_threshold=1)
        self.assertIsNot(a, b)
        self.assertIs(self.manager.get_breaker("a"), a)

        self.manager.get_breaker("a").record_failure()
        self.assertFalse(self.manager.can_attempt("a"))
        self.assertTrue(self.manager.can_attempt("b"))

    def test_reset_forgets_state(self):
        self.manager.get_breaker("a", failure_threshold=1)
        self.manager.get_breaker("a").record_failure()
        self.manager.reset()
        self.assertTrue(self.manager.can_attempt("a"))


if __name__ == '__main__':
    unittest.main()
