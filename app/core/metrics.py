import time
import uuid
import logging
from functools import wraps
from typing import Optional

from core.prometheus_metrics import prometheus_collector

logger = logging.getLogger(__name__)


def _status_of(result) -> str:
    status = getattr(result, "status", None)
    if status is None and isinstance(result, dict):
        status = result.get("status")
    return getattr(status, "value", status) or "succeeded"


def track_performance(service_name: Optional[str] = None):
    """
    Decorator to automatically track pipeline entry-point performance

    Usage:
    @track_performance(service_name="ExportAssembler")
    async def export_collection(self, ...):
        ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            correlation_id = str(uuid.uuid4())

            actual_service_name = service_name or (args[0].__class__.__name__ if args else "Unknown")
            method_name = func.__name__
            operation = f"{actual_service_name}.{method_name}"

            start_time = time.time()
            status = "failed"

            try:
                result = await func(*args, **kwargs)
                status = _status_of(result)
                return result

            except Exception as e:
                logger.error(f"Error in {operation}: {e}")
                raise

            finally:
                duration_seconds = time.time() - start_time

                prometheus_collector.record_operation(
                    operation=operation,
                    duration_seconds=duration_seconds,
                    status=status,
                )

                logger.info(
                    f"Method executed: {operation}",
                    extra={
                        'correlation_id': correlation_id,
                        'service_name': actual_service_name,
                        'method_name': method_name,
                        'duration_ms': duration_seconds * 1000,
                        'status': status,
                    }
                )

        return wrapper
    return decorator
