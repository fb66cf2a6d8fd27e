"""
Structured operation logging for the vector store.
Every write, bucket state change, search and index build goes through log_operation.
"""

import logging
from typing import Any, Dict

class StructuredLogger:
    """Structured logger for record writes, bucket transitions, searches and index builds."""

    def __init__(self, name: str = "dimstore"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error", "violation"):
            self.logger.error(message)
        else:
            self.logger.info(message)

    def log_vector_operation(self, operation: str, record_id: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector record operation."""
        log_details = {"record_id": record_id}
        if details:
            log_details.update(details)

        self.log_operation(f"vector.{operation}", status, log_details)

    def log_bucket_transition(self, collection: str, dimension: int, old_state: str, new_state: str):
        """Log an index state machine transition for one bucket."""
        log_details = {
            "collection": collection,
            "dimension": dimension,
            "from": old_state,
            "to": new_state
        }
        self.log_operation("bucket.transition", new_state, log_details)

    def log_index_build(self, collection: str, dimension: int, start_time: float, end_time: float,
                        status: str = "success", details: Dict[str, Any] = None):
        """Log an index rebuild with its duration."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"collection": collection, "dimension": dimension, "duration_ms": duration_ms}
        if details:
            log_details.update(details)

        self.log_operation("index.rebuild", status, log_details)

    def log_search(self, collection: str, dimension: int, strategy: str, candidates: int, returned: int,
                   status: str = "success"):
        """Log a completed (or aborted) similarity search."""
        log_details = {
            "collection": collection,
            "dimension": dimension,
            "strategy": strategy,
            "candidates": candidates,
            "returned": returned
        }
        self.log_operation("search", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)

# Global logger instance
logger = StructuredLogger()
