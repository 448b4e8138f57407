"""Dead-letter routing for messages that cannot be processed."""

from sensemaker.common.dlq.producer import DLQProducer

__all__ = ["DLQProducer"]
