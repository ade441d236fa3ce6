"""Broker: in-process topics with at-least-once delivery, retries and dead-lettering."""

from ingestor.broker.broker import MAX_ATTEMPTS, Broker
from ingestor.broker.models import BrokerStats, DeadLetterEntry, Message
from ingestor.broker.topics import Sources, Topics

__all__ = [
    "MAX_ATTEMPTS",
    "Broker",
    "BrokerStats",
    "DeadLetterEntry",
    "Message",
    "Sources",
    "Topics",
]
