"""
Pulse Bridge Service

Moves shipment event messages between SNS/SQS and the Pulse event bus,
with trace propagation, redelivery and dead-letter handling.
"""

__version__ = "1.0.0"
__author__ = "YuDev"
__description__ = "SNS/SQS to Pulse event bus bridge for shipment events"
