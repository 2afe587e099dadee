"""
Infrastructure for pulse-bridge service.

Contains AWS client factories and provisioning, the local S3 client and
the Redis-backed product cache.
"""

from .sqs_provisioner import SqsProvisioner, create_sqs_client, provision_legacy_queues
from .sns_provisioner import SnsProvisioner, create_sns_client
from .local_s3 import LocalS3Client
from .s3 import create_s3_client
from .redis_client import RedisClient
from .product_cache import ProductEnrichmentCache

__all__ = [
    "SqsProvisioner",
    "create_sqs_client",
    "provision_legacy_queues",
    "SnsProvisioner",
    "create_sns_client",
    "LocalS3Client",
    "create_s3_client",
    "RedisClient",
    "ProductEnrichmentCache"
]
