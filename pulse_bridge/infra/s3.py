"""
S3 client selection by profile.
"""

import logging

import boto3

from .local_s3 import LocalS3Client


logger = logging.getLogger(__name__)


def create_s3_client(config):
    """
    Local profile gets a LocalS3Client over ``s3.local_path``; any other
    profile gets a boto3 S3 client for the configured region.
    """
    if config.is_local:
        logger.info(f"Using local S3 assets at {config.s3.local_path}")
        return LocalS3Client(
            config.s3.local_path,
            write_to_disk=config.s3.write_to_disk,
            rescan=config.s3.rescan,
            rescan_interval_seconds=config.s3.rescan_interval_seconds
        )

    return boto3.client("s3", region_name=config.aws.region)
