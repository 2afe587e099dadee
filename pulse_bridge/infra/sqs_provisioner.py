"""
SQS client creation and queue provisioning: work queues, dead letter queues
and their redrive policies.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

import boto3

from ..domain.messaging import MessagingResources
from ..domain.ports import ConfigurationStateError


logger = logging.getLogger(__name__)

DLQ_ARN = "QueueArn"


def choose_sqs_endpoint(aws_config) -> str:
    if aws_config.localstack and aws_config.localstack_endpoint:
        return aws_config.localstack_endpoint
    return aws_config.sqs_local_endpoint


def create_sqs_client(aws_config):
    """
    Create the SQS client for the configured environment.

    Local mode talks to localstack (or elasticMQ) through an endpoint;
    cloud mode uses the region.
    """
    if aws_config.local:
        endpoint = choose_sqs_endpoint(aws_config)
        logger.info(f"Configuring SQS for local profile, endpoint={endpoint}")
        return boto3.client("sqs", region_name=aws_config.region, endpoint_url=endpoint)

    logger.info("Configuring SQS for cloud profile")
    return boto3.client("sqs", region_name=aws_config.region)


def build_redrive_policy(dlq_arn: str, max_receive_count, quote_count: bool = False) -> str:
    count = f'"{max_receive_count}"' if quote_count else str(max_receive_count)
    return '{"maxReceiveCount":' + count + ', "deadLetterTargetArn":"' + dlq_arn + '"}'


class SqsProvisioner:
    """
    Creates and configures the queues of each messaging resource set.
    """

    def __init__(
        self,
        sqs_client,
        visibility_timeout: int = 30,
        delay_seconds: int = 0,
        receive_message_wait_time_seconds: int = 0,
        message_retention_period_seconds: int = 1209600,
        max_receive_count: int = 1,
        is_localstack: bool = False
    ):
        self.sqs = sqs_client
        self.visibility_timeout = visibility_timeout
        self.delay_seconds = delay_seconds
        self.receive_message_wait_time_seconds = receive_message_wait_time_seconds
        self.message_retention_period_seconds = message_retention_period_seconds
        self.max_receive_count = max_receive_count
        self.is_localstack = is_localstack

    @classmethod
    def from_config(cls, sqs_client, config) -> "SqsProvisioner":
        return cls(
            sqs_client,
            visibility_timeout=config.sqs.visibility_timeout,
            receive_message_wait_time_seconds=config.sqs.receive_message_wait_time_seconds,
            message_retention_period_seconds=config.sqs.message_retention_period_seconds,
            max_receive_count=config.sqs.max_receive_count,
            is_localstack=config.aws.localstack
        )

    def provision(self, resources: Dict[str, MessagingResources]) -> None:
        """Create every DLQ and queue, then configure them."""
        for res in resources.values():
            if res.dl_queue_name:
                self.create_queue(res.dl_queue_name)
            self.create_queue(res.queue_name)

        for res in resources.values():
            if res.dl_queue_name:
                self.configure_queue(res.dl_queue_name, None)
            self.configure_queue(res.queue_name, res.dl_queue_name)

    def create_queue(self, queue_name: str) -> None:
        try:
            logger.info(f"Checking if queue already exists: {queue_name}.")
            url = self.sqs.get_queue_url(QueueName=queue_name)["QueueUrl"]
            logger.info(f"Queue already exists; will not attempt to re-create: {queue_name}; url: {url}.")
        except self.sqs.exceptions.QueueDoesNotExist:
            logger.warning(f"Queue does not already exist; creating: {queue_name}.")
            url = self.sqs.create_queue(QueueName=queue_name)["QueueUrl"]
            logger.info(f"Queue creation successful: {queue_name}; url: {url}.")
        except Exception as e:
            logger.error(f"Exception occurred in the create_queue method: {queue_name}. {e}")

    def configure_queue(self, queue_name: str, dl_queue_name: Optional[str]) -> None:
        """
        Apply queue attributes and, with a DLQ, the redrive policy.

        Raises:
            ConfigurationStateError: If the queue does not exist
            RuntimeError: For any other failure
        """
        try:
            queue_url = self.sqs.get_queue_url(QueueName=queue_name)["QueueUrl"]
            attributes = self.build_attributes(dl_queue_name)
            self.sqs.set_queue_attributes(QueueUrl=queue_url, Attributes=attributes)
            logger.info(f"Queue configuration successful for queue: {queue_name}.")
        except self.sqs.exceptions.QueueDoesNotExist as e:
            raise ConfigurationStateError(f"Queue to configure does not exist: {queue_name}.") from e
        except Exception as e:
            raise RuntimeError(f"Exception occurred while configuring queue: {queue_name}.") from e

    def build_attributes(self, dl_queue_name: Optional[str]) -> Dict[str, str]:
        attributes = {
            "VisibilityTimeout": str(self.visibility_timeout),
            "DelaySeconds": str(self.delay_seconds),
            "ReceiveMessageWaitTimeSeconds": str(self.receive_message_wait_time_seconds),
            "MessageRetentionPeriod": str(self.message_retention_period_seconds)
        }
        if dl_queue_name:
            attributes["RedrivePolicy"] = build_redrive_policy(
                self.queue_arn(dl_queue_name),
                self.max_receive_count,
                quote_count=self.is_localstack
            )
        return attributes

    def queue_arn(self, queue_name: str) -> str:
        queue_url = self.sqs.get_queue_url(QueueName=queue_name)["QueueUrl"]
        attrs = self.sqs.get_queue_attributes(QueueUrl=queue_url, AttributeNames=[DLQ_ARN])["Attributes"]
        logger.debug(f"DLQ ARN {attrs.get(DLQ_ARN)}")
        return attrs[DLQ_ARN]


def legacy_queue_attributes(local: bool, dlq_arn: Optional[str] = None) -> Dict[str, str]:
    """Attributes used by the ship confirm queue set, created with its policy in one call."""
    attributes = {
        "VisibilityTimeout": "60",
        "DelaySeconds": "5",
        "ReceiveMessageWaitTimeSeconds": "0"
    }
    if dlq_arn:
        max_receive_count = '"1"' if local else "5"
        attributes["RedrivePolicy"] = (
            '{"maxReceiveCount":' + max_receive_count + ', "deadLetterTargetArn":"' + dlq_arn + '"}'
        )
    return attributes


def legacy_queue_pairs(sqs_config) -> Iterable[Tuple[str, str]]:
    return [
        (sqs_config.ship_confirm_queue, sqs_config.ship_confirm_dlq),
        (sqs_config.cancel_queue, sqs_config.cancel_dlq),
        (sqs_config.nsp_queue, sqs_config.nsp_dlq)
    ]


def provision_legacy_queues(sqs_client, sqs_config, local: bool) -> None:
    """
    Create the ship confirm, cancel and nsp queue pairs when running locally.
    In the cloud these queues are expected to exist already.
    """
    if not local:
        logger.info("In non-local profile for sqs setup")
        return

    logger.info("In local profile for sqs setup")
    for queue_name, dlq_name in legacy_queue_pairs(sqs_config):
        _create_legacy_queue(sqs_client, dlq_name, None, local)
        _create_legacy_queue(sqs_client, queue_name, dlq_name, local)


def _create_legacy_queue(sqs_client, queue_name: str, dl_queue_name: Optional[str], local: bool) -> None:
    try:
        dlq_arn = None
        if dl_queue_name:
            dlq_url = sqs_client.get_queue_url(QueueName=dl_queue_name)["QueueUrl"]
            dlq_arn = sqs_client.get_queue_attributes(
                QueueUrl=dlq_url, AttributeNames=[DLQ_ARN]
            )["Attributes"][DLQ_ARN]
            logger.debug(f"DLQ ARN {dlq_arn}")

        result = sqs_client.create_queue(
            QueueName=queue_name,
            Attributes=legacy_queue_attributes(local, dlq_arn)
        )
        logger.info(f"{queue_name}, queue creation successful, url = {result['QueueUrl']}")
    except sqs_client.exceptions.QueueNameExists as e:
        logger.warning(f"{queue_name} Queue already exists, Exception is : {e}")
    except Exception as e:
        logger.error(f"{queue_name} Unknown Exception is : {e}")
