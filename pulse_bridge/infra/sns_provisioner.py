"""
SNS client creation and topic -> queue subscription provisioning.
"""

import json
import logging
from typing import Dict, Optional

import boto3

from ..domain.messaging import MessagingResources
from ..domain.ports import ConfigurationStateError


logger = logging.getLogger(__name__)

FILTER_POLICY_ATTRIBUTE_NAME = "FilterPolicy"


def create_sns_client(aws_config):
    """
    Create the SNS client for the configured environment.

    Returns:
        boto3 SNS client, or None when running locally without localstack
        (no local SNS service is available, so provisioning is skipped)
    """
    if aws_config.local:
        logger.info("isLocal = true")
        if not aws_config.localstack:
            logger.info("Assuming that there is no local SNS service available, because isLocalStack=false")
            return None
        logger.info("Assuming that localstack is providing a local SNS service, because isLocalStack=true")
        endpoint = aws_config.localstack_endpoint or aws_config.sns_local_endpoint
        return boto3.client("sns", region_name=aws_config.region, endpoint_url=endpoint)

    logger.info("isLocal = false")
    return boto3.client("sns", region_name=aws_config.region)


def get_existing_topic_arn(topic_name: str, sns_client) -> Optional[str]:
    """Page through list_topics for an ARN ending with the topic name."""
    topic_arn = None
    next_token = None
    while True:
        kwargs = {"NextToken": next_token} if next_token else {}
        response = sns_client.list_topics(**kwargs)
        for topic in response.get("Topics", []):
            if topic["TopicArn"].endswith(topic_name):
                topic_arn = topic["TopicArn"]
                logger.info(f"Topic {topic_arn} exists:")
                break
        next_token = response.get("NextToken")
        if topic_arn is not None or not next_token:
            return topic_arn


class SnsProvisioner:
    """
    Subscribes each resource set's queue to its topic and applies the
    subscription filter policy.
    """

    def __init__(self, sns_client, sqs_client, is_local: bool = False, is_localstack: bool = False):
        self.sns = sns_client
        self.sqs = sqs_client
        self.is_local = is_local
        self.is_localstack = is_localstack

    def provision(self, resources: Dict[str, MessagingResources]) -> None:
        logger.info("Running the configurations for SNS")
        for name, res in resources.items():
            if not res.topic_name:
                continue

            res.topic_arn = self.get_topic_arn(name, res.topic_name)

            subscription_arn = self.get_existing_subscription(name, res.topic_arn, res.queue_name)
            if not subscription_arn:
                subscription_arn = self.subscribe_queue_to_topic(name, res.topic_arn, res.queue_name)

            self.filter_subscription(subscription_arn, res.filter_policy or "{}")

    def filter_subscription(self, subscription_arn: str, filter_policy: str) -> None:
        logger.info(
            f"Setting {subscription_arn} subscription attribute {FILTER_POLICY_ATTRIBUTE_NAME} = {filter_policy}..."
        )
        self.sns.set_subscription_attributes(
            SubscriptionArn=subscription_arn,
            AttributeName=FILTER_POLICY_ATTRIBUTE_NAME,
            AttributeValue=filter_policy
        )
        logger.info(
            f"The {subscription_arn} subscription attribute {FILTER_POLICY_ATTRIBUTE_NAME} "
            f"was successfully set to {filter_policy}."
        )

    def subscribe_queue_to_topic(self, resources_name: str, topic_name: str, queue_name: str) -> str:
        topic_arn = self.get_topic_arn(resources_name, topic_name)
        queue_url = self.sqs.get_queue_url(QueueName=queue_name)["QueueUrl"]
        queue_arn = self.sqs.get_queue_attributes(
            QueueUrl=queue_url, AttributeNames=["QueueArn"]
        )["Attributes"]["QueueArn"]

        subscription_arn = self.sns.subscribe(
            TopicArn=topic_arn,
            Protocol="sqs",
            Endpoint=queue_arn,
            ReturnSubscriptionArn=True
        )["SubscriptionArn"]
        self._allow_topic_to_send(queue_url, queue_arn, topic_arn)

        logger.info(
            f"Subscribed queue {queue_name} to topic ARN {topic_arn} "
            f"with resulting subscription ARN: {subscription_arn}"
        )
        return subscription_arn

    def get_existing_subscription(self, resources_name: str, topic_name: str, queue_name: str) -> Optional[str]:
        """
        Find a subscription whose endpoint names the queue.

        Raises:
            ConfigurationStateError: If the topic does not exist
        """
        topic_arn = self.get_topic_arn(resources_name, topic_name)
        try:
            response = self.sns.list_subscriptions_by_topic(TopicArn=topic_arn)
        except self.sns.exceptions.NotFoundException as e:
            raise ConfigurationStateError(f"No ARN for given topic was found: {topic_name}") from e

        for subscription in response.get("Subscriptions") or []:
            endpoint = subscription.get("Endpoint") or ""
            for token in endpoint.split(":"):
                if token.strip().lower() == queue_name.lower():
                    subscription_arn = subscription["SubscriptionArn"]
                    logger.info(
                        f"Found ARN for subscription of queue {queue_name} to topic ARN {topic_arn}: {subscription_arn}."
                    )
                    return subscription_arn

        logger.warning(f"No ARN found for subscription of queue {queue_name} to topic ARN {topic_arn}.")
        return None

    def get_topic_arn(self, resources_name: str, topic_name: str) -> str:
        """
        Raises:
            ConfigurationStateError: If the topic does not exist and cannot be created
        """
        topic_arn = get_existing_topic_arn(topic_name, self.sns)
        if topic_arn is None and self.is_local and self.is_localstack:
            logger.info(f"Creating localstack topic: {topic_name}.")
            topic_arn = self.sns.create_topic(Name=topic_name)["TopicArn"]
            logger.info(f"Created topic {topic_name} on localstack; ARN: {topic_arn}")

        if topic_arn is None:
            msg = f"topicArn is null; cannot proceed with subscription to topic {topic_name}."
            logger.error(msg)
            raise ConfigurationStateError(msg)
        return topic_arn

    def _allow_topic_to_send(self, queue_url: str, queue_arn: str, topic_arn: str) -> None:
        policy = {
            "Version": "2012-10-17",
            "Statement": [
                {
                    "Sid": "topic-subscription-" + topic_arn,
                    "Effect": "Allow",
                    "Principal": {"AWS": "*"},
                    "Action": "SQS:SendMessage",
                    "Resource": queue_arn,
                    "Condition": {"ArnLike": {"aws:SourceArn": topic_arn}}
                }
            ]
        }
        self.sqs.set_queue_attributes(QueueUrl=queue_url, Attributes={"Policy": json.dumps(policy)})
