"""
Messaging resources: the topic, queue and dead letter queue wired together
for one event stream.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field, ConfigDict


SHIP_CONFIRM_RESOURCES = "ShipConfirmResources"
SHIP_STATUS_RESOURCES = "ShipStatusResources"


class MessagingResources(BaseModel):
    """A topic -> queue subscription with its dead letter queue."""
    model_config = ConfigDict(extra='forbid', validate_assignment=True)

    resources_name: str = Field(..., description="Key of this resource set")
    topic_name: Optional[str] = Field(None, description="SNS topic the queue subscribes to")
    queue_name: str = Field(..., description="Work queue name")
    dl_queue_name: Optional[str] = Field(None, description="Dead letter queue name")
    topic_arn: Optional[str] = Field(None, description="Resolved at provisioning time")
    filter_policy: Optional[str] = Field(None, description="Subscription filter policy JSON")


def app_messaging_resources(config) -> Dict[str, MessagingResources]:
    """
    Build the resource sets this application consumes.

    Args:
        config: AppConfig

    Returns:
        Mapping of resources name -> MessagingResources
    """
    resources = [
        MessagingResources(
            resources_name=SHIP_CONFIRM_RESOURCES,
            topic_name=config.sns.ship_confirm_topic,
            queue_name=config.sqs.ship_confirm_queue,
            dl_queue_name=config.sqs.ship_confirm_dlq,
            filter_policy=config.sqs.filter_policy
        ),
        MessagingResources(
            resources_name=SHIP_STATUS_RESOURCES,
            topic_name=config.sns.ship_status_topic,
            queue_name=config.sqs.cancel_queue,
            dl_queue_name=config.sqs.cancel_dlq,
            filter_policy=config.sqs.filter_policy
        ),
    ]
    return {r.resources_name: r for r in resources}
