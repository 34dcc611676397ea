from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class Notification(_Wire):
    """SNS HTTP(S) delivery envelope."""

    type: str = Field("", alias="Type", description="Notification|SubscriptionConfirmation|UnsubscribeConfirmation")
    message_id: str = Field("", alias="MessageId")
    topic_arn: str = Field("", alias="TopicArn")
    subject: str | None = Field(None, alias="Subject")
    message: str = Field("", alias="Message", description="JSON encoded ECS event")
    timestamp: str = Field("", alias="Timestamp")
    subscribe_url: str | None = Field(None, alias="SubscribeURL")
    unsubscribe_url: str | None = Field(None, alias="UnsubscribeURL")
    token: str | None = Field(None, alias="Token")


class NetworkBinding(_Wire):
    host_port: int | None = Field(None, alias="hostPort")
    container_port: int | None = Field(None, alias="containerPort")
    bind_ip: str | None = Field(None, alias="bindIP")
    protocol: str | None = None


class Container(_Wire):
    container_arn: str = Field("", alias="containerArn")
    name: str = ""
    last_status: str = Field("", alias="lastStatus")
    network_bindings: list[NetworkBinding] = Field(default_factory=list, alias="networkBindings")


class TaskDetail(_Wire):
    """``detail`` block of an ECS Task State Change event."""

    cluster_arn: str = Field("", alias="clusterArn")
    container_instance_arn: str = Field("", alias="containerInstanceArn")
    desired_status: str = Field("", alias="desiredStatus")
    last_status: str = Field("", alias="lastStatus")
    group: str = Field("", description="service:<name> for tasks started by a service")
    task_arn: str = Field("", alias="taskArn")
    task_definition_arn: str = Field("", alias="taskDefinitionArn")
    containers: list[Container] = Field(default_factory=list)


class TaskEvent(_Wire):
    version: str = ""
    id: str = ""
    detail_type: str = Field("", alias="detail-type")
    source: str = ""
    account: str = ""
    time: str = ""
    region: str = ""
    detail: TaskDetail
