"""ECS Task Tracker (ETT).

Keeps Traefik backends stored in DynamoDB in step with the tasks running in an
ECS cluster:
 - full reconciliation of one or all services against the cluster
 - incremental updates from ECS task state change events delivered over SNS
 - optimistic locking on every write so concurrent updaters never lose data
"""
