import os as _os
import sys

import pytest

# Ensure project root is importable (so `import ett` and `import main` work without installing)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from ett.ecs_ops import ClusterInventory  # noqa: E402
from ett.events import EventIngestor  # noqa: E402
from ett.identity import IdentityCache  # noqa: E402
from ett.reconciler import Reconciler  # noqa: E402
from ett.runtime import RequestContext  # noqa: E402
from ett.store import RoutingStore  # noqa: E402
from fakes import FakeDynamoDB, FakeEC2, FakeECS  # noqa: E402

CLUSTER = "test"


@pytest.fixture
def ecs():
    return FakeECS(cluster=CLUSTER)


@pytest.fixture
def ec2():
    return FakeEC2()


@pytest.fixture
def dynamo():
    return FakeDynamoDB()


@pytest.fixture
def sleeps():
    """Records every backoff/pacing sleep instead of sleeping."""
    return []


@pytest.fixture
def identity(ecs, ec2):
    return IdentityCache(ecs=ecs, ec2=ec2, cluster=CLUSTER)


@pytest.fixture
def inventory(ecs, identity):
    return ClusterInventory(ecs, identity, CLUSTER)


@pytest.fixture
def store(dynamo, sleeps):
    return RoutingStore(dynamo, table="traefik", max_tries=3, retry_backoff_s=0.1, sleep=sleeps.append)


@pytest.fixture
def reconciler(inventory, store, sleeps):
    return Reconciler(inventory, store, sleep=sleeps.append)


@pytest.fixture
def ingestor(store, identity):
    return EventIngestor(store, identity)


@pytest.fixture
def ctx():
    return RequestContext.new("Test")


@pytest.fixture
def host(ecs, ec2):
    """Register one container instance backed by 10.0.0.4."""
    ecs.add_container_instance("myinstancearn", "myinstanceid")
    ec2.add_instance("myinstanceid", "10.0.0.4")
    return "myinstancearn"
