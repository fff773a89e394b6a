from datetime import datetime, timedelta, timezone

import pytest

from infra_analyst.store import InMemoryDataStore
from infra_analyst.types import Account, Alert, CostRecord, Resource

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def sample_store() -> InMemoryDataStore:
    return InMemoryDataStore(
        accounts=[
            Account(id=1, name="prod", provider="aws", account_ref="111111111111"),
            Account(id=2, name="analytics", provider="azure", account_ref="sub-2"),
        ],
        resources=[
            Resource(
                id=1,
                account_id=1,
                resource_id="i-web",
                name="web",
                type="ec2-instance",
                provider="aws",
                status="running",
                region="us-east-1",
                monthly_cost="70.00",
                metadata={"security_groups": ["sg-web"]},
                last_updated=NOW - timedelta(days=1),
            ),
            Resource(
                id=2,
                account_id=1,
                resource_id="i-old",
                name="old-batch",
                type="ec2-instance",
                provider="aws",
                status="stopped",
                region="us-east-1",
                monthly_cost="40.00",
                metadata={"tags": {"Owner": "data-team"}, "stopped_at": (NOW - timedelta(days=45)).isoformat()},
                last_updated=NOW - timedelta(days=2),
            ),
            Resource(
                id=3,
                account_id=1,
                resource_id="vol-1",
                name="orphan",
                type="ebs-volume",
                provider="aws",
                status="available",
                region="us-east-1",
                metadata={"size": 100},
                last_updated=NOW - timedelta(days=10),
            ),
            Resource(
                id=4,
                account_id=1,
                resource_id="sg-web",
                name="web-sg",
                type="security-group",
                provider="aws",
                status="active",
                region="us-east-1",
                metadata={"rules": [{"cidr": "0.0.0.0/0", "from_port": 22, "to_port": 22}]},
            ),
            Resource(
                id=5,
                account_id=2,
                resource_id="vm-1",
                name="reporting",
                type="virtual-machine",
                provider="azure",
                status="running",
                region="eastus",
                monthly_cost="120.00",
                last_updated=NOW - timedelta(days=3),
            ),
        ],
        costs=[
            CostRecord(id=1, account_id=1, service="EC2", amount="300.00", date=NOW - timedelta(days=20)),
            CostRecord(id=2, account_id=1, service="S3", amount="50.00", date=NOW - timedelta(days=18)),
            CostRecord(id=3, account_id=1, service="EC2", amount="420.00", date=NOW - timedelta(days=5)),
            CostRecord(id=4, account_id=2, service="Virtual Machines", amount="200.00", date=NOW - timedelta(days=4)),
        ],
        alerts=[
            Alert(
                id=1,
                title="Database CPU at 98%",
                description="Scale up the primary database",
                severity="critical",
                type="performance",
                account_id=1,
                created_at=NOW - timedelta(hours=2),
            ),
            Alert(
                id=2,
                title="Budget 80% consumed",
                description="Monthly budget nearly used",
                severity="warning",
                type="cost",
                account_id=1,
                created_at=NOW - timedelta(hours=5),
            ),
        ],
    )
