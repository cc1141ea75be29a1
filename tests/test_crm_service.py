from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from conftest import NOW, make_donation, make_donor
from donorconnect.data_access.dynamodb import NotFoundError
from donorconnect.models.donor import FollowUp
from donorconnect.services.crm_service import CrmService


@pytest.fixture
def data_access():
    return MagicMock()


def test_donor_detail_adds_risk_and_frequency(data_access):
    gifts = [
        make_donation(50, NOW - timedelta(days=100)),
        make_donation(50, NOW - timedelta(days=40)),
        make_donation(50, NOW - timedelta(days=70)),
        make_donation(50, NOW - timedelta(days=1), status="Pending"),
    ]
    donor = make_donor("donor-a", "Ada", "Lovelace", "2023-05-01T00:00:00+00:00", gifts)
    donor["follow_ups"] = [{"due_date": "2024-01-01T00:00:00+00:00"}, {"due_date": "2025-02-01T00:00:00+00:00"}]
    data_access.get_donor_partition.return_value = donor

    detail = CrmService(data_access).get_donor_detail("donor-a", NOW)

    assert detail["risk"]["level"] == "Low"
    assert detail["risk"]["daysSinceLastDonation"] == 40
    assert detail["donation_frequency"] == "Monthly donor"
    assert detail["donations"][0]["status"] == "Pending"
    assert detail["follow_ups"][0]["due_date"].startswith("2025")


def test_lists_are_newest_first(data_access):
    data_access.list_with_relation.return_value = [
        make_donor("1", "Old", "Donor", "2023-01-01T00:00:00+00:00"),
        make_donor("2", "New", "Donor", "2024-06-01T00:00:00+00:00"),
    ]
    assert [d["donor_id"] for d in CrmService(data_access).list_donors()] == ["2", "1"]


def test_follow_up_requires_existing_donor(data_access):
    data_access.get_donor.return_value = None
    follow_up = FollowUp(donor_id="ghost", due_date=NOW)

    with pytest.raises(NotFoundError):
        CrmService(data_access).create_follow_up(follow_up)
    data_access.create_follow_up.assert_not_called()


def test_list_donations_by_status(data_access):
    CrmService(data_access).list_donations("Refunded")

    args, kwargs = data_access.list_entities.call_args
    assert args[0] == "DONATION"
    assert args[1] is not None
    assert kwargs == {"order_by": "donation_date", "descending": True}
