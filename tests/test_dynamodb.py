from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

from donorconnect.data_access.dynamodb import (
    DONATION,
    DONOR,
    DynamoDataAccess,
    NotFoundError,
    donation_from_item,
    donation_item,
)
from donorconnect.models.donation import CampaignRef, Donation, EventRef


@pytest.fixture
def table():
    table = MagicMock()
    table.name = "donorconnect-test"
    return table


@pytest.fixture
def data_access(table):
    return DynamoDataAccess(table=table)


def _donation_row(donation_id, amount, when, donor_id="A", campaign_id=None, status="Completed"):
    return {
        "PK": f"DONOR#{donor_id}",
        "SK": f"DONATION#{donation_id}",
        "entity_type": "DONATION",
        "donation_id": donation_id,
        "donor_id": donor_id,
        "amount": Decimal(str(amount)),
        "donation_date": when,
        "status": status,
        "campaign_id": campaign_id,
        "event_id": None,
    }


def _client_error(code, operation="UpdateItem", **extra):
    return ClientError({"Error": {"Code": code, "Message": code}, **extra}, operation)


def test_count_follows_pagination(data_access, table):
    table.query.side_effect = [
        {"Count": 2, "LastEvaluatedKey": {"PK": "x"}},
        {"Count": 3},
    ]
    assert data_access.count(DONOR) == 5

    first, second = table.query.call_args_list
    assert first.kwargs["IndexName"] == "EntityTypeIndex"
    assert first.kwargs["Select"] == "COUNT"
    assert second.kwargs["ExclusiveStartKey"] == {"PK": "x"}


def test_count_passes_filters(data_access, table):
    table.query.return_value = {"Count": 1}
    completed = Attr("status").eq("Completed")

    data_access.count(DONATION, completed)

    assert table.query.call_args.kwargs["FilterExpression"] is completed


def test_list_entities_orders_limits_and_strips_keys(data_access, table):
    table.query.return_value = {"Items": [
        _donation_row("1", 10, "2024-01-01T00:00:00+00:00"),
        _donation_row("2", 20, "2024-03-01T00:00:00+00:00"),
        _donation_row("3", 30, "2024-02-01T00:00:00+00:00"),
    ]}

    rows = data_access.list_entities(DONATION, order_by="donation_date", descending=True, limit=2)

    assert [r["donation_id"] for r in rows] == ["2", "3"]
    assert "PK" not in rows[0] and "entity_type" not in rows[0]


def test_aggregates(data_access, table):
    table.query.return_value = {"Items": [
        _donation_row("1", 500, "2024-03-15T00:00:00+00:00"),
        _donation_row("2", 250, "2024-11-01T00:00:00+00:00"),
        _donation_row("3", 1000, "2024-06-20T00:00:00+00:00", donor_id="B"),
    ]}
    assert data_access.aggregate_sum(DONATION, "amount") == Decimal("1750")
    assert data_access.aggregate_avg(DONATION, "amount").quantize(Decimal("0.01")) == Decimal("583.33")


def test_aggregate_avg_of_nothing_is_zero(data_access, table):
    table.query.return_value = {"Items": []}
    assert data_access.aggregate_avg(DONATION, "amount") == Decimal("0")


def test_list_with_relation_nests_children(data_access, table):
    table.query.side_effect = [
        {"Items": [
            {"PK": "DONOR#A", "SK": "PROFILE", "entity_type": "DONOR", "donor_id": "A"},
            {"PK": "DONOR#C", "SK": "PROFILE", "entity_type": "DONOR", "donor_id": "C"},
        ]},
        {"Items": [
            _donation_row("1", 500, "2024-03-15T00:00:00+00:00"),
            _donation_row("2", 250, "2024-11-01T00:00:00+00:00"),
        ]},
    ]

    donors = data_access.list_with_relation(DONOR, "donations")

    assert [len(d["donations"]) for d in donors] == [2, 0]
    assert table.query.call_args_list[1].kwargs["KeyConditionExpression"] is not None


def test_list_with_unknown_relation(data_access):
    with pytest.raises(ValueError):
        data_access.list_with_relation(DONOR, "pets")


def test_donation_items_flatten_the_attribution():
    donation = Donation(
        donor_id="A",
        amount=Decimal("25"),
        donation_date=datetime(2024, 5, 1, tzinfo=timezone.utc),
        attribution=EventRef(event_id="gala"),
    )
    item = donation_item(donation)

    assert item["PK"] == "DONOR#A"
    assert item["SK"] == f"DONATION#{donation.donation_id}"
    assert item["event_id"] == "gala" and item["campaign_id"] is None
    assert item["donation_date"] == "2024-05-01T00:00:00+00:00"

    restored = donation_from_item(item)
    assert restored.attribution == EventRef(event_id="gala")
    assert restored.campaign_id is None


def test_create_donation_updates_projections_in_one_transaction(data_access, table):
    earlier = _donation_row("old", 500, "2024-03-15T00:00:00+00:00", campaign_id="c1")
    table.query.side_effect = [
        {"Items": [earlier]},  # donor's donations
        {"Items": [earlier]},  # campaign's donations
    ]
    donation = Donation(
        donor_id="A",
        amount=Decimal("250"),
        donation_date=datetime(2024, 11, 1, tzinfo=timezone.utc),
        attribution=CampaignRef(campaign_id="c1"),
    )

    data_access.create_donation(donation)

    actions = table.meta.client.transact_write_items.call_args.kwargs["TransactItems"]
    put, donor_update, campaign_update = actions
    assert put["Put"]["Item"]["amount"] == {"N": "250"}
    assert donor_update["Update"]["Key"] == {"PK": {"S": "DONOR#A"}, "SK": {"S": "PROFILE"}}
    assert donor_update["Update"]["ExpressionAttributeValues"][":v0"] == {"N": "750"}
    assert donor_update["Update"]["ExpressionAttributeValues"][":v1"] == {"S": "2024-11-01T00:00:00+00:00"}
    assert campaign_update["Update"]["Key"]["PK"] == {"S": "CAMPAIGN#c1"}
    assert campaign_update["Update"]["ExpressionAttributeValues"][":v0"] == {"N": "750"}


def test_pending_donation_leaves_totals_unchanged(data_access, table):
    table.query.side_effect = [{"Items": [_donation_row("old", 500, "2024-03-15T00:00:00+00:00")]}]
    donation = Donation(
        donor_id="A",
        amount=Decimal("90"),
        status="Pending",
        donation_date=datetime(2024, 12, 1, tzinfo=timezone.utc),
    )

    data_access.create_donation(donation)

    actions = table.meta.client.transact_write_items.call_args.kwargs["TransactItems"]
    assert len(actions) == 2
    values = actions[1]["Update"]["ExpressionAttributeValues"]
    assert values[":v0"] == {"N": "500"}
    assert values[":v1"] == {"S": "2024-03-15T00:00:00+00:00"}


def test_create_donation_for_unknown_donor(data_access, table):
    table.query.side_effect = [{"Items": []}]
    table.meta.client.transact_write_items.side_effect = _client_error(
        "TransactionCanceledException",
        "TransactWriteItems",
        CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
    )

    with pytest.raises(NotFoundError):
        data_access.create_donation(Donation(donor_id="ghost", amount=Decimal("5")))


def test_refund_recomputes_from_remaining_gifts(data_access, table):
    kept = _donation_row("kept", 100, "2024-02-01T00:00:00+00:00")
    refunded = _donation_row("refunded", 400, "2024-09-01T00:00:00+00:00")
    table.query.side_effect = [
        {"Items": [refunded]},  # lookup by id
        {"Items": [kept, refunded]},  # donor's donations
    ]

    data_access.update_donation("refunded", {"status": "Refunded"})

    put, donor_update = table.meta.client.transact_write_items.call_args.kwargs["TransactItems"]
    assert put["Put"]["Item"]["status"] == {"S": "Refunded"}
    assert donor_update["Update"]["ExpressionAttributeValues"][":v0"] == {"N": "100"}
    assert donor_update["Update"]["ExpressionAttributeValues"][":v1"] == {"S": "2024-02-01T00:00:00+00:00"}


def test_update_unknown_donation(data_access, table):
    table.query.return_value = {"Items": []}
    with pytest.raises(NotFoundError):
        data_access.update_donation("missing", {"status": "Refunded"})


def test_update_donor_not_found(data_access, table):
    table.update_item.side_effect = _client_error("ConditionalCheckFailedException")
    with pytest.raises(NotFoundError):
        data_access.update_donor("ghost", {"city": "Leeds"})


def test_update_donor_other_errors_propagate(data_access, table):
    table.update_item.side_effect = _client_error("ProvisionedThroughputExceededException")
    with pytest.raises(ClientError):
        data_access.update_donor("A", {"city": "Leeds"})


def test_get_donor_partition(data_access, table):
    table.query.return_value = {"Items": [
        {"PK": "DONOR#A", "SK": "PROFILE", "entity_type": "DONOR", "donor_id": "A", "first_name": "Ada"},
        _donation_row("1", 500, "2024-03-15T00:00:00+00:00"),
        {"PK": "DONOR#A", "SK": "FOLLOWUP#f1", "entity_type": "FOLLOWUP", "follow_up_id": "f1"},
    ]}

    donor = data_access.get_donor_partition("A")

    assert donor["first_name"] == "Ada"
    assert [d["donation_id"] for d in donor["donations"]] == ["1"]
    assert [f["follow_up_id"] for f in donor["follow_ups"]] == ["f1"]


def test_get_donor_partition_missing(data_access, table):
    table.query.return_value = {"Items": []}
    with pytest.raises(NotFoundError):
        data_access.get_donor_partition("ghost")


def test_record_attendance_counts_attended_only(data_access, table):
    from donorconnect.models.campaign import EventAttendance

    table.query.return_value = {"Items": [
        {"PK": "EVENT#gala", "SK": "ATTENDANCE#B", "event_id": "gala", "donor_id": "B", "attended": True},
        {"PK": "EVENT#gala", "SK": "ATTENDANCE#C", "event_id": "gala", "donor_id": "C", "attended": False},
    ]}

    data_access.record_attendance(EventAttendance(event_id="gala", donor_id="A"))

    _, event_update = table.meta.client.transact_write_items.call_args.kwargs["TransactItems"]
    assert event_update["Update"]["ExpressionAttributeValues"][":v0"] == {"N": "2"}


def test_list_entities_orders_by_instant_across_offsets(data_access, table):
    table.query.return_value = {"Items": [
        _donation_row("a", 1, "2024-12-01T22:00:00-05:00"),  # 03:00Z on the 2nd
        _donation_row("b", 2, "2024-12-02T02:30:00+00:00"),
        _donation_row("c", 3, "2024-12-02T01:30:00+00:00"),
        _donation_row("d", 4, "2024-12-02T00:30:00+00:00"),
        _donation_row("e", 9, "2024-11-30T12:00:00+00:00"),
    ]}

    rows = data_access.list_entities(DONATION, order_by="donation_date", descending=True, limit=5)

    assert [r["amount"] for r in rows] == [1, 2, 3, 4, 9]


def test_donation_dates_are_stored_in_utc():
    donation = Donation(
        donor_id="A",
        amount=Decimal("1"),
        donation_date=datetime.fromisoformat("2024-12-01T22:00:00-05:00"),
    )

    assert donation_item(donation)["donation_date"] == "2024-12-02T03:00:00+00:00"


def test_update_fields_are_stored_in_utc(data_access, table):
    table.update_item.return_value = {"Attributes": {}}

    data_access.update_donor("A", {"last_donation": datetime.fromisoformat("2024-12-01T22:00:00-05:00")})

    values = table.update_item.call_args.kwargs["ExpressionAttributeValues"]
    assert values[":v0"] == "2024-12-02T03:00:00+00:00"


def test_delete_donation_recomputes_donor_and_campaign(data_access, table):
    kept = _donation_row("kept", 100, "2024-02-01T00:00:00+00:00", campaign_id="c1")
    gone = _donation_row("gone", 400, "2024-09-01T00:00:00+00:00", campaign_id="c1")
    other = _donation_row("other", 50, "2024-05-01T00:00:00+00:00", donor_id="B", campaign_id="c1")
    table.query.side_effect = [
        {"Items": [gone]},  # lookup by id
        {"Items": [kept, gone]},  # donor's donations
        {"Items": [kept, gone, other]},  # campaign's donations
    ]

    data_access.delete_donation("gone")

    delete, donor_update, campaign_update = table.meta.client.transact_write_items.call_args.kwargs["TransactItems"]
    assert delete["Delete"]["Key"] == {"PK": {"S": "DONOR#A"}, "SK": {"S": "DONATION#gone"}}
    assert donor_update["Update"]["ExpressionAttributeValues"][":v0"] == {"N": "100"}
    assert donor_update["Update"]["ExpressionAttributeValues"][":v1"] == {"S": "2024-02-01T00:00:00+00:00"}
    assert campaign_update["Update"]["Key"]["PK"] == {"S": "CAMPAIGN#c1"}
    assert campaign_update["Update"]["ExpressionAttributeValues"][":v0"] == {"N": "150"}


def test_delete_unknown_donation(data_access, table):
    table.query.return_value = {"Items": []}
    with pytest.raises(NotFoundError):
        data_access.delete_donation("missing")
    table.meta.client.transact_write_items.assert_not_called()


def test_delete_donor_rewrites_campaign_totals_without_their_gifts(data_access, table):
    profile = {"PK": "DONOR#A", "SK": "PROFILE", "entity_type": "DONOR", "donor_id": "A"}
    gone = _donation_row("gone", 500, "2024-03-15T00:00:00+00:00", campaign_id="c1")
    kept = _donation_row("kept", 100, "2024-04-01T00:00:00+00:00", donor_id="B", campaign_id="c1")
    attendance = {"PK": "EVENT#gala", "SK": "ATTENDANCE#A", "entity_type": "ATTENDANCE",
                  "event_id": "gala", "donor_id": "A", "attended": True}
    table.query.side_effect = [
        {"Items": [profile, gone]},  # donor partition
        {"Items": [attendance]},  # donor's attendance records
        {"Items": [gone, kept]},  # campaign's donations
        {"Items": [  # event's attendance records
            attendance,
            {"PK": "EVENT#gala", "SK": "ATTENDANCE#B", "event_id": "gala", "donor_id": "B", "attended": True},
        ]},
    ]

    data_access.delete_donor("A")

    table.batch_writer.assert_not_called()
    client = table.meta.client
    client.transact_write_items.assert_called_once()
    actions = client.transact_write_items.call_args.kwargs["TransactItems"]
    deleted = [a["Delete"]["Key"] for a in actions if "Delete" in a]
    assert {"PK": {"S": "DONOR#A"}, "SK": {"S": "PROFILE"}} in deleted
    assert {"PK": {"S": "DONOR#A"}, "SK": {"S": "DONATION#gone"}} in deleted
    assert {"PK": {"S": "EVENT#gala"}, "SK": {"S": "ATTENDANCE#A"}} in deleted
    updates = {a["Update"]["Key"]["PK"]["S"]: a["Update"]["ExpressionAttributeValues"][":v0"]
               for a in actions if "Update" in a}
    assert updates == {"CAMPAIGN#c1": {"N": "100"}, "EVENT#gala": {"N": "1"}}


def test_delete_donor_splits_large_partitions(data_access, table):
    profile = {"PK": "DONOR#A", "SK": "PROFILE", "entity_type": "DONOR", "donor_id": "A"}
    gifts = [_donation_row(str(n), 1, "2024-03-15T00:00:00+00:00") for n in range(150)]
    table.query.side_effect = [{"Items": [profile] + gifts}, {"Items": []}]

    data_access.delete_donor("A")

    calls = table.meta.client.transact_write_items.call_args_list
    assert [len(c.kwargs["TransactItems"]) for c in calls] == [51, 100]
    last = calls[-1].kwargs["TransactItems"]
    assert last[-1]["Delete"]["Key"] == {"PK": {"S": "DONOR#A"}, "SK": {"S": "PROFILE"}}


def test_delete_unknown_donor(data_access, table):
    table.query.return_value = {"Items": []}
    with pytest.raises(NotFoundError):
        data_access.delete_donor("ghost")


def test_update_follow_up(data_access, table):
    table.query.return_value = {"Items": [
        {"PK": "DONOR#A", "SK": "FOLLOWUP#f1", "entity_type": "FOLLOWUP", "follow_up_id": "f1"},
    ]}
    table.update_item.return_value = {"Attributes": {
        "PK": "DONOR#A", "SK": "FOLLOWUP#f1", "follow_up_id": "f1", "completed": True,
    }}

    result = data_access.update_follow_up("f1", {"completed": True})

    assert result == {"follow_up_id": "f1", "completed": True}
    assert table.update_item.call_args.kwargs["Key"] == {"PK": "DONOR#A", "SK": "FOLLOWUP#f1"}


def test_update_unknown_follow_up(data_access, table):
    table.query.return_value = {"Items": []}
    with pytest.raises(NotFoundError):
        data_access.update_follow_up("missing", {"completed": True})
    table.update_item.assert_not_called()
