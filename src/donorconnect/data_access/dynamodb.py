import logging
from boto3.dynamodb.conditions import Attr, ConditionBase, Key
from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable

from donorconnect.analytics.projections import (
    DonorTotals,
    project_campaign,
    project_donor,
    project_event,
)
from donorconnect.models.campaign import Campaign, Event, EventAttendance
from donorconnect.models.donation import Donation, as_utc, attribution_from_ids
from donorconnect.models.donor import Donor, FollowUp

logger = logging.getLogger(__name__)

DONOR_PREFIX = "DONOR#"
DONATION_PREFIX = "DONATION#"
FOLLOW_UP_PREFIX = "FOLLOWUP#"
CAMPAIGN_PREFIX = "CAMPAIGN#"
EVENT_PREFIX = "EVENT#"
ATTENDANCE_PREFIX = "ATTENDANCE#"
PROFILE_SK = "PROFILE"

ENTITY_TYPE_INDEX = "EntityTypeIndex"
TRANSACTION_LIMIT = 100

DONOR = "DONOR"
DONATION = "DONATION"
FOLLOW_UP = "FOLLOWUP"
CAMPAIGN = "CAMPAIGN"
EVENT = "EVENT"
ATTENDANCE = "ATTENDANCE"

# (parent entity, relation name) -> (child entity, child attribute holding the parent id, parent id attribute)
RELATIONS = {
    (DONOR, "donations"): (DONATION, "donor_id", "donor_id"),
    (DONOR, "follow_ups"): (FOLLOW_UP, "donor_id", "donor_id"),
    (CAMPAIGN, "donations"): (DONATION, "campaign_id", "campaign_id"),
    (EVENT, "donations"): (DONATION, "event_id", "event_id"),
    (EVENT, "attendances"): (ATTENDANCE, "event_id", "event_id"),
}

KEY_ATTRIBUTES = ("PK", "SK", "entity_type")

_serializer = TypeSerializer()


class NotFoundError(LookupError):
    pass


def _to_attribute(value: Any) -> Any:
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_attribute(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_attribute(v) for v in value]
    return value


def _order_key(value: Any) -> tuple:
    # Timestamps written before UTC normalization may carry other offsets
    if isinstance(value, str):
        try:
            return (0, as_utc(datetime.fromisoformat(value)))
        except ValueError:
            pass
    return (1, value)


def strip_keys(item: dict) -> dict:
    return {k: v for k, v in item.items() if k not in KEY_ATTRIBUTES}


def donation_item(donation: Donation) -> dict:
    data = donation.model_dump(exclude={"attribution"})
    data["campaign_id"] = donation.campaign_id
    data["event_id"] = donation.event_id
    item = {
        "PK": f"{DONOR_PREFIX}{donation.donor_id}",
        "SK": f"{DONATION_PREFIX}{donation.donation_id}",
        "entity_type": DONATION,
        **data,
    }
    return _to_attribute(item)


def donation_from_item(item: dict) -> Donation:
    data = strip_keys(item)
    attribution = attribution_from_ids(data.pop("campaign_id", None), data.pop("event_id", None))
    return Donation(**data, attribution=attribution)


def _update_parts(fields: dict, serialize: bool = False) -> dict:
    names = {}
    values = {}
    assignments = []
    for i, (field, value) in enumerate(fields.items()):
        names[f"#f{i}"] = field
        value = _to_attribute(value)
        values[f":v{i}"] = _serializer.serialize(value) if serialize else value
        assignments.append(f"#f{i} = :v{i}")
    return {
        "UpdateExpression": "SET " + ", ".join(assignments),
        "ExpressionAttributeNames": names,
        "ExpressionAttributeValues": values,
    }


class DynamoDataAccess:
    """
    Single-table store for the CRM.

    Donations and follow-ups live in their donor's partition; attendance
    records live in their event's partition. Every item carries an
    ``entity_type`` attribute that the ``EntityTypeIndex`` GSI is keyed on.
    """

    def __init__(self, table):
        self.table = table

    # ---- generic reads ----

    def _query_all(self, **kwargs) -> list[dict]:
        items = []
        while True:
            response = self.table.query(**kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if not last_key:
                return items
            kwargs["ExclusiveStartKey"] = last_key

    def _entity_query(self, entity_type: str, filter: ConditionBase | None = None, **kwargs) -> dict:
        kwargs.update(
            IndexName=ENTITY_TYPE_INDEX,
            KeyConditionExpression=Key("entity_type").eq(entity_type),
        )
        if filter is not None:
            kwargs["FilterExpression"] = filter
        return kwargs

    def count(self, entity_type: str, filter: ConditionBase | None = None) -> int:
        kwargs = self._entity_query(entity_type, filter, Select="COUNT")
        total = 0
        try:
            while True:
                response = self.table.query(**kwargs)
                total += response.get("Count", 0)
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    return total
                kwargs["ExclusiveStartKey"] = last_key
        except ClientError as e:
            logger.error(f"Error counting {entity_type} items: {e}")
            raise

    def list_entities(
        self,
        entity_type: str,
        filter: ConditionBase | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict]:
        try:
            items = self._query_all(**self._entity_query(entity_type, filter))
        except ClientError as e:
            logger.error(f"Error listing {entity_type} items: {e}")
            raise

        items = [strip_keys(item) for item in items]
        if order_by:
            # Stable sort; items missing the field go last
            present = [i for i in items if i.get(order_by) is not None]
            missing = [i for i in items if i.get(order_by) is None]
            items = sorted(present, key=lambda i: _order_key(i[order_by]), reverse=descending) + missing
        if limit is not None:
            items = items[:limit]
        return items

    def aggregate_sum(self, entity_type: str, field: str, filter: ConditionBase | None = None) -> Decimal:
        items = self.list_entities(entity_type, filter)
        return sum((Decimal(str(i[field])) for i in items if i.get(field) is not None), Decimal("0"))

    def aggregate_avg(self, entity_type: str, field: str, filter: ConditionBase | None = None) -> Decimal:
        values = [Decimal(str(i[field])) for i in self.list_entities(entity_type, filter) if i.get(field) is not None]
        if not values:
            return Decimal("0")
        return sum(values, Decimal("0")) / len(values)

    def list_with_relation(
        self,
        entity_type: str,
        relation: str,
        filter: ConditionBase | None = None,
        relation_filter: ConditionBase | None = None,
    ) -> list[dict]:
        try:
            child_type, child_key, parent_key = RELATIONS[(entity_type, relation)]
        except KeyError:
            raise ValueError(f"Unknown relation {relation!r} on {entity_type}")

        parents = self.list_entities(entity_type, filter)
        children: dict[str, list[dict]] = {}
        for child in self.list_entities(child_type, relation_filter):
            children.setdefault(child.get(child_key), []).append(child)

        for parent in parents:
            parent[relation] = children.get(parent[parent_key], [])
        return parents

    # ---- donors ----

    def create_donor(self, donor: Donor) -> dict:
        item = _to_attribute({
            "PK": f"{DONOR_PREFIX}{donor.donor_id}",
            "SK": PROFILE_SK,
            "entity_type": DONOR,
            **donor.model_dump(),
        })
        self.table.put_item(Item=item, ConditionExpression="attribute_not_exists(PK)")
        return strip_keys(item)

    def get_donor(self, donor_id: str) -> dict | None:
        response = self.table.get_item(Key={"PK": f"{DONOR_PREFIX}{donor_id}", "SK": PROFILE_SK})
        item = response.get("Item")
        return strip_keys(item) if item else None

    def get_donor_partition(self, donor_id: str) -> dict:
        """The donor profile with its donations and follow-ups."""
        items = self._query_all(KeyConditionExpression=Key("PK").eq(f"{DONOR_PREFIX}{donor_id}"))
        profile = next((i for i in items if i["SK"] == PROFILE_SK), None)
        if profile is None:
            raise NotFoundError(f"Donor {donor_id} not found")

        donor = strip_keys(profile)
        donor["donations"] = [strip_keys(i) for i in items if i["SK"].startswith(DONATION_PREFIX)]
        donor["follow_ups"] = [strip_keys(i) for i in items if i["SK"].startswith(FOLLOW_UP_PREFIX)]
        return donor

    def _update_profile(self, pk: str, fields: dict, label: str) -> dict:
        try:
            response = self.table.update_item(
                Key={"PK": pk, "SK": PROFILE_SK},
                ConditionExpression="attribute_exists(PK)",
                ReturnValues="ALL_NEW",
                **_update_parts(fields),
            )
            return strip_keys(response.get("Attributes", {}))
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                raise NotFoundError(f"{label} not found")
            logger.error(f"Error updating {label}: {e}")
            raise

    def update_donor(self, donor_id: str, fields: dict) -> dict:
        return self._update_profile(f"{DONOR_PREFIX}{donor_id}", fields, f"Donor {donor_id}")

    def set_donor_totals(self, donor_id: str, totals: DonorTotals) -> dict:
        return self.update_donor(
            donor_id,
            {"total_donated": totals.total_donated, "last_donation": totals.last_donation},
        )

    def delete_donor(self, donor_id: str) -> None:
        """
        Remove the donor, their donations, follow-ups and attendance records,
        and rewrite the campaign and event totals they fed.

        Totals are computed from reads taken before anything is deleted. The
        profile delete and the total updates commit in the last transaction;
        child rows that do not fit in it are removed in earlier ones.
        """
        items = self._query_all(KeyConditionExpression=Key("PK").eq(f"{DONOR_PREFIX}{donor_id}"))
        profile = next((i for i in items if i["SK"] == PROFILE_SK), None)
        if profile is None:
            raise NotFoundError(f"Donor {donor_id} not found")

        attendances = self._query_all(
            **self._entity_query(ATTENDANCE, Attr("donor_id").eq(donor_id))
        )
        donations = [i for i in items if i["SK"].startswith(DONATION_PREFIX)]
        removed = {i["donation_id"] for i in donations}

        updates = []
        for campaign_id in sorted({i.get("campaign_id") for i in donations} - {None}):
            remaining = [
                i for i in self.list_entities(DONATION, Attr("campaign_id").eq(campaign_id))
                if i["donation_id"] not in removed
            ]
            updates.append(self._transact_update(
                f"{CAMPAIGN_PREFIX}{campaign_id}", {"raised_amount": project_campaign(remaining)}
            ))
        for event_id in sorted({i["event_id"] for i in attendances}):
            remaining = [a for a in self.list_attendances(event_id) if a["donor_id"] != donor_id]
            updates.append(self._transact_update(
                f"{EVENT_PREFIX}{event_id}", {"attendees": project_event(remaining)}
            ))

        children = [self._delete_action(i) for i in items + attendances if i is not profile]
        final = [self._delete_action(profile)] + updates
        split = max(len(children) - (TRANSACTION_LIMIT - len(final)), 0)

        label = f"delete donor {donor_id}"
        for start in range(0, split, TRANSACTION_LIMIT):
            self._transact(children[start:min(start + TRANSACTION_LIMIT, split)], label)
        self._transact(children[split:] + final, label)

        logger.info(f"Deleted donor {donor_id} and {len(children)} related records.")

    # ---- donations ----

    def get_donation(self, donation_id: str) -> dict | None:
        items = self._query_all(**self._entity_query(DONATION, Attr("donation_id").eq(donation_id)))
        return items[0] if items else None

    def _donor_donations(self, donor_id: str) -> list[dict]:
        return self._query_all(
            KeyConditionExpression=Key("PK").eq(f"{DONOR_PREFIX}{donor_id}") &
                                 Key("SK").begins_with(DONATION_PREFIX)
        )

    def _projection_updates(self, before: dict | None, after: dict | None) -> list[dict]:
        """
        Update actions that bring the donor and campaign projections in line
        with replacing ``before`` by ``after`` (either may be None).
        """
        changed = after or before
        donation_id = changed["donation_id"]

        def apply(items: list[dict]) -> list[dict]:
            items = [i for i in items if i["donation_id"] != donation_id]
            return items + [after] if after else items

        donor_id = changed["donor_id"]
        totals = project_donor(apply(self._donor_donations(donor_id)))
        updates = [self._transact_update(
            f"{DONOR_PREFIX}{donor_id}",
            {"total_donated": totals.total_donated, "last_donation": totals.last_donation},
        )]

        campaign_ids = {(before or {}).get("campaign_id"), (after or {}).get("campaign_id")} - {None}
        for campaign_id in sorted(campaign_ids):
            linked = self.list_entities(DONATION, Attr("campaign_id").eq(campaign_id))
            linked = [i for i in apply(linked) if i.get("campaign_id") == campaign_id]
            updates.append(self._transact_update(
                f"{CAMPAIGN_PREFIX}{campaign_id}", {"raised_amount": project_campaign(linked)}
            ))
        return updates

    def _transact_update(self, pk: str, fields: dict) -> dict:
        return {
            "Update": {
                "TableName": self.table.name,
                "Key": _serializer.serialize({"PK": pk, "SK": PROFILE_SK})["M"],
                "ConditionExpression": "attribute_exists(PK)",
                **_update_parts(fields, serialize=True),
            }
        }

    def _transact(self, actions: list[dict], label: str) -> None:
        client = self.table.meta.client
        try:
            client.transact_write_items(TransactItems=actions)
        except ClientError as e:
            if e.response['Error']['Code'] == 'TransactionCanceledException':
                reasons = e.response.get("CancellationReasons", [])
                if any(r.get("Code") == "ConditionalCheckFailed" for r in reasons):
                    raise NotFoundError(f"{label}: referenced record not found")
            logger.error(f"Transaction failed for {label}: {e}")
            raise

    def _put_action(self, item: dict) -> dict:
        return {
            "Put": {
                "TableName": self.table.name,
                "Item": _serializer.serialize(item)["M"],
            }
        }

    def _delete_action(self, item: dict) -> dict:
        return {
            "Delete": {
                "TableName": self.table.name,
                "Key": _serializer.serialize({"PK": item["PK"], "SK": item["SK"]})["M"],
            }
        }

    def create_donation(self, donation: Donation) -> dict:
        item = donation_item(donation)
        actions = [self._put_action(item)] + self._projection_updates(None, item)
        self._transact(actions, f"create donation {donation.donation_id}")
        logger.info(f"Created donation {donation.donation_id} for donor {donation.donor_id}.")
        return strip_keys(item)

    def update_donation(self, donation_id: str, fields: dict) -> dict:
        current = self.get_donation(donation_id)
        if current is None:
            raise NotFoundError(f"Donation {donation_id} not found")

        updated = donation_item(donation_from_item({**current, **fields}))
        actions = [self._put_action(updated)] + self._projection_updates(current, updated)
        self._transact(actions, f"update donation {donation_id}")
        return strip_keys(updated)

    def delete_donation(self, donation_id: str) -> None:
        current = self.get_donation(donation_id)
        if current is None:
            raise NotFoundError(f"Donation {donation_id} not found")

        delete = self._delete_action(current)
        self._transact([delete] + self._projection_updates(current, None), f"delete donation {donation_id}")

    # ---- campaigns & events ----

    def create_campaign(self, campaign: Campaign) -> dict:
        item = _to_attribute({
            "PK": f"{CAMPAIGN_PREFIX}{campaign.campaign_id}",
            "SK": PROFILE_SK,
            "entity_type": CAMPAIGN,
            **campaign.model_dump(),
        })
        self.table.put_item(Item=item, ConditionExpression="attribute_not_exists(PK)")
        return strip_keys(item)

    def get_campaign(self, campaign_id: str) -> dict | None:
        response = self.table.get_item(Key={"PK": f"{CAMPAIGN_PREFIX}{campaign_id}", "SK": PROFILE_SK})
        item = response.get("Item")
        return strip_keys(item) if item else None

    def set_campaign_raised(self, campaign_id: str, raised: Decimal) -> dict:
        return self._update_profile(
            f"{CAMPAIGN_PREFIX}{campaign_id}", {"raised_amount": raised}, f"Campaign {campaign_id}"
        )

    def create_event(self, event: Event) -> dict:
        item = _to_attribute({
            "PK": f"{EVENT_PREFIX}{event.event_id}",
            "SK": PROFILE_SK,
            "entity_type": EVENT,
            **event.model_dump(),
        })
        self.table.put_item(Item=item, ConditionExpression="attribute_not_exists(PK)")
        return strip_keys(item)

    def get_event(self, event_id: str) -> dict | None:
        response = self.table.get_item(Key={"PK": f"{EVENT_PREFIX}{event_id}", "SK": PROFILE_SK})
        item = response.get("Item")
        return strip_keys(item) if item else None

    def set_event_attendees(self, event_id: str, attendees: int) -> dict:
        return self._update_profile(
            f"{EVENT_PREFIX}{event_id}", {"attendees": attendees}, f"Event {event_id}"
        )

    def list_attendances(self, event_id: str) -> list[dict]:
        items = self._query_all(
            KeyConditionExpression=Key("PK").eq(f"{EVENT_PREFIX}{event_id}") &
                                 Key("SK").begins_with(ATTENDANCE_PREFIX)
        )
        return [strip_keys(i) for i in items]

    def record_attendance(self, attendance: EventAttendance) -> dict:
        item = _to_attribute({
            "PK": f"{EVENT_PREFIX}{attendance.event_id}",
            "SK": f"{ATTENDANCE_PREFIX}{attendance.donor_id}",
            "entity_type": ATTENDANCE,
            **attendance.model_dump(),
        })
        others = [a for a in self.list_attendances(attendance.event_id) if a["donor_id"] != attendance.donor_id]
        attendees = project_event(others + [item])

        actions = [
            self._put_action(item),
            self._transact_update(f"{EVENT_PREFIX}{attendance.event_id}", {"attendees": attendees}),
        ]
        self._transact(actions, f"attendance for event {attendance.event_id}")
        return strip_keys(item)

    # ---- follow-ups ----

    def create_follow_up(self, follow_up: FollowUp) -> dict:
        item = _to_attribute({
            "PK": f"{DONOR_PREFIX}{follow_up.donor_id}",
            "SK": f"{FOLLOW_UP_PREFIX}{follow_up.follow_up_id}",
            "entity_type": FOLLOW_UP,
            **follow_up.model_dump(),
        })
        self.table.put_item(Item=item)
        return strip_keys(item)

    def list_follow_ups(self, donor_id: str | None = None) -> list[dict]:
        if donor_id is None:
            return self.list_entities(FOLLOW_UP, order_by="due_date", descending=True)
        items = self._query_all(
            KeyConditionExpression=Key("PK").eq(f"{DONOR_PREFIX}{donor_id}") &
                                 Key("SK").begins_with(FOLLOW_UP_PREFIX)
        )
        return sorted((strip_keys(i) for i in items), key=lambda i: _order_key(i["due_date"]), reverse=True)

    def update_follow_up(self, follow_up_id: str, fields: dict) -> dict:
        matches = self._query_all(**self._entity_query(FOLLOW_UP, Attr("follow_up_id").eq(follow_up_id)))
        if not matches:
            raise NotFoundError(f"Follow-up {follow_up_id} not found")

        current = matches[0]
        response = self.table.update_item(
            Key={"PK": current["PK"], "SK": current["SK"]},
            ReturnValues="ALL_NEW",
            **_update_parts(fields),
        )
        return strip_keys(response.get("Attributes", {}))
