"""DynamoDB access for study sets, set items and SRS records."""

import os
from typing import Dict, Iterable, List, Optional

import boto3
from aws_lambda_powertools import Logger
from boto3.dynamodb.types import TypeDeserializer
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..models.srs import DEFAULT_SCOPE, SrsRecord, record_key
from ..models.study_set import LearnableItem, StudySet

logger = Logger()

# DynamoDB BatchGetItem accepts at most 100 keys per request
BATCH_GET_LIMIT = 100
MAX_UNPROCESSED_RETRIES = 5


class SrsRepositoryError(Exception):
    """Base exception for repository errors."""

    pass


class SetNotFoundError(SrsRepositoryError):
    """Raised when a set does not exist or belongs to another owner."""

    pass


def _client_config() -> Config:
    """Bound every DynamoDB call so a slow fetch cannot hang a request."""
    return Config(
        connect_timeout=float(os.environ.get("DYNAMODB_CONNECT_TIMEOUT", "2")),
        read_timeout=float(os.environ.get("DYNAMODB_READ_TIMEOUT", "5")),
        retries={"max_attempts": 2, "mode": "standard"},
    )


class SrsRepository:
    """Reads sets and their items, and reads/writes SRS records.

    Reads that run inside the due aggregation fan-out go through the
    low-level client, which is safe to share between threads.
    """

    def __init__(
        self,
        sets_table_name: Optional[str] = None,
        set_items_table_name: Optional[str] = None,
        srs_table_name: Optional[str] = None,
        dynamodb_resource=None,
    ):
        """Initialize SrsRepository.

        Args:
            sets_table_name: DynamoDB sets table name. Defaults to SETS_TABLE env var.
            set_items_table_name: DynamoDB set items table name. Defaults to SET_ITEMS_TABLE env var.
            srs_table_name: DynamoDB SRS records table name. Defaults to SRS_TABLE env var.
            dynamodb_resource: Optional boto3 DynamoDB resource for testing.
        """
        self.sets_table_name = sets_table_name or os.environ.get("SETS_TABLE", "rebabel-sets-dev")
        self.set_items_table_name = set_items_table_name or os.environ.get(
            "SET_ITEMS_TABLE", "rebabel-set-items-dev"
        )
        self.srs_table_name = srs_table_name or os.environ.get("SRS_TABLE", "rebabel-srs-dev")

        if dynamodb_resource:
            self.dynamodb = dynamodb_resource
        else:
            endpoint_url = os.environ.get("AWS_ENDPOINT_URL")
            if endpoint_url:
                self.dynamodb = boto3.resource(
                    "dynamodb", endpoint_url=endpoint_url, config=_client_config()
                )
            else:
                self.dynamodb = boto3.resource("dynamodb", config=_client_config())

        self.client = self.dynamodb.meta.client
        self.sets_table = self.dynamodb.Table(self.sets_table_name)
        self.srs_table = self.dynamodb.Table(self.srs_table_name)
        self._deserializer = TypeDeserializer()

    def _deserialize(self, item: dict) -> dict:
        return {k: self._deserializer.deserialize(v) for k, v in item.items()}

    # -------------------------------------------------------------------------
    # Sets
    # -------------------------------------------------------------------------

    def get_set(self, set_id: str) -> StudySet:
        """Get a set by ID.

        Raises:
            SetNotFoundError: If the set does not exist.
        """
        try:
            response = self.client.get_item(
                TableName=self.sets_table_name,
                Key={"set_id": {"S": set_id}},
            )
        except (ClientError, BotoCoreError) as e:
            raise SrsRepositoryError(f"Failed to get set: {e}")

        if "Item" not in response:
            raise SetNotFoundError(f"Set not found: {set_id}")
        return StudySet.from_dynamodb_item(self._deserialize(response["Item"]))

    def get_owned_set(self, owner_id: str, set_id: str) -> StudySet:
        """Get a set and verify it belongs to owner_id.

        Raises:
            SetNotFoundError: If the set does not exist or has another owner.
        """
        study_set = self.get_set(set_id)
        if study_set.owner_id != owner_id:
            raise SetNotFoundError(f"Set not found: {set_id}")
        return study_set

    def list_sets(self, owner_id: str) -> List[StudySet]:
        """List every set owned by owner_id."""
        sets = []
        try:
            paginator = self.client.get_paginator("query")
            pages = paginator.paginate(
                TableName=self.sets_table_name,
                IndexName="owner_id-index",
                KeyConditionExpression="owner_id = :owner_id",
                ExpressionAttributeValues={":owner_id": {"S": owner_id}},
            )
            for page in pages:
                for item in page.get("Items", []):
                    sets.append(StudySet.from_dynamodb_item(self._deserialize(item)))
        except (ClientError, BotoCoreError) as e:
            raise SrsRepositoryError(f"Failed to list sets: {e}")
        return sets

    def list_srs_enabled_sets(self, owner_id: str) -> List[StudySet]:
        """List the owner's sets that have SRS enabled."""
        return [s for s in self.list_sets(owner_id) if s.srs_enabled]

    def set_srs_enabled(self, owner_id: str, set_id: str, enabled: bool) -> StudySet:
        """Turn SRS scheduling on or off for one of the owner's sets.

        Raises:
            SetNotFoundError: If the set does not exist or has another owner.
        """
        try:
            response = self.sets_table.update_item(
                Key={"set_id": set_id},
                UpdateExpression="SET srs_enabled = :enabled",
                ConditionExpression="owner_id = :owner_id",
                ExpressionAttributeValues={":enabled": enabled, ":owner_id": owner_id},
                ReturnValues="ALL_NEW",
            )
        except ClientError as e:
            if e.response["Error"]["Code"] == "ConditionalCheckFailedException":
                raise SetNotFoundError(f"Set not found: {set_id}")
            raise SrsRepositoryError(f"Failed to update set: {e}")
        except BotoCoreError as e:
            raise SrsRepositoryError(f"Failed to update set: {e}")

        logger.info(f"SRS {'enabled' if enabled else 'disabled'} for set {set_id}")
        return StudySet.from_dynamodb_item(response["Attributes"])

    # -------------------------------------------------------------------------
    # Set items
    # -------------------------------------------------------------------------

    def get_set_items(self, set_id: str, owner_id: str, scope: str = DEFAULT_SCOPE) -> List[LearnableItem]:
        """List a set's items in set order, each with the owner's SRS record for scope.

        Args:
            set_id: The set's ID.
            owner_id: The learner whose records are attached.
            scope: Review scope whose records are attached.

        Returns:
            Items ordered by position (items without one keep key order).
        """
        rows = []
        try:
            paginator = self.client.get_paginator("query")
            pages = paginator.paginate(
                TableName=self.set_items_table_name,
                KeyConditionExpression="set_id = :set_id",
                ExpressionAttributeValues={":set_id": {"S": set_id}},
            )
            for page in pages:
                rows.extend(self._deserialize(item) for item in page.get("Items", []))
        except (ClientError, BotoCoreError) as e:
            raise SrsRepositoryError(f"Failed to list items for set {set_id}: {e}")

        rows.sort(key=lambda row: (row.get("position") is None, row.get("position") or 0))

        records = self.get_records(owner_id, [row["item_id"] for row in rows], scope)

        items = []
        for row in rows:
            try:
                items.append(LearnableItem.from_dynamodb_item(row, srs=records.get(row["item_id"])))
            except ValueError as e:
                logger.warning(f"Skipping malformed item {row.get('item_id')} in set {set_id}: {e}")
        return items

    # -------------------------------------------------------------------------
    # SRS records
    # -------------------------------------------------------------------------

    def get_records(
        self, owner_id: str, item_ids: Iterable[str], scope: str = DEFAULT_SCOPE
    ) -> Dict[str, SrsRecord]:
        """Fetch an owner's SRS records for many items in one scope.

        Returns:
            Mapping of item_id to record; items without a record are absent.
        """
        unique_ids = list(dict.fromkeys(item_ids))
        records: Dict[str, SrsRecord] = {}

        for start in range(0, len(unique_ids), BATCH_GET_LIMIT):
            chunk = unique_ids[start:start + BATCH_GET_LIMIT]
            request = {
                self.srs_table_name: {
                    "Keys": [
                        {"owner_id": {"S": owner_id}, "record_key": {"S": record_key(item_id, scope)}}
                        for item_id in chunk
                    ],
                }
            }
            attempts = 0
            while request:
                if attempts > MAX_UNPROCESSED_RETRIES:
                    raise SrsRepositoryError("Failed to get SRS records: unprocessed keys remain")
                attempts += 1
                try:
                    response = self.client.batch_get_item(RequestItems=request)
                except (ClientError, BotoCoreError) as e:
                    raise SrsRepositoryError(f"Failed to get SRS records: {e}")

                for item in response.get("Responses", {}).get(self.srs_table_name, []):
                    record = SrsRecord.from_dynamodb_item(self._deserialize(item))
                    records[record.item_id] = record
                request = response.get("UnprocessedKeys") or None

        return records

    def get_record(self, owner_id: str, item_id: str, scope: str = DEFAULT_SCOPE) -> Optional[SrsRecord]:
        """Get the owner's SRS record for an item and scope, or None if there is none."""
        try:
            response = self.srs_table.get_item(
                Key={"owner_id": owner_id, "record_key": record_key(item_id, scope)}
            )
        except (ClientError, BotoCoreError) as e:
            raise SrsRepositoryError(f"Failed to get SRS record: {e}")

        if "Item" not in response:
            return None
        return SrsRecord.from_dynamodb_item(response["Item"])

    def put_record(self, record: SrsRecord) -> None:
        """Write an SRS record. Last write wins; no condition is applied.

        Raises:
            SrsRepositoryError: If the record has no owner.
        """
        if not record.owner_id:
            raise SrsRepositoryError(f"SRS record for item {record.item_id} has no owner")
        try:
            self.srs_table.put_item(Item=record.to_dynamodb_item())
        except (ClientError, BotoCoreError) as e:
            raise SrsRepositoryError(f"Failed to save SRS record: {e}")
