"""DynamoDB backend for the assignment ledger."""
import logging
from typing import Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import ClientError

from processor.errors import StorageCorrupt
from storage.ledger import CountRow, RecordRow

logger = logging.getLogger(__name__)


class DynamoDBLedgerStorage:
    """
    Stores ledger counts and records in a single DynamoDB table.

    The table is keyed by a string hash key `pk`. Count items use
    `COUNT#<team>#<name>` and record items use `RECORD#<team>#<key>`.
    """

    BATCH_SIZE = 25  # DynamoDB batch operation limit
    COUNT_PREFIX = 'COUNT'
    RECORD_PREFIX = 'RECORD'

    def __init__(self, table_name: str, region_name: Optional[str] = None):
        """
        Initialize DynamoDB client and table reference.

        Args:
            table_name: Name of the DynamoDB table
            region_name: AWS region (default: from the environment)
        """
        self.table_name = table_name
        self.dynamodb = boto3.resource('dynamodb', region_name=region_name)
        self.table = self.dynamodb.Table(table_name)
        logger.info(f"Initialized DynamoDBLedgerStorage for table: {table_name}")

    def read(self) -> Tuple[List[CountRow], List[RecordRow]]:
        """
        Read both ledger tables with a paginated Scan.

        Returns:
            Tuple of (count rows, record rows)

        Raises:
            StorageCorrupt: If an item is malformed
            ClientError: If DynamoDB cannot be reached
        """
        count_rows = []
        record_rows = []

        for item in self._scan_items():
            item_type = item.get('item_type')
            try:
                if item_type == self.COUNT_PREFIX:
                    count_rows.append(
                        (item['team'], item['name'], int(item['count']))
                    )
                elif item_type == self.RECORD_PREFIX:
                    record_rows.append(
                        (item['team'], item['key'], item['assignee'])
                    )
                else:
                    raise StorageCorrupt(
                        f"Unknown item type '{item_type}' for {item.get('pk')}"
                    )
            except (KeyError, ValueError, TypeError) as e:
                raise StorageCorrupt(
                    f"Malformed ledger item {item.get('pk')}: {e}"
                ) from e

        logger.info(
            f"Retrieved {len(count_rows)} counts and {len(record_rows)} "
            f"records from DynamoDB"
        )
        return count_rows, record_rows

    def write(self, counts: List[CountRow], records: List[RecordRow]) -> None:
        """
        Replace the table contents with the given snapshot.

        All items are written, then items no longer in the snapshot are
        deleted.

        Args:
            counts: (team, family, count) rows
            records: (team, key, assignee) rows
        """
        items = [self._count_item(*row) for row in counts]
        items.extend(self._record_item(*row) for row in records)

        existing_keys = {item['pk'] for item in self._scan_items()}
        stale_keys = sorted(existing_keys - {item['pk'] for item in items})

        written = self.batch_write_items(items)
        deleted = self.batch_delete_items(stale_keys)
        logger.info(
            f"Ledger snapshot saved: {written} items written, "
            f"{deleted} stale items deleted"
        )

    def batch_write_items(self, items: List[Dict]) -> int:
        """
        Write items to DynamoDB in batches of 25.

        Args:
            items: DynamoDB items to put

        Returns:
            Count of written items
        """
        if not items:
            return 0

        success_count = 0
        for i in range(0, len(items), self.BATCH_SIZE):
            batch = items[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for item in batch:
                        writer.put_item(Item=item)
                        success_count += 1
            except ClientError as e:
                logger.error(
                    f"Error writing batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                raise

        return success_count

    def batch_delete_items(self, keys: List[str]) -> int:
        """
        Delete items from DynamoDB in batches of 25.

        Args:
            keys: Hash keys of the items to delete

        Returns:
            Count of deleted items
        """
        if not keys:
            return 0

        success_count = 0
        for i in range(0, len(keys), self.BATCH_SIZE):
            batch = keys[i:i + self.BATCH_SIZE]
            try:
                with self.table.batch_writer() as writer:
                    for key in batch:
                        writer.delete_item(Key={'pk': key})
                        success_count += 1
            except ClientError as e:
                logger.error(
                    f"Error deleting batch {i // self.BATCH_SIZE + 1}: {e}"
                )
                raise

        return success_count

    def _scan_items(self) -> List[Dict]:
        response = self.table.scan()
        items = response.get('Items', [])

        while 'LastEvaluatedKey' in response:
            response = self.table.scan(
                ExclusiveStartKey=response['LastEvaluatedKey']
            )
            items.extend(response.get('Items', []))

        return items

    def _count_item(self, team: str, name: str, count: int) -> Dict:
        return {
            'pk': f"{self.COUNT_PREFIX}#{team}#{name}",
            'item_type': self.COUNT_PREFIX,
            'team': team,
            'name': name,
            'count': count,
        }

    def _record_item(self, team: str, key: str, assignee: str) -> Dict:
        return {
            'pk': f"{self.RECORD_PREFIX}#{team}#{key}",
            'item_type': self.RECORD_PREFIX,
            'team': team,
            'key': key,
            'assignee': assignee,
        }
