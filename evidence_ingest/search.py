from __future__ import annotations

import logging
from typing import Any

from opensearchpy import OpenSearch, RequestsHttpConnection

from .config import settings
from .schemas import Message

logger = logging.getLogger(__name__)

MESSAGE_FIELDS = ["subject", "from", "to", "cc", "body", "headers", "attachments.name"]

MESSAGE_INDEX_BODY: dict[str, Any] = {
    "settings": {"index": {"number_of_shards": 3, "number_of_replicas": 1}},
    "mappings": {
        "properties": {
            "uuid": {"type": "keyword"},
            "project_uuid": {"type": "keyword"},
            "message_id": {"type": "keyword", "null_value": "NULL"},
            "subject": {"type": "text"},
            "from": {"type": "text"},
            "to": {"type": "text"},
            "cc": {"type": "text"},
            "received": {"type": "date", "format": "epoch_second"},
            "size": {"type": "text"},
            "body": {"type": "text"},
            "headers": {"type": "text"},
            "attachments": {
                "properties": {
                    "uuid": {"type": "keyword"},
                    "name": {"type": "text"},
                }
            },
            "folder_uuid": {"type": "keyword"},
            "evidence_uuid": {"type": "keyword"},
        }
    },
}


def opensearch_client() -> OpenSearch:
    user = settings.OPENSEARCH_USER
    password = settings.OPENSEARCH_PASSWORD
    return OpenSearch(
        hosts=[{"host": settings.OPENSEARCH_HOST, "port": settings.OPENSEARCH_PORT}],
        http_auth=(user, password) if user else None,
        http_compress=True,
        use_ssl=settings.OPENSEARCH_USE_SSL,
        verify_certs=settings.OPENSEARCH_VERIFY_CERTS,
        connection_class=RequestsHttpConnection,
    )


class MessageIndex:
    """Read side of the indexed corpus."""

    def __init__(self, client: Any, index: str | None = None, max_results: int | None = None):
        self.client = client
        self.index = index or settings.OPENSEARCH_INDEX
        self.max_results = max_results or settings.OPENSEARCH_MAX_RESULTS

    def ensure_index(self) -> None:
        if not self.client.indices.exists(index=self.index):
            self.client.indices.create(index=self.index, body=MESSAGE_INDEX_BODY)
            logger.info("Created message index '%s'", self.index)

    def _run(self, query: dict[str, Any], size: int | None = None) -> list[Message]:
        response = self.client.search(
            index=self.index,
            body={"query": query, "size": size or self.max_results},
        )
        hits = response.get("hits", {}).get("hits", [])
        messages: list[Message] = []
        for hit in hits:
            source = hit.get("_source") or {}
            messages.append(Message.model_validate(source))
        if size is None and len(hits) >= self.max_results:
            logger.warning(
                "Message query hit the result cap (%d); results are truncated",
                len(hits),
            )
        return messages

    @staticmethod
    def _project(project_id: str) -> dict[str, Any]:
        return {"term": {"project_uuid": project_id}}

    def all_messages(self, project_id: str) -> list[Message]:
        return self._run({"bool": {"must": [self._project(project_id)]}})

    def messages_in_folders(self, folder_ids: list[str], project_id: str) -> list[Message]:
        if not folder_ids:
            return []
        return self._run(
            {
                "bool": {
                    "must": [self._project(project_id)],
                    "should": [{"term": {"folder_uuid": f}} for f in folder_ids],
                    "minimum_should_match": 1,
                }
            }
        )

    def message_by_uuid(self, message_uuid: str, project_id: str) -> Message | None:
        messages = self._run(
            {
                "bool": {
                    "must": [self._project(project_id), {"term": {"uuid": message_uuid}}]
                }
            },
            size=1,
        )
        return messages[0] if messages else None

    def search(self, text: str, project_id: str) -> list[Message]:
        return self._run(
            {
                "bool": {
                    "must": [self._project(project_id)],
                    "should": [{"match": {field: text}} for field in MESSAGE_FIELDS],
                    "minimum_should_match": 1,
                }
            }
        )
