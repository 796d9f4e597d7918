"""
Contact network mined from indexed messages.

A node is an address that has both sent to and received from some counterpart;
a link joins two addresses only when traffic flows both ways between them.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from email.utils import getaddresses
from typing import Any, Iterable

from .schemas import Message, is_null
from .search import MessageIndex

logger = logging.getLogger(__name__)

MAX_NODE_SIZE = 30


@dataclass
class NetworkNode:
    id: str
    size: int


@dataclass
class NetworkLink:
    source: str
    target: str


@dataclass
class Network:
    nodes: list[NetworkNode] = field(default_factory=list)
    links: list[NetworkLink] = field(default_factory=list)
    first_sent_message_date: int = 0
    last_sent_message_date: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def addresses_from_header(header: str | None) -> list[str]:
    """
    Split an address header into addresses.

    Shapes are tried in order: a "; " separated list, a single token without
    "@" taken literally, then an RFC 5322 address list. Unparseable headers
    log and yield no addresses.
    """
    if header is None or is_null(header):
        return []
    if "; " in header:
        return header.split("; ")
    if "@" not in header:
        return [header]

    try:
        pairs = getaddresses([header])
    except Exception as e:
        logger.error("Failed to parse address list: %s", e)
        return []
    addresses = [addr for _name, addr in pairs]
    if not addresses or any(not addr or "@" not in addr for addr in addresses):
        logger.error("Failed to parse address list: %s", header)
        return []
    return addresses


def _dedupe(messages: Iterable[Message]) -> list[Message]:
    seen: set[str] = set()
    unique: list[Message] = []
    for message in messages:
        message_id = message.message_id
        if not is_null(message_id):
            if message_id in seen:
                continue
            seen.add(message_id)
        unique.append(message)
    return unique


def build_network(messages: Iterable[Message]) -> Network:
    # sent[a][b]: number of messages a sent to b (to or cc)
    sent: dict[str, dict[str, int]] = defaultdict(lambda: defaultdict(int))
    unique = _dedupe(messages)

    for message in unique:
        recipients = addresses_from_header(message.to) + addresses_from_header(message.cc)
        for sender in addresses_from_header(message.sender):
            row = sent[sender]
            for recipient in recipients:
                row[recipient] += 1

    network = Network()
    if unique:
        network.first_sent_message_date = min(m.received for m in unique)
        network.last_sent_message_date = max(m.received for m in unique)

    sizes: dict[str, int] = {}
    linked: set[frozenset[str]] = set()
    for source, targets in sent.items():
        for target, sent_count in targets.items():
            received_count = sent.get(target, {}).get(source, 0)
            if sent_count <= 0 or received_count <= 0:
                continue
            size = min(MAX_NODE_SIZE, sent_count * received_count)
            for address in (target, source):
                if address not in sizes:
                    sizes[address] = size
                    network.nodes.append(NetworkNode(address, size))
            pair = frozenset((source, target))
            if pair not in linked:
                linked.add(pair)
                network.links.append(NetworkLink(source, target))

    return network


def get_network(project_id: str, index: MessageIndex) -> Network:
    messages = index.all_messages(project_id)
    network = build_network(messages)
    logger.info(
        "Built network for project %s: %d nodes, %d links from %d messages",
        project_id,
        len(network.nodes),
        len(network.links),
        len(messages),
    )
    return network
