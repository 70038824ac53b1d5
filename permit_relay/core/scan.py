"""LayerZero Scan lookups for bridge messages sent through the validator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from permit_relay.config import RelayerConfig
from permit_relay.core.utils import get_logger

LOGGER = get_logger("permit_relay.scan")

#: Statuses after which a message will not change any more
FINAL_STATUSES = frozenset({"DELIVERED", "FAILED", "BLOCKED"})


@dataclass(frozen=True)
class MessageStatus:
    """Delivery state of one cross-chain message."""

    guid: str
    status: str
    src_eid: Optional[int]
    dst_eid: Optional[int]
    src_tx_hash: Optional[str]
    dst_tx_hash: Optional[str]

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_STATUSES


def _parse_message(entry: Dict[str, Any]) -> MessageStatus:
    pathway = entry.get("pathway") or {}
    source = entry.get("source") or {}
    destination = entry.get("destination") or {}
    status = entry.get("status") or {}
    return MessageStatus(
        guid=str(entry.get("guid", "")),
        status=str(status.get("name", "UNKNOWN")).upper(),
        src_eid=pathway.get("srcEid"),
        dst_eid=pathway.get("dstEid"),
        src_tx_hash=(source.get("tx") or {}).get("txHash"),
        dst_tx_hash=(destination.get("tx") or {}).get("txHash"),
    )


def fetch_message_status(config: RelayerConfig, tx_hash: str) -> List[MessageStatus]:
    """Return the status of every bridge message emitted by source transaction ``tx_hash``."""
    url = f"{config.api_urls.layerzero_scan}/messages/tx/{tx_hash}"
    try:
        response = requests.get(url, timeout=config.defaults.api_timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ConnectionError(f"Failed to fetch LayerZero message status from {url}: {exc}") from exc

    payload = response.json()
    messages = [_parse_message(entry) for entry in payload.get("data", [])]
    LOGGER.info("LayerZero Scan returned %s message(s) for %s", len(messages), tx_hash)
    return messages


__all__ = ["FINAL_STATUSES", "MessageStatus", "fetch_message_status"]
