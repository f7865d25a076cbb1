"""
Knowledge Memory - Domain-tagged key/value facts with derived confidence.

The decision loop never writes here; Copilot ranking only reads the
confidence of a domain (usually the game id) as a prior for
historical-action suggestions.

Domain confidence, recalculated periodically:
    0.4 * quantity  (min(1, items / 50))
  + 0.4 * recency   (mean of max(0, 1 - age / 30 days))
  + 0.2 * usage     (mean of min(1, access_count / 5))
"""

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Callable, Dict, List, Optional

from core.config import KnowledgeConfig

logger = logging.getLogger(__name__)

DAY_SECONDS = 86400.0


@dataclass
class KnowledgeItem:
    """A single remembered fact"""
    domain: str
    key: str
    value: Any
    source: str = "system"
    created_at: float = field(default_factory=time.time)
    last_accessed: float = field(default_factory=time.time)
    access_count: int = 0

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> 'KnowledgeItem':
        return cls(**data)


class KnowledgeMemory:
    """
    Adaptive key/value memory
    - Entries grouped by domain
    - Confidence per domain from quantity, recency and usage
    - JSON persistence
    """

    def __init__(self, config: Optional[KnowledgeConfig] = None,
                 path: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or KnowledgeConfig()
        self.path = path
        self.clock = clock
        self.items_by_domain: Dict[str, Dict[str, KnowledgeItem]] = {}
        self.confidence: Dict[str, float] = {}
        self._last_recalculation = 0.0
        self._lock = threading.RLock()
        if path:
            self.load()

    def remember(self, domain: str, key: str, value: Any, source: str = "system",
                 now: Optional[float] = None) -> KnowledgeItem:
        now = self.clock() if now is None else now
        with self._lock:
            bucket = self.items_by_domain.setdefault(domain, {})
            item = bucket.get(key)
            if item is None:
                item = KnowledgeItem(domain, key, value, source, created_at=now, last_accessed=now)
                bucket[key] = item
            else:
                item.value = value
                item.source = source
                item.created_at = now
            return item

    def recall(self, domain: str, key: str, default: Any = None,
               now: Optional[float] = None) -> Any:
        with self._lock:
            item = self.items_by_domain.get(domain, {}).get(key)
            if item is None:
                return default
            item.access_count += 1
            item.last_accessed = self.clock() if now is None else now
            return item.value

    def forget(self, domain: str, key: Optional[str] = None) -> int:
        """Drop one key, or a whole domain when key is None."""
        with self._lock:
            if key is None:
                removed = len(self.items_by_domain.pop(domain, {}))
                self.confidence.pop(domain, None)
                return removed
            bucket = self.items_by_domain.get(domain, {})
            return 1 if bucket.pop(key, None) is not None else 0

    def items(self, domain: str) -> List[KnowledgeItem]:
        with self._lock:
            return list(self.items_by_domain.get(domain, {}).values())

    def domains(self) -> List[str]:
        with self._lock:
            return list(self.items_by_domain)

    def domain_confidence(self, domain: str) -> float:
        """Last calculated confidence, 0.0 for unknown domains."""
        with self._lock:
            return self.confidence.get(domain, 0.0)

    def _score(self, items: List[KnowledgeItem], now: float) -> float:
        if not items:
            return 0.0
        cfg = self.config
        window = cfg.recency_window_days * DAY_SECONDS
        quantity = min(1.0, len(items) / cfg.quantity_saturation)
        recency = sum(max(0.0, 1.0 - (now - i.created_at) / window) for i in items) / len(items)
        usage = sum(min(1.0, i.access_count / cfg.usage_saturation) for i in items) / len(items)
        return 0.4 * quantity + 0.4 * recency + 0.2 * usage

    def recalculate_confidence(self, now: Optional[float] = None) -> Dict[str, float]:
        now = self.clock() if now is None else now
        with self._lock:
            self.confidence = {
                domain: self._score(list(bucket.values()), now)
                for domain, bucket in self.items_by_domain.items()
            }
            self._last_recalculation = now
            return dict(self.confidence)

    def maybe_recalculate(self, now: Optional[float] = None) -> bool:
        """Recalculate if the configured interval has elapsed."""
        now = self.clock() if now is None else now
        if now - self._last_recalculation < self.config.recalculation_interval_s:
            return False
        self.recalculate_confidence(now)
        return True

    def save(self, path: Optional[str] = None):
        path = path or self.path
        if not path:
            return
        with self._lock:
            data = {
                'items': [i.to_dict() for bucket in self.items_by_domain.values()
                          for i in bucket.values()],
                'confidence': self.confidence,
            }
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)

    def load(self, path: Optional[str] = None) -> bool:
        path = path or self.path
        if not path or not os.path.exists(path):
            return False
        try:
            with open(path, 'r') as f:
                data = json.load(f)
            items = [KnowledgeItem.from_dict(d) for d in data.get('items', [])]
        except (OSError, ValueError, TypeError) as e:
            logger.error("Could not read knowledge memory %s: %s", path, e)
            return False
        with self._lock:
            self.items_by_domain = {}
            for item in items:
                self.items_by_domain.setdefault(item.domain, {})[item.key] = item
            self.confidence = dict(data.get('confidence', {}))
        return True

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'domains': len(self.items_by_domain),
                'total_items': sum(len(b) for b in self.items_by_domain.values()),
                'confidence': dict(self.confidence),
            }
