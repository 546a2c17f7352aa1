from typing import Dict, Iterable, Iterator, List, Optional


class Vocabulary:
    """Bidirectional mapping between strings and dense integer IDs"""

    def __init__(self, items: Optional[Iterable[str]] = None):
        self._items: List[str] = []
        self._index: Dict[str, int] = {}
        if items is not None:
            for item in items:
                self.add(item)

    def add(self, item: str) -> int:
        idx = self._index.get(item)
        if idx is None:
            idx = len(self._items)
            self._index[item] = idx
            self._items.append(item)
        return idx

    def index_of(self, item: Optional[str]) -> int:
        """Returns the ID of an item, or -1 if it was never added"""
        if item is None:
            return -1
        return self._index.get(item, -1)

    def get(self, idx: int) -> str:
        return self._items[idx]

    def to_list(self) -> List[str]:
        return list(self._items)

    def __contains__(self, item: str) -> bool:
        return item in self._index

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)
