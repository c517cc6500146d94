from typing import Any, Dict, List, Optional, Protocol, Union

Keys = Union[str, List[str]]


class StoreUnavailableError(RuntimeError):
    """The backing key-value store could not be read or written."""


class RecordStore(Protocol):
    """Asynchronous key-value map; no transactions, no compare-and-swap.

    ``get(None)`` returns every entry. Missing keys are simply absent from
    the returned mapping.
    """

    async def get(self, keys: Optional[Keys] = None) -> Dict[str, Any]: ...

    async def set(self, items: Dict[str, Any]) -> None: ...

    async def remove(self, keys: Keys) -> None: ...


def as_key_list(keys: Optional[Keys]) -> List[str]:
    if keys is None:
        return []
    if isinstance(keys, str):
        return [keys]
    return [key for key in keys if isinstance(key, str)]
