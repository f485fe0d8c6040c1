"""Snapshot and rollback of in-memory component state.

Mutating calls are all-or-nothing: the outermost call snapshots every
component it may touch and restores them if an exception escapes.
Components keep referencing each other (not copies) after a restore.
"""

import copy
from typing import Any, Dict, Iterable, List, Tuple

Snapshot = List[Tuple[Any, Dict[str, Any]]]


def take_snapshot(components: Iterable[Any], shared: Iterable[Any] = ()) -> Snapshot:
    """
    Deep-copy the attribute dicts of `components`.

    Any reference to a component (or to an object in `shared`) found while
    copying is kept as-is instead of being copied.
    """
    components = list(components)
    memo = {id(obj): obj for obj in components}
    memo.update({id(obj): obj for obj in shared})
    return [(obj, copy.deepcopy(vars(obj), memo)) for obj in components]


def restore_snapshot(snapshot: Snapshot) -> None:
    for obj, attrs in snapshot:
        state = vars(obj)
        state.clear()
        state.update(attrs)
