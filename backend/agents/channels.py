"""Per-field reducers that merge partial step output into session state.

Steps return only the fields they changed. How each returned field combines
with the prior value is decided by the field's reducer, declared once on the
state ``TypedDict`` through ``Annotated`` metadata. The same reducers drive
both the compiled LangGraph channels and :class:`ChannelTable.merge`, which
the session store and the single-step engine path use directly.

A field that is absent from an update never changes. That is different from
a field that is present with a falsy value: ``explicit_overwrite`` fields
take ``False``/``None``/``0`` as real values, while ``last_write_wins``
fields treat ``None`` as "nothing computed".
"""

from collections.abc import Callable, Mapping
from typing import Annotated, Any, get_args, get_origin, get_type_hints

from agents.errors import UnknownFieldError

Reducer = Callable[[Any, Any], Any]


def last_write_wins(left: Any, right: Any) -> Any:
    """Replace the prior value unless the incoming value is ``None``."""
    return left if right is None else right


def explicit_overwrite(left: Any, right: Any) -> Any:
    """Replace the prior value with whatever the step explicitly returned."""
    return right


def append_messages(left: list[Any] | None, right: list[Any] | None) -> list[Any]:
    """Append new messages to history.

    Messages whose ``id`` is already in history are skipped, so replaying a
    step's output cannot duplicate conversation turns.
    """
    history = list(left or [])
    if not right:
        return history
    seen = {_message_id(m) for m in history}
    for message in right:
        message_id = _message_id(message)
        if message_id is not None and message_id in seen:
            continue
        history.append(message)
        seen.add(message_id)
    return history


def _message_id(message: Any) -> str | None:
    if isinstance(message, Mapping):
        return message.get("id")
    return getattr(message, "id", None)


def bounded_append(limit: int) -> Reducer:
    """Build an append reducer that keeps only the newest ``limit`` entries."""

    def _append(left: list[Any] | None, right: list[Any] | None) -> list[Any]:
        combined = list(left or []) + list(right or [])
        return combined[-limit:]

    _append.__name__ = f"bounded_append_{limit}"
    return _append


def merge_step_statuses(
    left: dict[str, Any] | None, right: dict[str, Any] | None
) -> dict[str, Any]:
    """Merge a per-step status map; each returned step replaces its entry."""
    merged = dict(left or {})
    merged.update(right or {})
    return merged


def upsert_artifacts(left: list[Any] | None, right: list[Any] | None) -> list[Any]:
    """Replace artifacts sharing a path, append the rest."""
    artifacts = list(left or [])
    for artifact in right or []:
        artifacts = [a for a in artifacts if a.path != artifact.path]
        artifacts.append(artifact)
    return artifacts


class ChannelTable:
    """Typed reducer table keyed by state field name."""

    def __init__(self, reducers: Mapping[str, Reducer]) -> None:
        self.reducers: dict[str, Reducer] = dict(reducers)

    @classmethod
    def from_schema(cls, schema: type) -> "ChannelTable":
        """Read the reducer of every field from a state ``TypedDict``.

        Raises:
            TypeError: If a field does not declare a reducer.
        """
        reducers: dict[str, Reducer] = {}
        for name, hint in get_type_hints(schema, include_extras=True).items():
            if get_origin(hint) is not Annotated:
                raise TypeError(f"State field {name!r} has no reducer")
            reducer = get_args(hint)[-1]
            if not callable(reducer):
                raise TypeError(f"State field {name!r} has no reducer")
            reducers[name] = reducer
        return cls(reducers)

    @property
    def fields(self) -> frozenset[str]:
        return frozenset(self.reducers)

    def validate_update(self, update: Mapping[str, Any]) -> None:
        """Reject updates that carry fields this state shape does not define."""
        unknown = [key for key in update if key not in self.reducers]
        if unknown:
            raise UnknownFieldError(unknown)

    def merge(self, state: Mapping[str, Any], update: Mapping[str, Any]) -> dict[str, Any]:
        """Return a new state with ``update`` folded into ``state``.

        Only keys present in ``update`` are touched.
        """
        self.validate_update(update)
        merged = dict(state)
        for key, value in update.items():
            merged[key] = self.reducers[key](state.get(key), value)
        return merged
