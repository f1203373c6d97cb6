"""ideaboard/services/entity_mapper.py

Converts between :class:`BoardItem` (in-memory) and :class:`BoardItemRecord`
(the row shape of the item store, where position/size/content/metadata are
stored as JSON text).

Deserialization is forgiving: a blank, malformed or wrongly-shaped JSON field
is replaced by that field's empty default and logged, so one corrupt column
never prevents the rest of the item - or the rest of the board - from loading.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, TypeVar
import json
import logging

from pydantic import BaseModel, ValidationError

from ideaboard.core_models import BoardItem, BoardItemRecord, ItemPosition, ItemSize, utc_now
from ideaboard.errors import ValidationFailure

log = logging.getLogger(__name__)

_JSON_SEPARATORS = (",", ":")


class DataEntityMapper:
    """Stateless, bidirectional item <-> record mapping."""

    # --------------------------------------------------------------------- #
    #  Record -> item
    # --------------------------------------------------------------------- #

    def map_to_board_item(self, record: BoardItemRecord) -> BoardItem:
        """Build a :class:`BoardItem` from *record*.

        Raises :class:`ValidationFailure` only when the identifiers or the item
        type cannot be parsed; JSON columns fall back to empty defaults.
        """
        context = record.id or "<new>"
        fields: Dict[str, Any] = {
            "board_id": record.board_id,
            "user_id": record.user_id,
            "item_type": record.item_type,
            "position": _load_model(record.position, ItemPosition, "position", context),
            "size": _load_model(record.size, ItemSize, "size", context),
            "content": _load_mapping(record.content, "content", context),
            "metadata": _load_mapping(record.metadata, "metadata", context),
            "created_at": record.created_at or utc_now(),
            "updated_at": record.updated_at or utc_now(),
        }
        if record.id:
            fields["id"] = record.id

        try:
            return BoardItem.model_validate(fields)
        except ValidationError as exc:
            raise ValidationFailure(f"Item record {context} is not valid: {exc}") from exc

    def map_to_board_items(self, records: Iterable[BoardItemRecord]) -> List[BoardItem]:
        """Map every record; records with unusable identifiers are logged and skipped."""
        items: List[BoardItem] = []
        for record in records:
            try:
                items.append(self.map_to_board_item(record))
            except ValidationFailure as exc:
                log.warning("Skipping item record %s: %s", record.id, exc.detail)
        return items

    # --------------------------------------------------------------------- #
    #  Item -> record
    # --------------------------------------------------------------------- #

    def map_to_record(self, item: BoardItem) -> BoardItemRecord:
        """Serialize *item* into its wire record.

        Raises :class:`ValidationFailure` if content or metadata hold values
        that JSON cannot represent.
        """
        context = str(item.id)
        return BoardItemRecord(
            id=str(item.id),
            board_id=str(item.board_id),
            user_id=str(item.user_id),
            item_type=item.item_type,
            position=_dump_json(_compact_numbers(item.position.model_dump(by_alias=True)), "position", context),
            size=_dump_json(_compact_numbers(item.size.model_dump()), "size", context),
            content=_dump_json(item.content, "content", context),
            metadata=_dump_json(item.metadata, "metadata", context),
            created_at=item.created_at,
            updated_at=item.updated_at,
        )

    def map_to_records(self, items: Iterable[BoardItem]) -> List[BoardItemRecord]:
        return [self.map_to_record(item) for item in items]


# ------------------------------------------------------------------------- #
#  JSON column helpers
# ------------------------------------------------------------------------- #

def _dump_json(value: Any, field: str, context: str) -> str:
    if value is None:
        return "{}"
    try:
        return json.dumps(value, separators=_JSON_SEPARATORS, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise ValidationFailure(f"Field '{field}' of item {context} is not JSON serializable: {exc}") from exc


def _compact_numbers(values: Dict[str, Any]) -> Dict[str, Any]:
    """Whole floats are written as integers (``10`` not ``10.0``), the form the store returns."""
    return {
        key: int(value) if isinstance(value, float) and value.is_integer() else value
        for key, value in values.items()
    }


def _load_json(raw: Optional[str], field: str, context: str) -> Any:
    if raw is None or not raw.strip():
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        log.warning("Malformed JSON in field '%s' of item %s, using default: %s", field, context, exc)
        return None


def _load_mapping(raw: Optional[str], field: str, context: str) -> Dict[str, Any]:
    data = _load_json(raw, field, context)
    if data is None:
        return {}
    if not isinstance(data, dict):
        log.warning("Field '%s' of item %s is %s, expected an object; using default", field, context, type(data).__name__)
        return {}
    return data


_M = TypeVar("_M", bound=BaseModel)


def _load_model(raw: Optional[str], model: type[_M], field: str, context: str) -> _M:
    data = _load_json(raw, field, context)
    if not isinstance(data, dict):
        if data is not None:
            log.warning("Field '%s' of item %s is %s, expected an object; using default", field, context, type(data).__name__)
        return model()
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        log.warning("Field '%s' of item %s has unexpected shape, using default: %s", field, context, exc)
        return model()
