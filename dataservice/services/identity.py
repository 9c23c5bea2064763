"""
Identity field renaming between storage form and service form.

Storage backends keep the identifier under their own native attribute
("_id" for the memory adapter, the primary key for SQL tables). Services may
expose it under a different name (settings.id_field). These two functions do
the rename in each direction; adapters call them with their native name.
"""

import copy
from typing import Any, Dict

NATIVE_ID_FIELD = "_id"


def before_save_transform_id(
    entity: Dict[str, Any],
    id_field: str,
    native_field: str = NATIVE_ID_FIELD,
) -> Dict[str, Any]:
    """
    Move the service identity field onto the native attribute.

    The input is never mutated; a deep copy is returned.

    Args:
        entity: Document in service form
        id_field: Service-visible identity field name
        native_field: Storage-native identity attribute name

    Returns:
        Document in storage form
    """
    new_entity = copy.deepcopy(entity)
    if id_field != native_field and id_field in entity:
        new_entity[native_field] = new_entity.pop(id_field)
    return new_entity


def after_retrieve_transform_id(
    entity: Dict[str, Any],
    id_field: str,
    native_field: str = NATIVE_ID_FIELD,
) -> Dict[str, Any]:
    """
    Move the native identity attribute onto the service identity field.

    Mutates the document in place and returns it.
    """
    if id_field != native_field:
        entity[id_field] = entity.pop(native_field, None)
    return entity
