"""
Binding between XML documents and pydantic models.

Element names are the field aliases. A field typed ``List[...]`` collects
every matching child element; any other field takes the first one.
Unknown elements are ignored and empty elements read as missing.
"""

import typing
import xml.etree.ElementTree as ET
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel


M = TypeVar("M", bound=BaseModel)


def _unwrap_optional(annotation: Any) -> Any:
    if typing.get_origin(annotation) is typing.Union:
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _is_model(annotation: Any) -> bool:
    return isinstance(annotation, type) and issubclass(annotation, BaseModel)


def _element_value(element: ET.Element, annotation: Any) -> Any:
    if _is_model(annotation):
        return _element_to_dict(annotation, element)
    text = (element.text or "").strip()
    return text or None


def _element_to_dict(model_cls: Type[BaseModel], element: ET.Element) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for name, field in model_cls.model_fields.items():
        tag = field.alias or name
        annotation = _unwrap_optional(field.annotation)
        children = element.findall(tag)
        if not children:
            continue

        if typing.get_origin(annotation) in (list, typing.List):
            (item_type,) = typing.get_args(annotation) or (str,)
            values = [_element_value(child, item_type) for child in children]
            data[tag] = [value for value in values if value is not None]
        else:
            value = _element_value(children[0], annotation)
            if value is not None:
                data[tag] = value
    return data


def parse_xml(model_cls: Type[M], xml: Any, root_tag: Optional[str] = None) -> M:
    """
    Parse an XML document into a model.

    Args:
        model_cls: Model class bound to the root element
        xml: Document as str or bytes
        root_tag: Expected root element name

    Raises:
        ValueError: If the document is not well formed or has the wrong root
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise ValueError(f"Invalid XML document: {e}") from e

    if root_tag and root.tag != root_tag:
        raise ValueError(f"Unexpected root element <{root.tag}>, expected <{root_tag}>")

    return model_cls.model_validate(_element_to_dict(model_cls, root))


def _format_scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _append_model(parent: ET.Element, model: BaseModel) -> None:
    for name, field in type(model).model_fields.items():
        value = getattr(model, name)
        if value is None:
            continue
        tag = field.alias or name
        items = value if isinstance(value, list) else [value]
        for item in items:
            child = ET.SubElement(parent, tag)
            if isinstance(item, BaseModel):
                _append_model(child, item)
            else:
                child.text = _format_scalar(item)


def to_xml(model: BaseModel, root_tag: str) -> str:
    """Render a model as an XML document rooted at ``root_tag``."""
    root = ET.Element(root_tag)
    _append_model(root, model)
    return ET.tostring(root, encoding="unicode")


def text_at(xml: Any, path: str) -> Optional[str]:
    """
    Evaluate a simple absolute path such as ``/shipment/messageID``.

    Returns:
        Text of the first matching element, or None when the path does not match
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError:
        return None

    steps = [step for step in path.split("/") if step]
    if not steps or steps[0] != root.tag:
        return None

    node = root
    for step in steps[1:]:
        node = node.find(step)
        if node is None:
            return None
    return (node.text or "").strip()


def message_id_from_xml(xml: Any, root_tag: str) -> Optional[str]:
    """Read ``/<root_tag>/messageID`` from a document."""
    return text_at(xml, f"/{root_tag}/messageID")
