from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from entitygate.domain.copying import ShapeCopyProvider
from entitygate.domain.errors import ReflectionError
from entitygate.domain.model import (
    Archival,
    Capabilities,
    Nameable,
    ShapeDescriptor,
    ShapeRegistry,
    describe_dataclass,
)
from tests.helpers.fakes import ArchivedWidget, Gadget, Widget


@dataclass(eq=False)
class Coded:
    code: str | None = None
    revision: int | None = None
    code_name: str | None = None
    single_value: str | None = None
    tags: set[str] = field(default_factory=set)


class SpecialWidget(Widget):
    pass


class NeedsArguments:
    def __init__(self, required: str) -> None:
        self.required = required


def test_describe_dataclass_splits_collections() -> None:
    shape = describe_dataclass(Gadget)

    assert shape.name == "Gadget"
    assert shape.key_fields == ("id",)
    assert shape.fields == ("id", "name")
    assert shape.collection_fields == ("parts",)


def test_capabilities_are_detected_once_per_type() -> None:
    assert describe_dataclass(Gadget).capabilities == Capabilities(nameable=True)
    assert describe_dataclass(ArchivedWidget).capabilities == Capabilities(archival=True)
    assert describe_dataclass(Coded, key_fields=("code", "revision")).capabilities == (
        Capabilities(single_value=True, recognizable_code=True)
    )
    assert isinstance(Gadget(), Nameable)
    assert isinstance(ArchivedWidget(), Archival)


def test_composite_keys() -> None:
    shape = describe_dataclass(Coded, key_fields=("code", "revision"))

    assert shape.identifier_of(Coded(code="A", revision=2)) == ("A", 2)
    assert shape.has_valid_identifier(Coded(code="A", revision=2))
    assert not shape.has_valid_identifier(Coded(code="A"))
    assert shape.friendly_name(Coded(code="A", revision=2)) == "code=A, revision=2"
    assert shape.friendly_name(Coded()) == "code=NewKey, revision=NewKey"


def test_descriptor_rejects_undeclared_keys() -> None:
    with pytest.raises(ReflectionError):
        ShapeDescriptor(name="Broken", entity_type=Widget, key_fields=("uuid",), fields=("id",))
    with pytest.raises(ReflectionError):
        ShapeDescriptor(name="Keyless", entity_type=Widget, key_fields=(), fields=("id",))


def test_new_instance_wraps_constructor_errors() -> None:
    shape = ShapeDescriptor(
        name="NeedsArguments",
        entity_type=NeedsArguments,
        key_fields=("required",),
        fields=("required",),
    )

    with pytest.raises(ReflectionError):
        shape.new_instance()


def test_registry_resolves_subclasses_to_declared_shape() -> None:
    registry = ShapeRegistry([describe_dataclass(Widget)])

    assert registry.for_entity(SpecialWidget(id=1)).name == "Widget"
    assert registry.knows(SpecialWidget)
    assert registry.get("Widget").entity_type is Widget
    assert registry.names() == ("Widget",)
    assert len(registry) == 1


def test_registry_rejects_unknown_shapes() -> None:
    registry = ShapeRegistry([describe_dataclass(Widget)])

    with pytest.raises(ReflectionError):
        registry.get("Gadget")
    with pytest.raises(ReflectionError):
        registry.for_type(Gadget)
    with pytest.raises(ReflectionError):
        registry.for_entity(None)


def test_registry_rejects_name_bound_to_another_type() -> None:
    registry = ShapeRegistry([describe_dataclass(Widget)])

    with pytest.raises(ReflectionError):
        registry.register(describe_dataclass(Gadget, name="Widget"))


def test_copy_provider_detaches_and_converts() -> None:
    copier = ShapeCopyProvider()
    shape = describe_dataclass(Widget)
    special = SpecialWidget(id=4, label="special")

    copy = copier.detach(special, shape)
    converted = copier.to_shape(special, shape)
    from_values = copier.detach(special, shape, {"id": 9, "label": "given", "extra": 1})

    assert type(copy) is Widget
    assert (copy.id, copy.label) == (4, "special")
    assert type(converted) is Widget
    assert copier.to_shape(copy, shape) is copy
    assert (from_values.id, from_values.label) == (9, "given")
    assert not hasattr(from_values, "extra")


def test_copy_provider_collapses_empty_collections() -> None:
    copier = ShapeCopyProvider()
    shape = describe_dataclass(Gadget)
    empty = Gadget(id=1)
    filled = Gadget(id=2, parts=["gear"])

    copier.collapse_empty_collections(empty, shape)
    copier.collapse_empty_collections(filled, shape)

    assert empty.parts is None
    assert filled.parts == ["gear"]
