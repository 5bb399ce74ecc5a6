"""
Meta objects: composite records of several named descriptors.

A MetaObject is an ordered mapping from descriptor name to sub-object.
Subclasses may pin the names, order and classes of their slots with a
DescriptorSchema; the binary body of such a class is positional (one
nested object per slot, null for an absent descriptor), otherwise it is a
list of (name, object) pairs.

The distance between two meta objects is delegated to an aggregation
strategy:
    WeightedSum   sum of weighted, normalized descriptor distances
    TotalMin      minimum normalized distance over compatible pairs
Without an aggregation, meta objects are equal exactly when their
locators are.

Text form (header layout):
    <locator>;<name1>;<Class1>;<name2>;<Class2>;...
    one record per descriptor listed in the header

ArrayMetaObject uses a positional text layout instead: one record per
slot, an empty line for an absent slot.
"""

import logging
from abc import ABC, abstractmethod
from typing import Collection, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from .base import MAX_DISTANCE, UNKNOWN_DISTANCE, LineReader, LocalObject
from .binary import INT_SIZE, BinaryReader, BinaryWriter, lookup_type, object_size, register_type, string_size
from .errors import IncompatibleObjectError
from .keys import ObjectKey

logger = logging.getLogger(__name__)


class DescriptorSchema:
    """
    Fixed, ordered list of ``(name, class)`` descriptor slots.

    The slot order defines the binary layout of the owning meta object.
    """

    def __init__(self, slots: Sequence[Tuple[str, type]]):
        self.slots: Tuple[Tuple[str, type], ...] = tuple((name, cls) for name, cls in slots)
        self._index = {}
        for i, (name, _) in enumerate(self.slots):
            if name in self._index:
                raise ValueError(f"Duplicate descriptor name {name!r} in schema")
            self._index[name] = i

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.slots]

    def index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise ValueError(f"Descriptor {name!r} is not part of the schema") from None

    def object_class(self, name: str) -> type:
        return self.slots[self.index(name)][1]

    def __contains__(self, name) -> bool:
        return name in self._index

    def __len__(self):
        return len(self.slots)

    def __iter__(self):
        return iter(self.slots)


class Aggregation(ABC):
    """Strategy combining descriptor distances into one meta-object distance."""

    @abstractmethod
    def distance(self, first: "MetaObject", second: "MetaObject", threshold: float,
                 meta_distances: Optional[dict] = None) -> float:
        """Aggregate distance of two meta objects."""

    @abstractmethod
    def max_distance(self) -> float:
        """Upper bound of :meth:`distance`."""


class WeightedSum(Aggregation):
    """
    ``sum(weight[name] * distance(name) / normalizer[name])``.

    Descriptors with a weight of zero or less are not computed at all.
    Descriptors missing (or of incompatible type) on either side are
    skipped and reported as UNKNOWN_DISTANCE in ``meta_distances``. The sum
    is returned as soon as it exceeds the threshold.

    Args:
        weights: Weight per descriptor name, or a sequence of weights for
                 positional (array) meta objects.
        normalizers: Optional divisor per descriptor name, default 1.
    """

    def __init__(self, weights: Union[Mapping[str, float], Sequence[float]],
                 normalizers: Optional[Mapping[str, float]] = None):
        if not isinstance(weights, Mapping):
            weights = {str(i): w for i, w in enumerate(weights)}
        self.weights: Dict[str, float] = {name: float(w) for name, w in weights.items()}
        self.normalizers: Dict[str, float] = dict(normalizers or {})

    def set_weight(self, name: str, weight: float) -> None:
        self.weights[name] = float(weight)

    def copy(self) -> "WeightedSum":
        return WeightedSum(self.weights, self.normalizers)

    def max_distance(self) -> float:
        # The extra 1 absorbs float round-off in callers that prune against it
        return 1.0 + sum(w for w in self.weights.values() if w > 0)

    def distance(self, first, second, threshold, meta_distances=None):
        total = 0.0
        for name, weight in self.weights.items():
            if weight <= 0:
                continue
            mine = first.get_object(name)
            theirs = second.get_object(name)
            if mine is None or theirs is None or not mine.is_distance_compatible(theirs):
                if meta_distances is not None:
                    meta_distances[name] = UNKNOWN_DISTANCE
                continue

            normalizer = self.normalizers.get(name, 1.0)
            sub_threshold = threshold * normalizer / weight if threshold < MAX_DISTANCE else MAX_DISTANCE
            dist = mine.get_distance(theirs, sub_threshold) / normalizer
            if meta_distances is not None:
                meta_distances[name] = dist
            total += dist * weight
            if total > threshold:
                logger.debug(f"Weighted sum pruned at {name}: {total:.4f} > {threshold}")
                return total
        return total

    def __repr__(self):
        return f"WeightedSum({self.weights!r})"


class TotalMin(Aggregation):
    """
    Minimum normalized distance over every compatible descriptor pair.

    Pairs are formed across all slots, not only equally named ones. With no
    compatible pair the result is the maximum distance, 1.
    """

    def max_distance(self) -> float:
        return 1.0

    def distance(self, first, second, threshold, meta_distances=None):
        best = self.max_distance()
        for mine in first.get_objects():
            for theirs in second.get_objects():
                if mine.is_distance_compatible(theirs):
                    best = min(best, mine.get_norm_distance(theirs))
        return best

    def __repr__(self):
        return "TotalMin()"


@register_type
class MetaObject(LocalObject):
    """
    Ordered mapping of descriptor names to sub-objects.

    Args:
        objects: Mapping (or iterable of pairs) of name to object. For a
            schema-bound class, names must belong to the schema and missing
            slots stay None.
        key: Optional object key.
        aggregation: Distance strategy overriding the class default.
    """

    schema: Optional[DescriptorSchema] = None
    aggregation: Optional[Aggregation] = None

    def __init__(self, objects: Union[Mapping[str, Optional[LocalObject]],
                                      Iterable[Tuple[str, Optional[LocalObject]]], None] = None,
                 key: Optional[ObjectKey] = None, aggregation: Optional[Aggregation] = None):
        super().__init__(key)
        objects = dict(objects or {})
        if self.schema is not None:
            unknown = [name for name in objects if name not in self.schema]
            if unknown:
                raise ValueError(f"{type(self).__name__} has no descriptors named {unknown}")
            for name, cls in self.schema:
                obj = objects.get(name)
                if obj is not None and not isinstance(obj, cls):
                    raise IncompatibleObjectError(
                        f"Descriptor {name} must be {cls.__name__}, got {type(obj).__name__}"
                    )
            self._objects: Dict[str, Optional[LocalObject]] = {
                name: objects.get(name) for name in self.schema.names
            }
        else:
            self._objects = {name: obj for name, obj in objects.items() if obj is not None}
        if aggregation is not None:
            self.aggregation = aggregation

    # Access

    def get_object_names(self) -> List[str]:
        """Names of the descriptors present in this object, in slot order."""
        return [name for name, obj in self._objects.items() if obj is not None]

    def get_object(self, name: str) -> Optional[LocalObject]:
        return self._objects.get(name)

    def get_objects(self) -> List[LocalObject]:
        return [obj for obj in self._objects.values() if obj is not None]

    def get_object_map(self) -> Dict[str, LocalObject]:
        return {name: obj for name, obj in self._objects.items() if obj is not None}

    def get_object_count(self) -> int:
        return len(self.get_objects())

    def __len__(self):
        return self.get_object_count()

    # Distance

    def is_distance_compatible(self, other) -> bool:
        return isinstance(other, MetaObject)

    def _distance_impl(self, other, threshold, meta_distances=None):
        if self.aggregation is None:
            return 0.0 if self.locator == other.locator else 1.0
        return self.aggregation.distance(self, other, threshold, meta_distances)

    def get_max_distance(self) -> float:
        if self.aggregation is None:
            return 1.0
        return self.aggregation.max_distance()

    def data_equals(self, other) -> bool:
        if type(other) is not type(self):
            return False
        mine = self.get_object_map()
        theirs = other.get_object_map()
        if mine.keys() != theirs.keys():
            return False
        return all(obj.data_equals(theirs[name]) for name, obj in mine.items())

    def data_hash(self) -> int:
        return hash(tuple((name, obj.data_hash()) for name, obj in self.get_object_map().items()))

    # Text

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes,
               restrict_names: Optional[Collection[str]] = None):
        """
        Args:
            restrict_names: When given, descriptors with other names are
                still read from the stream but discarded.
        """
        fields = lines.read_record_line().split(";")
        if len(fields) % 2 == 1:
            locator = fields.pop(0)
            if key is None and locator:
                key = ObjectKey(locator)

        objects = {}
        for name, class_name in zip(fields[0::2], fields[1::2]):
            obj = lookup_type(class_name).read(lines)
            if restrict_names is not None and name not in restrict_names:
                continue
            if cls.schema is not None and name not in cls.schema:
                logger.debug(f"{cls.__name__} ignores descriptor {name}")
                continue
            if obj.key is None:
                obj.key = key
            objects[name] = obj
        return cls(objects, key=key)

    def _write_data(self, stream) -> None:
        present = self.get_object_map()
        header = []
        if self.locator:
            header.append(self.locator)
        for name, obj in present.items():
            header.extend((name, type(obj).__name__))
        stream.write(";".join(header) + "\n")
        for obj in present.values():
            obj.write(stream, write_comments=False)

    # Binary

    def binary_serialize(self, writer: BinaryWriter) -> int:
        return super().binary_serialize(writer) + self._write_slots(writer)

    def binary_size(self) -> int:
        return super().binary_size() + self._slots_size()

    @classmethod
    def _read_binary(cls, reader: BinaryReader) -> dict:
        fields = super()._read_binary(reader)
        fields["objects"] = cls._read_slots(reader)
        return fields

    def _write_slots(self, writer: BinaryWriter) -> int:
        if self.schema is not None:
            written = writer.write_int(len(self.schema))
            for name in self.schema.names:
                written += writer.write_object(self._objects[name])
            return written
        present = self.get_object_map()
        written = writer.write_int(len(present))
        for name, obj in present.items():
            written += writer.write_string(name) + writer.write_object(obj)
        return written

    def _slots_size(self) -> int:
        if self.schema is not None:
            return INT_SIZE + sum(object_size(self._objects[name]) for name in self.schema.names)
        return INT_SIZE + sum(string_size(name) + object_size(obj)
                              for name, obj in self.get_object_map().items())

    @classmethod
    def _read_slots(cls, reader: BinaryReader):
        count = reader.read_int()
        objects = {}
        if cls.schema is not None:
            if count != len(cls.schema):
                raise ValueError(f"{cls.__name__} expects {len(cls.schema)} slots, stream has {count}")
            for name, slot_class in cls.schema:
                objects[name] = reader.read_object(slot_class)
        else:
            for _ in range(count):
                name = reader.read_string()
                objects[name] = reader.read_object(LocalObject)
        return objects

    def __repr__(self):
        return f"<{type(self).__name__} locator={self.locator!r} descriptors={self.get_object_names()}>"


@register_type
class ArrayMetaObject(MetaObject):
    """
    Meta object with positional slots named ``"0"``, ``"1"``, ...

    Slots may be None. Text records list one object per slot with an empty
    line for a missing one, so reading needs the slot classes.
    """

    def __init__(self, objects: Sequence[Optional[LocalObject]] = (),
                 key: Optional[ObjectKey] = None, aggregation: Optional[Aggregation] = None):
        super().__init__(key=key, aggregation=aggregation)
        self._objects = {str(i): obj for i, obj in enumerate(objects)}

    def get_object_at(self, index: int) -> Optional[LocalObject]:
        return self._objects[str(index)]

    @property
    def slot_count(self) -> int:
        return len(self._objects)

    def data_equals(self, other) -> bool:
        return (type(other) is type(self) and other.slot_count == self.slot_count
                and super().data_equals(other))

    # Text

    @classmethod
    def _parse(cls, lines: LineReader, key, attributes, classes: Sequence[type] = ()):
        """
        Args:
            classes: Class of each slot, in order.
        """
        objects = []
        for slot_class in classes:
            if lines.peek() in ("\n", "\r\n"):
                lines.readline()
                objects.append(None)
                continue
            obj = slot_class.read(lines)
            if obj.key is None:
                obj.key = key
            objects.append(obj)
        return cls(objects, key=key)

    def _write_data(self, stream) -> None:
        for obj in self._objects.values():
            if obj is None:
                stream.write("\n")
            else:
                obj.write(stream, write_comments=False)

    # Binary

    def _write_slots(self, writer: BinaryWriter) -> int:
        written = writer.write_int(self.slot_count)
        for obj in self._objects.values():
            written += writer.write_object(obj)
        return written

    def _slots_size(self) -> int:
        return INT_SIZE + sum(object_size(obj) for obj in self._objects.values())

    @classmethod
    def _read_slots(cls, reader: BinaryReader):
        count = reader.read_int()
        return [reader.read_object(LocalObject) for _ in range(count)]
