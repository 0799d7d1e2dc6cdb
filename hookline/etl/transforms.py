"""
Transformation pipeline for extracted webhook records.

Each TransformStep type maps to a Transformation class through a registry.
TransformationPipeline applies the enabled steps of a job in ascending
``order``, feeding the output of one step to the next.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from logging import Logger
from typing import Any, ClassVar, Dict, Generic, Iterable, List, Optional, Type, TypeVar

from hookline.exceptions import ExecutionError, UnsupportedOperationError
from hookline.logger import get_logger
from hookline.models import (
    AggregateStep,
    BaseStep,
    EnrichStep,
    FilterStep,
    MapStep,
    Record,
    ValidateStep,
    utcnow,
)

StepT = TypeVar("StepT", bound=BaseStep)


class Transformation(ABC, Generic[StepT]):
    """
    Abstract base class for a single transformation step.

    Concrete transformations receive the typed step they were built from and
    implement ``apply`` over a list of plain dict records.
    """

    step_type: ClassVar[str]

    def __init__(self, step: StepT) -> None:
        self.step = step

    @property
    def name(self) -> str:
        return f"{self.step_type}:{self.step.id}"

    @abstractmethod
    def apply(self, records: List[Record]) -> List[Record]:
        """
        Apply the transformation.

        Args:
            records: Records produced by the previous step

        Returns:
            Records to hand to the next step
        """
        pass

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}')"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', order={self.step.order})"


class TransformationError(ExecutionError):
    """
    Raised when a transformation step fails; aborts the whole pipeline.
    """

    def __init__(self, transformation: Transformation[Any], message: str, cause: Optional[Exception] = None) -> None:
        self.transformation = transformation
        super().__init__(f"Transformation '{transformation.name}' error: {message}", phase="transform", cause=cause)


class FilterTransformation(Transformation[FilterStep]):
    step_type = "filter"

    def apply(self, records: List[Record]) -> List[Record]:
        field, value = self.step.config.field, self.step.config.value
        if field is None or value is None:
            return records
        return [record for record in records if record.get(field) == value]


class MapTransformation(Transformation[MapStep]):
    step_type = "map"

    def apply(self, records: List[Record]) -> List[Record]:
        mappings = self.step.config.field_mappings
        mapped_records = []
        for record in records:
            mapped = dict(record)
            for old_field, new_field in mappings.items():
                if old_field in mapped:
                    mapped[new_field] = mapped[old_field]
                    del mapped[old_field]
            mapped_records.append(mapped)
        return mapped_records


def _group_key(value: Any) -> Any:
    # True == 1 == 1.0 as dict keys, so the type name keeps them in separate groups
    try:
        hash(value)
        return type(value).__name__, value
    except TypeError:
        return type(value).__name__, json.dumps(value, sort_keys=True, default=str)


class AggregateTransformation(Transformation[AggregateStep]):
    step_type = "aggregate"

    def apply(self, records: List[Record]) -> List[Record]:
        group_by = self.step.config.group_by
        if not group_by:
            return records

        # dicts keep insertion order, so groups come out in first-seen order
        groups: Dict[Any, List[Record]] = {}
        keys: Dict[Any, Any] = {}
        for record in records:
            value = record.get(group_by)
            key = _group_key(value)
            keys.setdefault(key, value)
            groups.setdefault(key, []).append(record)

        summaries = []
        for key, members in groups.items():
            summary: Record = {group_by: keys[key], "count": len(members)}
            if self.step.config.include_items:
                summary["items"] = members
            summaries.append(summary)
        return summaries


class EnrichTransformation(Transformation[EnrichStep]):
    step_type = "enrich"

    def apply(self, records: List[Record]) -> List[Record]:
        additional_fields = self.step.config.additional_fields
        return [
            {**record, **additional_fields, "enrichedAt": utcnow().isoformat()}
            for record in records
        ]


class ValidateTransformation(Transformation[ValidateStep]):
    step_type = "validate"

    def apply(self, records: List[Record]) -> List[Record]:
        required = self.step.config.required_fields
        return [record for record in records if all(record.get(field) is not None for field in required)]


class TransformationRegistry:
    """
    Registry of transformation types, keyed by the step ``type`` tag.
    """

    def __init__(self) -> None:
        self._transformation_types: Dict[str, Type[Transformation[Any]]] = {}

    def register(self, step_type: str, transformation_class: Type[Transformation[Any]]) -> None:
        if step_type in self._transformation_types:
            raise ValueError(f"Transformation type '{step_type}' is already registered")
        if not issubclass(transformation_class, Transformation):
            raise ValueError("Transformation class must inherit from Transformation base class")
        self._transformation_types[step_type] = transformation_class

    def unregister(self, step_type: str) -> bool:
        return self._transformation_types.pop(step_type, None) is not None

    def get_transformation_class(self, step_type: str) -> Type[Transformation[Any]]:
        if step_type not in self._transformation_types:
            raise UnsupportedOperationError(f"Unknown transformation type: {step_type}")
        return self._transformation_types[step_type]

    def get_registered_types(self) -> List[str]:
        return list(self._transformation_types.keys())

    def create(self, step: BaseStep) -> Transformation[Any]:
        step_type = getattr(step, "type", None)
        transformation_class = self.get_transformation_class(str(step_type))
        return transformation_class(step)


_global_registry = TransformationRegistry()


def get_global_registry() -> TransformationRegistry:
    return _global_registry


def register_transformation(step_type: str, transformation_class: Type[Transformation[Any]]) -> None:
    _global_registry.register(step_type, transformation_class)


for _cls in (
    FilterTransformation,
    MapTransformation,
    AggregateTransformation,
    EnrichTransformation,
    ValidateTransformation,
):
    register_transformation(_cls.step_type, _cls)


def ordered_steps(steps: Iterable[BaseStep]) -> List[BaseStep]:
    """Enabled steps in ascending ``order``; ties keep their submitted order."""
    return sorted((step for step in steps if step.enabled), key=lambda step: step.order)


class TransformationPipeline:
    """
    Applies a job's transformation steps in sequence.

    Disabled steps are dropped before execution. Any step failure aborts the
    pipeline: nothing from the partial run is returned.
    """

    def __init__(
        self, registry: Optional[TransformationRegistry] = None, logger: Optional[Logger] = None
    ) -> None:
        self.registry = registry or get_global_registry()
        self.logger = logger or get_logger()

    def build(self, steps: Iterable[BaseStep]) -> List[Transformation[Any]]:
        return [self.registry.create(step) for step in ordered_steps(steps)]

    def apply(self, records: List[Record], steps: Iterable[BaseStep], job_id: str = "-") -> List[Record]:
        transformations = self.build(steps)
        if not transformations:
            self.logger.info(f"[ETL:{job_id}] No transformations configured, passing {len(records)} records through")
            return records

        current = list(records)
        for i, transformation in enumerate(transformations):
            try:
                current = transformation.apply(current)
            except Exception as e:
                self.logger.error(
                    f"[ETL:{job_id}] Transformation '{transformation.name}' failed at step "
                    f"{i + 1}/{len(transformations)}: {e}"
                )
                if isinstance(e, (TransformationError, UnsupportedOperationError)):
                    raise
                raise TransformationError(transformation, str(e), e) from e

            self.logger.info(
                f"[ETL:{job_id}] Applied transformation {transformation.step_type}, {len(current)} records remaining"
            )

        return current
