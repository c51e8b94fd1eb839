"""
HookStream Transform Engine — payload → dashboard record.

Pipeline per mapping (in list order, later mappings win on overlapping
targets):

    1. extract   value = get_path(payload, source_path)
    2. condition if present and false: value = default, skip 3-4
    3. fallback  missing / None → default
    4. execute   function: fn(value, payload) | computed: fn(payload)
    5. write     set_path(record, target_field, value)

A failure inside one mapping (condition, code, timeout) is a MappingFailure:
logged, recorded on the TransformResult, the target gets its default (or stays
unset), and the next mapping runs.
"""

from __future__ import annotations

import copy
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from hookstream.engine.conditions import evaluate_condition
from hookstream.engine.errors import MappingFailure, TransformError
from hookstream.engine.logging import log_mapping_failure, log_transform_performance
from hookstream.engine.models import FieldMapping, Transform
from hookstream.engine.paths import MISSING, flatten, get_path, set_path
from hookstream.engine.sandbox import COMPUTED_KIND, FUNCTION_KIND, Sandbox

logger = logging.getLogger("hookstream.engine.transform")


@dataclass
class TransformResult:
    """Output of a transform plus the mapping failures recovered on the way."""

    output: Any
    failures: List[MappingFailure] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.failures

    def error_summary(self) -> Optional[str]:
        """One line per failed mapping, or None."""
        if not self.failures:
            return None
        return "; ".join(
            f"{f.target_field}: {f.message}" for f in self.failures
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "output": self.output,
            "failures": [f.to_dict() for f in self.failures],
            "duration_ms": self.duration_ms,
        }


class TransformEngine:
    """
    Applies Transforms to payloads.

    Usage:
        engine = TransformEngine(Sandbox(timeout_seconds=1.0))
        record = engine.apply(transform, {"a": {"b": 5}})
    """

    def __init__(self, sandbox: Optional[Sandbox] = None, log_queue: Any = None):
        self._sandbox = sandbox or Sandbox()
        self._log_queue = log_queue

    @property
    def sandbox(self) -> Sandbox:
        return self._sandbox

    def apply(
        self,
        transform: Optional[Transform],
        payload: Any,
        webhook_id: Optional[str] = None,
    ) -> Any:
        """Return the transformed record (identity when no transform)."""
        return self.preview(transform, payload, webhook_id=webhook_id).output

    def preview(
        self,
        transform: Optional[Transform],
        payload: Any,
        webhook_id: Optional[str] = None,
    ) -> TransformResult:
        """
        Apply ``transform`` and report recovered mapping failures.

        Raises TransformError only when the transform as a whole cannot run.
        """
        if transform is None or not transform.mappings:
            return TransformResult(output=payload)

        start = time.monotonic()
        failures: List[MappingFailure] = []
        try:
            if transform.output_format == "array":
                items = payload if isinstance(payload, list) else [payload]
                output: Any = [
                    self._apply_mappings(transform, item, failures, webhook_id)
                    for item in items
                ]
            else:
                record = self._apply_mappings(transform, payload, failures, webhook_id)
                output = flatten(record) if transform.output_format == "flat" else record
        except Exception as e:
            raise TransformError(
                f"Transform '{transform.id}' failed: {e}",
                transform_id=transform.id,
                webhook_id=webhook_id,
            ) from e

        duration_ms = (time.monotonic() - start) * 1000
        if self._log_queue is not None:
            self._log_queue.push(log_transform_performance(
                transform_id=transform.id,
                duration_ms=duration_ms,
                mappings=len(transform.mappings),
                failures=len(failures),
                webhook_id=webhook_id,
            ))
        return TransformResult(output=output, failures=failures, duration_ms=duration_ms)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _apply_mappings(
        self,
        transform: Transform,
        payload: Any,
        failures: List[MappingFailure],
        webhook_id: Optional[str],
    ) -> Dict[str, Any]:
        record: Dict[str, Any] = {}
        for index, mapping in enumerate(transform.mappings):
            try:
                value = self._resolve(mapping, payload)
            except Exception as e:
                failure = self._record_failure(transform, index, mapping, e, webhook_id)
                failures.append(failure)
                value = mapping.default_value if mapping.has_default else MISSING

            if value is not MISSING:
                set_path(record, mapping.target_field, value)
        return record

    def _resolve(self, mapping: FieldMapping, payload: Any) -> Any:
        value = get_path(payload, mapping.source_path) if mapping.source_path else MISSING

        if mapping.condition is not None:
            if not evaluate_condition(payload, mapping.condition):
                return self._default(mapping)

        if value is MISSING or value is None:
            value = self._default(mapping)
        else:
            value = copy.deepcopy(value)

        if mapping.transform_type == FUNCTION_KIND:
            value = self._sandbox.run(
                mapping.transform_function,
                FUNCTION_KIND,
                value=None if value is MISSING else value,
                payload=payload,
            )
        elif mapping.transform_type == COMPUTED_KIND:
            value = self._sandbox.run(
                mapping.transform_function,
                COMPUTED_KIND,
                payload=payload,
            )
        return value

    @staticmethod
    def _default(mapping: FieldMapping) -> Any:
        if mapping.has_default:
            return copy.deepcopy(mapping.default_value)
        return MISSING

    def _record_failure(
        self,
        transform: Transform,
        index: int,
        mapping: FieldMapping,
        error: Exception,
        webhook_id: Optional[str],
    ) -> MappingFailure:
        message = getattr(error, "message", None) or str(error) or type(error).__name__
        failure = MappingFailure(
            message,
            transform_id=transform.id,
            webhook_id=webhook_id,
            target_field=mapping.target_field,
            source_path=mapping.source_path,
            mapping_index=index,
            cause=type(error).__name__,
        )
        fallback = "default" if mapping.has_default else "unset"
        logger.warning(
            f"Mapping #{index} -> '{mapping.target_field}' of transform "
            f"'{transform.id}' failed ({type(error).__name__}: {message}); using {fallback}"
        )
        if self._log_queue is not None:
            self._log_queue.push(log_mapping_failure(
                transform_id=transform.id,
                mapping_index=index,
                target_field=mapping.target_field,
                error=message,
                webhook_id=webhook_id,
                source_path=mapping.source_path,
                fallback=fallback,
            ))
        return failure


def load_transform(data: Mapping) -> Transform:
    """Build a Transform from a dict (camelCase or snake_case keys)."""
    return Transform.model_validate(dict(data))
