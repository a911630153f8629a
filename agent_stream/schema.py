"""Declarative argument schemas for capabilities.

A schema is a mapping of field name to one of a small set of tagged field
specs. Each schema compiles to a pydantic model (``ArgumentSchema.input_model``)
that ``validate_arguments`` runs the arguments through; fields the schema
doesn't declare are passed through untouched.

Usage:
    schema = ArgumentSchema(fields={
        "title": StringField(required=True, max_length=200),
        "priority": EnumField(required=True, values=["high", "medium", "low"]),
        "due_date": StringField(format="date"),
    })

    validate_arguments(schema, {"title": "Buy milk", "priority": "high"})
"""

import re
from datetime import date, datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    PrivateAttr,
    StrictBool,
    StrictFloat,
    StrictInt,
    StrictStr,
    ValidationError,
    create_model,
)

from agent_stream.exceptions import ToolValidationError

StringFormat = Literal["date", "datetime", "date-time", "time", "email"]
_KNOWN_FORMATS = ("date", "datetime", "date-time", "time", "email")

_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?(Z|[+-]\d{2}:\d{2})?$"
)
_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class _BaseField(BaseModel):
    required: bool = False
    description: str = ""


class StringField(_BaseField):
    type: Literal["string"] = "string"
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    format: Optional[StringFormat] = None


class NumberField(_BaseField):
    type: Literal["number"] = "number"
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    integer: bool = False


class BooleanField(_BaseField):
    type: Literal["boolean"] = "boolean"


class EnumField(_BaseField):
    type: Literal["enum"] = "enum"
    values: list[Any]


class ArrayField(_BaseField):
    type: Literal["array"] = "array"
    min_items: Optional[int] = None
    max_items: Optional[int] = None


class ObjectField(_BaseField):
    type: Literal["object"] = "object"


class AnyField(_BaseField):
    type: Literal["any"] = "any"


FieldSpec = Annotated[
    Union[StringField, NumberField, BooleanField, EnumField, ArrayField, ObjectField, AnyField],
    Field(discriminator="type"),
]


class ArgumentSchema(BaseModel):
    fields: dict[str, FieldSpec] = Field(default_factory=dict)

    _input_model: Optional[type[BaseModel]] = PrivateAttr(default=None)

    @property
    def input_model(self) -> type[BaseModel]:
        """Pydantic model for these fields, compiled on first use."""
        if self._input_model is None:
            self._input_model = compile_schema(self)
        return self._input_model

    @property
    def required_fields(self) -> list[str]:
        return [name for name, spec in self.fields.items() if spec.required]

    def json_schema(self) -> dict:
        """Render as a JSON Schema object, used for the prompt tool manifest."""
        properties = {name: _field_to_json(spec) for name, spec in self.fields.items()}
        schema: dict[str, Any] = {"type": "object", "properties": properties}
        if self.required_fields:
            schema["required"] = self.required_fields
        return schema

    @classmethod
    def from_json_schema(cls, schema: dict) -> "ArgumentSchema":
        """Build from a JSON Schema object.

        Handles primitive types, enums, string constraints and numeric bounds.
        Falls back to AnyField for anything else ($ref, anyOf, oneOf, ...).
        """
        required = set(schema.get("required", []))
        fields = {
            name: _field_from_json(prop, name in required)
            for name, prop in schema.get("properties", {}).items()
        }
        return cls(fields=fields)


def _field_from_json(prop: dict, required: bool) -> _BaseField:
    common = {"required": required, "description": prop.get("description", "")}

    if "enum" in prop:
        return EnumField(values=list(prop["enum"]), **common)

    schema_type = prop.get("type")
    if schema_type == "string":
        return StringField(
            min_length=prop.get("minLength"),
            max_length=prop.get("maxLength"),
            pattern=prop.get("pattern"),
            format=prop.get("format") if prop.get("format") in _KNOWN_FORMATS else None,
            **common,
        )
    if schema_type in ("number", "integer"):
        return NumberField(
            minimum=prop.get("minimum"),
            maximum=prop.get("maximum"),
            integer=schema_type == "integer",
            **common,
        )
    if schema_type == "boolean":
        return BooleanField(**common)
    if schema_type == "array":
        return ArrayField(
            min_items=prop.get("minItems"), max_items=prop.get("maxItems"), **common
        )
    if schema_type == "object":
        return ObjectField(**common)
    return AnyField(**common)


def _field_to_json(spec: _BaseField) -> dict:
    out: dict[str, Any] = {}
    if isinstance(spec, EnumField):
        out["enum"] = list(spec.values)
    elif isinstance(spec, StringField):
        out["type"] = "string"
        for key, value in (
            ("minLength", spec.min_length),
            ("maxLength", spec.max_length),
            ("pattern", spec.pattern),
            ("format", spec.format),
        ):
            if value is not None:
                out[key] = value
    elif isinstance(spec, NumberField):
        out["type"] = "integer" if spec.integer else "number"
        if spec.minimum is not None:
            out["minimum"] = spec.minimum
        if spec.maximum is not None:
            out["maximum"] = spec.maximum
    elif isinstance(spec, ArrayField):
        out["type"] = "array"
        if spec.min_items is not None:
            out["minItems"] = spec.min_items
        if spec.max_items is not None:
            out["maxItems"] = spec.max_items
    elif not isinstance(spec, AnyField):
        out["type"] = spec.type
    if spec.description:
        out["description"] = spec.description
    return out


# ============================================================================
# Validation
# ============================================================================

# pydantic error type -> message tail, formatted with the error's ctx
_MESSAGES = {
    "missing": "Missing required field: {name}",
    "string_type": 'Field "{name}" must be a string',
    "string_too_short": 'Field "{name}" must be at least {min_length} characters long',
    "string_too_long": 'Field "{name}" must be no more than {max_length} characters long',
    "string_pattern_mismatch": 'Field "{name}" does not match the required pattern: {pattern}',
    "int_type": 'Field "{name}" must be a number',
    "float_type": 'Field "{name}" must be a number',
    "greater_than_equal": 'Field "{name}" must be at least {ge:g}',
    "less_than_equal": 'Field "{name}" must be no more than {le:g}',
    "bool_type": 'Field "{name}" must be a boolean',
    "list_type": 'Field "{name}" must be an array',
    "too_short": 'Field "{name}" must have at least {min_length} items',
    "too_long": 'Field "{name}" must have no more than {max_length} items',
    "dict_type": 'Field "{name}" must be an object',
    "value_error": 'Field "{name}" {error}',
}


def _check_date(value: str) -> str:
    if not _DATE_RE.match(value):
        raise ValueError("must be in YYYY-MM-DD format")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise ValueError("must be a valid date")
    return value


def _check_datetime(value: str) -> str:
    if not _DATETIME_RE.match(value):
        raise ValueError("must be in ISO datetime format (YYYY-MM-DDTHH:mm:ss)")
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise ValueError("must be a valid datetime")
    return value


def _check_time(value: str) -> str:
    if not _TIME_RE.match(value):
        raise ValueError("must be in HH:MM format (24-hour)")
    return value


def _check_email(value: str) -> str:
    if not _EMAIL_RE.match(value):
        raise ValueError("must be a valid email address")
    return value


def _check_whole(value: float) -> float:
    if isinstance(value, float) and not value.is_integer():
        raise ValueError("must be an integer")
    return value


_FORMAT_CHECKS = {
    "date": _check_date,
    "datetime": _check_datetime,
    "date-time": _check_datetime,
    "time": _check_time,
    "email": _check_email,
}


def _field_annotation(spec: _BaseField) -> Any:
    if isinstance(spec, StringField):
        annotation: Any = Annotated[
            StrictStr,
            Field(min_length=spec.min_length, max_length=spec.max_length, pattern=spec.pattern),
        ]
        if spec.format is not None:
            annotation = Annotated[annotation, AfterValidator(_FORMAT_CHECKS[spec.format])]
        return annotation
    if isinstance(spec, NumberField):
        annotation = Annotated[
            Union[StrictInt, StrictFloat], Field(ge=spec.minimum, le=spec.maximum)
        ]
        if spec.integer:
            annotation = Annotated[annotation, AfterValidator(_check_whole)]
        return annotation
    if isinstance(spec, EnumField):
        return Literal[tuple(spec.values)]
    if isinstance(spec, ArrayField):
        return Annotated[list, Field(min_length=spec.min_items, max_length=spec.max_items)]
    if isinstance(spec, BooleanField):
        return StrictBool
    if isinstance(spec, ObjectField):
        return dict
    return Any


def compile_schema(schema: ArgumentSchema, name: str = "Arguments") -> type[BaseModel]:
    """Build the pydantic model that validates arguments for ``schema``.

    Declared names travel as aliases, so names like ``model_config`` or
    ``_id`` stay usable. Undeclared arguments are allowed through.
    """
    fields: dict[str, Any] = {}
    for i, (field_name, spec) in enumerate(schema.fields.items()):
        default = ... if spec.required else None
        fields[f"arg_{i}"] = (
            _field_annotation(spec),
            Field(default=default, alias=field_name, description=spec.description),
        )
    return create_model(name, __config__=ConfigDict(extra="allow", strict=True), **fields)


def _to_tool_error(schema: ArgumentSchema, error: dict) -> ToolValidationError:
    name = str(error["loc"][0]) if error["loc"] else None
    spec = schema.fields.get(name) if name is not None else None
    if error["type"] == "literal_error" and isinstance(spec, EnumField):
        allowed = ", ".join(str(v) for v in spec.values)
        return ToolValidationError(f'Field "{name}" must be one of: {allowed}', field=name)

    template = _MESSAGES.get(error["type"])
    if template is None:
        return ToolValidationError(f'Field "{name}" {error["msg"]}', field=name)
    return ToolValidationError(template.format(name=name, **error.get("ctx", {})), field=name)


def validate_arguments(schema: ArgumentSchema, args: dict[str, Any]) -> None:
    """Check ``args`` against every field in ``schema``.

    A null value counts as absent, so a required field set to null is
    reported as missing.

    Raises:
        ToolValidationError: naming the first offending field.
    """
    if not isinstance(args, dict):
        raise ToolValidationError("Arguments must be an object")

    payload = {k: v for k, v in args.items() if v is not None or k not in schema.fields}
    try:
        schema.input_model.model_validate(payload)
    except ValidationError as e:
        raise _to_tool_error(schema, e.errors()[0]) from e
