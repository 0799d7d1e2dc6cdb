from datetime import datetime, timezone
from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Type,
    TypeAlias,
    TypeVar,
    Union,
)
from uuid import uuid4

from pydantic import BaseModel as PydanticBaseModel
from pydantic import (
    ConfigDict,
    Field,
    GetCoreSchemaHandler,
    NonNegativeInt,
    TypeAdapter,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import core_schema

IncEx: TypeAlias = "set[int] | set[str] | dict[int, IncEx] | dict[str, IncEx] | None"
StrT = TypeVar("StrT", bound="BaseString")

Record: TypeAlias = Dict[str, Any]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(v: datetime) -> datetime:
    """
    >>> ensure_aware(datetime(2024, 1, 1)).tzinfo
    datetime.timezone.utc
    >>> from datetime import timedelta
    >>> ensure_aware(datetime(2024, 1, 1, 9, tzinfo=timezone(timedelta(hours=9)))).isoformat()
    '2024-01-01T00:00:00+00:00'
    """
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


def new_hex_id() -> str:
    return uuid4().hex


class BaseString(str):
    """
    >>> BaseString("test")
    BaseString('test')
    >>> str(BaseString("test"))
    'test'
    >>> ta = TypeAdapter(BaseString)
    >>> ta.validate_python("test")
    BaseString('test')
    >>> ta.dump_json(BaseString("test_test"))
    b'"test_test"'
    >>> BaseString.from_str("test")
    BaseString('test')
    >>> hash(BaseString("test")) == hash("test")
    True
    """

    @classmethod
    def _proc_str(cls, s: str) -> str:
        return s

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({super().__repr__()})"

    def __str__(self) -> str:
        return super(BaseString, self).__str__()

    @classmethod
    def __get_pydantic_core_schema__(cls, _source_type: Any, _handler: GetCoreSchemaHandler) -> core_schema.CoreSchema:
        return core_schema.no_info_after_validator_function(
            cls.validate,
            core_schema.str_schema(**cls.__get_extra_constraint_dict__()),
            serialization=core_schema.plain_serializer_function_ser_schema(cls.serialize, when_used="json"),
        )

    @classmethod
    def validate(cls: Type[StrT], v: Any) -> StrT:
        return cls(cls._proc_str(v))

    def serialize(self) -> str:
        return str(self)

    @classmethod
    def __get_extra_constraint_dict__(cls) -> dict[str, Any]:
        return {}

    def __hash__(self) -> int:
        return super(BaseString, self).__hash__()

    @classmethod
    def from_str(cls: Type[StrT], v: str) -> StrT:
        return TypeAdapter(cls).validate_python(v)


class NonEmptyStringMixin(BaseString):
    @classmethod
    def __get_extra_constraint_dict__(cls) -> dict[str, Any]:
        return dict(super().__get_extra_constraint_dict__(), min_length=1)


class TrimmedStringMixin(BaseString):
    @classmethod
    def __get_extra_constraint_dict__(cls) -> dict[str, Any]:
        return dict(super().__get_extra_constraint_dict__(), strip_whitespace=True)


class NonEmptyTrimmedString(TrimmedStringMixin, NonEmptyStringMixin):
    """
    >>> NonEmptyTrimmedString.from_str(" nightly export ")
    NonEmptyTrimmedString('nightly export')
    """


class WebhookId(BaseString):
    """
    >>> WebhookId.from_str("abc123")
    WebhookId('abc123')
    """

    @classmethod
    def __get_extra_constraint_dict__(cls) -> dict[str, Any]:
        return dict(super().__get_extra_constraint_dict__(), pattern=r"^[a-zA-Z0-9]{6,32}$")


class HexId(BaseString):
    """
    >>> HexId.from_str("0123456789abcdef0123456789abcdef")
    HexId('0123456789abcdef0123456789abcdef')
    """

    @classmethod
    def __get_extra_constraint_dict__(cls) -> dict[str, Any]:
        return dict(super().__get_extra_constraint_dict__(), pattern=r"^[0-9a-f]{32}$")


class JobId(HexId):
    ...


class RequestId(HexId):
    ...


class BaseModel(PydanticBaseModel):
    """
    >>> class DerivedModel(BaseModel):
    ...   object_name: str
    >>> x = DerivedModel(object_name='test')
    >>> x
    DerivedModel(object_name='test')
    >>> x.model_dump()
    {'object_name': 'test'}
    >>> x.model_dump_json()
    '{"objectName":"test"}'
    >>> DerivedModel.model_validate_json('{"objectName":"test2"}')
    DerivedModel(object_name='test2')
    >>> DerivedModel.model_validate_json('{"object_name":"test3"}')
    DerivedModel(object_name='test3')
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, validate_assignment=True)

    def model_dump_json(
        self,
        *,
        indent: int | None = None,
        include: IncEx = None,
        exclude: IncEx = None,
        by_alias: bool = True,
        exclude_unset: bool = False,
        exclude_defaults: bool = False,
        exclude_none: bool = False,
        round_trip: bool = False,
        warnings: bool = True,
    ) -> str:
        return super(BaseModel, self).model_dump_json(
            indent=indent,
            include=include,
            exclude=exclude,
            by_alias=by_alias,
            exclude_unset=exclude_unset,
            exclude_defaults=exclude_defaults,
            exclude_none=exclude_none,
            round_trip=round_trip,
            warnings=warnings,
        )


class Message(BaseModel):
    message: str


class WebhookConfig(BaseModel):
    webhook_id: WebhookId
    name: Union[str, None] = None
    url: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    last_request_at: Union[datetime, None] = None
    request_count: NonNegativeInt = 0
    is_active: bool = True

    @field_validator("created_at", "last_request_at")
    @classmethod
    def _aware_timestamps(cls, v: Union[datetime, None]) -> Union[datetime, None]:
        return ensure_aware(v) if v is not None else v


class CapturedRequest(BaseModel):
    """
    One inbound HTTP call captured by a webhook endpoint. Never mutated after
    ingestion.

    >>> r = CapturedRequest(
    ...     request_id="0123456789abcdef0123456789abcdef",
    ...     webhook_id="abc123",
    ...     method="post",
    ...     path="/abc123",
    ...     timestamp=datetime(2024, 5, 1, 12, 0),
    ... )
    >>> r.method
    'POST'
    >>> r.timestamp.isoformat()
    '2024-05-01T12:00:00+00:00'
    >>> r.to_record()["webhookId"]
    'abc123'
    """

    model_config = ConfigDict(frozen=True)

    request_id: RequestId = Field(default_factory=lambda: RequestId(new_hex_id()))
    webhook_id: WebhookId
    method: str
    path: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: str = ""
    query_params: Dict[str, str] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    ip: Union[str, None] = None
    user_agent: Union[str, None] = None
    content_type: Union[str, None] = None
    body_size: NonNegativeInt = 0

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("timestamp")
    @classmethod
    def _aware_timestamp(cls, v: datetime) -> datetime:
        return ensure_aware(v)

    def to_record(self) -> Record:
        return self.model_dump(mode="json", by_alias=True)


class HeaderOperator(str, Enum):
    equals = "equals"
    contains = "contains"
    regex = "regex"


class HeaderCondition(BaseModel):
    key: str
    operator: HeaderOperator
    value: str


class DateRange(BaseModel):
    start: Union[datetime, None] = None
    end: Union[datetime, None] = None

    @field_validator("start", "end")
    @classmethod
    def _aware_bounds(cls, v: Union[datetime, None]) -> Union[datetime, None]:
        return ensure_aware(v) if v is not None else v

    @model_validator(mode="after")
    def _ordered(self) -> "DateRange":
        if self.start is not None and self.end is not None and self.start > self.end:
            raise ValueError("dateRange.start must not be after dateRange.end")
        return self


class FilterSpec(BaseModel):
    date_range: Union[DateRange, None] = None
    methods: List[str] = Field(default_factory=list)
    content_types: List[str] = Field(default_factory=list)
    ip_addresses: List[str] = Field(default_factory=list)
    user_agents: List[str] = Field(default_factory=list)
    body_contains: Union[str, None] = None
    header_conditions: List[HeaderCondition] = Field(default_factory=list)

    @field_validator("methods")
    @classmethod
    def _upper_methods(cls, v: List[str]) -> List[str]:
        return [m.upper() for m in v]


class FilterStepConfig(BaseModel):
    field: Union[str, None] = None
    value: Any = None


class MapStepConfig(BaseModel):
    field_mappings: Dict[str, str] = Field(default_factory=dict)


class AggregateStepConfig(BaseModel):
    group_by: Union[str, None] = None
    include_items: bool = False


class EnrichStepConfig(BaseModel):
    additional_fields: Dict[str, Any] = Field(default_factory=dict)


class ValidateStepConfig(BaseModel):
    required_fields: List[str] = Field(default_factory=list)


class BaseStep(BaseModel):
    id: str = Field(default_factory=new_hex_id)
    enabled: bool = True
    order: int = 0


class FilterStep(BaseStep):
    type: Literal["filter"] = "filter"
    config: FilterStepConfig = Field(default_factory=FilterStepConfig)


class MapStep(BaseStep):
    type: Literal["map"] = "map"
    config: MapStepConfig = Field(default_factory=MapStepConfig)


class AggregateStep(BaseStep):
    type: Literal["aggregate"] = "aggregate"
    config: AggregateStepConfig = Field(default_factory=AggregateStepConfig)


class EnrichStep(BaseStep):
    type: Literal["enrich"] = "enrich"
    config: EnrichStepConfig = Field(default_factory=EnrichStepConfig)


class ValidateStep(BaseStep):
    type: Literal["validate"] = "validate"
    config: ValidateStepConfig = Field(default_factory=ValidateStepConfig)


TransformStep = Annotated[
    Union[FilterStep, MapStep, AggregateStep, EnrichStep, ValidateStep],
    Field(discriminator="type"),
]


def _default_json_headers() -> Dict[str, str]:
    return {"Content-Type": "application/json"}


class HttpDestinationConfig(BaseModel):
    url: str = Field(min_length=1)
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=_default_json_headers)


class FileDestinationConfig(BaseModel):
    filename: str = Field(default="etl-output.json", min_length=1)


class EmailDestinationConfig(BaseModel):
    recipients: List[str] = Field(min_length=1)
    subject: str = "ETL job results"


class BaseDestination(BaseModel):
    credentials: Union[Dict[str, str], None] = None


class WebhookDestination(BaseDestination):
    type: Literal["webhook"] = "webhook"
    config: HttpDestinationConfig


class ApiDestination(BaseDestination):
    type: Literal["api"] = "api"
    config: HttpDestinationConfig


class FileDestination(BaseDestination):
    type: Literal["file"] = "file"
    config: FileDestinationConfig = Field(default_factory=FileDestinationConfig)


class EmailDestination(BaseDestination):
    type: Literal["email"] = "email"
    config: EmailDestinationConfig


class DatabaseDestination(BaseDestination):
    type: Literal["database"] = "database"
    config: Dict[str, Any] = Field(default_factory=dict)


Destination = Annotated[
    Union[WebhookDestination, ApiDestination, FileDestination, EmailDestination, DatabaseDestination],
    Field(discriminator="type"),
]


class ScheduleType(str, Enum):
    once = "once"
    recurring = "recurring"


class Schedule(BaseModel):
    type: ScheduleType
    cron: Union[str, None] = None
    timezone: Union[str, None] = None
    enabled: bool = True

    @model_validator(mode="after")
    def _cron_for_recurring(self) -> "Schedule":
        if self.type == ScheduleType.recurring and not self.cron:
            raise ValueError("a recurring schedule requires a cron expression")
        return self


class JobKind(str, Enum):
    extract = "extract"
    transform = "transform"
    load = "load"
    full = "full"


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class JobPhase(str, Enum):
    extract = "extract"
    transform = "transform"
    load = "load"
    completed = "completed"


class Progress(BaseModel):
    total_records: NonNegativeInt = 0
    processed_records: NonNegativeInt = 0
    successful_records: NonNegativeInt = 0
    failed_records: NonNegativeInt = 0
    percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    estimated_time_remaining: Union[float, None] = None
    current_phase: JobPhase = JobPhase.extract


class JobSubmission(BaseModel):
    name: NonEmptyTrimmedString
    type: JobKind
    webhook_id: Union[WebhookId, None] = None
    filters: Union[FilterSpec, None] = None
    transformations: List[TransformStep] = Field(default_factory=list)
    destination: Union[Destination, None] = None
    schedule: Union[Schedule, None] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("transformations")
    @classmethod
    def _unique_step_ids(cls, v: List[BaseStep]) -> List[BaseStep]:
        ids = [step.id for step in v]
        if len(ids) != len(set(ids)):
            raise ValueError("transformation step ids must be unique")
        return v

    @property
    def runs_immediately(self) -> bool:
        return self.schedule is None or self.schedule.type == ScheduleType.once


class Job(JobSubmission):
    job_id: JobId = Field(default_factory=lambda: JobId(new_hex_id()))
    status: JobStatus = JobStatus.pending
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Union[datetime, None] = None
    completed_at: Union[datetime, None] = None
    progress: Progress = Field(default_factory=Progress)
    error: Union[str, None] = None

    @classmethod
    def from_submission(cls, submission: JobSubmission) -> "Job":
        return cls.model_validate(submission.model_dump())


class JobListResponse(BaseModel):
    data: List[Job]
    total: NonNegativeInt
