from pydantic import BaseModel, ValidationError, field_validator

GRANULARITY_KEYS = ("daily", "weekly", "monthly")
METRIC_KEYS = ("calories", "distance", "duration", "avg_speed", "avg_heart_rate")


class SettingsSchema(BaseModel):
    username: str = ""
    openai_api_key: str = ""
    default_granularity: str = "daily"
    default_metric: str = "calories"
    history_range_days: int = 0

    @field_validator("openai_api_key")
    @classmethod
    def _check_api_key(cls, value: str) -> str:
        if value and not value.startswith("sk-"):
            raise ValueError("API key must start with sk-")
        return value

    @field_validator("default_granularity")
    @classmethod
    def _check_granularity(cls, value: str) -> str:
        if value not in GRANULARITY_KEYS:
            raise ValueError(f"unknown granularity: {value}")
        return value

    @field_validator("default_metric")
    @classmethod
    def _check_metric(cls, value: str) -> str:
        if value not in METRIC_KEYS:
            raise ValueError(f"unknown metric: {value}")
        return value

    @field_validator("history_range_days")
    @classmethod
    def _check_range(cls, value: int) -> int:
        if value < 0:
            raise ValueError("history_range_days must be non-negative")
        return value


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
