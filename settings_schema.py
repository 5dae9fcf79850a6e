from typing import Literal

from pydantic import BaseModel, ValidationError


class SettingsSchema(BaseModel):
    db_path: str = "workouts.db"
    backup_dir: str = "backups"
    migration_strategy: Literal["incremental", "rebuild"] = "incremental"
    use_metric: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
