"""
Loader for ETL job definition files.

A definition file is YAML or JSON holding either a list of job submissions
or a mapping with a ``jobs`` list. Every entry is validated into a
JobSubmission before anything is returned.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from hookline.models import JobSubmission


class ConfigurationError(Exception):
    """Exception raised when a job definition file cannot be loaded."""

    pass


class ConfigLoader:
    @staticmethod
    def load_from_file(file_path: Union[str, Path]) -> List[JobSubmission]:
        """
        Load job submissions from a file.

        Args:
            file_path: Path to a YAML (``.yaml``/``.yml``) or JSON file

        Returns:
            Validated job submissions in file order

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the file cannot be parsed or validated
        """
        file_path = Path(file_path)

        if not file_path.exists():
            raise FileNotFoundError(f"Job definition file not found: {file_path}")

        content = file_path.read_text(encoding="utf-8")
        try:
            if file_path.suffix.lower() == ".json":
                data = json.loads(content)
            else:
                data = yaml.safe_load(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to parse job definition file {file_path}: {e}") from e

        return ConfigLoader.load_from_data(data)

    @staticmethod
    def load_from_data(data: Any) -> List[JobSubmission]:
        if data is None:
            return []
        if isinstance(data, dict):
            if "jobs" not in data:
                raise ConfigurationError("Missing required field: jobs")
            data = data["jobs"]
        if not isinstance(data, list):
            raise ConfigurationError(f"Job definitions must be a list, got {type(data).__name__}")

        submissions = []
        for i, entry in enumerate(data):
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Invalid job definition at index {i}: {entry!r}")
            try:
                submissions.append(JobSubmission.model_validate(entry))
            except PydanticValidationError as e:
                raise ConfigurationError(f"Invalid job definition at index {i}: {e}") from e
        return submissions


def load_job_definitions(file_path: Union[str, Path]) -> List[JobSubmission]:
    return ConfigLoader.load_from_file(file_path)
