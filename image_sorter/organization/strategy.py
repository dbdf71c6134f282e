"""
Organization strategies for file management.

Defines the date-based directory structure and collision-safe naming.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Iterator

from pydantic import BaseModel, ConfigDict, Field

from ..core.types import SortOptions

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

# Upper bound on disambiguating suffixes tried for one name
MAX_NAME_ATTEMPTS = 9999


class OrganizationStrategy(BaseModel):
    """Strategy for placing files into date folders."""

    group_by_day: bool = Field(
        default=False,
        description="Add a day folder below the month folder",
    )

    use_month_names: bool = Field(
        default=False,
        description='Name month folders "06 - June" instead of "06"',
    )

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_options(cls, options: SortOptions) -> "OrganizationStrategy":
        return cls(
            group_by_day=options.group_by_day,
            use_month_names=options.use_month_names,
        )

    def month_folder(self, date: datetime) -> str:
        """
        Name of the month folder for a date.

        Examples:
            06
            06 - June
        """
        if self.use_month_names:
            return f"{date.month:02d} - {MONTH_NAMES[date.month - 1]}"
        return f"{date.month:02d}"

    def get_target_directory(self, base_path: Path, date: datetime) -> Path:
        """
        Get target directory for a date.

        Args:
            base_path: Base output directory
            date: Creation date of the file

        Returns:
            <base>/<YYYY>/<month>[/<DD>]
        """
        target = base_path / f"{date.year:04d}" / self.month_folder(date)
        if self.group_by_day:
            target = target / f"{date.day:02d}"
        return target


def candidate_names(filename: str) -> Iterator[str]:
    """
    Yield the original name, then img_1.jpg, img_2.jpg, ...

    Args:
        filename: Original file name

    Yields:
        Candidate file names in the order they should be tried
    """
    yield filename

    path = Path(filename)
    stem = path.stem
    suffix = path.suffix
    for counter in range(1, MAX_NAME_ATTEMPTS + 1):
        yield f"{stem}_{counter}{suffix}"


def reserve_target_path(target_dir: Path, filename: str) -> Path:
    """
    Claim a free file name in target_dir.

    The returned path is created as an empty placeholder with an exclusive
    create, so no other writer can claim the same name between the check
    and the transfer. The caller must replace or remove it.

    Args:
        target_dir: Existing destination directory
        filename: Preferred file name

    Returns:
        Path of the reserved placeholder

    Raises:
        FileExistsError: If every candidate name is taken
        OSError: If the directory is not writable
    """
    for name in candidate_names(filename):
        candidate = target_dir / name
        try:
            fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            continue
        os.close(fd)
        return candidate

    raise FileExistsError(f"Too many naming conflicts for {target_dir / filename}")
