from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .config import TableConfig
from .files import ContentFile
from .tables.base import TableCapabilities
from .task import OptimizeType


@dataclass(frozen=True)
class Classification:
    """Per-partition classification result.

    ``eligible_files`` is the rewrite input for a Major optimize; ``small_files``
    feeds the small-file trigger; ``excluded_files`` already sit at the
    external canonical location.
    """

    partition: str
    base_files: tuple[ContentFile, ...]
    delete_files: tuple[ContentFile, ...]
    small_files: tuple[ContentFile, ...]
    eligible_files: tuple[ContentFile, ...]
    excluded_files: tuple[ContentFile, ...]

    @property
    def has_deletes(self) -> bool:
        return bool(self.delete_files)


class FileClassifier:
    def __init__(self, config: TableConfig, capabilities: TableCapabilities | None = None) -> None:
        self.config = config
        self.capabilities = capabilities or TableCapabilities()

    def is_small(self, file: ContentFile) -> bool:
        return not file.is_delete and file.size <= self.config.small_file_size_bytes

    def is_excluded(self, file: ContentFile) -> bool:
        return self.capabilities.warehouse_compatible and self.capabilities.exclude(file)

    def classify(
        self,
        partition: str,
        base_files: Sequence[ContentFile],
        delete_files: Sequence[ContentFile],
    ) -> Classification:
        included = [file for file in base_files if not self.is_excluded(file)]
        excluded = [file for file in base_files if self.is_excluded(file)]
        small = [file for file in included if self.is_small(file)]
        # Delete-bearing partitions only rewrite small files; big files keep their deletes.
        eligible = small if delete_files else included
        return Classification(
            partition=partition,
            base_files=tuple(base_files),
            delete_files=tuple(delete_files),
            small_files=tuple(small),
            eligible_files=tuple(eligible),
            excluded_files=tuple(excluded),
        )

    def need_optimize(self, delete_files: Sequence[ContentFile], base_files: Sequence[ContentFile]) -> bool:
        """Whether rewriting ``base_files`` (with ``delete_files``) gains anything.

        Warehouse-compatible tables also rewrite a lone file, since moving it to
        the canonical location is the gain. Plain tables never rewrite a lone
        file that carries no deletes.
        """
        if self.capabilities.warehouse_compatible:
            with_deletes = bool(delete_files) and len(base_files) >= 2
            without_deletes = not delete_files and bool(base_files)
            return with_deletes or without_deletes
        if delete_files:
            return bool(base_files)
        return len(base_files) >= 2

    def needs_full_rewrite(self, classification: Classification) -> bool:
        if not classification.base_files:
            return False
        if self.capabilities.warehouse_compatible:
            return classification.has_deletes or bool(
                len(classification.base_files) - len(classification.excluded_files)
            )
        return self.need_optimize(classification.delete_files, classification.base_files)

    def relocates_output(self, optimize_type: OptimizeType, has_deletes: bool) -> bool:
        return output_relocates(self.capabilities, optimize_type, has_deletes)


def output_relocates(capabilities: TableCapabilities, optimize_type: OptimizeType, has_deletes: bool) -> bool:
    """Decide whether rewrite output moves to the external canonical location.

    Shared by planning and commit so both sides always agree on placement.
    """
    if not capabilities.warehouse_compatible:
        return False
    if optimize_type is OptimizeType.FULL_MAJOR:
        return True
    if optimize_type is OptimizeType.MAJOR:
        return not has_deletes
    return False
