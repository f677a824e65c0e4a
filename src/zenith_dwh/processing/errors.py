# Các lỗi của pipeline
# - DatasetUnavailableError: lỗi đầu vào (thiếu file, sai kiểu, dòng hỏng)
# - TransformationError: lỗi trong một stage cleansing, chỉ ảnh hưởng dataset đó
# - ResolverUnavailableError: bảng tham chiếu rỗng/thiếu khi config bắt buộc phải có
# - DependencyOrderError: gọi sai thứ tự (cleansing trước khi có dữ liệu raw / resolver)

from typing import Any, Dict, Optional


class PipelineError(Exception):

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class DatasetUnavailableError(PipelineError):

    def __init__(self, dataset: str, reason: str):
        super().__init__(
            f"Dataset {dataset} is unavailable: {reason}",
            details={"dataset": dataset},
        )
        self.dataset = dataset
        self.reason = reason


class TransformationError(PipelineError):

    def __init__(self, dataset: str, stage: str, cause: BaseException):
        super().__init__(
            f"Cleansing {dataset} failed at stage '{stage}': {type(cause).__name__}: {cause}",
            details={"dataset": dataset, "stage": stage},
        )
        self.dataset = dataset
        self.stage = stage
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class ResolverUnavailableError(PipelineError):

    def __init__(self, resolver: str, dataset: str, reason: str = "reference table is empty or missing"):
        super().__init__(
            f"Resolver {resolver} required by {dataset} is unavailable: {reason}",
            details={"resolver": resolver, "dataset": dataset},
        )
        self.resolver = resolver
        self.dataset = dataset


class DependencyOrderError(PipelineError):
    pass
