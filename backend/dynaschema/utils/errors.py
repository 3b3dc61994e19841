"""
DynaSchema - 에러 유틸리티
스키마 엔진 에러 분류 및 사용자 친화적 에러 메시지

모든 엔진 에러는 호출자가 복구 가능한 에러입니다.
저장소/캐시 매체 장애(SQLAlchemy OperationalError, redis ConnectionError)는
감싸지 않고 그대로 전파하여 상위 계층에서 backoff 재시도하도록 합니다.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """에러 카테고리"""
    NOT_FOUND = "not_found"          # 리소스 없음 (비활성 포함)
    CONFLICT = "conflict"            # 충돌 (중복, 버전 불일치 등)
    INVALID = "invalid"              # 입력 검증 실패
    BLOCKED = "blocked"              # 사용 중이거나 강제 플래그 필요
    TIMEOUT = "timeout"              # 호출자 deadline 초과
    INTERNAL = "internal"            # 내부 오류


class SchemaEngineError(Exception):
    """스키마 엔진 에러 기본 클래스"""

    category: ErrorCategory = ErrorCategory.INTERNAL
    code: str = "internal_error"
    http_status: int = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# ========== NotFound ==========

class NotFoundError(SchemaEngineError):
    category = ErrorCategory.NOT_FOUND
    code = "not_found"
    http_status = 404


class AttributeNotFoundError(NotFoundError):
    code = "attribute_not_found"


class AssignmentNotFoundError(NotFoundError):
    code = "assignment_not_found"


class ClassNotFoundError(NotFoundError):
    code = "class_not_found"


class EvolutionRecordNotFoundError(NotFoundError):
    code = "evolution_record_not_found"


# ========== Conflict ==========

class ConflictError(SchemaEngineError):
    category = ErrorCategory.CONFLICT
    code = "conflict"
    http_status = 409


class NameConflictError(ConflictError):
    code = "name_conflict"


class DuplicateAssignmentError(ConflictError):
    code = "duplicate_assignment"


class SortPositionConflictError(ConflictError):
    code = "sort_position_conflict"


class VersionConflictError(ConflictError):
    """expected_version이 저장된 버전과 다름 - 다시 읽고 재시도해야 함"""
    code = "version_conflict"


# ========== Invalid ==========

class InvalidError(SchemaEngineError):
    category = ErrorCategory.INVALID
    code = "invalid"
    http_status = 422


class InvalidRuleSetError(InvalidError):
    code = "invalid_rule_set"

    def __init__(self, message: str, errors: Optional[List[str]] = None, **details: Any):
        super().__init__(message, errors=errors or [], **details)
        self.errors: List[str] = errors or []


class ImmutableFieldError(InvalidError):
    code = "immutable_field"


class InvalidSortPositionError(InvalidError):
    code = "invalid_sort_position"


class DefaultValueInvalidError(InvalidError):
    code = "default_value_invalid"


class TenantScopeError(InvalidError):
    code = "tenant_scope_required"
    http_status = 400


# ========== Blocked ==========

class BlockedError(SchemaEngineError):
    category = ErrorCategory.BLOCKED
    code = "blocked"
    http_status = 409


class InUseError(BlockedError):
    code = "in_use"


class BreakingChangeNotForcedError(BlockedError):
    """breaking 변경은 force 플래그 없이는 적용하지 않음"""
    code = "breaking_change_not_forced"

    def __init__(self, message: str, report: Any = None, **details: Any):
        super().__init__(message, **details)
        self.report = report


class RollbackNotSupportedError(BlockedError):
    code = "rollback_not_supported"


# ========== Timeout ==========

class DeadlineExceededError(SchemaEngineError):
    category = ErrorCategory.TIMEOUT
    code = "deadline_exceeded"
    http_status = 504


@dataclass
class UserFriendlyError:
    """사용자 친화적 에러"""
    category: ErrorCategory
    message_ko: str
    message_en: str
    suggestion_ko: Optional[str] = None
    suggestion_en: Optional[str] = None
    technical_detail: Optional[str] = None
    http_status: int = 500
    retryable: bool = False


# 에러 메시지 매핑 (error code 기준)
ERROR_MESSAGES: Dict[str, UserFriendlyError] = {
    "not_found": UserFriendlyError(
        category=ErrorCategory.NOT_FOUND,
        message_ko="요청한 리소스를 찾을 수 없습니다.",
        message_en="The requested resource was not found.",
        suggestion_ko="ID가 올바른지, 비활성화되지 않았는지 확인해 주세요.",
        suggestion_en="Check the identifier and that it has not been deactivated.",
        http_status=404,
    ),
    "name_conflict": UserFriendlyError(
        category=ErrorCategory.CONFLICT,
        message_ko="같은 이름의 속성이 이미 존재합니다.",
        message_en="An attribute with this name already exists.",
        suggestion_ko="다른 이름을 입력해 주세요.",
        suggestion_en="Please choose a different name.",
        http_status=409,
    ),
    "duplicate_assignment": UserFriendlyError(
        category=ErrorCategory.CONFLICT,
        message_ko="이 속성은 이미 클래스에 할당되어 있습니다.",
        message_en="This attribute is already assigned to the class.",
        http_status=409,
    ),
    "sort_position_conflict": UserFriendlyError(
        category=ErrorCategory.CONFLICT,
        message_ko="정렬 위치가 이미 사용 중입니다.",
        message_en="The sort position is already taken.",
        suggestion_ko="다른 정렬 위치를 지정해 주세요.",
        suggestion_en="Please choose another sort position.",
        http_status=409,
    ),
    "version_conflict": UserFriendlyError(
        category=ErrorCategory.CONFLICT,
        message_ko="다른 사용자가 먼저 수정했습니다.",
        message_en="The record was modified by someone else.",
        suggestion_ko="최신 데이터를 다시 조회한 후 재시도해 주세요.",
        suggestion_en="Reload the latest version and try again.",
        http_status=409,
        retryable=True,
    ),
    "invalid": UserFriendlyError(
        category=ErrorCategory.INVALID,
        message_ko="입력 값이 올바르지 않습니다.",
        message_en="The input is invalid.",
        suggestion_ko="입력 내용을 확인해 주세요.",
        suggestion_en="Please check your input.",
        http_status=422,
    ),
    "blocked": UserFriendlyError(
        category=ErrorCategory.BLOCKED,
        message_ko="현재 상태에서는 요청을 처리할 수 없습니다.",
        message_en="The request cannot be applied in the current state.",
        http_status=409,
    ),
    "breaking_change_not_forced": UserFriendlyError(
        category=ErrorCategory.BLOCKED,
        message_ko="기존 데이터와 호환되지 않는 변경입니다.",
        message_en="The change breaks already-stored data.",
        suggestion_ko="영향 보고서를 검토한 후 force 옵션으로 다시 요청하세요.",
        suggestion_en="Review the impact report and resubmit with force.",
        http_status=409,
    ),
    "deadline_exceeded": UserFriendlyError(
        category=ErrorCategory.TIMEOUT,
        message_ko="요청 처리 시간이 초과되었습니다.",
        message_en="The request deadline was exceeded.",
        suggestion_ko="잠시 후 다시 시도해 주세요.",
        suggestion_en="Please try again in a moment.",
        http_status=504,
        retryable=True,
    ),
}


def classify_error(exception: Exception) -> UserFriendlyError:
    """
    예외를 분류하여 사용자 친화적 에러로 변환

    Args:
        exception: 발생한 예외

    Returns:
        UserFriendlyError
    """
    if isinstance(exception, SchemaEngineError):
        template = (
            ERROR_MESSAGES.get(exception.code)
            or ERROR_MESSAGES.get(exception.category.value)
        )
        if template is None:
            template = UserFriendlyError(
                category=exception.category,
                message_ko=exception.message,
                message_en=exception.message,
                http_status=exception.http_status,
            )
        return UserFriendlyError(
            category=template.category,
            message_ko=template.message_ko,
            message_en=template.message_en,
            suggestion_ko=template.suggestion_ko,
            suggestion_en=template.suggestion_en,
            technical_detail=exception.message,
            http_status=exception.http_status,
            retryable=template.retryable,
        )

    # 기본 에러 (저장소 장애 등)
    return UserFriendlyError(
        category=ErrorCategory.INTERNAL,
        message_ko="예기치 않은 오류가 발생했습니다.",
        message_en="An unexpected error occurred.",
        suggestion_ko="문제가 지속되면 관리자에게 문의하세요.",
        suggestion_en="If the problem persists, please contact the administrator.",
        technical_detail=str(exception),
        http_status=500,
        retryable=True,
    )


def format_error_response(
    error: UserFriendlyError,
    lang: str = "ko",
    include_technical: bool = False,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    에러를 API 응답 형식으로 포맷

    Args:
        error: UserFriendlyError
        lang: 언어 (ko 또는 en)
        include_technical: 기술적 세부사항 포함 여부
        details: 엔진 에러의 details (violations, impact report 등)

    Returns:
        에러 응답 딕셔너리
    """
    is_korean = lang.lower().startswith("ko")

    response = {
        "error": {
            "category": error.category.value,
            "message": error.message_ko if is_korean else error.message_en,
            "retryable": error.retryable,
        }
    }

    suggestion = error.suggestion_ko if is_korean else error.suggestion_en
    if suggestion:
        response["error"]["suggestion"] = suggestion

    if include_technical and error.technical_detail:
        response["error"]["detail"] = error.technical_detail

    if details:
        response["error"]["details"] = details

    return response
