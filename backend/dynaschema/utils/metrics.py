# ===================================================
# DynaSchema - Prometheus Custom Metrics
# Schema Compose, Validation, Evolution, Cache Metrics
# ===================================================

from prometheus_client import Counter, Histogram

# ========== Schema Compose Metrics ==========

# 스키마 조합 결과 (hit, miss, stale, bypass)
schema_compose_total = Counter(
    "dynaschema_schema_compose_total",
    "Total ComposedSchema requests",
    ["result"]
)

# 스키마 조합 시간
schema_compose_duration_seconds = Histogram(
    "dynaschema_schema_compose_duration_seconds",
    "ComposedSchema build duration in seconds",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)


# ========== Validation Metrics ==========

# 검증 결과 (accepted, rejected)
validation_total = Counter(
    "dynaschema_validation_total",
    "Total candidate validations",
    ["outcome"]
)

# 규칙별 위반 수
validation_violations_total = Counter(
    "dynaschema_validation_violations_total",
    "Total validation violations",
    ["rule"]
)


# ========== Schema Evolution Metrics ==========

# 스키마 변경 (entity: attribute/assignment, safety_level: safe/warning/breaking)
schema_changes_total = Counter(
    "dynaschema_schema_changes_total",
    "Total applied or rejected schema changes",
    ["entity", "operation", "safety_level", "status"]
)

# 낙관적 동시성 충돌
version_conflicts_total = Counter(
    "dynaschema_version_conflicts_total",
    "Total optimistic concurrency conflicts",
    ["entity"]
)


# ========== Cache Metrics ==========

# 캐시 무효화 수
cache_invalidations_total = Counter(
    "dynaschema_cache_invalidations_total",
    "Total ComposedSchema cache invalidations",
    ["backend"]
)


# ========== Helper Functions ==========

def track_compose(result: str):
    """스키마 조합 결과 기록"""
    schema_compose_total.labels(result=result).inc()


def track_validation(accepted: bool, violation_rules=()):
    """검증 결과 및 위반 규칙 기록"""
    validation_total.labels(outcome="accepted" if accepted else "rejected").inc()
    for rule in violation_rules:
        validation_violations_total.labels(rule=rule).inc()


def track_schema_change(entity: str, operation: str, safety_level: str, status: str):
    """스키마 변경 기록 (status: applied, forced, rejected)"""
    schema_changes_total.labels(
        entity=entity,
        operation=operation,
        safety_level=safety_level,
        status=status,
    ).inc()


def track_version_conflict(entity: str):
    """버전 충돌 기록"""
    version_conflicts_total.labels(entity=entity).inc()


def track_cache_invalidation(backend: str, count: int = 1):
    """캐시 무효화 기록"""
    if count > 0:
        cache_invalidations_total.labels(backend=backend).inc(count)
