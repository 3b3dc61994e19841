# -*- coding: utf-8 -*-
"""
DynaSchema CLI
배치 작업/운영용 명령줄 진입점

Usage:
    dynaschema init-db
    dynaschema compose --tenant <uuid> --class <uuid> [--bypass-cache]
    dynaschema validate --tenant <uuid> --class <uuid> --values '{"age": 5}'
    dynaschema history --tenant <uuid> [--entity <uuid>] [--type attribute|assignment] [--limit 50]

종료 코드: 0 성공, 1 엔진 에러, 2 검증 거부
"""
import argparse
import json
import logging
import sys
from typing import Any, List, Optional
from uuid import UUID

from dynaschema.config import settings
from dynaschema.database import get_db_context, init_db
from dynaschema.schemas.evolution import EvolutionRecordResponse
from dynaschema.services.collaborators import build_class_registry, build_instance_store
from dynaschema.services.schema_cache import build_schema_cache
from dynaschema.services.schema_service import SchemaService
from dynaschema.services.tenant_context import TenantContext
from dynaschema.utils.errors import SchemaEngineError, classify_error, format_error_response

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_REJECTED = 2


def configure_logging():
    """로깅 설정 (log_format: json 또는 text)"""
    if settings.log_format == "json":
        logging.basicConfig(
            level=settings.log_level,
            format='{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s"}',
        )
    else:
        logging.basicConfig(
            level=settings.log_level,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )


def _json_arg(value: str) -> Any:
    """JSON 문자열 또는 @파일경로"""
    try:
        if value.startswith("@"):
            with open(value[1:], encoding="utf-8") as f:
                return json.load(f)
        return json.loads(value)
    except (OSError, ValueError) as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dynaschema", description="DynaSchema schema engine CLI")
    parser.add_argument("--lang", default="ko", help="에러 메시지 언어 (ko, en)")
    parser.add_argument("--timeout", type=float, default=None, help="요청 deadline (초)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="테이블 생성 (개발/테스트용)")

    compose = sub.add_parser("compose", help="클래스 스키마 조합")
    compose.add_argument("--tenant", type=UUID, required=True)
    compose.add_argument("--class", dest="class_id", type=UUID, required=True)
    compose.add_argument("--bypass-cache", action="store_true")

    validate = sub.add_parser("validate", help="후보 값 검증")
    validate.add_argument("--tenant", type=UUID, required=True)
    validate.add_argument("--class", dest="class_id", type=UUID, required=True)
    validate.add_argument("--values", type=_json_arg, required=True, help="JSON 객체 또는 @file.json")

    history = sub.add_parser("history", help="스키마 변경 이력")
    history.add_argument("--tenant", type=UUID, required=True)
    history.add_argument("--entity", type=UUID, default=None)
    history.add_argument("--type", dest="entity_type", choices=["attribute", "assignment"], default=None)
    history.add_argument("--limit", type=int, default=50)

    return parser


def _print(payload: Any):
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _run(args: argparse.Namespace) -> int:
    if args.command == "init-db":
        init_db()
        _print({"status": "ok"})
        return EXIT_OK

    if args.timeout is not None:
        ctx = TenantContext.with_timeout(args.tenant, args.timeout)
    else:
        ctx = TenantContext(tenant_id=args.tenant)

    with get_db_context() as db:
        service = SchemaService(
            db,
            ctx,
            cache=build_schema_cache(),
            instance_store=build_instance_store(),
            class_registry=build_class_registry(),
        )

        if args.command == "compose":
            schema = service.compose(args.class_id, bypass_cache=args.bypass_cache)
            _print(schema.model_dump(mode="json"))
            return EXIT_OK

        if args.command == "validate":
            result = service.validate(args.class_id, args.values)
            _print(result.model_dump(mode="json"))
            return EXIT_OK if result.accepted else EXIT_REJECTED

        records = service.history(entity_id=args.entity, entity_type=args.entity_type, limit=args.limit)
        _print([EvolutionRecordResponse.model_validate(r).model_dump(mode="json") for r in records])
        return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        return _run(args)
    except SchemaEngineError as e:
        error = classify_error(e)
        _print(format_error_response(error, lang=args.lang, include_technical=True, details=e.details))
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
