"""
DynaSchema - 동적 비즈니스 데이터 플랫폼의 스키마 조합/검증 엔진
"""
__version__ = "0.1.0"
