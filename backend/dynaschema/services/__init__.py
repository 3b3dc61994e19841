"""
Services
스키마 조합/검증/변경 분석 서비스
"""
